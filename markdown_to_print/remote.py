"""
Fetching Markdown from the web, with HackMD note URLs rewritten to their
raw download endpoint.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import re
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

HEADERS = {"User-Agent": "markdown-to-print/0.1"}
REQUEST_TIMEOUT = 30

HACKMD_TITLE = "HackMD-Document"
WEB_TITLE = "Web-Document"

_HACKMD_NOTE = re.compile(r'hackmd\.io/(@[\w-]+/)?([\w-]+)')
_PRIVATE_NOTE_TEXT = "You don't have permission to access this resource"


class RemoteDocumentError(Exception):
    """Raised when a remote Markdown document cannot be retrieved."""


@dataclass
class RemoteDocument:
    url: str
    download_url: str
    title: str
    content: str


def is_url(value: str) -> bool:
    """True for http(s) URLs with a host."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_hackmd_url(url: str) -> bool:
    return "hackmd.io" in url


def hackmd_url_to_download_url(url: str) -> str:
    """``https://hackmd.io/@user/note`` or ``https://hackmd.io/note`` -> ``https://hackmd.io/note/download``."""
    match = _HACKMD_NOTE.search(url)
    if not match:
        raise RemoteDocumentError("Invalid HackMD URL format")
    return f"https://hackmd.io/{match.group(2)}/download"


def fetch_text(url: str, session=None) -> str:
    """GET a URL and return its text, translating failures into ``RemoteDocumentError``."""
    http = session or requests
    try:
        response = http.get(url, headers=HEADERS, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise RemoteDocumentError(f"Failed to fetch {url}: {e}") from e

    if response.status_code == 403:
        raise RemoteDocumentError(
            "Access denied (403). This HackMD document might be private or require authentication.")
    if response.status_code == 404:
        raise RemoteDocumentError("Document not found (404). Please check the URL is correct.")
    if response.status_code != 200:
        raise RemoteDocumentError(f"HTTP Error {response.status_code}: {response.reason}")

    # text/* without a charset defaults to Latin-1 in requests; notes are UTF-8
    if not response.encoding or response.encoding.lower() == "iso-8859-1":
        response.encoding = "utf-8"
    text = response.text
    if _PRIVATE_NOTE_TEXT in text:
        raise RemoteDocumentError(
            "Access denied. This HackMD document is private. Please:\n"
            "1. Make the document public, or\n"
            "2. Use the \"Download\" option from HackMD menu and save the .md file locally")
    return text


def fetch_markdown(url: str, session=None) -> RemoteDocument:
    """Download a Markdown document from a generic URL or a HackMD note."""
    if is_hackmd_url(url):
        download_url = hackmd_url_to_download_url(url)
        title = HACKMD_TITLE
    else:
        download_url = url
        title = WEB_TITLE
    return RemoteDocument(url=url, download_url=download_url, title=title,
                          content=fetch_text(download_url, session=session))
