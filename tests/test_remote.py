"""
Unit tests for fetching Markdown from URLs and HackMD notes.
"""

from unittest.mock import MagicMock

import pytest
import requests

from markdown_to_print.remote import (
    HACKMD_TITLE,
    WEB_TITLE,
    RemoteDocumentError,
    fetch_markdown,
    fetch_text,
    hackmd_url_to_download_url,
    is_hackmd_url,
    is_url,
)


def response(status=200, text="# Note", encoding="utf-8", reason="OK"):
    mock = MagicMock()
    mock.status_code = status
    mock.text = text
    mock.encoding = encoding
    mock.reason = reason
    return mock


@pytest.fixture
def session():
    return MagicMock()


class TestUrlHelpers:
    """Tests for URL classification and HackMD rewriting."""

    @pytest.mark.parametrize("value,expected", [
        ("https://hackmd.io/abc", True),
        ("http://example.com/notes.md", True),
        ("notes.md", False),
        ("/tmp/notes.md", False),
        ("ftp://example.com/notes.md", False),
        ("https://", False),
    ])
    def test_is_url(self, value, expected):
        assert is_url(value) is expected

    def test_is_hackmd_url(self):
        assert is_hackmd_url("https://hackmd.io/@team/note")
        assert not is_hackmd_url("https://example.com/note")

    @pytest.mark.parametrize("url", [
        "https://hackmd.io/AbC-123",
        "https://hackmd.io/@someone/AbC-123",
        "https://hackmd.io/AbC-123?view",
    ])
    def test_download_url(self, url):
        assert hackmd_url_to_download_url(url) == "https://hackmd.io/AbC-123/download"

    def test_invalid_hackmd_url(self):
        with pytest.raises(RemoteDocumentError, match="Invalid HackMD URL format"):
            hackmd_url_to_download_url("https://example.com/")


class TestFetchText:
    """Tests for HTTP error handling."""

    def test_success(self, session):
        session.get.return_value = response(text="# Title\nbody")
        assert fetch_text("https://example.com/a.md", session=session) == "# Title\nbody"
        session.get.assert_called_once()
        assert session.get.call_args.kwargs["timeout"] == 30

    def test_latin1_default_is_replaced_by_utf8(self, session):
        resp = response(encoding="ISO-8859-1")
        session.get.return_value = resp
        fetch_text("https://example.com/a.md", session=session)
        assert resp.encoding == "utf-8"

    @pytest.mark.parametrize("status,message", [
        (403, "Access denied \\(403\\)"),
        (404, "Document not found \\(404\\)"),
        (500, "HTTP Error 500: Server Error"),
    ])
    def test_http_errors(self, session, status, message):
        session.get.return_value = response(status=status, reason="Server Error")
        with pytest.raises(RemoteDocumentError, match=message):
            fetch_text("https://example.com/a.md", session=session)

    def test_private_note(self, session):
        session.get.return_value = response(text="<html>You don't have permission to access this resource</html>")
        with pytest.raises(RemoteDocumentError, match="document is private"):
            fetch_text("https://hackmd.io/abc/download", session=session)

    def test_network_error_is_wrapped(self, session):
        session.get.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(RemoteDocumentError, match="connection refused"):
            fetch_text("https://example.com/a.md", session=session)


class TestFetchMarkdown:
    """Tests for the download entry point."""

    def test_hackmd_note(self, session):
        session.get.return_value = response(text="# Shared note")

        document = fetch_markdown("https://hackmd.io/@team/XyZ", session=session)

        assert document.download_url == "https://hackmd.io/XyZ/download"
        assert document.title == HACKMD_TITLE
        assert document.content == "# Shared note"
        assert session.get.call_args.args[0] == "https://hackmd.io/XyZ/download"

    def test_generic_url(self, session):
        session.get.return_value = response(text="plain")

        document = fetch_markdown("https://example.com/raw/readme.md", session=session)

        assert document.download_url == "https://example.com/raw/readme.md"
        assert document.title == WEB_TITLE
