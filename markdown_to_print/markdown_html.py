"""
Markdown to HTML for print.

Markdown is preprocessed (HackMD syntax, page-break directives, print-only
section filtering), converted with pandoc, and post-processed into a single
self-contained HTML page: Mermaid blocks become ``div.mermaid`` for in-page
rendering, local images are embedded as base64 data URLs, lone images are
wrapped in ``div.image-container`` and a table of contents is prepended.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import base64
import html
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .console import ColorLogger
from .styles import build_print_css

PAGE_BREAK_DIV = '<div class="page-break"></div>'
TOC_TITLE = "目錄"
MERMAID_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/mermaid@11/dist/mermaid.min.js"

HACKMD_BLOCK_LABELS = {
    "info": ("ℹ️", "資訊"),
    "warning": ("⚠️", "警告"),
    "danger": ("🚫", "危險"),
    "success": ("✅", "成功"),
    "spoiler": ("👁️", "點擊展開"),
}

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
}

_HACKMD_BLOCK = re.compile(r'^:::(info|warning|danger|success|spoiler)(?:[ \t]+([^\n]+))?\n(.*?)^:::[ \t]*$',
                           re.MULTILINE | re.DOTALL)
# Fenced blocks and inline code are never rewritten
_CODE_SPANS = re.compile(r'(```.*?```|~~~.*?~~~|`[^`\n]+`)', re.DOTALL)
_MARK = re.compile(r'==([^=\n]+)==')
_INSERT = re.compile(r'\+\+([^+\n]+)\+\+')

_MERMAID_BLOCKS = (
    re.compile(r'<pre[^>]*class="[^"]*\bmermaid\b[^"]*"[^>]*>\s*<code[^>]*>(.*?)</code>\s*</pre>', re.DOTALL),
    re.compile(r'<pre[^>]*>\s*<code[^>]*class="[^"]*\blanguage-mermaid\b[^"]*"[^>]*>(.*?)</code>\s*</pre>', re.DOTALL),
)
_HEADING = re.compile(r'<h([1-6])([^>]*)>(.*?)</h\1>', re.DOTALL | re.IGNORECASE)
_TOC_HEADING = re.compile(r'<h([12])[^>]*\bid="([^"]*)"[^>]*>(.*?)</h\1>', re.DOTALL | re.IGNORECASE)
_IMG_SRC = re.compile(r'(<img\s+[^>]*?)src=["\']([^"\']+)["\']', re.IGNORECASE)
_LONE_IMAGE = re.compile(r'<p>\s*(<img[^>]+>)\s*</p>', re.IGNORECASE)
_STYLE_BLOCK = re.compile(r'<style[^>]*>(.*?)</style>', re.DOTALL | re.IGNORECASE)
_BODY = re.compile(r'<body[^>]*>(.*)</body>', re.DOTALL | re.IGNORECASE)


def _outside_code(content: str, transform) -> str:
    parts = _CODE_SPANS.split(content)
    # split() with one capturing group alternates text, code, text, ...
    return "".join(part if index % 2 else transform(part) for index, part in enumerate(parts))


def preprocess_hackmd(content: str) -> str:
    """Rewrite HackMD-only syntax into plain Markdown / inline HTML.

    ``:::info Title`` ... ``:::`` blocks become blockquotes with an emoji
    header, ``==text==`` becomes ``<mark>`` and ``++text++`` becomes ``<ins>``.
    """
    def block(match):
        kind, title, body = match.group(1), match.group(2), match.group(3)
        emoji, label = HACKMD_BLOCK_LABELS[kind]
        header = f"**{emoji} {title.strip() if title else label}**"
        lines = [f"> {line}" if line else ">" for line in body.rstrip("\n").split("\n")]
        return f"> {header}\n>\n" + "\n".join(lines) + "\n"

    content = _HACKMD_BLOCK.sub(block, content)

    def inline(text):
        text = _MARK.sub(r'<mark>\1</mark>', text)
        return _INSERT.sub(r'<ins>\1</ins>', text)

    return _outside_code(content, inline)


def process_page_breaks(content: str, logger: Optional[ColorLogger] = None) -> str:
    """Process page break markers in markdown content."""
    # Option 1: HTML comment page breaks
    # <!-- page-break -->
    content = re.sub(r'<!--\s*page-break\s*-->', PAGE_BREAK_DIV, content, flags=re.IGNORECASE)

    # Option 2: HTML div with page-break class
    # <div class="page-break"></div> (already in correct format)

    # Option 3: Custom code block page breaks
    # ```page-break
    # ```
    content = re.sub(r'```page-break\r?\n```', PAGE_BREAK_DIV, content, flags=re.IGNORECASE)

    # Option 4: Custom tag page breaks
    # <page-break>
    content = re.sub(r'<page-break>', PAGE_BREAK_DIV, content, flags=re.IGNORECASE)

    # Option 5: Horizontal rule with page-break class (Pandoc attribute syntax)
    # ---
    # {.page-break}
    content = re.sub(r'---\s*\n\s*\{\.page-break\}', PAGE_BREAK_DIV, content,
                     flags=re.IGNORECASE | re.MULTILINE)

    page_break_count = content.count(PAGE_BREAK_DIV)
    if page_break_count > 0 and logger:
        logger.debug(f"Processed {page_break_count} page break(s)")

    return content


def filter_sections_for_print(content: str, style_profile: str, logger: Optional[ColorLogger] = None) -> str:
    """Drop hand-written "Table of contents" sections for the print profile."""
    if style_profile != "a4-print":
        return content

    # The heading itself and everything up to the next heading of level 1-3
    toc_pattern = r'^#{2,3}\s+Table\s+of\s+contents\s*$.*?(?=^#{1,3}\s|\Z)'
    filtered_content = re.sub(toc_pattern, '', content, flags=re.MULTILINE | re.DOTALL | re.IGNORECASE)
    filtered_content = re.sub(r'\n\s*\n\s*\n', '\n\n', filtered_content)

    if filtered_content != content and logger:
        logger.debug("Filtered out 'Table of contents' section for print profile")
    return filtered_content


def extract_title(content: str, fallback: str) -> str:
    """Extract the document title from markdown content.

    Preference order:
    1) First ATX H1 heading starting with '# '
    2) Setext H1 style (line followed by '===')
    3) Humanized fallback name
    """
    lines = content.splitlines()
    for line in lines:
        stripped = line.strip()
        if stripped.startswith('# '):
            heading_text = stripped[2:].strip()
            if heading_text:
                return heading_text

    for i in range(len(lines) - 1):
        current_line = lines[i].strip()
        if current_line and re.fullmatch(r"=+", lines[i + 1].strip()):
            return current_line

    stem = fallback.replace('_', ' ').replace('-', ' ').strip()
    return stem or fallback


def convert_mermaid_blocks(body: str) -> str:
    """Turn pandoc's ``mermaid`` code blocks into ``div.mermaid`` elements."""
    def to_div(match):
        code = html.unescape(match.group(1)).strip()
        return f'<div class="mermaid">\n{code}\n</div>'

    for pattern in _MERMAID_BLOCKS:
        body = pattern.sub(to_div, body)
    return body


def _slugify(text: str) -> str:
    plain = re.sub(r'<[^>]*>', '', text).lower()
    plain = re.sub(r'[^\w一-龥]+', '-', plain)
    return plain.strip('-')


def ensure_heading_ids(body: str) -> str:
    """Give every heading a unique ``id`` so the table of contents can link to it."""
    used = set(re.findall(r'\bid="([^"]*)"', body))

    def add_id(match):
        level, attributes, text = match.groups()
        if re.search(r'\bid="', attributes):
            return match.group(0)
        base = _slugify(text) or f"heading-{level}"
        candidate = base
        counter = 1
        while candidate in used:
            candidate = f"{base}-{counter}"
            counter += 1
        used.add(candidate)
        return f'<h{level} id="{candidate}"{attributes}>{text}</h{level}>'

    return _HEADING.sub(add_id, body)


def generate_table_of_contents(body: str) -> str:
    """TOC of all H1/H2 headings, or an empty string when there are none."""
    entries: List[Tuple[int, str, str]] = []
    for match in _TOC_HEADING.finditer(body):
        text = re.sub(r'<[^>]*>', '', match.group(3)).strip()
        entries.append((int(match.group(1)), match.group(2), text))

    if not entries:
        return ''

    lines = ['<div class="table-of-contents">', f'<h1>{TOC_TITLE}</h1>', '<nav>']
    for level, anchor, text in entries:
        lines.append(f'  <div class="toc-h{level}"><a href="#{anchor}">{text}</a></div>')
    lines.extend(['</nav>', '</div>'])
    return "\n".join(lines) + "\n"


def embed_images(body: str, base_dir: Path, logger: Optional[ColorLogger] = None) -> str:
    """Inline local images as base64 data URLs; remote and data URLs are left alone."""
    embedded = 0

    def embed(match):
        nonlocal embedded
        prefix, src = match.group(1), match.group(2)
        if src.startswith(('http://', 'https://', 'file://', 'data:')):
            return match.group(0)

        image_path = Path(src) if Path(src).is_absolute() else (base_dir / src)
        if not image_path.exists():
            if logger:
                logger.warning(f"Image not found: {image_path}")
            return match.group(0)

        mime_type = IMAGE_MIME_TYPES.get(image_path.suffix.lower(), "image/png")
        try:
            data = base64.b64encode(image_path.read_bytes()).decode("ascii")
        except OSError as e:
            if logger:
                logger.warning(f"Failed to embed image {src}: {e}")
            return match.group(0)
        embedded += 1
        if logger:
            logger.debug(f"Embedded image: {src} ({image_path.stat().st_size / 1024:.1f} KB)")
        return f'{prefix}src="data:{mime_type};base64,{data}"'

    body = _IMG_SRC.sub(embed, body)
    if embedded and logger:
        logger.debug(f"Embedded {embedded} image(s) as base64 (base dir: {base_dir})")
    return body


def wrap_lone_images(body: str) -> str:
    return _LONE_IMAGE.sub(r'<div class="image-container">\1</div>', body)


def split_pandoc_document(document: str) -> Tuple[str, str]:
    """Return (inline CSS, body inner HTML) of a standalone pandoc page."""
    styles = "\n".join(_STYLE_BLOCK.findall(document))
    match = _BODY.search(document)
    body = match.group(1) if match else document
    return styles, body


MERMAID_INIT = """
    mermaid.initialize({
      startOnLoad: true,
      theme: 'default',
      securityLevel: 'loose',
      flowchart: { useMaxWidth: true, htmlLabels: true, curve: 'basis' },
      er: { useMaxWidth: true, fontSize: 12, minEntityWidth: 100, minEntityHeight: 75 },
      sequence: { useMaxWidth: true },
      fontFamily: 'Noto Sans TC, Microsoft JhengHei, sans-serif',
      logLevel: 'fatal',
      suppressErrorRendering: true
    });
"""


class HtmlDocumentBuilder:
    """Builds the print-ready HTML page for one Markdown document."""

    def __init__(self, temp_dir: Path, margins: Dict[str, str], style_profile: str = "a4-print",
                 include_toc: bool = True, logger: Optional[ColorLogger] = None):
        self.temp_dir = Path(temp_dir)
        self.margins = margins
        self.style_profile = style_profile
        self.include_toc = include_toc
        self.logger = logger or ColorLogger()

    def preprocess(self, content: str) -> str:
        """Markdown-level rewrites shared by every output format."""
        content = filter_sections_for_print(content, self.style_profile, self.logger)
        content = preprocess_hackmd(content)
        return process_page_breaks(content, self.logger)

    def run_pandoc(self, content: str, title: str, file_id: str) -> Tuple[str, str]:
        """Convert Markdown to HTML with pandoc. Returns (highlight CSS, body HTML)."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        temp_md = self.temp_dir / f"temp_{file_id}.md"
        html_file = self.temp_dir / f"{file_id}.html"
        with open(temp_md, 'w', encoding='utf-8') as f:
            f.write(content)

        cmd = [
            "pandoc",
            str(temp_md),
            "-f", "gfm+hard_line_breaks",
            "-t", "html5",
            "-o", str(html_file),
            "--standalone",
            "--metadata", f"pagetitle={title}",
            # An explicit (empty) stylesheet keeps pandoc's default document CSS out
            "--css", "data:text/css,",
        ]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise RuntimeError(f"Pandoc failed: {result.stderr.strip()}")

        with open(html_file, 'r', encoding='utf-8') as f:
            return split_pandoc_document(f.read())

    def render_body(self, body: str, base_dir: Path) -> str:
        body = convert_mermaid_blocks(body)
        body = ensure_heading_ids(body)
        body = embed_images(body, base_dir, self.logger)
        return wrap_lone_images(body)

    def build(self, content: str, title: str, base_dir: Path, file_id: str) -> str:
        """Full pipeline: preprocess, pandoc, post-process, wrap in the page template."""
        processed = self.preprocess(content)
        highlight_css, body = self.run_pandoc(processed, title, file_id)
        body = self.render_body(body, base_dir)
        toc = generate_table_of_contents(body) if self.include_toc else ''
        if toc:
            self.logger.debug("Generated table of contents")
        return self.create_html_template(body, title, toc=toc, extra_css=highlight_css)

    def create_html_template(self, body: str, title: str, toc: str = '', extra_css: str = '') -> str:
        """Create HTML template with print styling, margins and document title."""
        scripts = ''
        if 'class="mermaid"' in body:
            scripts = f"""
    <script src="{MERMAID_SCRIPT_URL}"></script>
    <script>{MERMAID_INIT}</script>"""

        return f"""<!DOCTYPE html>
<html lang="zh-TW">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(title)}</title>
    <style>{extra_css}</style>
    <style>{build_print_css(self.style_profile, self.margins)}</style>{scripts}
</head>
<body>
{toc}
{body}
</body>
</html>
"""
