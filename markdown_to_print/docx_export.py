"""
Markdown to DOCX.

pandoc produces the document (with a ``目錄`` table of contents) and
python-docx post-processes it: an East Asian font on every style, a page
break before each H1 except the first, explicit page-break directives, and a
centered page number footer.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import subprocess
from pathlib import Path
from typing import Optional

from docx import Document
from docx.enum.style import WD_STYLE_TYPE
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_BREAK
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from .console import ColorLogger
from .markdown_html import PAGE_BREAK_DIV, TOC_TITLE, preprocess_hackmd, process_page_breaks

DEFAULT_EAST_ASIA_FONT = "Microsoft JhengHei"
PAGE_BREAK_TOKEN = "[[page-break]]"


def set_east_asia_font(style, font_name: str) -> None:
    style.element.get_or_add_rPr().get_or_add_rFonts().set(qn('w:eastAsia'), font_name)


def add_page_field(paragraph) -> None:
    field = OxmlElement("w:fldSimple")
    field.set(qn("w:instr"), "PAGE")
    run = OxmlElement("w:r")
    text = OxmlElement("w:t")
    text.text = "1"
    run.append(text)
    field.append(run)
    paragraph._p.append(field)


class DocxExporter:
    """Converts one Markdown document to a Word file."""

    def __init__(self, temp_dir: Path, include_toc: bool = True,
                 east_asia_font: str = DEFAULT_EAST_ASIA_FONT, logger: Optional[ColorLogger] = None):
        self.temp_dir = Path(temp_dir)
        self.include_toc = include_toc
        self.east_asia_font = east_asia_font
        self.logger = logger or ColorLogger()

    def prepare_markdown(self, content: str) -> str:
        content = preprocess_hackmd(content)
        content = process_page_breaks(content, self.logger)
        # Raw HTML is dropped by the docx writer, so breaks travel as a text token
        return content.replace(PAGE_BREAK_DIV, f"\n\n{PAGE_BREAK_TOKEN}\n\n")

    def run_pandoc(self, content: str, output_docx: Path, resource_dir: Path, title: str, file_id: str) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        temp_md = self.temp_dir / f"docx_{file_id}.md"
        with open(temp_md, 'w', encoding='utf-8') as f:
            f.write(content)

        cmd = [
            "pandoc",
            str(temp_md),
            "-f", "gfm+hard_line_breaks",
            "-t", "docx",
            "-o", str(output_docx),
            "--resource-path", str(resource_dir),
            "--metadata", f"title={title}",
        ]
        if self.include_toc:
            cmd.extend(["--toc", "--toc-depth=2", "--metadata", f"toc-title={TOC_TITLE}"])

        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise RuntimeError(f"Pandoc failed: {result.stderr.strip()}")

    def postprocess(self, docx_path: Path) -> None:
        document = Document(str(docx_path))

        for style in document.styles:
            if style.type in (WD_STYLE_TYPE.PARAGRAPH, WD_STYLE_TYPE.CHARACTER):
                set_east_asia_font(style, self.east_asia_font)

        h1_count = 0
        explicit_breaks = 0
        for paragraph in document.paragraphs:
            if paragraph.style is not None and paragraph.style.name == "Heading 1":
                h1_count += 1
                if h1_count > 1:
                    paragraph.paragraph_format.page_break_before = True
            elif paragraph.text.strip() == PAGE_BREAK_TOKEN:
                for run in paragraph.runs:
                    run.text = ""
                run = paragraph.runs[0] if paragraph.runs else paragraph.add_run()
                run.add_break(WD_BREAK.PAGE)
                explicit_breaks += 1

        for section in document.sections:
            footer = section.footer
            footer.is_linked_to_previous = False
            paragraph = footer.paragraphs[0] if footer.paragraphs else footer.add_paragraph()
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
            add_page_field(paragraph)

        document.save(str(docx_path))
        self.logger.debug(f"DOCX post-processing: {max(h1_count - 1, 0)} H1 page break(s), "
                          f"{explicit_breaks} explicit page break(s), font {self.east_asia_font}")

    def export(self, content: str, output_docx: Path, resource_dir: Path, title: str, file_id: str) -> bool:
        """Full pipeline. Returns False (and logs) when pandoc fails."""
        try:
            self.run_pandoc(self.prepare_markdown(content), output_docx, resource_dir, title, file_id)
        except (RuntimeError, OSError) as e:
            self.logger.error(f"Failed to convert to DOCX: {e}")
            return False
        self.postprocess(output_docx)
        return True
