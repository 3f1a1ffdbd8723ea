"""
Unit tests for DOCX export: Markdown preparation and python-docx post-processing.
"""

from unittest.mock import MagicMock, patch

import pytest
from docx import Document
from docx.oxml.ns import qn

from markdown_to_print.docx_export import PAGE_BREAK_TOKEN, DocxExporter


@pytest.fixture
def exporter(tmp_path):
    return DocxExporter(tmp_path / "tmp", logger=MagicMock())


def pandoc_like_document(path):
    """A document shaped like pandoc's docx output."""
    document = Document()
    document.add_heading("Chapter one", level=1)
    document.add_paragraph("text")
    document.add_paragraph(PAGE_BREAK_TOKEN)
    document.add_heading("Chapter two", level=1)
    document.add_heading("Section", level=2)
    document.save(str(path))


class TestPrepareMarkdown:
    """Tests for Markdown rewrites before pandoc."""

    def test_page_breaks_become_tokens(self, exporter):
        result = exporter.prepare_markdown("a\n\n<!-- page-break -->\n\nb")
        assert PAGE_BREAK_TOKEN in result
        assert "page-break\"" not in result

    def test_hackmd_syntax_is_rewritten(self, exporter):
        assert "<mark>x</mark>" in exporter.prepare_markdown("==x==")


class TestPostprocess:
    """Tests for python-docx post-processing."""

    def test_page_breaks_fonts_and_footer(self, exporter, tmp_path):
        path = tmp_path / "out.docx"
        pandoc_like_document(path)

        exporter.postprocess(path)

        document = Document(str(path))
        headings = [p for p in document.paragraphs if p.style.name == "Heading 1"]
        assert headings[0].paragraph_format.page_break_before is None
        assert headings[1].paragraph_format.page_break_before is True

        assert all(p.text != PAGE_BREAK_TOKEN for p in document.paragraphs)
        assert 'w:type="page"' in document.element.xml

        fonts = document.styles["Normal"].element.rPr.rFonts
        assert fonts.get(qn("w:eastAsia")) == "Microsoft JhengHei"

        footer_xml = document.sections[0].footer.paragraphs[0]._p.xml
        assert 'w:instr="PAGE"' in footer_xml


class TestExport:
    """Tests for the pandoc step."""

    def test_pandoc_command(self, exporter, tmp_path):
        output = tmp_path / "out.docx"

        def run(cmd, capture_output=True, text=True):
            pandoc_like_document(output)
            return MagicMock(returncode=0, stderr="")

        with patch("markdown_to_print.docx_export.subprocess.run", side_effect=run) as mock_run:
            assert exporter.export("# A", output, tmp_path, "Notes", "notes") is True

        cmd = mock_run.call_args[0][0]
        assert cmd[:2] == ["pandoc", str(tmp_path / "tmp" / "docx_notes.md")]
        assert "docx" in cmd
        assert "--toc" in cmd
        assert "toc-title=目錄" in cmd
        assert "title=Notes" in cmd

    def test_pandoc_failure_returns_false(self, exporter, tmp_path):
        failed = MagicMock(returncode=1, stderr="boom")
        with patch("markdown_to_print.docx_export.subprocess.run", return_value=failed):
            assert exporter.export("# A", tmp_path / "out.docx", tmp_path, "Notes", "notes") is False
        exporter.logger.error.assert_called_once()

    def test_without_toc(self, tmp_path):
        exporter = DocxExporter(tmp_path, include_toc=False, logger=MagicMock())
        failed = MagicMock(returncode=1, stderr="boom")
        with patch("markdown_to_print.docx_export.subprocess.run", return_value=failed) as mock_run:
            exporter.export("# A", tmp_path / "out.docx", tmp_path, "Notes", "notes")
        assert "--toc" not in mock_run.call_args[0][0]
