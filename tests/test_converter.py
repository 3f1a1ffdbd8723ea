"""
Unit tests for the conversion orchestrator and the command line.

pandoc, Playwright and the PlantUML server are never touched: the pipeline
stages are replaced with mocks on the converter instance.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from markdown_to_print.config import PageBreakConfig
from markdown_to_print.converter import MarkdownConverter, main, output_paths
from markdown_to_print.remote import RemoteDocument

MERMAID_DOC = "# Flow\n\n```mermaid\ngraph TD\nA-->B\n```\n"


@pytest.fixture
def converter(tmp_path):
    return MarkdownConverter(temp_dir=str(tmp_path / "tmp"), page_break_config=PageBreakConfig())


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Week 1\n\nSome text.\n", encoding="utf-8")
    return path


def stub_pipeline(converter, render_ok=True):
    """Replace the external stages with mocks; returns them for assertions."""
    converter.diagrams.replace_plantuml_with_images = MagicMock(side_effect=lambda content, *args: content)
    converter.html_builder.build = MagicMock(return_value="<html></html>")
    converter.pdf_renderer.render = AsyncMock(return_value=render_ok)
    converter.docx_exporter.export = MagicMock(return_value=True)
    return converter


class TestOutputPaths:
    """Tests for deriving output file names."""

    def test_known_extension_is_replaced(self):
        paths = output_paths(Path("out/report.pdf"), ("pdf", "docx"))
        assert paths == {"pdf": Path("out/report.pdf"), "docx": Path("out/report.docx")}

    def test_other_dots_are_kept(self):
        assert output_paths(Path("out/week.1"), ("pdf",)) == {"pdf": Path("out/week.1.pdf")}


class TestConstructor:
    """Tests for option validation."""

    def test_invalid_format(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid output format"):
            MarkdownConverter(output_format="epub", temp_dir=str(tmp_path))

    def test_invalid_profile(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid style profile"):
            MarkdownConverter(style_profile="letter", temp_dir=str(tmp_path))

    def test_invalid_margins(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid margin format"):
            MarkdownConverter(page_margins="1in 1in 1in", temp_dir=str(tmp_path))

    def test_formats(self, tmp_path):
        assert MarkdownConverter(output_format="both", temp_dir=str(tmp_path)).formats == ("pdf", "docx")


class TestLoadSource:
    """Tests for reading local files and URLs."""

    def test_local_markdown(self, converter, notes):
        source = converter.load_source(str(notes))

        assert source.title == "Week 1"
        assert source.file_id == "notes"
        assert source.base_dir == notes.parent.resolve()
        assert source.default_output_base == notes.parent / "notes"

    def test_output_dir_changes_default_location(self, tmp_path, notes):
        converter = MarkdownConverter(temp_dir=str(tmp_path / "tmp"), output_dir=str(tmp_path / "pdf"))
        assert converter.load_source(str(notes)).default_output_base == tmp_path / "pdf" / "notes"

    def test_missing_file(self, converter, tmp_path):
        with pytest.raises(FileNotFoundError, match="File not found"):
            converter.load_source(str(tmp_path / "nope.md"))

    def test_not_markdown(self, converter, tmp_path):
        text_file = tmp_path / "notes.txt"
        text_file.write_text("x")
        with pytest.raises(ValueError, match="must be a Markdown"):
            converter.load_source(str(text_file))

    def test_hackmd_url(self, converter):
        remote = RemoteDocument("https://hackmd.io/@a/XyZ", "https://hackmd.io/XyZ/download",
                                "HackMD-Document", "# Shared")
        with patch("markdown_to_print.converter.fetch_markdown", return_value=remote):
            source = converter.load_source("https://hackmd.io/@a/XyZ")

        assert source.content == "# Shared"
        assert source.default_output_base == Path.cwd() / "HackMD-Document"


class TestConvert:
    """Tests for single-file and directory conversion."""

    def test_single_file_to_pdf(self, converter, notes):
        stub_pipeline(converter)

        assert converter.convert(str(notes), cleanup=False) is True

        html, output_pdf, html_output = converter.pdf_renderer.render.call_args.args
        assert output_pdf == notes.with_suffix(".pdf")
        assert html_output is None
        converter.docx_exporter.export.assert_not_called()

    def test_explicit_output_and_save_html(self, tmp_path, notes):
        converter = stub_pipeline(MarkdownConverter(temp_dir=str(tmp_path / "tmp"), save_html=True))

        converter.convert(str(notes), str(tmp_path / "out" / "final.pdf"), cleanup=False)

        _, output_pdf, html_output = converter.pdf_renderer.render.call_args.args
        assert output_pdf == tmp_path / "out" / "final.pdf"
        assert html_output == tmp_path / "out" / "final.html"
        assert (tmp_path / "out").is_dir()

    def test_docx_gets_rasterized_mermaid_while_pdf_keeps_source(self, tmp_path):
        source_file = tmp_path / "flow.md"
        source_file.write_text(MERMAID_DOC, encoding="utf-8")
        converter = stub_pipeline(MarkdownConverter(output_format="both", temp_dir=str(tmp_path / "tmp")))
        converter._prerender_mermaid = AsyncMock(return_value="# Flow\n\n![](diagram.png)\n")

        assert converter.convert(str(source_file), cleanup=False) is True

        assert converter.html_builder.build.call_args.args[0] == MERMAID_DOC
        exported = converter.docx_exporter.export.call_args.args
        assert exported[0] == "# Flow\n\n![](diagram.png)\n"
        assert exported[1] == tmp_path / "flow.docx"

    def test_convert_mermaid_applies_to_pdf(self, tmp_path):
        source_file = tmp_path / "flow.md"
        source_file.write_text(MERMAID_DOC, encoding="utf-8")
        converter = stub_pipeline(MarkdownConverter(convert_mermaid=True, temp_dir=str(tmp_path / "tmp")))
        converter._prerender_mermaid = AsyncMock(return_value="rendered")

        converter.convert(str(source_file), cleanup=False)

        assert converter.html_builder.build.call_args.args[0] == "rendered"

    def test_render_failure_reports_false(self, converter, notes):
        stub_pipeline(converter, render_ok=False)
        assert converter.convert(str(notes), cleanup=False) is False

    def test_stage_exception_is_reported_as_failure(self, converter, notes):
        stub_pipeline(converter)
        converter.diagrams.replace_plantuml_with_images.side_effect = RuntimeError("PlantUML diagram 0 failed")

        assert converter.convert(str(notes), cleanup=False) is False

    def test_non_markdown_input_is_rejected_and_temp_is_cleaned(self, converter, tmp_path):
        text_file = tmp_path / "notes.txt"
        text_file.write_text("x")

        with pytest.raises(ValueError):
            converter.convert(str(text_file))
        assert not converter.temp_dir.exists()

    def test_directory_sequential(self, tmp_path):
        source_dir = tmp_path / "src"
        source_dir.mkdir()
        for name in ("a.md", "b.md", "README.md", "c.txt"):
            (source_dir / name).write_text("# T\n", encoding="utf-8")
        converter = stub_pipeline(MarkdownConverter(temp_dir=str(tmp_path / "tmp")))

        assert converter.convert(str(source_dir), str(tmp_path / "out"), cleanup=False, parallel=False) is True

        outputs = sorted(call.args[1] for call in converter.pdf_renderer.render.call_args_list)
        assert outputs == [tmp_path / "out" / "a.pdf", tmp_path / "out" / "b.pdf"]

    def test_empty_directory(self, converter, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        assert converter.convert(str(empty), cleanup=False) is True


class TestMain:
    """Tests for the command line entry point."""

    def test_missing_dependencies_exit(self, notes):
        with patch("markdown_to_print.converter.check_dependencies", return_value=False):
            with pytest.raises(SystemExit) as exc:
                main([str(notes)])
        assert exc.value.code == 1

    def test_options_are_passed_through(self, notes, monkeypatch):
        monkeypatch.delenv("PAGE_BREAK_MIN_REMAINING", raising=False)
        with patch("markdown_to_print.converter.check_dependencies", return_value=True), \
                patch("markdown_to_print.converter.MarkdownConverter") as converter_cls:
            converter_cls.return_value.convert.return_value = True
            main([str(notes), "out.pdf", "--format", "both", "--no-toc", "--no-h2-break",
                  "--min-remaining", "120", "--profile", "a4-screen", "--no-parallel", "--no-cleanup"])

        kwargs = converter_cls.call_args.kwargs
        assert kwargs["output_format"] == "both"
        assert kwargs["include_toc"] is False
        assert kwargs["style_profile"] == "a4-screen"
        assert kwargs["page_break_config"].force_h2_break is False
        assert kwargs["page_break_config"].min_remaining_space == 120
        converter_cls.return_value.convert.assert_called_once_with(
            str(notes), "out.pdf", cleanup=False, parallel=False)

    def test_percentage_diagram_width_is_rejected(self, notes, capsys):
        with patch("markdown_to_print.converter.MarkdownConverter") as converter_cls:
            with pytest.raises(SystemExit) as exc:
                main([str(notes), "--max-diagram-width", "80%"])

        assert exc.value.code == 2
        assert "--max-diagram-width" in capsys.readouterr().err
        converter_cls.assert_not_called()

    def test_diagram_width_is_passed_in_pixels(self, notes):
        with patch("markdown_to_print.converter.check_dependencies", return_value=True), \
                patch("markdown_to_print.converter.MarkdownConverter") as converter_cls:
            converter_cls.return_value.convert.return_value = True
            main([str(notes), "--max-diagram-width", "1200"])

        assert converter_cls.call_args.kwargs["max_diagram_width"] == 1200

    def test_failed_conversion_exits_nonzero(self, notes):
        with patch("markdown_to_print.converter.check_dependencies", return_value=True), \
                patch("markdown_to_print.converter.MarkdownConverter") as converter_cls:
            converter_cls.return_value.convert.return_value = False
            with pytest.raises(SystemExit) as exc:
                main([str(notes)])
        assert exc.value.code == 1

    def test_input_errors_exit_nonzero(self, tmp_path):
        with patch("markdown_to_print.converter.check_dependencies", return_value=True):
            with pytest.raises(SystemExit) as exc:
                main([str(tmp_path / "missing.md"), "--temp-dir", str(tmp_path / "tmp")])
        assert exc.value.code == 1
