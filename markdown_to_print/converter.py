#!/usr/bin/env python3
"""
Markdown to print-ready PDF / DOCX converter.

Uses pandoc for Markdown conversion and Playwright (headless Chromium) for
Mermaid rendering, smart pagination and PDF printing.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import asyncio
import multiprocessing
import shutil
import sys
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .config import DEFAULT_MARGINS, Config, PageBreakConfig, parse_margins, parse_pixel_width
from .console import ColorLogger
from .dependencies import check_dependencies, install_chromium
from .diagrams import MERMAID_PATTERN, DiagramRenderer
from .docx_export import DocxExporter
from .markdown_html import HtmlDocumentBuilder, extract_title
from .pdf_renderer import BrowserManager, PdfRenderer
from .remote import RemoteDocumentError, fetch_markdown, is_url
from .styles import STYLE_PROFILES, get_profile

OUTPUT_FORMATS = {
    "pdf": ("pdf",),
    "docx": ("docx",),
    "both": ("pdf", "docx"),
}

# --- Module-level worker infrastructure for ProcessPoolExecutor ---
# Each worker process gets its own converter, browser and event loop.
_worker_converter = None


def _init_worker_process(converter_kwargs: dict) -> None:
    """Initializer called once per worker process. Creates a process-local converter."""
    global _worker_converter
    _worker_converter = MarkdownConverter(**converter_kwargs)


def _worker_convert_file(source_ref: str, output_base: str) -> tuple:
    """Top-level function executed in worker process. Converts a single file."""
    return _worker_converter._convert_single_file(source_ref, output_base)


@dataclass
class DocumentSource:
    """Markdown text plus where it came from."""

    name: str
    content: str
    title: str
    base_dir: Path
    file_id: str
    default_output_base: Path


def output_paths(output_base: Path, formats) -> Dict[str, Path]:
    """``report`` / ``report.pdf`` + (pdf, docx) -> report.pdf, report.docx."""
    output_base = Path(output_base)
    if output_base.suffix.lower() in (".pdf", ".docx"):
        output_base = output_base.with_suffix("")
    return {fmt: output_base.parent / f"{output_base.name}.{fmt}" for fmt in formats}


class MarkdownConverter:
    """Converts Markdown files, directories or URLs to PDF and/or DOCX."""

    def __init__(self, output_format: str = "pdf", page_margins: str = DEFAULT_MARGINS,
                 style_profile: str = "a4-print", page_break_config: Optional[PageBreakConfig] = None,
                 temp_dir: Optional[str] = None, output_dir: Optional[str] = None, debug: bool = False,
                 include_toc: bool = True, convert_mermaid: bool = False, save_html: bool = False,
                 max_workers: int = 4, plantuml_server: Optional[str] = None, max_diagram_width=None):
        """Initialize the converter.

        Args:
            output_format: "pdf", "docx" or "both"
            page_margins: CSS margin shorthand (1, 2 or 4 values)
            page_break_config: Pagination thresholds; read from the environment when omitted
            include_toc: Prepend a table of contents
            convert_mermaid: Pre-render Mermaid diagrams to PNG instead of rendering them in-page
            save_html: Keep the final paginated HTML next to the PDF
        """
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output format '{output_format}'. Use one of: {', '.join(OUTPUT_FORMATS)}")
        get_profile(style_profile)

        config = Config()
        self.output_format = output_format
        self.page_margins = page_margins
        self.margins = parse_margins(page_margins)
        self.style_profile = style_profile
        self.page_break_config = page_break_config or PageBreakConfig.from_env()
        self.debug = debug or self.page_break_config.debug
        self.temp_dir = Path(temp_dir or config.get_temp_dir())
        self.output_dir = Path(output_dir) if output_dir else None
        self.include_toc = include_toc
        self.convert_mermaid = convert_mermaid
        self.save_html = save_html
        self.max_workers = max_workers
        self.plantuml_server = plantuml_server or config.get_plantuml_server()
        self.max_diagram_width = max_diagram_width or config.get_max_diagram_width()

        self.logger = ColorLogger(debug=self.debug)
        if max_diagram_width is None:
            config.warn_ignored(self.logger)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        self.html_builder = HtmlDocumentBuilder(self.temp_dir, self.margins, style_profile,
                                                include_toc=include_toc, logger=self.logger)
        self.diagrams = DiagramRenderer(self.temp_dir, self.plantuml_server, self.max_diagram_width,
                                        logger=self.logger)
        self.docx_exporter = DocxExporter(self.temp_dir, include_toc=include_toc, logger=self.logger)
        self.browser = BrowserManager(self.logger)
        self.pdf_renderer = PdfRenderer(self.browser, self.page_break_config, self.margins, logger=self.logger)
        self._loop = None

        profile_info = STYLE_PROFILES[self.style_profile]
        self.logger.debug(f"Using style profile: {profile_info['name']} - {profile_info['description']}")
        self.logger.debug(f"Using PlantUML server: {self.plantuml_server}")

    @property
    def formats(self) -> Tuple[str, ...]:
        return OUTPUT_FORMATS[self.output_format]

    def _run(self, coro):
        """Run a coroutine on this converter's event loop (created on first use)."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
        return self._loop.run_until_complete(coro)

    def _shutdown(self) -> None:
        """Clean up browser and event loop resources after processing a file."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.run_until_complete(self.browser.close())
            self._loop.close()
        self._loop = None

    def load_source(self, source_ref: str) -> DocumentSource:
        """Read Markdown from a local ``.md`` file or a URL."""
        if is_url(source_ref):
            self.logger.info(f"Fetching from URL: {source_ref}")
            remote = fetch_markdown(source_ref)
            if remote.download_url != source_ref:
                self.logger.info(f"Downloading from: {remote.download_url}")
            return DocumentSource(
                name=source_ref,
                content=remote.content,
                title=remote.title,
                base_dir=Path.cwd(),
                file_id=remote.title,
                default_output_base=Path.cwd() / remote.title,
            )

        md_file = Path(source_ref)
        if not md_file.exists():
            raise FileNotFoundError(f"File not found: {source_ref}")
        if md_file.suffix.lower() != ".md":
            raise ValueError("Input file must be a Markdown (.md) file")

        with open(md_file, 'r', encoding='utf-8') as f:
            content = f.read()
        default_dir = self.output_dir or md_file.parent
        return DocumentSource(
            name=md_file.name,
            content=content,
            title=extract_title(content, md_file.stem),
            base_dir=md_file.parent.resolve(),
            file_id=md_file.stem,
            default_output_base=default_dir / md_file.stem,
        )

    async def _prerender_mermaid(self, content: str, source: DocumentSource) -> str:
        page = await self.browser.new_page()
        return await self.diagrams.replace_mermaid_with_images(page, content, source.file_id, source.name)

    def convert_source(self, source: DocumentSource, output_base: Path) -> bool:
        """Convert one loaded document to every requested format."""
        targets = output_paths(output_base, self.formats)
        for target in targets.values():
            target.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Converting {source.name} to {', '.join(self.formats).upper()}...")
        steps = 2 + len(targets)
        with tqdm(total=steps, desc=f"  {source.name}", unit="step", leave=False) as pbar:
            pbar.set_description(f"  {source.name} - Diagrams")
            content = self.diagrams.replace_plantuml_with_images(source.content, source.file_id, source.name)
            pbar.update(1)

            # DOCX has no in-page renderer, so Mermaid is always rasterized for it
            has_mermaid = MERMAID_PATTERN.search(content) is not None
            rendered = content
            if has_mermaid and (self.convert_mermaid or "docx" in targets):
                rendered = self._run(self._prerender_mermaid(content, source))
            pdf_content = rendered if self.convert_mermaid else content
            pbar.update(1)

            ok = True
            if "pdf" in targets:
                pbar.set_description(f"  {source.name} - PDF")
                ok = self._convert_to_pdf(source, pdf_content, targets["pdf"]) and ok
                pbar.update(1)
            if "docx" in targets:
                pbar.set_description(f"  {source.name} - DOCX")
                ok = self.docx_exporter.export(rendered, targets["docx"], source.base_dir,
                                               source.title, source.file_id) and ok
                if ok:
                    self.logger.success(f"DOCX created successfully: {targets['docx']}")
                pbar.update(1)

        return ok

    def _convert_to_pdf(self, source: DocumentSource, content: str, output_pdf: Path) -> bool:
        html = self.html_builder.build(content, source.title, source.base_dir, source.file_id)
        enhanced_html_file = self.temp_dir / f"enhanced_{source.file_id}.html"
        with open(enhanced_html_file, 'w', encoding='utf-8') as f:
            f.write(html)

        html_output = output_pdf.with_suffix(".html") if self.save_html else None
        self.logger.debug(f"Converting HTML to PDF with margins: {self.margins}")
        if not self._run(self.pdf_renderer.render(html, output_pdf, html_output)):
            return False
        self.logger.success(f"PDF created successfully: {output_pdf}")
        return True

    def _convert_single_file(self, source_ref: str, output_base: Optional[str] = None) -> Tuple[str, str]:
        """Convert a single document. Returns (status, name); status is 'converted' or 'failed'."""
        try:
            source = self.load_source(source_ref)
            base = Path(output_base) if output_base else source.default_output_base
            return ("converted" if self.convert_source(source, base) else "failed"), source.name
        except Exception as e:
            self.logger.error(f"Error processing {source_ref}: {e}")
            return "failed", str(source_ref)
        finally:
            self._shutdown()

    def convert(self, input_ref: str, output: Optional[str] = None, cleanup: bool = True,
                parallel: bool = True) -> bool:
        """Convert a file, URL or directory. Returns True when every document converted."""
        try:
            if is_url(input_ref):
                return self._convert_one(input_ref, output)

            input_path = Path(input_ref)
            if input_path.is_dir():
                return self._convert_directory(input_path, output, parallel)
            if not input_path.exists():
                raise FileNotFoundError(f"File not found: {input_ref}")
            if input_path.suffix.lower() != ".md":
                raise ValueError("Input file must be a Markdown (.md) file")
            return self._convert_one(input_ref, output)
        finally:
            if cleanup:
                shutil.rmtree(self.temp_dir, ignore_errors=True)
                self.logger.debug(f"Cleaned up temporary directory: {self.temp_dir}")

    def _convert_one(self, source_ref: str, output: Optional[str]) -> bool:
        status, _ = self._convert_single_file(source_ref, output)
        return status == "converted"

    def _convert_directory(self, source_dir: Path, output: Optional[str], parallel: bool) -> bool:
        md_files = sorted(f for f in source_dir.glob("*.md") if f.name != "README.md")
        if not md_files:
            self.logger.warning("No markdown files found in source directory.")
            return True

        target_dir = Path(output) if output else (self.output_dir or source_dir)
        jobs = [(str(md_file), str(target_dir / md_file.stem)) for md_file in md_files]

        self.logger.info(f"Source directory: {source_dir.absolute()}")
        self.logger.info(f"Output directory: {target_dir.absolute()}")
        self.logger.info(f"Found {len(md_files)} markdown files: {[f.name for f in md_files]}")

        if parallel and len(jobs) > 1:
            self.logger.info(f"Using parallel processing with {self.max_workers} workers")
            statuses = self._convert_all_parallel(jobs)
        else:
            self.logger.info("Using sequential processing")
            statuses = [self._convert_single_file(*job)[0]
                        for job in tqdm(jobs, desc="Converting files", unit="file")]

        converted = statuses.count("converted")
        failed = len(statuses) - converted
        self.logger.success(f"Conversion complete: {converted} files converted, {failed} files failed "
                            f"({len(statuses)}/{len(jobs)} total)")
        return failed == 0

    def _get_constructor_kwargs(self) -> dict:
        """Return the kwargs needed to reconstruct this converter in a worker process."""
        return {
            'output_format': self.output_format,
            'page_margins': self.page_margins,
            'style_profile': self.style_profile,
            'page_break_config': self.page_break_config,
            'temp_dir': str(self.temp_dir),
            'output_dir': str(self.output_dir) if self.output_dir else None,
            'debug': self.debug,
            'include_toc': self.include_toc,
            'convert_mermaid': self.convert_mermaid,
            'save_html': self.save_html,
            'max_workers': 1,  # Workers don't spawn sub-workers
            'plantuml_server': self.plantuml_server,
            'max_diagram_width': self.max_diagram_width,
        }

    def _convert_all_parallel(self, jobs: List[Tuple[str, str]]) -> List[str]:
        """Convert files in parallel using ProcessPoolExecutor.

        Each worker runs in its own OS process with a separate Chromium instance,
        so a browser crash in one worker cannot corrupt other workers or the main process.
        """
        statuses = []
        # Use 'spawn' context to get clean processes (no forked Playwright state)
        mp_context = multiprocessing.get_context('spawn')

        with ProcessPoolExecutor(
            max_workers=self.max_workers,
            mp_context=mp_context,
            initializer=_init_worker_process,
            initargs=(self._get_constructor_kwargs(),)
        ) as executor:
            future_to_job = {executor.submit(_worker_convert_file, *job): job for job in jobs}

            with tqdm(total=len(jobs), desc="Converting files", unit="file") as pbar:
                for future in as_completed(future_to_job):
                    source_ref = future_to_job[future][0]
                    try:
                        status, name = future.result()
                    except Exception as e:
                        self.logger.error(f"Worker process error for {source_ref}: {e}")
                        status, name = "failed", source_ref
                    statuses.append(status)
                    pbar.set_postfix_str(f"{status.capitalize()}: {Path(name).name}")
                    pbar.update(1)

        return statuses


def pixel_width(value: str) -> int:
    """argparse type for ``--max-diagram-width``: a positive whole number of pixels."""
    width = parse_pixel_width(value)
    if width is None:
        raise ValueError(f"expected a positive width in pixels, got {value!r}")
    return width


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description="Convert Markdown (files, directories, URLs or HackMD notes) to print-ready PDF/DOCX "
                    "with smart page breaks, Mermaid and PlantUML support")
    parser.add_argument("input", nargs="?", help="Markdown file, directory of Markdown files, or http(s)/HackMD URL")
    parser.add_argument("output", nargs="?", default=None,
                        help="Output path (file input/URL) or directory (directory input). "
                             "Default: next to the input, or ./HackMD-Document / ./Web-Document for URLs")
    parser.add_argument("--format", dest="output_format", default="pdf", choices=list(OUTPUT_FORMATS),
                        help="Output format (default: pdf)")
    parser.add_argument("--margins", default=DEFAULT_MARGINS,
                        help=f"Page margins in CSS format (default: '{DEFAULT_MARGINS}'). Range: 0-3 inches. "
                             "Use 1, 2, or 4 values. Units: in, cm, mm, pt, px")
    parser.add_argument("--profile", default="a4-print", choices=list(STYLE_PROFILES),
                        help="Style profile (default: 'a4-print'). a4-screen uses 30%% larger fonts")
    parser.add_argument("--no-toc", action="store_true", help="Do not generate a table of contents")
    parser.add_argument("--convert-mermaid", action="store_true",
                        help="Pre-render Mermaid diagrams to images instead of rendering them in the page")
    parser.add_argument("--output-dir", default=None, help="Default output directory (default: from config/env)")
    parser.add_argument("--temp-dir", default=None, help="Temporary files directory (default: from config/env)")
    parser.add_argument("--no-cleanup", action="store_true", help="Keep temporary files")
    parser.add_argument("--save-html", action="store_true", help="Save the final paginated HTML next to the PDF")
    parser.add_argument("--max-workers", type=int, default=4,
                        help="Maximum number of parallel workers for directory input (default: 4)")
    parser.add_argument("--no-parallel", action="store_true", help="Disable parallel processing")
    parser.add_argument("--max-diagram-width", type=pixel_width, default=None,
                        help="Width in pixels that pre-rendered diagrams are fitted to (default: 1680)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging for detailed output")
    parser.add_argument("--install-browsers", action="store_true", help="Install Playwright Chromium and exit")

    breaks = parser.add_argument_group("page breaks (override PAGE_BREAK_* environment variables)")
    breaks.add_argument("--min-remaining", type=int, default=None, dest="min_remaining_space")
    breaks.add_argument("--large-content", type=int, default=None, dest="large_content_threshold")
    breaks.add_argument("--heading-min", type=int, default=None, dest="heading_min_space")
    breaks.add_argument("--force-offset", type=int, default=None, dest="force_break_offset")
    breaks.add_argument("--overflow-tolerance", type=int, default=None, dest="overflow_tolerance")
    breaks.add_argument("--page-break-debug", action="store_true",
                        help="Annotate forced breaks with data-* attributes and log every decision")
    breaks.add_argument("--no-h2-break", action="store_true", help="Do not start every H2 on a new page")
    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = ColorLogger(debug=args.debug)

    if args.install_browsers:
        sys.exit(0 if install_chromium(logger) else 1)
    if not args.input:
        parser.print_usage()
        sys.exit(1)

    cli_config = {"output_dir": args.output_dir, "temp_dir": args.temp_dir,
                  "max_diagram_width": args.max_diagram_width}
    config = Config(cli_config)
    if args.max_diagram_width is None:
        config.warn_ignored(logger)

    page_break_config = PageBreakConfig.from_env(overrides={
        "min_remaining_space": args.min_remaining_space,
        "large_content_threshold": args.large_content_threshold,
        "heading_min_space": args.heading_min_space,
        "force_break_offset": args.force_break_offset,
        "overflow_tolerance": args.overflow_tolerance,
        "debug": True if args.page_break_debug else None,
        "force_h2_break": False if args.no_h2_break else None,
    })

    # Check dependencies
    if not check_dependencies(need_browser=True, logger=logger):
        sys.exit(1)

    try:
        converter = MarkdownConverter(
            output_format=args.output_format,
            page_margins=args.margins,
            style_profile=args.profile,
            page_break_config=page_break_config,
            temp_dir=config.get_temp_dir(),
            output_dir=config.get_output_dir(),
            debug=args.debug,
            include_toc=not args.no_toc,
            convert_mermaid=args.convert_mermaid,
            save_html=args.save_html,
            max_workers=args.max_workers,
            plantuml_server=config.get_plantuml_server(),
            max_diagram_width=config.get_max_diagram_width(),
        )
        ok = converter.convert(args.input, args.output, cleanup=not args.no_cleanup,
                               parallel=not args.no_parallel)
    except (ValueError, FileNotFoundError, RemoteDocumentError) as e:
        logger.error(str(e))
        sys.exit(1)

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
