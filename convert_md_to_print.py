#!/usr/bin/env python3
"""
Markdown to print-ready PDF/DOCX converter with smart page breaks.

Usage:
    python convert_md_to_print.py notes.md
    python convert_md_to_print.py notes/ out/ --format both
    python convert_md_to_print.py https://hackmd.io/@user/note report.pdf
"""

from markdown_to_print.converter import main


if __name__ == "__main__":
    main()
