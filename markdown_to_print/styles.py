"""
Print stylesheet for the rendered document.

The stylesheet carries the marker vocabulary the paginator emits
(``heading-group``, ``force-page-break-before``, ``h2-page-break``,
``page-break``, ``scale-NN``, ``large-image``) and Traditional Chinese font
stacks. Font sizes follow the selected style profile.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

from typing import Dict

from .config import margin_to_cm
from .emitter import FORCE_BREAK_CLASS, GROUP_CLASS, LARGE_IMAGE_CLASS, SECTION_BREAK_CLASS
from .fit_scaler import SCALE_STEPS

# Style profiles configuration
STYLE_PROFILES = {
    "a4-print": {
        "name": "A4 Print (Default)",
        "description": "Standard print-optimized styling with 12pt base font",
        "font_scale": 1.0,
        "base_font_size": "12pt"
    },
    "a4-screen": {
        "name": "A4 Screen (Large)",
        "description": "Screen-optimized styling with 30% larger fonts for better readability",
        "font_scale": 1.3,
        "base_font_size": "15.6pt"
    }
}

FONT_IMPORT = ("https://fonts.googleapis.com/css2?family=Noto+Sans+TC:wght@300;400;500;700"
               "&family=Noto+Serif+TC:wght@400;700&display=swap")


def get_profile(style_profile: str) -> Dict:
    """Look up a style profile, rejecting unknown names."""
    if style_profile not in STYLE_PROFILES:
        available_profiles = ", ".join(STYLE_PROFILES.keys())
        raise ValueError(f"Invalid style profile '{style_profile}'. Available profiles: {available_profiles}")
    return STYLE_PROFILES[style_profile]


def _scale_rules() -> str:
    rules = []
    for step in SCALE_STEPS:
        rules.append(f"""
        .scale-{step} {{
            transform: scale(0.{step // 10});
            transform-origin: top center;
            margin-bottom: -{100 - step}%;
        }}""")
    selectors = ",\n        ".join(f"pre.scale-{step}" for step in SCALE_STEPS)
    rules.append(f"""
        {selectors} {{
            font-size: inherit;
        }}""")
    return "\n".join(rules)


def build_print_css(style_profile: str, margins: Dict[str, str]) -> str:
    """Build the complete ``<style>`` body for a profile and page margins."""
    profile = get_profile(style_profile)
    font_scale = profile["font_scale"]
    base_font_size = profile["base_font_size"]

    # Convert margins to cm for CSS
    top_cm = margin_to_cm(margins['top'])
    right_cm = margin_to_cm(margins['right'])
    bottom_cm = margin_to_cm(margins['bottom'])
    left_cm = margin_to_cm(margins['left'])

    return f"""
        @import url('{FONT_IMPORT}');

        @page {{
            margin: {top_cm}cm {right_cm}cm {bottom_cm}cm {left_cm}cm;
            size: A4;
        }}

        body {{
            font-family: 'Noto Sans TC', 'Microsoft JhengHei', 'PMingLiU', sans-serif;
            font-size: {base_font_size};
            line-height: 1.6;
            color: #333;
            max-width: 100%;
            margin: 0;
            padding: 0;
        }}

        * {{
            box-sizing: border-box;
        }}

        h1, h2, h3, h4, h5, h6 {{
            font-family: 'Noto Serif TC', 'Microsoft JhengHei', serif;
            font-weight: 700;
            page-break-after: avoid;
            page-break-inside: avoid;
            margin-top: 1em;
            margin-bottom: 0.5em;
            color: #2c3e50;
        }}

        h1 {{
            font-size: {28 * font_scale:.1f}pt;
            border-bottom: 3px solid #3498db;
            padding-bottom: 0.3em;
        }}

        h2 {{
            font-size: {22 * font_scale:.1f}pt;
            border-bottom: 2px solid #95a5a6;
            padding-bottom: 0.3em;
        }}

        h3 {{ font-size: {18 * font_scale:.1f}pt; }}
        h4 {{ font-size: {16 * font_scale:.1f}pt; }}
        h5 {{ font-size: {14 * font_scale:.1f}pt; }}
        h6 {{ font-size: {12 * font_scale:.1f}pt; }}

        /* Keep heading with following content */
        h1 + p, h1 + .mermaid, h1 + pre, h1 + img, h1 + table,
        h2 + p, h2 + .mermaid, h2 + pre, h2 + img, h2 + table,
        h3 + p, h3 + .mermaid, h3 + pre, h3 + img, h3 + table {{
            page-break-before: avoid;
        }}

        .{GROUP_CLASS} {{
            display: table;
            width: 100%;
            page-break-inside: avoid;
            margin: 0;
            padding: 0;
        }}

        .{FORCE_BREAK_CLASS} {{
            page-break-before: always !important;
            break-before: page !important;
        }}

        .{SECTION_BREAK_CLASS}, .page-break {{
            page-break-before: always;
            break-before: page;
            height: 0;
            margin: 0;
            padding: 0;
        }}

        .table-of-contents {{
            padding: 0;
            page-break-after: always !important;
            break-after: page !important;
        }}

        .table-of-contents h1 {{
            margin-top: 0;
            margin-bottom: 1.5em;
            page-break-before: avoid;
        }}

        .table-of-contents nav {{
            line-height: 2;
        }}

        .table-of-contents a {{
            text-decoration: none;
            color: #2c3e50;
            display: block;
            padding: 8px 0;
            border-bottom: 1px dotted #ddd;
        }}

        .toc-h1 {{
            font-size: {14 * font_scale:.1f}pt;
            font-weight: 700;
            margin-left: 0;
        }}

        .toc-h2 {{
            font-size: {12 * font_scale:.1f}pt;
            margin-left: 2em;
        }}

        p {{
            margin: 0.8em 0;
            text-align: justify;
            orphans: 3;
            widows: 3;
        }}

        img {{
            max-width: 100%;
            height: auto;
            display: block;
            margin: 1em auto;
            page-break-inside: avoid;
        }}

        .image-container {{
            page-break-inside: avoid;
            break-inside: avoid;
            margin: 1em 0;
        }}

        .image-container.{LARGE_IMAGE_CLASS} img {{
            object-fit: contain;
        }}

        code {{
            font-family: 'Consolas', 'Monaco', 'Courier New', monospace;
            background-color: #f4f4f4;
            padding: 2px 6px;
            border-radius: 3px;
            font-size: 0.9em;
        }}

        pre {{
            background-color: #f8f8f8;
            border: 1px solid #ddd;
            border-radius: 5px;
            padding: 15px;
            overflow-x: auto;
            white-space: pre-wrap;
            page-break-inside: avoid;
            margin: 1em 0;
        }}

        pre code {{
            background-color: transparent;
            padding: 0;
            font-size: 0.85em;
            line-height: 1.4;
        }}

        blockquote {{
            border-left: 4px solid #3498db;
            margin-left: 0;
            color: #555;
            background-color: #f9f9f9;
            padding: 10px 20px;
            page-break-inside: avoid;
        }}

        table {{
            border-collapse: collapse;
            width: 100%;
            margin: 1em 0;
            page-break-inside: avoid;
            font-size: {11 * font_scale:.1f}pt;
        }}

        th, td {{
            border: 1px solid #ddd;
            padding: 10px;
            text-align: left;
        }}

        th {{
            background-color: #3498db;
            color: white;
            font-weight: 700;
        }}

        tr:nth-child(even) {{
            background-color: #f9f9f9;
        }}

        ul, ol {{
            margin: 0.8em 0;
            padding-left: 2em;
        }}

        li {{
            margin: 0.3em 0;
        }}

        a {{
            color: #3498db;
            text-decoration: none;
        }}

        hr {{
            border: none;
            border-top: 2px solid #ddd;
            margin: 2em 0;
        }}

        mark {{
            background-color: #fff3a3;
        }}

        .mermaid {{
            display: flex;
            justify-content: center;
            align-items: center;
            margin: 2em 0;
            page-break-inside: avoid;
        }}

        .mermaid svg {{
            max-width: 100%;
            height: auto;
        }}
{_scale_rules()}

        @media print {{
            body {{
                padding: 0;
            }}

            img, table, pre, blockquote, .mermaid, .{GROUP_CLASS} {{
                page-break-inside: avoid;
            }}
        }}
"""
