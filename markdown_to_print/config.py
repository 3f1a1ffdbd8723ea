"""
Configuration for the markdown to print converter.

Values are layered: built-in defaults < environment variables < CLI options.
The page break thresholds are frozen into a ``PageBreakConfig`` once per run
and passed explicitly to every component that needs them.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import os
import re
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


DEFAULT_MARGINS = "20mm 20mm 25mm 20mm"
DEFAULT_PLANTUML_SERVER = "http://www.plantuml.com/plantuml/img/"

_MARGIN_PATTERN = re.compile(r'^(-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)\s*(cm|in|mm|pt|px)?$')


def safe_int(value: Any, default: int) -> int:
    """Parse an integer, falling back to ``default`` on anything unparseable."""
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def env_flag(value: Optional[str], default: bool, *, strict_true: bool) -> bool:
    """Interpret an environment flag.

    With ``strict_true`` only the literal ``"true"`` enables the flag; otherwise
    everything except ``"false"`` does.
    """
    if value is None:
        return default
    normalized = value.strip().lower()
    if strict_true:
        return normalized == "true"
    return normalized != "false"


@dataclass(frozen=True)
class PageBreakConfig:
    """Thresholds (in CSS pixels) that drive the smart page break heuristics."""

    min_remaining_space: int = 100
    large_content_threshold: int = 900
    heading_min_space: int = 80
    force_break_offset: int = 150
    overflow_tolerance: int = 50
    debug: bool = False
    force_h2_break: bool = True

    ENV_NAMES = {
        "min_remaining_space": "PAGE_BREAK_MIN_REMAINING",
        "large_content_threshold": "PAGE_BREAK_LARGE_CONTENT",
        "heading_min_space": "PAGE_BREAK_HEADING_MIN",
        "force_break_offset": "PAGE_BREAK_FORCE_OFFSET",
        "overflow_tolerance": "PAGE_BREAK_OVERFLOW_TOLERANCE",
    }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 overrides: Optional[Dict[str, Any]] = None) -> "PageBreakConfig":
        """Build the configuration from environment variables and CLI overrides.

        Unparseable integers silently fall back to the documented default.
        """
        if environ is None:
            environ = os.environ
        defaults = cls()
        values: Dict[str, Any] = {}
        for field_name, env_name in cls.ENV_NAMES.items():
            values[field_name] = safe_int(environ.get(env_name), getattr(defaults, field_name))
        values["debug"] = env_flag(environ.get("PAGE_BREAK_DEBUG"), defaults.debug, strict_true=True)
        values["force_h2_break"] = env_flag(environ.get("PAGE_BREAK_FORCE_H2"), defaults.force_h2_break,
                                            strict_true=False)

        config = cls(**values)
        if overrides:
            cleaned = {}
            for key, value in overrides.items():
                if value is None or not hasattr(defaults, key):
                    continue
                if key in cls.ENV_NAMES:
                    cleaned[key] = safe_int(value, getattr(config, key))
                else:
                    cleaned[key] = bool(value)
            config = replace(config, **cleaned)
        return config

    def as_dict(self) -> Dict[str, Any]:
        return {
            "minRemainingSpace": self.min_remaining_space,
            "largeContentThreshold": self.large_content_threshold,
            "headingMinSpace": self.heading_min_space,
            "forceBreakOffset": self.force_break_offset,
            "overflowTolerance": self.overflow_tolerance,
            "debug": self.debug,
            "forceH2Break": self.force_h2_break,
        }


def parse_pixel_width(value: Optional[str]) -> Optional[int]:
    """Parse a diagram width in pixels: ``"1680"`` -> 1680; percentages and junk -> None."""
    if value is None:
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def validate_margin(margin_str: str) -> str:
    """Validate and normalize a single margin value."""
    match = _MARGIN_PATTERN.match(margin_str.strip())
    if not match:
        raise ValueError(f"Invalid margin format: '{margin_str}'. Use format like '1in', '2.5cm', '10mm', etc.")

    value_str, unit = match.groups()
    value = float(value_str)

    # Set default unit to 'in' if not specified
    if not unit:
        unit = 'in'

    value_inches = margin_to_cm(f"{value}{unit}") / 2.54

    # Validate range: minimum 0 inches, maximum 3 inches
    if value_inches < 0:
        raise ValueError(f"Margin cannot be negative: '{margin_str}'. Minimum value is 0.")
    elif value_inches > 3:
        raise ValueError(f"Margin too large: '{margin_str}'. Maximum value is 3 inches (7.62cm).")

    return f"{value}{unit}"


def parse_margins(page_margins: str) -> Dict[str, str]:
    """Parse CSS-style margin shorthand (1, 2 or 4 values) into individual margins."""
    margin_parts = page_margins.split()

    if len(margin_parts) == 1:
        margin = validate_margin(margin_parts[0])
        return {'top': margin, 'right': margin, 'bottom': margin, 'left': margin}
    elif len(margin_parts) == 2:
        # Vertical and horizontal
        vertical = validate_margin(margin_parts[0])
        horizontal = validate_margin(margin_parts[1])
        return {'top': vertical, 'right': horizontal, 'bottom': vertical, 'left': horizontal}
    elif len(margin_parts) == 4:
        # Top, right, bottom, left
        return {
            'top': validate_margin(margin_parts[0]),
            'right': validate_margin(margin_parts[1]),
            'bottom': validate_margin(margin_parts[2]),
            'left': validate_margin(margin_parts[3])
        }
    else:
        raise ValueError(f"Invalid margin format: '{page_margins}'. Use 1, 2, or 4 values.")


def margin_to_cm(margin_str: str) -> float:
    """Convert margin string to centimeters for the PDF printer."""
    match = _MARGIN_PATTERN.match(margin_str.strip())
    if not match:
        return 2.54  # default 1 inch in cm

    value_str, unit = match.groups()
    value = float(value_str)

    if not unit or unit == 'in':
        return value * 2.54
    elif unit == 'cm':
        return value
    elif unit == 'mm':
        return value / 10
    elif unit == 'pt':
        return value * 0.0352778
    else:  # 'px'
        return value * 0.0264583


class Config:
    """Run-level settings: directories and external service locations.

    Environment values that cannot be used are kept in ``ignored`` (variable
    name -> raw value) so the caller can warn about them.
    """

    DEFAULTS = {
        "output_dir": None,
        "temp_dir": str(Path(tempfile.gettempdir()) / "markdown_to_print"),
        "plantuml_server": DEFAULT_PLANTUML_SERVER,
        "max_diagram_width": 1680,
    }

    ENV_NAMES = {
        "output_dir": "MD_TO_PRINT_OUTPUT_DIR",
        "temp_dir": "MD_TO_PRINT_TEMP_DIR",
        "plantuml_server": "PLANTUML_SERVER",
        "max_diagram_width": "MD_TO_PRINT_MAX_DIAGRAM_WIDTH",
    }

    def __init__(self, cli_config: Optional[Dict[str, Any]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        if environ is None:
            environ = os.environ
        self._values: Dict[str, Any] = dict(self.DEFAULTS)
        self.ignored: Dict[str, str] = {}
        for key, env_name in self.ENV_NAMES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            if key == "max_diagram_width":
                parsed = parse_pixel_width(raw)
                if parsed is None:
                    self.ignored[env_name] = raw
                else:
                    self._values[key] = parsed
            else:
                self._values[key] = raw
        for key, value in (cli_config or {}).items():
            if value is not None:
                self._values[key] = value

    def get_output_dir(self) -> Optional[str]:
        return self._values["output_dir"]

    def get_temp_dir(self) -> str:
        return self._values["temp_dir"]

    def get_plantuml_server(self) -> str:
        return self._values["plantuml_server"]

    def get_max_diagram_width(self) -> int:
        return self._values["max_diagram_width"]

    def warn_ignored(self, logger) -> None:
        for env_name, raw in self.ignored.items():
            logger.warning(f"Ignoring {env_name}={raw!r}: expected a positive width in pixels")
