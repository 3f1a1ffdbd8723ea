"""
Checks for the external tools the converter shells out to.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from .console import ColorLogger


def check_command(cmd: list, description: str, logger: ColorLogger) -> bool:
    """Check if a command is available."""
    if shutil.which(cmd[0]) is None:
        logger.error(f"{description} is not available")
        return False
    try:
        subprocess.run(cmd, check=True, capture_output=True)
    except (subprocess.CalledProcessError, OSError):
        logger.error(f"{description} is not available")
        return False
    logger.debug(f"{description} is available")
    return True


def check_pandoc(logger: ColorLogger) -> bool:
    if check_command(["pandoc", "--version"], "Pandoc", logger):
        return True
    logger.info("Pandoc is required. Install it from: https://pandoc.org/installing.html")
    return False


def check_chromium(logger: ColorLogger) -> bool:
    """True when Playwright's Chromium build is installed."""
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import sync_playwright

    try:
        with sync_playwright() as p:
            executable = Path(p.chromium.executable_path)
    except PlaywrightError as e:
        logger.error(f"Playwright is not usable: {e}")
        return False

    if not executable.exists():
        logger.error("Playwright Chromium is not installed")
        logger.info(f"Install it with: {sys.executable} -m playwright install chromium")
        return False
    logger.debug(f"Playwright Chromium found at {executable}")
    return True


def install_chromium(logger: ColorLogger) -> bool:
    """Install Playwright's Chromium build."""
    logger.info("Installing Playwright Chromium...")
    try:
        subprocess.run([sys.executable, "-m", "playwright", "install", "chromium"],
                       check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"Failed to install Playwright Chromium: {e.stderr}")
        return False
    logger.success("Playwright Chromium installed successfully")
    return True


def check_dependencies(need_browser: bool = True, logger: Optional[ColorLogger] = None) -> bool:
    """Check every external dependency a conversion run needs."""
    logger = logger or ColorLogger()
    ok = check_pandoc(logger)
    if need_browser:
        ok = check_chromium(logger) and ok
    return ok
