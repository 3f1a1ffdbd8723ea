"""
Diagram pre-rendering.

PlantUML blocks are always rendered to PNG through a PlantUML server. Mermaid
blocks are normally left for mermaid.js inside the print page; with
``--convert-mermaid`` (and always for DOCX output) they are rasterized
up front in a headless browser. Rendered images are fitted to the page width
with Pillow.

Supported modifiers on the line above a diagram block:

    <!-- no-resize -->
    <!-- scale:80% -->

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

import re
import time
from pathlib import Path
from typing import Optional, Tuple

import plantuml
from PIL import Image, ImageFilter
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tqdm import tqdm

from .console import ColorLogger

MERMAID_SCRIPT_URL = "https://unpkg.com/mermaid@10.6.1/dist/mermaid.min.js"

MERMAID_PATTERN = re.compile(
    r'(?:<!--\s*(?:(no-resize)|scale:(\d+)%)\s*-->\s*\r?\n)?```mermaid\r?\n(.*?)\r?\n```',
    re.DOTALL | re.IGNORECASE,
)
PLANTUML_PATTERN = re.compile(
    r'(?:<!--\s*(?:(no-resize)|scale:(\d+)%)\s*-->\s*\r?\n)?```plantuml\r?\n(.*?)\r?\n```',
    re.DOTALL | re.IGNORECASE,
)

TRANSIENT_ERROR_KEYWORDS = ["SSL", "SSLError", "ConnectionError", "ConnectionReset",
                            "TimeoutError", "Timeout", "BrokenPipe", "RemoteDisconnected"]

MERMAID_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <script src="{script_url}"></script>
    <style>
        body {{ margin: 0; padding: 10px; background: white; font-family: 'Noto Sans TC', Arial, sans-serif; }}
        .mermaid {{ text-align: center; background: white; display: inline-block; padding: 5px; }}
        .mermaid svg {{ max-width: none; height: auto; display: block; }}
    </style>
</head>
<body>
    <div class="mermaid">
{code}
    </div>
    <script>
        mermaid.initialize({{
            startOnLoad: true,
            theme: 'default',
            flowchart: {{ useMaxWidth: false, htmlLabels: true, curve: 'basis' }},
            sequence: {{ useMaxWidth: false }},
            gantt: {{ useMaxWidth: false }}
        }});
    </script>
</body>
</html>
"""

# Scale the SVG to the target width before rasterizing so the PNG stays crisp
SCALE_SVG_JS = """
(targetWidth) => {
    const svg = document.querySelector('.mermaid svg');
    if (!svg) return false;
    const viewBox = svg.getAttribute('viewBox');
    let naturalWidth = 0;
    let naturalHeight = 0;
    if (viewBox) {
        const parts = viewBox.split(/[\\s,]+/);
        naturalWidth = parseFloat(parts[2]);
        naturalHeight = parseFloat(parts[3]);
    }
    if (!(naturalWidth > 0 && naturalHeight > 0)) {
        const rect = svg.getBoundingClientRect();
        naturalWidth = rect.width;
        naturalHeight = rect.height;
    }
    if (!(naturalWidth > 0)) return false;
    const scale = targetWidth / naturalWidth;
    svg.setAttribute('width', targetWidth);
    svg.setAttribute('height', Math.ceil(naturalHeight * scale));
    svg.style.maxWidth = 'none';
    return true;
}
"""


def _save_image(image: Image.Image, image_path: Path) -> None:
    if image_path.suffix.lower() in ['.png']:
        image.save(image_path, format='PNG', compress_level=6, optimize=False)
    elif image_path.suffix.lower() in ['.jpg', '.jpeg']:
        image.save(image_path, format='JPEG', quality=100, subsampling=0, optimize=False)
    else:
        image.save(image_path, optimize=False)


def _parse_modifiers(match, logger: ColorLogger) -> Tuple[bool, float]:
    skip_resize = match.group(1) is not None
    target_scale = 100.0  # Default: fill page width
    if match.group(2):
        percent_value = float(match.group(2))
        if percent_value > 0:
            target_scale = percent_value
        else:
            logger.warning(f"Scale percentage must be greater than 0%, got {match.group(2)}%. Using default (100%).")
    return skip_resize, target_scale


class DiagramRenderer:
    """Renders diagram code blocks to PNG files in the temp directory."""

    def __init__(self, temp_dir: Path, plantuml_server: str, page_width_px: int = 1680,
                 logger: Optional[ColorLogger] = None):
        self.temp_dir = Path(temp_dir)
        self.plantuml_server = plantuml_server
        self.page_width_px = int(page_width_px)
        self.logger = logger or ColorLogger()
        # Reused across diagrams for connection pooling
        self._plantuml_client = plantuml.PlantUML(url=self.plantuml_server)

    def fit_to_page_width(self, image_path: Path, scale_percent: float = 100.0) -> bool:
        """Resize a diagram image so its width equals page width * scale_percent / 100."""
        try:
            target_width = int(self.page_width_px * scale_percent / 100.0)

            with Image.open(image_path) as img:
                if img.mode not in ('RGB', 'RGBA'):
                    if img.mode in ('P', 'PA', 'LA') and 'transparency' in img.info:
                        img = img.convert('RGBA')
                    else:
                        img = img.convert('RGB')

                orig_width, orig_height = img.size
                if orig_width == target_width:
                    self.logger.debug(f"Diagram already at target width {target_width}px")
                    return True

                scale_factor = target_width / orig_width
                new_height = int(orig_height * scale_factor)
                is_upscaling = scale_factor > 1.0
                resized = img.resize((target_width, new_height), Image.Resampling.LANCZOS)

                if is_upscaling:
                    sharpened = resized.filter(ImageFilter.UnsharpMask(radius=1.0, percent=200, threshold=2))
                else:
                    sharpened = resized.filter(ImageFilter.UnsharpMask(radius=0.5, percent=150, threshold=3))
                _save_image(sharpened, image_path)

                direction = "upscaled" if is_upscaling else "downscaled"
                self.logger.debug(f"Fit diagram to page: {orig_width}x{orig_height} -> {target_width}x{new_height} "
                                  f"({direction}, {scale_percent}% of page width)")
            return True
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to fit diagram to page width: {e}")
            return False

    async def render_mermaid(self, page, mermaid_code: str, output_path: Path) -> Tuple[bool, str]:
        """Render one Mermaid diagram to PNG on an existing Playwright page."""
        try:
            await page.set_viewport_size({"width": 1200, "height": 800})
            await page.emulate_media(media="screen")
            await page.set_content(MERMAID_PAGE.format(script_url=MERMAID_SCRIPT_URL, code=mermaid_code))

            try:
                await page.wait_for_selector('.mermaid svg', timeout=5000)
            except PlaywrightTimeoutError:
                self.logger.warning("Mermaid SVG not found after 5000ms")

            if await page.evaluate(SCALE_SVG_JS, self.page_width_px):
                self.logger.debug(f"Scaled SVG to {self.page_width_px}px wide before rasterization")
            # Brief pause for the browser to re-layout at the new SVG size
            await page.wait_for_timeout(100)

            element = await page.query_selector('.mermaid')
            if element and await element.bounding_box():
                await element.screenshot(path=str(output_path), type='png', scale='device')
            else:
                await page.screenshot(path=str(output_path), type='png', full_page=True, scale='device')
            return True, ""
        except Exception as e:
            error_msg = f"Failed to render Mermaid diagram: {e}"
            self.logger.error(error_msg)
            return False, error_msg

    def render_plantuml(self, plantuml_code: str, output_path: Path, max_retries: int = 3) -> Tuple[bool, str]:
        """Render PlantUML through the server.

        Retries on transient network errors (SSL, connection, timeout) with exponential backoff,
        using a fresh client on each retry.
        """
        last_error_msg = ""
        client = self._plantuml_client

        for attempt in range(1, max_retries + 1):
            try:
                image_data = client.processes(plantuml_code)
                with open(output_path, 'wb') as f:
                    f.write(image_data)

                if output_path.exists() and output_path.stat().st_size > 0:
                    if attempt > 1:
                        self.logger.debug(f"PlantUML diagram rendered successfully on attempt {attempt}")
                    return True, ""
                last_error_msg = "PlantUML diagram file was not created or is empty"
                self.logger.error(last_error_msg)
                return False, last_error_msg

            except Exception as e:
                error_type = type(e).__name__
                last_error_msg = f"Failed to render PlantUML diagram: {error_type}: {e}"
                is_transient = any(kw.lower() in last_error_msg.lower() for kw in TRANSIENT_ERROR_KEYWORDS)

                if is_transient and attempt < max_retries:
                    wait_time = 2 ** attempt  # 2s, 4s
                    self.logger.warning(f"PlantUML request failed (attempt {attempt}/{max_retries}): {error_type}. "
                                        f"Retrying in {wait_time}s...")
                    time.sleep(wait_time)
                    client = plantuml.PlantUML(url=self.plantuml_server)
                else:
                    self.logger.error(last_error_msg)
                    return False, last_error_msg

        return False, last_error_msg

    async def replace_mermaid_with_images(self, page, content: str, file_id: str = "", filename: str = "") -> str:
        """Replace Mermaid code blocks with references to rendered PNGs."""
        matches = list(MERMAID_PATTERN.finditer(content))
        if not matches:
            return content

        desc = f"  {filename} - Mermaid" if filename else "  Mermaid diagrams"
        for i, match in enumerate(tqdm(matches, desc=desc, unit="diagram", leave=False)):
            skip_resize, target_scale = _parse_modifiers(match, self.logger)
            image_path = self.temp_dir / f"mermaid_diagram_{file_id}_{i}.png"
            self.logger.debug(f"Rendering Mermaid diagram {i} to: {image_path}")

            success, error_msg = await self.render_mermaid(page, match.group(3), image_path)
            if not success:
                raise RuntimeError(f"Mermaid diagram {i} failed to render: {error_msg}")
            if not skip_resize:
                self.fit_to_page_width(image_path, scale_percent=target_scale)
            content = content.replace(match.group(0), f"![]({image_path})")

        return content

    def replace_plantuml_with_images(self, content: str, file_id: str = "", filename: str = "") -> str:
        """Replace PlantUML code blocks with references to rendered PNGs."""
        matches = list(PLANTUML_PATTERN.finditer(content))
        if not matches:
            return content

        desc = f"  {filename} - PlantUML" if filename else "  PlantUML diagrams"
        for i, match in enumerate(tqdm(matches, desc=desc, unit="diagram", leave=False)):
            skip_resize, target_scale = _parse_modifiers(match, self.logger)
            image_path = self.temp_dir / f"plantuml_diagram_{file_id}_{i}.png"
            self.logger.debug(f"Rendering PlantUML diagram {i} to: {image_path}")

            success, error_msg = self.render_plantuml(match.group(3), image_path)
            if not success:
                raise RuntimeError(f"PlantUML diagram {i} failed to render: {error_msg}")
            if not skip_resize:
                self.fit_to_page_width(image_path, scale_percent=target_scale)
            content = content.replace(match.group(0), f"![]({image_path})")

        return content
