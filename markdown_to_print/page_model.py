"""
Physical page geometry expressed in CSS pixels.

The browser lays the document out at 96 DPI, so every physical length is
converted with ``PX_PER_MM`` before it is compared with measured geometry.
"""

from dataclasses import dataclass

PX_PER_MM = 3.7795275591  # 96 DPI

A4_WIDTH_MM = 210.0
A4_HEIGHT_MM = 297.0


def mm_to_px(mm: float) -> float:
    return mm * PX_PER_MM


@dataclass(frozen=True)
class PageModel:
    """Pixel budgets derived from a physical page size.

    Attributes:
        page_width_mm: Physical page width
        page_height_mm: Physical page height
        margin_top_px: Top allowance subtracted from the usable height
        margin_bottom_px: Bottom allowance subtracted from the usable height
        diagram_margin_x_mm: Horizontal allowance around scaled diagrams
        diagram_margin_y_mm: Vertical allowance (margins plus surrounding text) for diagrams
        image_margin_mm: Vertical allowance for standalone images

    The PDF printer applies the real page margins, so the usable height keeps
    zero margins by default and pagination treats each page as one full
    ``usable_page_height`` cycle.
    """

    page_width_mm: float = A4_WIDTH_MM
    page_height_mm: float = A4_HEIGHT_MM
    margin_top_px: float = 0.0
    margin_bottom_px: float = 0.0
    diagram_margin_x_mm: float = 40.0
    diagram_margin_y_mm: float = 80.0
    image_margin_mm: float = 40.0

    @property
    def page_height_px(self) -> float:
        return mm_to_px(self.page_height_mm)

    @property
    def usable_page_height(self) -> float:
        return self.page_height_px - self.margin_top_px - self.margin_bottom_px

    @property
    def diagram_max_width(self) -> float:
        return mm_to_px(self.page_width_mm - self.diagram_margin_x_mm)

    @property
    def diagram_max_height(self) -> float:
        return mm_to_px(self.page_height_mm - self.diagram_margin_y_mm)

    @property
    def image_max_height(self) -> float:
        """Tallest standalone image kept at natural size; also its page cycle."""
        return self.page_height_px - mm_to_px(self.image_margin_mm)

    @property
    def image_max_width(self) -> float:
        return self.diagram_max_width
