"""
Applying pagination decisions to the rendered document.

``LayoutSession`` owns the re-flow barrier: every mutation invalidates the
current geometry, and the next measurement waits for the renderer to re-flow
before reading. ``LayoutEmitter`` performs the mutations and is purely
additive: elements that already carry a marker are left alone.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .console import ColorLogger
from .fit_scaler import ScaleDecision
from .layout_nodes import (
    BreakDecision,
    HeadingGroup,
    LayoutSnapshot,
    StaleGeometryError,
)

FORCE_BREAK_CLASS = "force-page-break-before"
SECTION_BREAK_CLASS = "h2-page-break"
GROUP_CLASS = "heading-group"
LARGE_IMAGE_CLASS = "large-image"


class BreakMarker(Enum):
    FORCE_BREAK_BEFORE = "class"   # class on the element itself
    SECTION_BREAK = "element"      # zero-height break element inserted before it


class LayoutDriver:
    """Geometry and mutation capabilities of the host renderer.

    Implementations: ``browser_layout.PlaywrightLayoutDriver`` for a live
    Chromium page, and in-memory fakes for tests.
    """

    async def snapshot(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def reflow(self) -> None:
        raise NotImplementedError

    async def wrap_with_sibling(self, heading_id: str, sibling_id: str) -> Optional[str]:
        raise NotImplementedError

    async def insert_break_marker(self, target_id: str, marker: BreakMarker,
                                  attributes: Optional[Dict[str, str]] = None) -> bool:
        raise NotImplementedError

    async def set_scale(self, target_id: str, factor: float, width: float, height: float) -> bool:
        raise NotImplementedError

    async def add_class(self, target_id: str, css_class: str) -> bool:
        raise NotImplementedError

    async def mark_evaluated(self, target_id: str) -> None:
        raise NotImplementedError


class LayoutSession:
    """Tracks layout generations so stale geometry is never trusted."""

    def __init__(self, driver: LayoutDriver):
        self.driver = driver
        self.generation = 0
        self._dirty = True

    async def measure(self) -> LayoutSnapshot:
        """Wait for re-flow if anything changed, then read fresh geometry."""
        if self._dirty:
            await self.driver.reflow()
            self._dirty = False
        payload = await self.driver.snapshot()
        return LayoutSnapshot.from_payload(self.generation, payload)

    def invalidate(self) -> None:
        self.generation += 1
        self._dirty = True

    def require_fresh(self, snapshot: LayoutSnapshot) -> LayoutSnapshot:
        if self._dirty or snapshot.generation != self.generation:
            raise StaleGeometryError(
                f"geometry from layout generation {snapshot.generation} used after mutation "
                f"(current generation {self.generation})"
            )
        return snapshot


class LayoutEmitter:
    """Turns decisions into renderer-recognized markup."""

    def __init__(self, session: LayoutSession, logger: Optional[ColorLogger] = None):
        self.session = session
        self.driver = session.driver
        self.logger = logger or ColorLogger()

    async def wrap_groups(self, snapshot: LayoutSnapshot,
                          groups: List[HeadingGroup]) -> Tuple[List[str], List[str]]:
        """Wrap each planned heading group.

        Returns the ids of the wrappers created and the ids of headings the
        renderer refused to wrap (their planned partner is not the element
        right after them, e.g. a break marker sits in between). Those headings
        still need a decision of their own.
        """
        created, unwrapped = [], []
        for group in groups:
            heading = snapshot.node(group.heading.node_id)
            if heading is None or heading.is_grouped or group.content is None:
                continue
            group_id = await self.driver.wrap_with_sibling(group.heading.node_id, group.content.node_id)
            self.session.invalidate()
            if group_id:
                created.append(group_id)
            else:
                unwrapped.append(group.heading.node_id)
        return created, unwrapped

    async def apply_break(self, decision: BreakDecision, debug: bool = False) -> bool:
        """Mark the target of a forcing decision. Every evaluated target is flagged."""
        applied = False
        if decision.force_break_before:
            attributes = None
            if debug:
                attributes = {
                    "data-page-break": decision.reason.value,
                    "data-height": str(round(decision.height)),
                    "data-remaining": str(round(decision.remaining_space)),
                    "data-offset": str(round(decision.page_offset)),
                }
            applied = await self.driver.insert_break_marker(
                decision.target_id, BreakMarker.FORCE_BREAK_BEFORE, attributes)
        await self.driver.mark_evaluated(decision.target_id)
        self.session.invalidate()
        return applied

    async def apply_section_break(self, snapshot: LayoutSnapshot, target_id: str) -> bool:
        node = snapshot.node(target_id)
        if node is not None and node.has_break_marker:
            return False
        applied = await self.driver.insert_break_marker(target_id, BreakMarker.SECTION_BREAK)
        self.session.invalidate()
        return applied

    async def apply_scale(self, decision: ScaleDecision) -> bool:
        if not 0 < decision.scale < 1:
            return False
        applied = await self.driver.set_scale(decision.node_id, decision.scale, decision.width, decision.height)
        self.session.invalidate()
        return applied

    async def apply_scale_class(self, snapshot: LayoutSnapshot, node_id: str, css_class: str) -> bool:
        node = snapshot.node(node_id)
        if node is not None and css_class in node.classes:
            return False
        applied = await self.driver.add_class(node_id, css_class)
        self.session.invalidate()
        return applied
