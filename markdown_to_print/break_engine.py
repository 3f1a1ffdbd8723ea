"""
Break-decision engine.

Decides, from measured geometry, which layout units must start on a new page.
Page position uses a repeating fixed-height page cycle (``top % page height``);
it does not simulate the drift that earlier forced breaks introduce.
"""

from typing import Iterable, List, Optional

from .config import PageBreakConfig
from .layout_nodes import (
    BreakDecision,
    BreakReason,
    HeadingGroup,
    LayoutNode,
    LayoutSnapshot,
    NodeKind,
    is_front_matter,
    unit_has_break_marker,
    unit_heading,
    unit_id,
)
from .page_model import PageModel

SEVERE_SPLIT_MIN_HEIGHT = 400
SEVERE_SPLIT_RATIO = 0.85

# Ungrouped blocks checked against the standalone image rule
STANDALONE_BLOCK_KINDS = frozenset({NodeKind.IMAGE, NodeKind.TABLE})


def page_position(top_offset: float, cycle_height: float):
    """Return (page_offset, remaining_space) of a block within its page cycle."""
    if cycle_height <= 0:
        return 0.0, 0.0
    page_offset = max(0.0, top_offset) % cycle_height
    return page_offset, cycle_height - page_offset


def decide_break(target_id: str, height: float, top_offset: float,
                 config: PageBreakConfig, page: PageModel) -> BreakDecision:
    """Apply the break rules to one unit. The first matching rule decides.

    1. Large content (taller than ``large_content_threshold``) breaks unless it
       already starts within ``force_break_offset`` of the page top; near the
       top the remaining rules are evaluated instead.
    2. Content taller than the remaining space breaks only when the overflow
       exceeds ``overflow_tolerance``; small overflows flow naturally.
    3. Less than ``heading_min_space`` left on the page: break.
    4. Tall content (> 400px) that would leave most of itself for the next page.
    """
    page_offset, remaining_space = page_position(top_offset, page.usable_page_height)

    def decision(force: bool, reason: BreakReason) -> BreakDecision:
        return BreakDecision(
            target_id=target_id,
            force_break_before=force,
            reason=reason,
            height=height,
            remaining_space=remaining_space,
            page_offset=page_offset,
        )

    # Missing geometry never forces a break
    if height <= 0:
        return decision(False, BreakReason.NONE)

    if height > config.large_content_threshold and page_offset > config.force_break_offset:
        return decision(True, BreakReason.LARGE_CONTENT)

    if height > remaining_space:
        if height - remaining_space > config.overflow_tolerance:
            return decision(True, BreakReason.TOO_LARGE_FOR_REMAINING)
        return decision(False, BreakReason.NONE)

    if remaining_space < config.heading_min_space:
        return decision(True, BreakReason.HEADING_NEAR_BOTTOM)

    if height > SEVERE_SPLIT_MIN_HEIGHT and height > remaining_space * SEVERE_SPLIT_RATIO:
        return decision(True, BreakReason.SEVERE_SPLIT)

    return decision(False, BreakReason.NONE)


def plan_group_breaks(snapshot: LayoutSnapshot, group_ids: Iterable[str],
                      solo_heading_ids: Iterable[str],
                      config: PageBreakConfig, page: PageModel) -> List[BreakDecision]:
    """Decide breaks for freshly wrapped groups and solo headings of this pass."""
    wanted_groups = set(group_ids)
    decisions: List[BreakDecision] = []

    for group in snapshot.groups:
        if group.group_id in wanted_groups and not group.evaluated:
            decisions.append(decide_break(group.group_id, group.height, group.top_offset, config, page))

    for heading_id in solo_heading_ids:
        heading = snapshot.node(heading_id)
        if heading is None or heading.is_grouped or heading.evaluated:
            continue
        decisions.append(decide_break(heading.node_id, heading.height, heading.top_offset, config, page))

    return decisions


def decide_standalone_block(node: LayoutNode, page: PageModel) -> BreakDecision:
    """Break before a bare image or table that would not fit in what is left of the page.

    Uses the image page cycle (page height minus the image allowance). Blocks
    taller than a whole cycle are left to the fit-scaler instead.
    """
    cycle = page.image_max_height
    page_offset, remaining_space = page_position(node.top_offset, cycle)
    force = 0 < node.height and node.height > remaining_space and node.height < cycle
    return BreakDecision(
        target_id=node.node_id,
        force_break_before=force,
        reason=BreakReason.TOO_LARGE_FOR_REMAINING if force else BreakReason.NONE,
        height=node.height,
        remaining_space=remaining_space,
        page_offset=page_offset,
    )


def plan_standalone_block_breaks(snapshot: LayoutSnapshot, page: PageModel) -> List[BreakDecision]:
    decisions = []
    for node in snapshot.nodes:
        if node.kind not in STANDALONE_BLOCK_KINDS:
            continue
        if node.is_grouped or node.in_front_matter or node.evaluated:
            continue
        decisions.append(decide_standalone_block(node, page))
    return decisions


def plan_first_content_h1(snapshot: LayoutSnapshot) -> Optional[str]:
    """Target for the break that separates front matter from the first content H1.

    Returns None when there is no front matter before the first H1 or when a
    break marker already precedes it.
    """
    seen_front_matter = False
    for unit in snapshot.flow_units():
        if is_front_matter(unit):
            seen_front_matter = True
            continue
        heading = unit_heading(unit)
        if heading is None or heading.level != 1:
            continue
        if not seen_front_matter or unit_has_break_marker(unit):
            return None
        return unit_id(unit)
    return None


def plan_h2_breaks(snapshot: LayoutSnapshot, config: PageBreakConfig) -> List[str]:
    """Targets of the blanket "every H2 starts a page" rule.

    The first H2 and an H2 directly after a standalone H1 are skipped, as are
    H2s that already carry a break marker. Disabled by ``force_h2_break``.
    """
    if not config.force_h2_break:
        return []

    targets: List[str] = []
    previous = None
    h2_index = 0
    for unit in snapshot.flow_units():
        if is_front_matter(unit):
            previous = unit
            continue
        heading = unit_heading(unit)
        if heading is not None and heading.level == 2:
            follows_h1 = (
                isinstance(previous, LayoutNode)
                and previous.is_heading
                and previous.level == 1
                # A grouped H2 is the first child of its wrapper
                and not isinstance(unit, HeadingGroup)
            )
            if h2_index > 0 and not follows_h1 and not unit_has_break_marker(unit):
                targets.append(unit_id(unit))
            h2_index += 1
        previous = unit
    return targets
