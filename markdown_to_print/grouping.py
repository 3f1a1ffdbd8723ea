"""
Heading-grouping pass: bind each heading to the atomic block right after it
so the pair is measured and moved across pages as one unit.
"""

from dataclasses import dataclass, field
from typing import List

from .layout_nodes import HeadingGroup, LayoutNode, LayoutSnapshot


@dataclass
class GroupingPlan:
    """Headings to wrap with their following block, and headings left on their own."""

    groups: List[HeadingGroup] = field(default_factory=list)
    solo_headings: List[LayoutNode] = field(default_factory=list)
    skipped: int = 0


def plan_heading_groups(snapshot: LayoutSnapshot) -> GroupingPlan:
    """Plan heading groups for every heading that is not grouped yet.

    Headings already inside a group are skipped, so planning over an already
    grouped document yields no new groups. Headings whose next sibling is not
    atomic stay solo; they are still candidates for break decisions unless a
    previous pass already evaluated them. Front matter (the table of contents)
    is never grouped.
    """
    plan = GroupingPlan()
    claimed = set()

    for heading in snapshot.headings():
        if heading.is_grouped or heading.in_front_matter:
            plan.skipped += 1
            continue
        if heading.node_id in claimed:
            continue

        following = snapshot.next_sibling(heading)
        if (following is not None and following.is_atomic and not following.is_grouped
                and following.node_id not in claimed):
            plan.groups.append(HeadingGroup(heading=heading, content=following))
            claimed.update((heading.node_id, following.node_id))
        elif not heading.evaluated:
            plan.solo_headings.append(heading)

    return plan
