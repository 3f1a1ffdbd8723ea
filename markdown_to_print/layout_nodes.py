"""
Data model for the smart pagination passes.

A ``LayoutSnapshot`` is one immutable reading of the rendered document: every
flow-level block with its measured geometry, the existing heading groups, the
rendered diagrams and the scale directives. Snapshots carry the generation of
the layout they were measured from so that geometry read before a mutation
can be detected and rejected.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union


class NodeKind(Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    DIAGRAM = "diagram"
    IMAGE = "image"
    CODE_BLOCK = "code-block"
    TABLE = "table"
    BLOCKQUOTE = "blockquote"
    GENERIC = "generic"


# Blocks that must never be split across a page boundary
ATOMIC_KINDS = frozenset({
    NodeKind.DIAGRAM,
    NodeKind.CODE_BLOCK,
    NodeKind.IMAGE,
    NodeKind.TABLE,
    NodeKind.BLOCKQUOTE,
})


class BreakReason(Enum):
    LARGE_CONTENT = "large-content"
    TOO_LARGE_FOR_REMAINING = "too-large-for-remaining"
    HEADING_NEAR_BOTTOM = "heading-near-bottom"
    SEVERE_SPLIT = "severe-split"
    NONE = "none"


class StaleGeometryError(RuntimeError):
    """Raised when geometry measured before a DOM mutation is used afterwards."""


def classify_element(tag: str, classes: Iterable[str] = (), only_child_tag: Optional[str] = None) -> Tuple[NodeKind, int]:
    """Map a rendered element to its ``NodeKind`` and heading level (0 for non-headings).

    Args:
        tag: Lower- or upper-case tag name
        classes: CSS classes on the element
        only_child_tag: Tag of the sole element child, if the element has exactly one

    Returns:
        Tuple of (kind, level)
    """
    tag = (tag or "").lower()
    class_set = set(classes or ())
    child = (only_child_tag or "").lower()

    if len(tag) == 2 and tag[0] == "h" and tag[1] in "123456":
        return NodeKind.HEADING, int(tag[1])
    if "mermaid" in class_set:
        return NodeKind.DIAGRAM, 0
    if tag == "pre" or "sourceCode" in class_set:
        return NodeKind.CODE_BLOCK, 0
    if tag in ("img", "figure") or "image-container" in class_set:
        return NodeKind.IMAGE, 0
    if tag == "p" and child == "img":
        return NodeKind.IMAGE, 0
    if tag == "table":
        return NodeKind.TABLE, 0
    if tag == "blockquote":
        return NodeKind.BLOCKQUOTE, 0
    if tag == "p":
        return NodeKind.PARAGRAPH, 0
    return NodeKind.GENERIC, 0


def _number(value: Any) -> float:
    # Geometry of detached or not yet rendered elements comes back as null
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return number


@dataclass(frozen=True)
class LayoutNode:
    """One flow-level block of the rendered document."""

    node_id: str
    kind: NodeKind
    top_offset: float = 0.0
    height: float = 0.0
    level: int = 0
    parent_id: Optional[str] = None
    is_grouped: bool = False
    group_id: Optional[str] = None
    in_front_matter: bool = False
    has_break_marker: bool = False
    evaluated: bool = False
    classes: FrozenSet[str] = frozenset()

    @property
    def is_heading(self) -> bool:
        return self.kind is NodeKind.HEADING

    @property
    def is_atomic(self) -> bool:
        return self.kind in ATOMIC_KINDS

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LayoutNode":
        """Build a node from a raw geometry record returned by the layout driver."""
        kind, level = classify_element(
            record.get("tag", ""),
            record.get("classes") or (),
            record.get("onlyChildTag"),
        )
        group_id = record.get("groupId")
        return cls(
            node_id=str(record["id"]),
            kind=kind,
            level=level,
            top_offset=_number(record.get("top")),
            height=max(0.0, _number(record.get("height"))),
            parent_id=record.get("parentId"),
            is_grouped=bool(group_id),
            group_id=group_id,
            in_front_matter=bool(record.get("frontMatter")),
            has_break_marker=bool(record.get("breakMarker")),
            evaluated=bool(record.get("evaluated")),
            classes=frozenset(record.get("classes") or ()),
        )


@dataclass(frozen=True)
class HeadingGroup:
    """A heading bound to at most one following atomic block.

    ``group_id``, ``top_offset`` and ``height`` are only known once the group
    wrapper exists in the document and has been measured.
    """

    heading: LayoutNode
    content: Optional[LayoutNode] = None
    group_id: Optional[str] = None
    top_offset: float = 0.0
    height: float = 0.0
    has_break_marker: bool = False
    evaluated: bool = False

    @property
    def member_ids(self) -> Tuple[str, ...]:
        if self.content is None:
            return (self.heading.node_id,)
        return (self.heading.node_id, self.content.node_id)


@dataclass(frozen=True)
class BreakDecision:
    """Outcome of the break heuristics for one group or block."""

    target_id: str
    force_break_before: bool
    reason: BreakReason
    height: float = 0.0
    remaining_space: float = 0.0
    page_offset: float = 0.0

    def describe(self) -> str:
        return (f"{self.reason.value}, height: {round(self.height)}px, "
                f"remaining: {round(self.remaining_space)}px, offset: {round(self.page_offset)}px")


@dataclass(frozen=True)
class DiagramBox:
    """Natural size of a rendered diagram or image, before any fit scaling."""

    node_id: str
    kind: NodeKind
    natural_width: float
    natural_height: float
    already_scaled: bool = False

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "DiagramBox":
        kind = NodeKind.DIAGRAM if record.get("kind") == "diagram" else NodeKind.IMAGE
        return cls(
            node_id=str(record["id"]),
            kind=kind,
            natural_width=max(0.0, _number(record.get("width"))),
            natural_height=max(0.0, _number(record.get("height"))),
            already_scaled=bool(record.get("scaled")),
        )


@dataclass(frozen=True)
class ScaleDirective:
    """A ``<!-- scale:N -->`` comment attached to the element that follows it."""

    node_id: str
    percent: int
    target_kind: NodeKind


LayoutUnit = Union[LayoutNode, HeadingGroup]


@dataclass(frozen=True)
class LayoutSnapshot:
    """Immutable view of the document geometry at one layout generation."""

    generation: int
    nodes: Tuple[LayoutNode, ...] = ()
    groups: Tuple[HeadingGroup, ...] = ()
    diagrams: Tuple[DiagramBox, ...] = ()
    directives: Tuple[ScaleDirective, ...] = ()
    _index: Dict[str, int] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        self._index.update({node.node_id: position for position, node in enumerate(self.nodes)})

    @classmethod
    def from_payload(cls, generation: int, payload: Mapping[str, Any]) -> "LayoutSnapshot":
        """Build a snapshot from the raw payload returned by a layout driver."""
        nodes = tuple(LayoutNode.from_record(record) for record in payload.get("nodes") or ())
        by_id = {node.node_id: node for node in nodes}

        groups: List[HeadingGroup] = []
        for record in payload.get("groups") or ():
            heading = by_id.get(str(record.get("headingId")))
            if heading is None:
                continue
            content = by_id.get(str(record.get("contentId"))) if record.get("contentId") else None
            groups.append(HeadingGroup(
                heading=heading,
                content=content,
                group_id=str(record["id"]),
                top_offset=_number(record.get("top")),
                height=max(0.0, _number(record.get("height"))),
                has_break_marker=bool(record.get("breakMarker")),
                evaluated=bool(record.get("evaluated")),
            ))

        diagrams = tuple(DiagramBox.from_record(record) for record in payload.get("diagrams") or ())

        directives: List[ScaleDirective] = []
        for record in payload.get("directives") or ():
            target = by_id.get(str(record.get("id")))
            percent = record.get("percent")
            if target is None or not isinstance(percent, (int, float)):
                continue
            directives.append(ScaleDirective(target.node_id, int(percent), target.kind))

        return cls(generation=generation, nodes=nodes, groups=tuple(groups),
                   diagrams=diagrams, directives=tuple(directives))

    def node(self, node_id: str) -> Optional[LayoutNode]:
        position = self._index.get(node_id)
        return None if position is None else self.nodes[position]

    def siblings_of(self, node: LayoutNode) -> List[LayoutNode]:
        return [other for other in self.nodes if other.parent_id == node.parent_id]

    def next_sibling(self, node: LayoutNode) -> Optional[LayoutNode]:
        siblings = self.siblings_of(node)
        for position, sibling in enumerate(siblings):
            if sibling.node_id == node.node_id:
                return siblings[position + 1] if position + 1 < len(siblings) else None
        return None

    def headings(self) -> List[LayoutNode]:
        return [node for node in self.nodes if node.is_heading]

    def group_for(self, node: LayoutNode) -> Optional[HeadingGroup]:
        if not node.group_id:
            return None
        for group in self.groups:
            if group.group_id == node.group_id:
                return group
        return None

    def flow_units(self) -> List[LayoutUnit]:
        """Blocks in document order with grouped members collapsed into their group."""
        units: List[LayoutUnit] = []
        seen_groups = set()
        for node in self.nodes:
            if node.is_grouped:
                if node.group_id in seen_groups:
                    continue
                group = self.group_for(node)
                if group is None:
                    units.append(node)
                    continue
                seen_groups.add(node.group_id)
                units.append(group)
            else:
                units.append(node)
        return units


def unit_heading(unit: LayoutUnit) -> Optional[LayoutNode]:
    """The heading a flow unit starts with, if any."""
    if isinstance(unit, HeadingGroup):
        return unit.heading
    return unit if unit.is_heading else None


def unit_id(unit: LayoutUnit) -> str:
    if isinstance(unit, HeadingGroup):
        return unit.group_id or unit.heading.node_id
    return unit.node_id


def unit_has_break_marker(unit: LayoutUnit) -> bool:
    if isinstance(unit, HeadingGroup):
        return unit.has_break_marker or unit.heading.has_break_marker
    return unit.has_break_marker


def is_front_matter(unit: LayoutUnit) -> bool:
    if isinstance(unit, HeadingGroup):
        return unit.heading.in_front_matter
    return unit.in_front_matter
