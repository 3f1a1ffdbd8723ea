"""
Shared fixtures: an in-memory layout driver that stands in for a Chromium page.

The fake document is a list of blocks with fixed heights stacked top to
bottom. Break markers have zero height and forced breaks do not move anything,
which matches what a browser reports for screen geometry while print rules
are only applied when the PDF is generated.
"""

import copy
from typing import Dict, List, Optional

import pytest

from markdown_to_print.emitter import (
    FORCE_BREAK_CLASS,
    GROUP_CLASS,
    SECTION_BREAK_CLASS,
    BreakMarker,
    LayoutDriver,
)

MARKER_CLASSES = ("page-break", SECTION_BREAK_CLASS)


class FakeBlock:
    """One element of the fake document."""

    def __init__(self, layout_id: str, tag: str, height: float = 0.0, classes=(),
                 only_child_tag: Optional[str] = None, front_matter: bool = False,
                 natural: Optional[tuple] = None, diagram_kind: str = "image"):
        self.layout_id = layout_id
        self.tag = tag.upper()
        self.height = height
        self.classes: List[str] = list(classes)
        self.only_child_tag = only_child_tag
        self.front_matter = front_matter
        self.children: List["FakeBlock"] = []
        self.attributes: Dict[str, str] = {}
        self.evaluated = False
        self.natural = natural
        self.diagram_kind = diagram_kind
        self.fit_scale: Optional[float] = None

    @property
    def is_marker(self) -> bool:
        return any(name in self.classes for name in MARKER_CLASSES)

    @property
    def is_group(self) -> bool:
        return GROUP_CLASS in self.classes

    def dump(self):
        return (self.layout_id, self.tag, tuple(self.classes), self.evaluated, self.fit_scale,
                tuple(sorted(self.attributes.items())), tuple(child.dump() for child in self.children))


def heading(layout_id: str, level: int, height: float = 40.0) -> FakeBlock:
    return FakeBlock(layout_id, f"h{level}", height)


def paragraph(layout_id: str, height: float = 60.0) -> FakeBlock:
    return FakeBlock(layout_id, "p", height)


def code_block(layout_id: str, height: float = 200.0) -> FakeBlock:
    return FakeBlock(layout_id, "pre", height)


def table(layout_id: str, height: float = 200.0) -> FakeBlock:
    return FakeBlock(layout_id, "table", height)


def diagram(layout_id: str, height: float, natural=None) -> FakeBlock:
    return FakeBlock(layout_id, "div", height, classes=["mermaid"],
                     natural=natural or (600.0, height), diagram_kind="diagram")


def image(layout_id: str, height: float, natural=None) -> FakeBlock:
    return FakeBlock(layout_id, "div", height, classes=["image-container"], only_child_tag="IMG",
                     natural=natural or (600.0, height), diagram_kind="image")


def toc(layout_id: str = "toc", height: float = 300.0) -> FakeBlock:
    return FakeBlock(layout_id, "div", height, classes=["table-of-contents"], front_matter=True)


def page_break(layout_id: str) -> FakeBlock:
    return FakeBlock(layout_id, "div", 0.0, classes=["page-break"])


class FakeLayoutDriver(LayoutDriver):
    """In-memory ``LayoutDriver`` with the same marker semantics as the browser driver."""

    def __init__(self, blocks=(), directives=None):
        self.body: List[FakeBlock] = list(blocks)
        self.directives: Dict[str, int] = dict(directives or {})
        self.reflows = 0
        self.mutations = 0
        self._seq = 0

    # -- lookup helpers ---------------------------------------------------

    def _locate(self, layout_id: str, container=None):
        container = self.body if container is None else container
        for index, block in enumerate(container):
            if block.layout_id == layout_id:
                return container, index
            if block.children:
                found = self._locate(layout_id, block.children)
                if found is not None:
                    return found
        return None

    def find(self, layout_id: str) -> Optional[FakeBlock]:
        found = self._locate(layout_id)
        if found is None:
            return None
        container, index = found
        return container[index]

    def previous_of(self, layout_id: str) -> Optional[FakeBlock]:
        container, index = self._locate(layout_id)
        return container[index - 1] if index > 0 else None

    def dump(self):
        return tuple(block.dump() for block in self.body)

    def copy(self) -> "FakeLayoutDriver":
        return copy.deepcopy(self)

    # -- LayoutDriver -----------------------------------------------------

    async def reflow(self) -> None:
        self.reflows += 1

    async def snapshot(self):
        nodes, groups, diagrams = [], [], []
        offset = 0.0

        def visit(container, parent_id, group_id, front_matter):
            nonlocal offset
            marker_before = False
            for block in container:
                if block.is_marker:
                    marker_before = True
                    continue
                breaks = marker_before or FORCE_BREAK_CLASS in block.classes
                if block.is_group:
                    start = offset
                    members = [child for child in block.children if not child.is_marker]
                    record = {
                        "id": block.layout_id,
                        "top": start,
                        "headingId": members[0].layout_id if members else None,
                        "contentId": members[1].layout_id if len(members) > 1 else None,
                        "breakMarker": breaks,
                        "evaluated": block.evaluated,
                    }
                    groups.append(record)
                    visit(block.children, block.layout_id, block.layout_id, front_matter)
                    record["height"] = offset - start
                else:
                    nodes.append({
                        "id": block.layout_id,
                        "tag": block.tag,
                        "classes": list(block.classes),
                        "onlyChildTag": block.only_child_tag,
                        "top": offset,
                        "height": block.height,
                        "parentId": parent_id,
                        "groupId": group_id,
                        "frontMatter": front_matter or block.front_matter,
                        "breakMarker": breaks,
                        "evaluated": block.evaluated,
                    })
                    if block.natural is not None:
                        width, height = block.natural
                        if block.fit_scale is not None:
                            width, height = width * block.fit_scale, height * block.fit_scale
                        diagrams.append({
                            "id": block.layout_id,
                            "kind": block.diagram_kind,
                            "width": width,
                            "height": height,
                            "scaled": block.fit_scale is not None,
                        })
                    offset += block.height
                marker_before = False

        visit(self.body, None, None, False)
        directives = [{"id": target, "percent": percent} for target, percent in self.directives.items()]
        return {"nodes": nodes, "groups": groups, "diagrams": diagrams, "directives": directives}

    async def wrap_with_sibling(self, heading_id, sibling_id):
        found = self._locate(heading_id)
        if found is None:
            return None
        container, index = found
        if container is not self.body and any(
                block.is_group and block.children is container for block in self._all_blocks()):
            return None
        if index + 1 >= len(container) or container[index + 1].layout_id != sibling_id:
            return None

        self._seq += 1
        wrapper = FakeBlock(f"g{self._seq}", "div", classes=[GROUP_CLASS])
        wrapper.children = [container[index], container[index + 1]]
        container[index:index + 2] = [wrapper]
        self.mutations += 1
        return wrapper.layout_id

    async def insert_break_marker(self, target_id, marker, attributes=None):
        found = self._locate(target_id)
        if found is None:
            return False
        container, index = found
        block = container[index]
        if marker is BreakMarker.FORCE_BREAK_BEFORE:
            if FORCE_BREAK_CLASS in block.classes:
                return False
            block.classes.append(FORCE_BREAK_CLASS)
        else:
            if index > 0 and container[index - 1].is_marker:
                return False
            self._seq += 1
            container.insert(index, FakeBlock(f"m{self._seq}", "div", classes=[SECTION_BREAK_CLASS]))
        block.attributes.update(attributes or {})
        self.mutations += 1
        return True

    async def set_scale(self, target_id, factor, width, height):
        block = self.find(target_id)
        if block is None or block.fit_scale is not None:
            return False
        block.fit_scale = factor
        self.mutations += 1
        return True

    async def add_class(self, target_id, css_class):
        block = self.find(target_id)
        if block is None or css_class in block.classes:
            return False
        block.classes.append(css_class)
        self.mutations += 1
        return True

    async def mark_evaluated(self, target_id):
        block = self.find(target_id)
        if block is not None:
            block.evaluated = True

    def _all_blocks(self, container=None):
        container = self.body if container is None else container
        for block in container:
            yield block
            yield from self._all_blocks(block.children)


@pytest.fixture
def make_driver():
    """Factory for fake drivers: ``make_driver(block, block, ..., directives={...})``."""
    def factory(*blocks, directives=None):
        return FakeLayoutDriver(blocks, directives)
    return factory
