"""
Fit oversized diagrams and images into one page, and resolve ``scale:N``
directives to the discrete scale classes the print stylesheet defines.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .layout_nodes import LayoutSnapshot, NodeKind
from .page_model import PageModel

SCALE_STEPS = (60, 70, 80, 90)
SCALABLE_KINDS = frozenset({NodeKind.DIAGRAM, NodeKind.CODE_BLOCK, NodeKind.IMAGE})


@dataclass(frozen=True)
class ScaleDecision:
    node_id: str
    kind: NodeKind
    scale: float
    width: float
    height: float


def compute_fit_scale(natural_width: float, natural_height: float,
                      max_width: float, max_height: float) -> float:
    """Uniform scale factor in (0, 1] that fits the box inside the limits.

    Never enlarges. Unknown sizes or limits give 1.0 (leave untouched).
    """
    if natural_width <= 0 or natural_height <= 0:
        return 1.0
    if max_width <= 0 or max_height <= 0:
        return 1.0
    return min(max_width / natural_width, max_height / natural_height, 1.0)


def plan_fit_scaling(snapshot: LayoutSnapshot, page: PageModel) -> List[ScaleDecision]:
    """Scale decisions for every diagram/image that exceeds its page box."""
    decisions = []
    for box in snapshot.diagrams:
        if box.already_scaled:
            continue
        if box.kind is NodeKind.DIAGRAM:
            limits = (page.diagram_max_width, page.diagram_max_height)
        else:
            limits = (page.image_max_width, page.image_max_height)
        scale = compute_fit_scale(box.natural_width, box.natural_height, *limits)
        if scale >= 1.0:
            continue
        decisions.append(ScaleDecision(
            node_id=box.node_id,
            kind=box.kind,
            scale=scale,
            width=box.natural_width * scale,
            height=box.natural_height * scale,
        ))
    return decisions


def scale_class_for(percent: int) -> Optional[str]:
    """Nearest supported ``scale-NN`` class for a directive percentage.

    ``scale:100`` and above means natural size, so no class is returned.
    """
    if percent <= 0 or percent >= 100:
        return None
    step = min(SCALE_STEPS, key=lambda candidate: (abs(candidate - percent), candidate))
    return f"scale-{step}"


def plan_scale_classes(snapshot: LayoutSnapshot) -> List[Tuple[str, str]]:
    """(node id, class) pairs for directives that target a scalable block."""
    planned = []
    for directive in snapshot.directives:
        if directive.target_kind not in SCALABLE_KINDS:
            continue
        css_class = scale_class_for(directive.percent)
        if css_class is None:
            continue
        node = snapshot.node(directive.node_id)
        if node is not None and css_class in node.classes:
            continue
        planned.append((directive.node_id, css_class))
    return planned
