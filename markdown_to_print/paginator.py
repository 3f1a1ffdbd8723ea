"""
Smart pagination of a rendered document.

Every stage plans from one fresh snapshot and then applies its mutations;
the session forces a re-flow and a new measurement before the next stage
reads geometry again.

    directives -> heading groups -> group/heading breaks -> first H1 break
    -> H2 section breaks -> standalone image/table breaks -> fit scaling

Break decisions use the natural (pre-scale) geometry; fit scaling runs last.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .break_engine import (
    plan_first_content_h1,
    plan_group_breaks,
    plan_h2_breaks,
    plan_standalone_block_breaks,
)
from .config import PageBreakConfig
from .console import ColorLogger
from .emitter import LayoutDriver, LayoutEmitter, LayoutSession
from .fit_scaler import plan_fit_scaling, plan_scale_classes
from .grouping import plan_heading_groups
from .layout_nodes import BreakDecision
from .page_model import PageModel


@dataclass
class PaginationReport:
    """What one pagination run changed."""

    scale_classes: int = 0
    groups_created: int = 0
    forced_breaks: int = 0
    section_breaks: int = 0
    block_breaks: int = 0
    scaled: int = 0
    decisions: List[BreakDecision] = field(default_factory=list)

    @property
    def total_breaks(self) -> int:
        return self.forced_breaks + self.section_breaks + self.block_breaks


class SmartPaginator:
    """Drives the pagination passes over a ``LayoutDriver``."""

    def __init__(self, config: PageBreakConfig, page: Optional[PageModel] = None,
                 logger: Optional[ColorLogger] = None):
        self.config = config
        self.page = page or PageModel()
        self.logger = logger or ColorLogger(debug=config.debug)

    async def paginate(self, driver: LayoutDriver) -> PaginationReport:
        session = LayoutSession(driver)
        emitter = LayoutEmitter(session, self.logger)
        report = PaginationReport()

        await self._apply_scale_directives(session, emitter, report)
        await self._group_and_break(session, emitter, report)
        await self._section_breaks(session, emitter, report)
        await self._standalone_blocks(session, emitter, report)
        await self._fit_scaling(session, emitter, report)

        self.logger.info(
            f"Pagination: grouped {report.groups_created} heading(s), forced {report.forced_breaks} "
            f"page break(s), {report.section_breaks} section break(s), {report.block_breaks} "
            f"image/table break(s), scaled {report.scaled} diagram(s)/image(s)"
        )
        return report

    async def _apply_scale_directives(self, session: LayoutSession, emitter: LayoutEmitter,
                                      report: PaginationReport) -> None:
        # Runs before grouping: wrapping separates directive comments from their targets
        snapshot = await session.measure()
        for node_id, css_class in plan_scale_classes(snapshot):
            if await emitter.apply_scale_class(snapshot, node_id, css_class):
                report.scale_classes += 1
                self.logger.debug(f"Applied {css_class} to {node_id}")

    async def _group_and_break(self, session: LayoutSession, emitter: LayoutEmitter,
                               report: PaginationReport) -> None:
        snapshot = session.require_fresh(await session.measure())
        plan = plan_heading_groups(snapshot)
        created, unwrapped = await emitter.wrap_groups(snapshot, plan.groups)
        report.groups_created = len(created)
        for heading_id in unwrapped:
            self.logger.debug(f"Could not group {heading_id} with its next block; deciding it alone")

        # Wrapping changes offsets (margin collapsing), so measure again
        snapshot = session.require_fresh(await session.measure())
        decisions = plan_group_breaks(
            snapshot,
            created,
            [heading.node_id for heading in plan.solo_headings] + unwrapped,
            self.config,
            self.page,
        )
        for decision in decisions:
            report.decisions.append(decision)
            if decision.force_break_before:
                if await emitter.apply_break(decision, debug=self.config.debug):
                    report.forced_breaks += 1
                self.logger.info(f"Force page break: {decision.target_id} ({decision.describe()})")
            else:
                await emitter.apply_break(decision)
                self.logger.debug(f"Keep together: {decision.target_id} ({decision.describe()})")

        self.logger.debug(f"Grouped {report.groups_created} heading(s), forced {report.forced_breaks} page break(s)")

    async def _section_breaks(self, session: LayoutSession, emitter: LayoutEmitter,
                              report: PaginationReport) -> None:
        snapshot = await session.measure()
        targets = []
        first_h1 = plan_first_content_h1(snapshot)
        if first_h1 is not None:
            targets.append(first_h1)
        targets.extend(target for target in plan_h2_breaks(snapshot, self.config) if target not in targets)
        if not self.config.force_h2_break:
            self.logger.debug("Skipped H2 page breaks (PAGE_BREAK_FORCE_H2=false)")

        for target in targets:
            if await emitter.apply_section_break(snapshot, target):
                report.section_breaks += 1
        if report.section_breaks:
            self.logger.debug(f"Added {report.section_breaks} section page break(s)")

    async def _standalone_blocks(self, session: LayoutSession, emitter: LayoutEmitter,
                                 report: PaginationReport) -> None:
        snapshot = session.require_fresh(await session.measure())
        for decision in plan_standalone_block_breaks(snapshot, self.page):
            report.decisions.append(decision)
            if await emitter.apply_break(decision, debug=self.config.debug) and decision.force_break_before:
                report.block_breaks += 1
                self.logger.debug(f"Image/table page break: {decision.target_id} ({decision.describe()})")

    async def _fit_scaling(self, session: LayoutSession, emitter: LayoutEmitter,
                           report: PaginationReport) -> None:
        snapshot = session.require_fresh(await session.measure())
        for decision in plan_fit_scaling(snapshot, self.page):
            if await emitter.apply_scale(decision):
                report.scaled += 1
                self.logger.debug(
                    f"Scaled {decision.kind.value} {decision.node_id} by {decision.scale:.3f} "
                    f"to {decision.width:.0f}x{decision.height:.0f}px"
                )
