"""
Layout driver backed by a live Playwright page.

Geometry is read with ``getBoundingClientRect`` (offset by the scroll position,
so tops are relative to the whole flowed document) and mutations are plain DOM
edits that the print stylesheet understands. Elements are addressed through a
``data-layout-id`` attribute assigned the first time they are measured.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

from typing import Any, Dict, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .console import ColorLogger
from .emitter import (
    FORCE_BREAK_CLASS,
    GROUP_CLASS,
    LARGE_IMAGE_CLASS,
    SECTION_BREAK_CLASS,
    BreakMarker,
    LayoutDriver,
)

SNAPSHOT_JS = """
() => {
    const SKIP = new Set(['SCRIPT', 'STYLE', 'TEMPLATE', 'LINK', 'META', 'NOSCRIPT']);
    const MARKERS = ['page-break', '%(section)s'];
    window.__layoutSeq = window.__layoutSeq || 0;

    const idOf = (el) => {
        if (!el.dataset.layoutId) {
            window.__layoutSeq += 1;
            el.dataset.layoutId = 'n' + window.__layoutSeq;
        }
        return el.dataset.layoutId;
    };
    const isMarker = (el) => MARKERS.some(name => el.classList.contains(name));
    const scrollTop = window.scrollY || document.documentElement.scrollTop || 0;
    const box = (el) => {
        if (!el.isConnected) return {top: null, height: null};
        const rect = el.getBoundingClientRect();
        return {top: rect.top + scrollTop, height: rect.height};
    };
    const evaluated = (el) => el.dataset.paginationEvaluated === 'true';
    const forced = (el) => el.classList.contains('%(force)s');

    const nodes = [];
    const groups = [];

    const visit = (container, parentId, groupId, frontMatter) => {
        let markerBefore = false;
        for (const el of Array.from(container.children)) {
            if (SKIP.has(el.tagName)) continue;
            if (isMarker(el)) {
                markerBefore = true;
                continue;
            }
            const id = idOf(el);
            const geometry = box(el);
            if (el.classList.contains('%(group)s')) {
                const members = Array.from(el.children).filter(child => !SKIP.has(child.tagName) && !isMarker(child));
                groups.push({
                    id: id,
                    top: geometry.top,
                    height: geometry.height,
                    headingId: members[0] ? idOf(members[0]) : null,
                    contentId: members[1] ? idOf(members[1]) : null,
                    breakMarker: markerBefore || forced(el),
                    evaluated: evaluated(el),
                });
                visit(el, id, id, frontMatter);
            } else {
                nodes.push({
                    id: id,
                    tag: el.tagName,
                    classes: Array.from(el.classList),
                    onlyChildTag: el.children.length === 1 ? el.children[0].tagName : null,
                    top: geometry.top,
                    height: geometry.height,
                    parentId: parentId,
                    groupId: groupId,
                    frontMatter: frontMatter || el.classList.contains('table-of-contents'),
                    breakMarker: markerBefore || forced(el),
                    evaluated: evaluated(el),
                });
            }
            markerBefore = false;
        }
    };
    visit(document.body, null, null, false);

    const diagrams = [];
    document.querySelectorAll('.mermaid svg').forEach(svg => {
        let width = 0;
        let height = 0;
        try {
            const bbox = svg.getBBox();
            width = bbox.width;
            height = bbox.height;
        } catch (e) {
            // Detached or not rendered; treated as unknown size
        }
        diagrams.push({id: idOf(svg), kind: 'diagram', width: width, height: height,
                       scaled: svg.dataset.fitScale !== undefined});
    });
    document.querySelectorAll('img').forEach(img => {
        if (img.closest('.table-of-contents')) return;
        const rect = img.getBoundingClientRect();
        diagrams.push({id: idOf(img), kind: 'image', width: rect.width, height: rect.height,
                       scaled: img.dataset.fitScale !== undefined});
    });

    const directives = [];
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_COMMENT);
    while (walker.nextNode()) {
        const comment = walker.currentNode;
        const match = comment.textContent.trim().match(/^scale:\\s*(\\d+)%%?$/i);
        if (!match) continue;
        let next = comment.nextSibling;
        while (next && next.nodeType !== Node.ELEMENT_NODE) {
            if (next.nodeType === Node.TEXT_NODE && next.textContent.trim()) break;
            next = next.nextSibling;
        }
        if (next && next.nodeType === Node.ELEMENT_NODE) {
            directives.push({id: idOf(next), percent: parseInt(match[1], 10)});
        }
    }

    return {nodes: nodes, groups: groups, diagrams: diagrams, directives: directives};
}
""" % {"section": SECTION_BREAK_CLASS, "force": FORCE_BREAK_CLASS, "group": GROUP_CLASS}

REFLOW_JS = """
() => new Promise(resolve => {
    requestAnimationFrame(() => requestAnimationFrame(() => resolve(document.body.offsetHeight)));
})
"""

WRAP_JS = """
([headingId, siblingId]) => {
    const heading = document.querySelector(`[data-layout-id="${headingId}"]`);
    const sibling = document.querySelector(`[data-layout-id="${siblingId}"]`);
    if (!heading || !sibling) return null;
    if (heading.parentElement && heading.parentElement.classList.contains('%(group)s')) return null;
    if (heading.nextElementSibling !== sibling) return null;

    const wrapper = document.createElement('div');
    wrapper.className = '%(group)s';
    window.__layoutSeq = (window.__layoutSeq || 0) + 1;
    wrapper.dataset.layoutId = 'g' + window.__layoutSeq;
    heading.parentNode.insertBefore(wrapper, heading);
    wrapper.appendChild(heading);
    wrapper.appendChild(sibling);
    return wrapper.dataset.layoutId;
}
""" % {"group": GROUP_CLASS}

BREAK_MARKER_JS = """
([targetId, mode, attributes]) => {
    const el = document.querySelector(`[data-layout-id="${targetId}"]`);
    if (!el) return false;
    if (mode === 'class') {
        if (el.classList.contains('%(force)s')) return false;
        el.classList.add('%(force)s');
    } else {
        const previous = el.previousElementSibling;
        if (previous && (previous.classList.contains('%(section)s') || previous.classList.contains('page-break'))) {
            return false;
        }
        const marker = document.createElement('div');
        marker.className = '%(section)s';
        el.parentNode.insertBefore(marker, el);
    }
    for (const [name, value] of Object.entries(attributes || {})) {
        el.setAttribute(name, value);
    }
    return true;
}
""" % {"force": FORCE_BREAK_CLASS, "section": SECTION_BREAK_CLASS}

SET_SCALE_JS = """
([targetId, factor, width, height]) => {
    const el = document.querySelector(`[data-layout-id="${targetId}"]`);
    if (!el || el.dataset.fitScale !== undefined) return false;
    el.dataset.fitScale = factor.toFixed(4);
    if (el.tagName.toLowerCase() === 'svg') {
        el.setAttribute('width', width + 'px');
        el.setAttribute('height', height + 'px');
        el.style.maxWidth = '100%%';
        el.style.height = 'auto';
    } else {
        el.style.width = width + 'px';
        el.style.height = height + 'px';
        el.style.maxHeight = height + 'px';
        const container = el.closest('.image-container') || el.parentElement;
        if (container) container.classList.add('%(large)s');
    }
    return true;
}
""" % {"large": LARGE_IMAGE_CLASS}

ADD_CLASS_JS = """
([targetId, cssClass]) => {
    const el = document.querySelector(`[data-layout-id="${targetId}"]`);
    if (!el || el.classList.contains(cssClass)) return false;
    el.classList.add(cssClass);
    return true;
}
"""

MARK_EVALUATED_JS = """
(targetId) => {
    const el = document.querySelector(`[data-layout-id="${targetId}"]`);
    if (el) el.dataset.paginationEvaluated = 'true';
}
"""

# Shown in place of diagrams that did not render in time, so that pagination
# always measures a real box
DIAGRAM_PLACEHOLDER_SVG = """
<svg width="600" height="300" xmlns="http://www.w3.org/2000/svg">
  <rect width="600" height="300" fill="#fff5f5" stroke="#e53e3e" stroke-width="2" rx="8"/>
  <g transform="translate(300, 100)">
    <circle cx="0" cy="0" r="40" fill="#fed7d7" stroke="#e53e3e" stroke-width="3"/>
    <text x="0" y="15" font-size="48" font-weight="bold" fill="#e53e3e" text-anchor="middle">!</text>
  </g>
  <text x="300" y="180" font-size="20" font-weight="bold" fill="#742a2a" text-anchor="middle"
        font-family="'Noto Sans TC', Arial, sans-serif">Mermaid 圖表渲染失敗</text>
  <text x="300" y="210" font-size="14" fill="#742a2a" text-anchor="middle"
        font-family="'Noto Sans TC', Arial, sans-serif">此圖表因過於複雜或語法錯誤而無法顯示</text>
  <text x="300" y="240" font-size="14" fill="#742a2a" text-anchor="middle"
        font-family="'Noto Sans TC', Arial, sans-serif">請參考原始 Markdown 文件查看圖表定義</text>
</svg>
"""

DIAGRAM_STATUS_JS = """
() => {
    const divs = Array.from(document.querySelectorAll('.mermaid'));
    return divs.map((div, index) => ({
        index: index + 1,
        rendered: div.querySelector('svg') !== null,
        preview: div.textContent.substring(0, 50).trim(),
    }));
}
"""

REPLACE_FAILED_DIAGRAMS_JS = """
(placeholder) => {
    let replaced = 0;
    document.querySelectorAll('.mermaid').forEach(div => {
        if (div.querySelector('svg') !== null) return;
        div.innerHTML = placeholder;
        div.style.border = '2px solid #e53e3e';
        div.style.borderRadius = '8px';
        div.style.padding = '20px';
        div.style.margin = '20px 0';
        div.style.backgroundColor = '#fff5f5';
        replaced += 1;
    });
    return replaced;
}
"""

ALL_DIAGRAMS_RENDERED_JS = """
() => {
    const divs = document.querySelectorAll('.mermaid');
    if (divs.length === 0) return true;
    return Array.from(divs).every(div => div.querySelector('svg') !== null);
}
"""

RERENDER_DIAGRAMS_JS = """
() => {
    const total = document.querySelectorAll('.mermaid').length;
    const rendered = document.querySelectorAll('.mermaid svg').length;
    if (window.mermaid && rendered < total) {
        window.mermaid.init(undefined, document.querySelectorAll('.mermaid'));
    }
    return total;
}
"""


class PlaywrightLayoutDriver(LayoutDriver):
    """``LayoutDriver`` over a Playwright ``Page`` with the document loaded."""

    def __init__(self, page, logger: Optional[ColorLogger] = None):
        self.page = page
        self.logger = logger or ColorLogger()

    async def snapshot(self) -> Dict[str, Any]:
        payload = await self.page.evaluate(SNAPSHOT_JS)
        return payload or {}

    async def reflow(self) -> None:
        await self.page.evaluate(REFLOW_JS)

    async def wrap_with_sibling(self, heading_id: str, sibling_id: str) -> Optional[str]:
        return await self.page.evaluate(WRAP_JS, [heading_id, sibling_id])

    async def insert_break_marker(self, target_id: str, marker: BreakMarker,
                                  attributes: Optional[Dict[str, str]] = None) -> bool:
        return bool(await self.page.evaluate(BREAK_MARKER_JS, [target_id, marker.value, attributes or {}]))

    async def set_scale(self, target_id: str, factor: float, width: float, height: float) -> bool:
        return bool(await self.page.evaluate(SET_SCALE_JS, [target_id, factor, width, height]))

    async def add_class(self, target_id: str, css_class: str) -> bool:
        return bool(await self.page.evaluate(ADD_CLASS_JS, [target_id, css_class]))

    async def mark_evaluated(self, target_id: str) -> None:
        await self.page.evaluate(MARK_EVALUATED_JS, target_id)

    async def wait_for_diagrams(self, timeout_ms: int = 60000, initial_wait_ms: int = 5000,
                                settle_ms: int = 2000) -> int:
        """Wait for Mermaid diagrams to render; replace the ones that never do.

        Returns the number of diagrams replaced by the placeholder.
        """
        total = await self.page.evaluate("() => document.querySelectorAll('.mermaid').length")
        if not total:
            return 0
        self.logger.info(f"Found {total} Mermaid diagram(s) to render...")
        try:
            await self.page.wait_for_function("() => typeof window.mermaid !== 'undefined'", timeout=10000)
        except PlaywrightTimeoutError:
            self.logger.warning("Mermaid library not loaded within 10 seconds")

        # Give startOnLoad a chance before forcing a re-render of the stragglers
        try:
            await self.page.wait_for_function(ALL_DIAGRAMS_RENDERED_JS, timeout=initial_wait_ms)
        except PlaywrightTimeoutError:
            await self.page.evaluate(RERENDER_DIAGRAMS_JS)
            try:
                await self.page.wait_for_function(ALL_DIAGRAMS_RENDERED_JS, timeout=timeout_ms)
            except PlaywrightTimeoutError:
                self.logger.warning(f"Not all Mermaid diagrams rendered within {timeout_ms // 1000} seconds")

        # Final wait to ensure complete rendering
        await self.page.wait_for_timeout(settle_ms)

        status = await self.page.evaluate(DIAGRAM_STATUS_JS)
        rendered = sum(1 for entry in status if entry["rendered"])
        self.logger.info(f"Rendered {rendered}/{len(status)} Mermaid diagrams")

        failed = [entry for entry in status if not entry["rendered"]]
        if not failed:
            return 0
        for entry in failed:
            self.logger.warning(f"Failed to render diagram #{entry['index']}: {entry['preview']}...")
        replaced = await self.page.evaluate(REPLACE_FAILED_DIAGRAMS_JS, DIAGRAM_PLACEHOLDER_SVG)
        self.logger.info(f"Replaced {replaced} failed diagram(s) with error placeholder")
        return replaced
