"""``DomView`` over a saved HTML page.

A snapshot has no layout engine. Geometry comes from an optional layout map
(element id -> Rect) captured alongside the page; visibility falls back to the
``hidden``/``aria-hidden`` attributes and inline ``display``/``visibility``
styles of the element and its ancestors.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from lxml import etree
from lxml import html as lxml_html

from diffpin_core.dom.ports import ElementRef, Rect

logger = logging.getLogger(__name__)

_HIDDEN_STYLE_RE = re.compile(r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE)


def load_layout(path: str | Path) -> dict[str, Rect]:
    """Read a YAML (or JSON) mapping of element id -> {top, left, width, height}."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Layout file {path} must contain a mapping of element ids to rects.")
    layout = {}
    for element_id, box in data.items():
        box = box or {}
        layout[str(element_id)] = Rect(
            top=float(box.get("top", 0)),
            left=float(box.get("left", 0)),
            width=float(box.get("width", 0)),
            height=float(box.get("height", 0)),
        )
    return layout


class HtmlSnapshot:
    def __init__(self, markup: str, layout: dict[str, Rect] | None = None):
        if not markup or not markup.strip():
            raise ValueError("Snapshot HTML is empty.")
        self._root = lxml_html.document_fromstring(markup)
        self._layout = layout or {}

    @classmethod
    def from_file(cls, path: str | Path, layout_path: str | Path | None = None) -> HtmlSnapshot:
        markup = Path(path).read_text(encoding="utf-8")
        layout = load_layout(layout_path) if layout_path else None
        logger.debug("Loaded snapshot %s (%d layout entries)", path, len(layout or {}))
        return cls(markup, layout)

    def query(self, xpath: str, scope: ElementRef | None = None) -> list[ElementRef]:
        context = scope if scope is not None else self._root
        result = context.xpath(xpath)
        if not isinstance(result, list):
            return []
        # Skip comments, processing instructions and attribute/text results.
        return [node for node in result if isinstance(node, etree._Element) and isinstance(node.tag, str)]

    def text(self, ref: ElementRef) -> str:
        return ref.text_content() or ""

    def attribute(self, ref: ElementRef, name: str) -> str | None:
        return ref.get(name)

    def tag_name(self, ref: ElementRef) -> str:
        return str(ref.tag).lower()

    def rect(self, ref: ElementRef) -> Rect:
        return self._layout.get(ref.get("id") or "", Rect())

    def visible(self, ref: ElementRef) -> bool:
        node = ref
        while node is not None:
            if node.get("hidden") is not None or (node.get("aria-hidden") or "").lower() == "true":
                return False
            if _HIDDEN_STYLE_RE.search(node.get("style") or ""):
                return False
            node = node.getparent()

        box = self._layout.get(ref.get("id") or "")
        if box is not None and (box.width <= 0 or box.height <= 0):
            return False
        return True
