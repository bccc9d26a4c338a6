"""Re-locate review comments inside a rendered pull request page.

Strategies are tried in a fixed order and the first success wins:

1. the file's root element, found by path, sidebar tree anchor or loaded diff id;
2. the element carrying the comment's current line number;
3. the visible rendered block whose text best matches the comment's anchor text.

Every attempt is recorded in a ``TargetDiagnosis`` so failures can be
explained instead of silently dropped.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import unquote

from diffpin_core.anchor.text import normalize_render_text, score_render_anchor
from diffpin_core.dom.ports import DomView, ElementRef
from diffpin_core.errors import (
    CURRENT_LINE_NOT_FOUND,
    FILE_ROOT_NOT_FOUND,
    MISSING_PATH,
    NO_LINE_INFO,
    OUTDATED_NO_CURRENT_LINE,
    OUTDATED_NO_CURRENT_LINE_IN_RICH,
    NoRenderedTarget,
)
from diffpin_core.models import PullScope, ReviewComment

logger = logging.getLogger(__name__)

LINE_MATCH_CURRENT = "lineMatchCurrent"
ANCHOR_MATCH = "anchorMatch"
RENDERABLE_REASONS = frozenset({LINE_MATCH_CURRENT, ANCHOR_MATCH})

_DIFF_ANCHOR_RE = re.compile(r"^diff-[0-9a-f]{16,}$", re.IGNORECASE)


def _cls(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


def _literal(value: str) -> str:
    """Quote a string for use inside an XPath expression."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{part}'" for part in parts) + ")"


_FILE_ROOT_CONDITION = " or ".join(
    ["@data-file-path", "@data-path", _cls("file"), _cls("js-file"), _cls("js-file-content"), _cls("blob-wrapper")]
)
_CLOSEST_ROOT = f"ancestor-or-self::*[starts-with(@id, 'diff-') or {_FILE_ROOT_CONDITION}][1]"

_MARKDOWN_BLOCKS = ("p", "li", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "td", "pre")
_RENDERED_BLOCKS = " | ".join(
    [f".//{tag}[ancestor::*[{_cls('markdown-body')}]]" for tag in _MARKDOWN_BLOCKS]
    + [f".//*[{_cls('rich-diff-level-zero')}]", f".//*[{_cls('rich-diff-level-one')}]"]
)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def normalize_path_key(path: str | None) -> str:
    if not path:
        return ""
    key = unquote(str(path).strip())
    key = key.lstrip("/")
    key = re.sub(r"^[ab]/", "", key)
    key = key.replace("\\", "/")
    return re.sub(r"/+", "/", key)


def _base_name(path: str) -> str:
    return path.rsplit("/", 1)[-1] if path else ""


def _first(dom: DomView, xpath: str, scope: ElementRef | None = None) -> ElementRef | None:
    matches = dom.query(xpath, scope)
    return matches[0] if matches else None


def extract_file_path(dom: DomView, root: ElementRef) -> str:
    """Read the file path a diff container belongs to, from its own or nested markup."""
    for name in ("data-file-path", "data-path"):
        value = dom.attribute(root, name)
        if value:
            return value

    nested = _first(dom, ".//*[@data-path]", root)
    if nested is not None and dom.attribute(nested, "data-path"):
        return dom.attribute(nested, "data-path")

    titled = _first(dom, f".//*[{_cls('file-info')}]//a[@title] | .//a[@title and @data-pjax]", root)
    if titled is not None and dom.attribute(titled, "title"):
        return dom.attribute(titled, "title")

    primary = _first(
        dom, f".//*[{_cls('file-info')}]//a[{_cls('Link--primary')} or {_cls('Link--secondary')}]", root
    )
    if primary is not None:
        text = dom.text(primary).strip()
        if "/" in text:
            return text

    crumb = _first(dom, f".//*[{_cls('file-header')}]//*[@title] | .//*[{_cls('js-path-segment')}]", root)
    if crumb is not None:
        text = (dom.attribute(crumb, "title") or dom.text(crumb)).strip()
        if "/" in text:
            return text

    return dom.attribute(root, "data-tagsearch-path") or ""


def find_tree_anchor_id(dom: DomView, path: str) -> str:
    """Find the ``diff-<hash>`` anchor the page's file tree or headers link to for a path."""
    target = normalize_path_key(path)
    if not target:
        return ""

    for node in dom.query("//*[@data-filterable-item-text]"):
        if normalize_path_key(dom.text(node).strip()) != target:
            continue
        row = _first(dom, f"ancestor-or-self::*[self::li or @role='treeitem' or {_cls('ActionList-item')}][1]", node)
        if row is None:
            continue
        link = _first(dom, ".//a[starts-with(@href, '#diff-')]", row)
        if link is None:
            continue
        href = (dom.attribute(link, "href") or "").strip()
        if href.startswith("#"):
            return href[1:]

    basename_fallback = ""
    for link in dom.query("//a[starts-with(@href, '#diff-') and @title]"):
        anchor_id = (dom.attribute(link, "href") or "").strip()[1:]
        if not _DIFF_ANCHOR_RE.match(anchor_id):
            continue
        title_path = normalize_path_key(dom.attribute(link, "title"))
        if not title_path:
            continue
        if title_path == target:
            return anchor_id
        if not basename_fallback and _base_name(title_path) == _base_name(target):
            basename_fallback = anchor_id
    if basename_fallback:
        return basename_fallback

    text_fallback = ""
    for link in dom.query("//a[starts-with(@href, '#diff-')]"):
        anchor_id = (dom.attribute(link, "href") or "").strip()[1:]
        if not _DIFF_ANCHOR_RE.match(anchor_id):
            continue
        text = normalize_path_key(dom.text(link).strip())
        if not text:
            continue
        if text == target:
            return anchor_id
        if not text_fallback and _base_name(text) == _base_name(target):
            text_fallback = anchor_id
    return text_fallback


def is_diff_anchor_loaded(dom: DomView, anchor_id: str) -> bool:
    if not anchor_id:
        return False
    literal = _literal(anchor_id)
    return _first(dom, f"//*[@id={literal} or @data-diff-anchor={literal}]") is not None


def find_file_root(dom: DomView, path: str) -> ElementRef | None:
    target = normalize_path_key(path)

    for value in dict.fromkeys([path, target]):
        if value:
            direct = _first(dom, f"//*[@data-file-path={_literal(value)}]")
            if direct is not None:
                return direct

    suffix_match = None
    basename_match = None
    target_base = _base_name(target)
    for candidate in dom.query(f"//*[{_FILE_ROOT_CONDITION}]"):
        candidate_path = normalize_path_key(extract_file_path(dom, candidate))
        if not candidate_path:
            continue
        if candidate_path == target:
            return candidate
        if suffix_match is None and (
            candidate_path.endswith(f"/{target}") or target.endswith(f"/{candidate_path}")
        ):
            suffix_match = candidate
        if basename_match is None and target_base and _base_name(candidate_path) == target_base:
            basename_match = candidate

    if suffix_match is not None:
        return suffix_match
    if basename_match is not None:
        return basename_match

    anchor_id = find_tree_anchor_id(dom, target)
    if not anchor_id:
        return None
    literal = _literal(anchor_id)

    by_id = _first(dom, f"//*[@id={literal}]")
    if by_id is not None:
        return by_id

    table = _first(dom, f"//*[@data-diff-anchor={literal}]")
    if table is not None:
        container = _first(dom, _CLOSEST_ROOT, table)
        return container if container is not None else table

    probe = _first(dom, f"//*[starts-with(@id, {_literal(anchor_id + 'R')})]")
    if probe is not None:
        return _first(dom, _CLOSEST_ROOT, probe)
    return None


# ---------------------------------------------------------------------------
# Lines and anchors
# ---------------------------------------------------------------------------


def _id_ends_with(suffix: str) -> str:
    literal = _literal(suffix)
    return f".//*[substring(@id, string-length(@id) - string-length({literal}) + 1) = {literal}]"


def find_line_element(dom: DomView, root: ElementRef, line: int) -> ElementRef | None:
    number = int(line or 0)
    if number <= 0 or root is None:
        return None
    selectors = [
        f".//*[@data-line-number='{number}']",
        f".//td[@data-line-number='{number}']",
        f".//tr[@data-line-number='{number}']",
        _id_ends_with(f"R{number}"),
        _id_ends_with(f"L{number}"),
        f".//*[@data-source-line='{number}']",
    ]
    for selector in selectors:
        match = _first(dom, selector, root)
        if match is not None:
            return match
    return None


def find_rendered_anchor(
    dom: DomView, root: ElementRef, anchor_text: str, min_score: float = 0.24
) -> ElementRef | None:
    """Return the visible rendered block that best matches ``anchor_text``, if good enough."""
    anchor = normalize_render_text(anchor_text)
    if not anchor:
        return None

    best = None
    best_score = 0.0
    for candidate in dom.query(_RENDERED_BLOCKS, root):
        if not dom.visible(candidate):
            continue
        text = normalize_render_text(dom.text(candidate))
        if not text:
            continue
        score = score_render_anchor(anchor, text)
        if score > best_score:
            best, best_score = candidate, score
            if score >= 0.99:
                break

    if best_score < min_score:
        return None
    return best


def is_rich_diff_mode(dom: DomView) -> bool:
    """True when the page shows rendered prose (no line gutters) instead of source diffs."""
    if _first(dom, f"//*[{_cls('js-rendered')} and ({_cls('selected')} or @aria-current='true')]") is not None:
        return True
    rich = (
        f"//*[@id='files']//*[{_cls('rich-diff-level-zero')} or {_cls('rich-diff-level-one')} "
        f"or {_cls('markdown-body')} or self::markdown-accessiblity-table]"
    )
    return _first(dom, rich) is not None


# ---------------------------------------------------------------------------
# Diagnosis
# ---------------------------------------------------------------------------


def describe_element(dom: DomView, ref: ElementRef | None) -> str:
    if ref is None:
        return ""
    parts = [dom.tag_name(ref)]
    element_id = dom.attribute(ref, "id")
    if element_id:
        parts.append(f"#{element_id[:120]}")
    classes = (dom.attribute(ref, "class") or "").split()
    if classes:
        parts.append("." + ".".join(classes[:4]))
    attrs = [
        f"{name}={dom.attribute(ref, name)}"
        for name in ("data-file-path", "data-path", "data-tagsearch-path", "data-line-number", "data-diff-anchor")
        if dom.attribute(ref, name)
    ]
    if attrs:
        parts.append(f"[{' '.join(attrs)}]")
    return "".join(parts)


@dataclass
class TargetDiagnosis:
    comment_id: int | None
    path: str
    line: int | None = None
    start_line: int | None = None
    original_line: int | None = None
    original_start_line: int | None = None
    line_candidate: int = 0
    tree_anchor_id: str = ""
    tree_anchor_loaded: bool = False
    file_root: str = ""
    line_target: str = ""
    anchor_target: str = ""
    final_target: str = ""
    reason: str = "unknown"
    preview: str = ""
    target: ElementRef | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.comment_id,
            "path": self.path,
            "line": self.line,
            "start_line": self.start_line,
            "original_line": self.original_line,
            "original_start_line": self.original_start_line,
            "chosen_line": self.line_candidate,
            "reason": self.reason,
            "tree_anchor_id": self.tree_anchor_id,
            "tree_anchor_loaded": self.tree_anchor_loaded,
            "file_root": self.file_root,
            "line_target": self.line_target,
            "anchor_target": self.anchor_target,
            "final_target": self.final_target,
            "preview": self.preview,
        }


def _preview(text: str, limit: int) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else f"{text[: limit - 1]}..."


def diagnose_target(
    dom: DomView,
    comment: ReviewComment,
    *,
    rich: bool | None = None,
    min_score: float = 0.24,
) -> TargetDiagnosis:
    result = TargetDiagnosis(
        comment_id=comment.id,
        path=normalize_path_key(comment.path),
        line=comment.line,
        start_line=comment.start_line,
        original_line=comment.original_line,
        original_start_line=comment.original_start_line,
        preview=_preview(comment.body, 140),
    )
    if not comment.path:
        result.reason = MISSING_PATH
        return result

    current_line = comment.current_line
    result.line_candidate = current_line
    if rich is None:
        rich = is_rich_diff_mode(dom)
    if rich and current_line <= 0:
        result.reason = OUTDATED_NO_CURRENT_LINE_IN_RICH
        return result

    result.tree_anchor_id = find_tree_anchor_id(dom, result.path)
    result.tree_anchor_loaded = is_diff_anchor_loaded(dom, result.tree_anchor_id)

    root = find_file_root(dom, comment.path)
    if root is None:
        result.reason = FILE_ROOT_NOT_FOUND
        return result
    result.file_root = describe_element(dom, root)

    if current_line > 0:
        line_target = find_line_element(dom, root, current_line)
        if line_target is not None:
            result.line_target = result.final_target = describe_element(dom, line_target)
            result.reason = LINE_MATCH_CURRENT
            result.target = line_target
            return result

    anchor_target = find_rendered_anchor(dom, root, comment.anchor_text, min_score)
    if anchor_target is not None:
        result.anchor_target = result.final_target = describe_element(dom, anchor_target)
        result.reason = ANCHOR_MATCH
        result.target = anchor_target
        return result

    if current_line > 0:
        result.reason = CURRENT_LINE_NOT_FOUND
    elif comment.original_line_hint > 0:
        result.reason = OUTDATED_NO_CURRENT_LINE
    else:
        result.reason = NO_LINE_INFO
    return result


def resolve_target(
    dom: DomView, comment: ReviewComment, *, rich: bool | None = None, min_score: float = 0.24
) -> ElementRef | None:
    return diagnose_target(dom, comment, rich=rich, min_score=min_score).target


def locate_comment(
    dom: DomView, comment: ReviewComment, *, rich: bool | None = None, min_score: float = 0.24
) -> ElementRef:
    """Like resolve_target, but raise NoRenderedTarget with the failure reason."""
    diagnosis = diagnose_target(dom, comment, rich=rich, min_score=min_score)
    if diagnosis.target is None:
        raise NoRenderedTarget(diagnosis.reason, comment.id)
    return diagnosis.target


# ---------------------------------------------------------------------------
# Alignment
# ---------------------------------------------------------------------------


@dataclass
class AlignedItem:
    comment: ReviewComment
    diagnosis: TargetDiagnosis
    top: float = math.inf

    @property
    def target(self) -> ElementRef | None:
        return self.diagnosis.target

    @property
    def renderable(self) -> bool:
        return self.target is not None and self.diagnosis.reason in RENDERABLE_REASONS


def align_comments(
    dom: DomView,
    comments: list[ReviewComment],
    *,
    rich: bool | None = None,
    min_score: float = 0.24,
) -> list[AlignedItem]:
    """Diagnose every comment and order them top to bottom as they appear on the page.

    Unmapped comments sort last, by path, line and id.
    """
    if rich is None:
        rich = is_rich_diff_mode(dom)

    items = []
    for comment in comments:
        diagnosis = diagnose_target(dom, comment, rich=rich, min_score=min_score)
        top = dom.rect(diagnosis.target).top if diagnosis.target is not None else math.inf
        items.append(AlignedItem(comment=comment, diagnosis=diagnosis, top=top))

    def sort_key(item: AlignedItem):
        finite = math.isfinite(item.top)
        return (
            0 if finite else 1,
            item.top if finite else 0.0,
            item.comment.path,
            item.comment.current_line,
            item.comment.id,
        )

    items.sort(key=sort_key)
    mapped = sum(1 for item in items if item.renderable)
    logger.debug("Aligned %d of %d comment(s)", mapped, len(items))
    return items


def anchor_line_ranges(items: list[AlignedItem]) -> dict[ElementRef, tuple[int, int]]:
    """Line-hint span of the anchor-matched comments sharing each rendered element."""
    ranges: dict[ElementRef, tuple[int, int]] = {}
    for item in items:
        if item.target is None or item.diagnosis.reason != ANCHOR_MATCH:
            continue
        hint = item.comment.line_hint
        if hint <= 0:
            continue
        low, high = ranges.get(item.target, (hint, hint))
        ranges[item.target] = (min(low, hint), max(high, hint))
    return ranges


def aligned_top(dom: DomView, item: AlignedItem, ranges: dict[ElementRef, tuple[int, int]]) -> float:
    """Vertical position for a comment card.

    Several comments anchored to one rendered block are spread over the
    block's height in proportion to their line numbers.
    """
    if item.target is None:
        return math.inf
    rect = dom.rect(item.target)
    if item.diagnosis.reason != ANCHOR_MATCH:
        return rect.top

    hint = item.comment.line_hint
    low, high = ranges.get(item.target, (0, 0))
    if high <= low or hint <= 0:
        return rect.top
    ratio = min(1.0, max(0.0, (hint - low) / (high - low)))
    return rect.top + ratio * max(0.0, rect.height - 16)


# ---------------------------------------------------------------------------
# Debug report
# ---------------------------------------------------------------------------


def collect_loaded_file_paths(dom: DomView) -> list[str]:
    values: set[str] = set()
    for node in dom.query("//*[@data-file-path or @data-path or @data-tagsearch-path]"):
        for name in ("data-file-path", "data-path", "data-tagsearch-path"):
            key = normalize_path_key(dom.attribute(node, name))
            if key:
                values.add(key)
    for link in dom.query("//a[starts-with(@href, '#diff-') and @title]"):
        key = normalize_path_key(dom.attribute(link, "title"))
        if key:
            values.add(key)
    for node in dom.query("//*[@data-filterable-item-text]"):
        key = normalize_path_key(dom.text(node).strip())
        if key:
            values.add(key)
    return sorted(values)


def collect_loaded_diff_anchors(dom: DomView) -> list[str]:
    values: set[str] = set()
    for node in dom.query("//*[starts-with(@id, 'diff-')]"):
        value = (dom.attribute(node, "id") or "").strip()
        if _DIFF_ANCHOR_RE.match(value):
            values.add(value)
    for node in dom.query("//*[@data-diff-anchor]"):
        value = (dom.attribute(node, "data-diff-anchor") or "").strip()
        if _DIFF_ANCHOR_RE.match(value):
            values.add(value)
    return sorted(values)


def build_debug_report(
    dom: DomView,
    comments: list[ReviewComment],
    aligned: list[AlignedItem],
    *,
    scope: PullScope | None = None,
    rich: bool | None = None,
) -> dict:
    """Summarize why each comment did or did not map, for bug reports."""
    diagnostics = [item.diagnosis for item in aligned]
    loaded_anchors = collect_loaded_diff_anchors(dom)

    resolution = {}
    for path in sorted({normalize_path_key(c.path) for c in comments if c.path}):
        anchor_id = find_tree_anchor_id(dom, path)
        resolution[path] = {
            "tree_anchor_id": anchor_id,
            "tree_anchor_loaded": bool(anchor_id and anchor_id in loaded_anchors),
            "file_root_found": find_file_root(dom, path) is not None,
        }

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "rich_diff_mode": is_rich_diff_mode(dom) if rich is None else rich,
        "pr": {"owner": scope.owner, "repo": scope.repo, "number": scope.number} if scope else None,
        "summary": {
            "total_comments": len(comments),
            "mapped_comments": sum(1 for d in diagnostics if d.target is not None),
            "with_current_line": sum(1 for c in comments if (c.line or 0) > 0),
            "with_only_original_line": sum(1 for c in comments if not c.line and (c.original_line or 0) > 0),
        },
        "loaded_dom": {
            "loaded_paths": collect_loaded_file_paths(dom),
            "loaded_diff_anchors": loaded_anchors,
        },
        "comment_path_resolution": resolution,
        "reason_counts": dict(Counter(d.reason for d in diagnostics)),
        "comments": [d.to_dict() for d in diagnostics],
    }
