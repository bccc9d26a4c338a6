"""Right-side line indexing of unified diff patches."""

from __future__ import annotations

import re
from dataclasses import dataclass

from diffpin_core.anchor.text import normalize
from diffpin_core.models import PatchLine

_HUNK_HEADER_RE = re.compile(r"^@@\s+-\d+(?:,\d+)?\s+\+(\d+)(?:,(\d+))?\s+@@")


@dataclass(frozen=True)
class HunkHeader:
    right_start: int
    right_count: int


def parse_hunk_header(line: str) -> HunkHeader | None:
    match = _HUNK_HEADER_RE.match(line)
    if not match:
        return None
    return HunkHeader(right_start=int(match.group(1)), right_count=int(match.group(2) or "1"))


def parse_right_lines(patch_text: str) -> list[PatchLine]:
    """
    Return the new-file lines visible in a patch, numbered by their right-side line.

    Removed lines belong only to the old file and never advance the counter.
    The counter restarts at every hunk header; rows after an unparseable header
    are ignored until the next valid one.
    """
    lines: list[PatchLine] = []
    right = 0
    in_hunk = False

    for row in (patch_text or "").split("\n"):
        if row.startswith("@@"):
            header = parse_hunk_header(row)
            if header is None:
                in_hunk = False
                continue
            right = header.right_start
            in_hunk = True
            continue

        if not in_hunk or not row:
            continue

        if row.startswith("+") or row.startswith(" "):
            text = row[1:]
            lines.append(PatchLine(line=right, raw=text, rendered=normalize(text), op=row[0]))
            right += 1
        # "-" rows and "\ No newline at end of file" markers have no right-side line.

    return lines


def full_content_lines(content: str) -> list[PatchLine]:
    """Index a whole file body as added lines, for new files whose patch was omitted."""
    rows = (content or "").split("\n")
    if rows and rows[-1] == "":
        rows.pop()
    return [
        PatchLine(line=number, raw=text.rstrip("\r"), rendered=normalize(text), op="+")
        for number, text in enumerate(rows, 1)
    ]


def line_text_map(lines: list[PatchLine]) -> dict[int, str]:
    return {entry.line: entry.raw for entry in lines}


index_patch = parse_right_lines
