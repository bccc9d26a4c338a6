"""Error taxonomy shared by every diffpin component.

Library functions raise these; the CLI is the only layer that turns them into
user-facing messages.
"""

from __future__ import annotations

# Reason codes carried by NoRenderedTarget.
MISSING_PATH = "missingPath"
FILE_ROOT_NOT_FOUND = "fileRootNotFound"
OUTDATED_NO_CURRENT_LINE_IN_RICH = "outdatedNoCurrentLineInRich"
CURRENT_LINE_NOT_FOUND = "currentLineNotFound"
OUTDATED_NO_CURRENT_LINE = "outdatedNoCurrentLine"
NO_LINE_INFO = "noLineInfo"

_REASON_MESSAGES = {
    MISSING_PATH: "Comment does not include a file path.",
    FILE_ROOT_NOT_FOUND: "The file is not loaded in the rendered page.",
    OUTDATED_NO_CURRENT_LINE_IN_RICH: "Outdated comment cannot be placed in the rich diff view.",
    CURRENT_LINE_NOT_FOUND: "The commented line is not present in the rendered page.",
    OUTDATED_NO_CURRENT_LINE: "Comment only refers to an outdated diff position.",
    NO_LINE_INFO: "Comment carries no line information.",
}


class DiffpinError(Exception):
    """Base class for all diffpin failures."""


class TransportError(DiffpinError):
    """An HTTP or GraphQL request failed."""

    def __init__(self, status: int | None, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class ShapeError(DiffpinError):
    """A response lacked a field or structure the operation depends on."""


class NoAnchorFound(DiffpinError):
    """Ranking produced no candidate above the threshold in any changed file."""

    suggestion = "Try selecting a shorter unique segment."

    def __init__(self, message: str = "Could not map selection to changed content."):
        super().__init__(f"{message} {self.suggestion}")


class NoRenderedTarget(DiffpinError):
    """Every projection strategy failed for a comment."""

    def __init__(self, reason: str, comment_id: int | None = None):
        detail = _REASON_MESSAGES.get(reason, "Could not locate rendered target.")
        prefix = f"Comment {comment_id}: " if comment_id is not None else ""
        super().__init__(f"{prefix}{detail} ({reason})")
        self.reason = reason
        self.comment_id = comment_id
