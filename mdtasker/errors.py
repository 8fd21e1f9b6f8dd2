"""Error types raised by the md-tasker document engine.

Structural mutation errors leave both documents untouched; callers are
expected to re-parse and retry, or report the failure to the user.
Annotation problems are never raised out of parsing; they are recorded on
the parsed task instead.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MdTaskerError(Exception):
    """Base class for all md-tasker errors."""


class MutationError(MdTaskerError, ValueError):
    """A structural edit was rejected; no document was changed."""

    kind = "MutationError"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "error_type": self.kind,
            "message": str(self),
            "context": dict(self.context),
        }


class RangeInvalid(MutationError):
    """Coordinates are out of bounds or inverted."""

    kind = "RangeInvalid"


class SectionOverlap(MutationError):
    """The destination line falls inside the block being moved."""

    kind = "SectionOverlap"


class SectionNotFound(MutationError):
    """Coordinates no longer match a section boundary."""

    kind = "SectionNotFound"


class TaskNotFound(MutationError):
    """Coordinates no longer match a task block."""

    kind = "TaskNotFound"


class StaleRevision(MutationError):
    """The caller computed its coordinates against an older revision."""

    kind = "StaleRevision"


class AnnotationParseError(MdTaskerError):
    """A date/cost/alias-like token could not be parsed.

    Only used as a record; the token stays in the task text.
    """

    def __init__(self, token: str, reason: str, line_index: Optional[int] = None):
        super().__init__(f"{reason}: {token!r}")
        self.token = token
        self.reason = reason
        self.line_index = line_index


class InvalidTransition(MdTaskerError):
    """A section editor action is not allowed in its current state."""
