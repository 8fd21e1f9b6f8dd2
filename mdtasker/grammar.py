"""Line grammar for md-tasker documents.

Every line of a document falls into exactly one of five kinds: a heading,
a task line, a task-update line, an archive marker or plain text. The
classifier below is the only place those line shapes are defined; the
parser and the mutation engine both consume its tagged results.

Task text additionally carries inline annotations::

    - [ ] Wireframes +2024-07-01 !2024-08-10 (@alice) ($1500)
    - [x] Design system (@alice) ($2500) ~2024-07-20
      - 2024-07-26: Initial sketches completed. (@alice)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, List, Optional, Tuple, Union

from .errors import AnnotationParseError

if TYPE_CHECKING:
    from .models import Task

logger = logging.getLogger("mdtasker.grammar")


class LineKind(str, Enum):
    HEADING = "heading"
    TASK = "task"
    UPDATE = "update"
    ARCHIVE_MARKER = "archive_marker"
    PLAIN = "plain"


MARK_OPEN = " "
MARK_DONE = "x"
MARK_PINNED = "!"

_DATE = r"\d{4}-\d{2}-\d{2}"

HEADING_PATTERN = re.compile(r"^(?P<hashes>#{1,3}) (?P<text>.*)$")
TASK_PATTERN = re.compile(r"^- \[(?P<mark>[ x!])\] (?P<rest>.*)$")
UPDATE_PATTERN = re.compile(rf"^  - (?P<date>{_DATE}): (?P<text>.*)$")
ARCHIVE_MARKER_PATTERN = re.compile(r"^_Archived on: (?P<text>.*)_$")

ASSIGNEE_PATTERN = re.compile(r"\s\(@(?P<value>[a-zA-Z0-9_]+)\)")
COMPLETION_DATE_PATTERN = re.compile(rf"\s~(?P<value>{_DATE})(?!\S)")

# Trailing annotations, peeled off the end of the task text in any order.
_TRAILING_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("completion_date", re.compile(rf"\s~(?P<value>{_DATE})$")),
    ("cost", re.compile(r"\s\(\$(?P<value>\d+(?:\.\d{1,2})?)\)$")),
    ("assignee_alias", re.compile(r"\s\(@(?P<value>[a-zA-Z0-9_]+)\)$")),
    ("creation_date", re.compile(rf"\s\+(?P<value>{_DATE})$")),
    ("due_date", re.compile(rf"\s!(?P<value>{_DATE})$")),
)

# Annotations that are also recognised anywhere in the text.
_INLINE_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("assignee_alias", ASSIGNEE_PATTERN),
    ("creation_date", re.compile(rf"\s\+(?P<value>{_DATE})(?!\S)")),
    ("due_date", re.compile(rf"\s!(?P<value>{_DATE})(?!\S)")),
)


# ---------------------------------------------------------------------------
# Line classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeadingLine:
    level: int
    text: str
    kind: ClassVar[LineKind] = LineKind.HEADING


@dataclass(frozen=True, slots=True)
class TaskLine:
    mark: str
    rest: str
    kind: ClassVar[LineKind] = LineKind.TASK

    @property
    def completed(self) -> bool:
        return self.mark == MARK_DONE

    @property
    def pinned(self) -> bool:
        return self.mark == MARK_PINNED


@dataclass(frozen=True, slots=True)
class UpdateLine:
    date: str
    text: str
    kind: ClassVar[LineKind] = LineKind.UPDATE


@dataclass(frozen=True, slots=True)
class ArchiveMarkerLine:
    text: str
    kind: ClassVar[LineKind] = LineKind.ARCHIVE_MARKER


@dataclass(frozen=True, slots=True)
class PlainLine:
    text: str
    kind: ClassVar[LineKind] = LineKind.PLAIN

    @property
    def is_blank(self) -> bool:
        return self.text.strip() == ""


ClassifiedLine = Union[HeadingLine, TaskLine, UpdateLine, ArchiveMarkerLine, PlainLine]


def classify_line(line: str) -> ClassifiedLine:
    """Classify a single line of document text."""
    match = HEADING_PATTERN.match(line)
    if match:
        return HeadingLine(level=len(match.group("hashes")), text=match.group("text").strip())
    match = TASK_PATTERN.match(line)
    if match:
        return TaskLine(mark=match.group("mark"), rest=match.group("rest"))
    match = UPDATE_PATTERN.match(line)
    if match:
        return UpdateLine(date=match.group("date"), text=match.group("text"))
    match = ARCHIVE_MARKER_PATTERN.match(line)
    if match:
        return ArchiveMarkerLine(text=match.group("text"))
    return PlainLine(text=line)


def is_blank(line: str) -> bool:
    return line.strip() == ""


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Annotations:
    """Display text plus the structured fields stripped out of it."""

    text: str
    assignee_alias: Optional[str] = None
    creation_date: Optional[str] = None
    completion_date: Optional[str] = None
    due_date: Optional[str] = None
    cost: Optional[float] = None
    issues: List[AnnotationParseError] = field(default_factory=list)


def is_valid_date(value: str) -> bool:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def parse_annotations(raw: str, line_index: Optional[int] = None) -> Annotations:
    """Strip inline annotations out of raw task text.

    Trailing annotations are peeled repeatedly so they may appear in any
    order; assignee, creation and due dates are then also searched anywhere
    in what remains. Malformed dates stay in the text and are reported as
    issues.
    """
    text = raw.strip()
    found = {}
    issues: List[AnnotationParseError] = []
    rejected = set()

    progress = True
    while progress:
        progress = False
        for name, pattern in _TRAILING_PATTERNS:
            if name in found:
                continue
            match = pattern.search(text)
            if not match:
                continue
            value = match.group("value")
            if name.endswith("_date") and not is_valid_date(value):
                if match.group(0) not in rejected:
                    rejected.add(match.group(0))
                    issues.append(AnnotationParseError(match.group(0).strip(), f"invalid {name}", line_index))
                continue
            found[name] = value
            text = text[: match.start()].rstrip()
            progress = True
            break

    for name, pattern in _INLINE_PATTERNS:
        if name in found:
            continue
        for match in pattern.finditer(text):
            value = match.group("value")
            if name.endswith("_date") and not is_valid_date(value):
                if match.group(0) not in rejected:
                    rejected.add(match.group(0))
                    issues.append(AnnotationParseError(match.group(0).strip(), f"invalid {name}", line_index))
                continue
            found[name] = value
            text = (text[: match.start()] + text[match.end():]).strip()
            break

    for issue in issues:
        logger.debug(f"Annotation left as text at line {line_index}: {issue}")

    cost = found.get("cost")
    return Annotations(
        text=text,
        assignee_alias=found.get("assignee_alias"),
        creation_date=found.get("creation_date"),
        completion_date=found.get("completion_date"),
        due_date=found.get("due_date"),
        cost=float(cost) if cost is not None else None,
        issues=issues,
    )


def parse_update_text(raw: str) -> Tuple[str, Optional[str]]:
    """Split update text into display text and optional assignee alias."""
    text = raw.strip()
    match = ASSIGNEE_PATTERN.search(text)
    if not match:
        return text, None
    return (text[: match.start()] + text[match.end():]).strip(), match.group("value")


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_cost(cost: float) -> str:
    return f"{cost:.2f}".rstrip("0").rstrip(".")


def format_task_line(
    text: str,
    *,
    completed: bool = False,
    pinned: bool = False,
    creation_date: Optional[str] = None,
    due_date: Optional[str] = None,
    assignee_alias: Optional[str] = None,
    cost: Optional[float] = None,
    completion_date: Optional[str] = None,
) -> str:
    """Render a task line in the canonical annotation order."""
    mark = MARK_DONE if completed else MARK_PINNED if pinned else MARK_OPEN
    parts = [f"- [{mark}] {text.strip()}"]
    if creation_date:
        parts.append(f"+{creation_date}")
    if due_date:
        parts.append(f"!{due_date}")
    if assignee_alias:
        parts.append(f"(@{assignee_alias})")
    if cost is not None:
        parts.append(f"(${format_cost(cost)})")
    if completion_date:
        parts.append(f"~{completion_date}")
    return " ".join(parts)


def format_update_line(update_date: str, text: str, assignee_alias: Optional[str] = None) -> str:
    line = f"  - {update_date}: {text.strip()}"
    if assignee_alias:
        line += f" (@{assignee_alias})"
    return line


def format_task_block(task: "Task") -> str:
    """Render a parsed task and its updates back to document lines."""
    lines = [
        format_task_line(
            task.text,
            completed=task.completed,
            pinned=task.pinned,
            creation_date=task.creation_date,
            due_date=task.due_date,
            assignee_alias=task.assignee_alias,
            cost=task.cost,
            completion_date=task.completion_date,
        )
    ]
    lines.extend(format_update_line(update.date, update.text, update.assignee_alias) for update in task.updates)
    return "\n".join(lines)


def with_mark(line: str, mark: str) -> str:
    """Return a task line with its checkbox marker replaced."""
    return f"- [{mark}]{line[5:]}"


def strip_completion_dates(line: str) -> str:
    return COMPLETION_DATE_PATTERN.sub("", line)


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


def slugify(value: str) -> str:
    """Convert heading text to a (non-unique) anchor slug."""
    slug = value.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def archive_marker(archived_on: Optional[str] = None) -> str:
    return f"_Archived on: {archived_on or today_iso()}_"


def coerce_date(value: Union[str, date, None]) -> str:
    """Accept an ISO string or a date, defaulting to today (UTC)."""
    if value is None:
        return today_iso()
    if isinstance(value, date):
        return value.isoformat()
    return value
