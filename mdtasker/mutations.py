"""Structural edits over document text.

Every operation takes the current document text plus absolute line
coordinates (plain ints, ``Absolute`` or ``RelativeToProject``) and returns
a freshly assembled string. Operations either succeed completely or raise
a ``MutationError`` subclass; the input text is never modified.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .coordinates import LineRef, absolute
from .document import Document
from .errors import RangeInvalid, SectionOverlap, TaskNotFound
from .grammar import (
    MARK_DONE,
    MARK_OPEN,
    TaskLine,
    coerce_date,
    format_update_line,
    strip_completion_dates,
    with_mark,
)
from .models import Section, Task
from .parser import find_task_blocks, task_block_at

logger = logging.getLogger("mdtasker.mutations")

DIRECTIONS = ("up", "down", "top", "bottom")

SectionLike = Union[Section, Tuple[LineRef, LineRef]]


def section_bounds(section: SectionLike) -> Tuple[int, int]:
    if isinstance(section, Section):
        return section.start_line, section.end_line
    start, end = section
    return absolute(start), absolute(end)


def _split(content: str) -> List[str]:
    return content.split("\n")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def update_section(text: str, start_line: LineRef, end_line: LineRef, new_content: str) -> str:
    """Replace the inclusive range ``[start_line, end_line]`` with ``new_content``."""
    document = Document.from_text(text)
    return document.replace(absolute(start_line), absolute(end_line), _split(new_content)).text


def insert_section(text: str, new_content: str, destination_line: LineRef) -> str:
    """Insert fresh content immediately before ``destination_line``."""
    document = Document.from_text(text)
    return document.insert(absolute(destination_line), _split(new_content)).text


def _check_destination(document: Document, start: int, end: int, destination: int) -> None:
    document.check_range(start, end)
    document.check_insertion_point(destination)
    if start < destination <= end:
        raise SectionOverlap(
            f"Destination line {destination} falls inside lines {start}-{end}.",
            start_line=start,
            end_line=end,
            destination_line=destination,
        )


def move_section(text: str, section: SectionLike, destination_line: LineRef) -> str:
    """Move a line block so it sits immediately before ``destination_line``.

    ``destination_line`` is given in the coordinates of ``text`` (before
    the block is lifted out); ``0`` is the top of the document and the
    line count is the end.
    """
    start, end = section_bounds(section)
    destination = absolute(destination_line)
    document = Document.from_text(text)
    _check_destination(document, start, end, destination)

    block = document.block(start, end)
    remaining = document.remove(start, end)
    if destination > end:
        destination -= len(block)
    return remaining.insert(destination, block).text


def duplicate_section(text: str, section: SectionLike, destination_line: LineRef) -> str:
    """Insert a verbatim copy of a line block before ``destination_line``."""
    start, end = section_bounds(section)
    destination = absolute(destination_line)
    document = Document.from_text(text)
    _check_destination(document, start, end, destination)
    return document.insert(destination, document.block(start, end)).text


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _require_task_line(document: Document, line_index: int) -> TaskLine:
    if not 0 <= line_index < len(document):
        raise RangeInvalid(
            f"Line {line_index} is outside the document (0-{len(document) - 1}).",
            line_index=line_index,
        )
    classified = document.classify(line_index)
    if not isinstance(classified, TaskLine):
        raise TaskNotFound(f"Line {line_index} is not a task line.", line_index=line_index)
    return classified


def toggle_task(
    text: str,
    line_index: LineRef,
    is_completed: bool,
    *,
    today: Union[str, date, None] = None,
) -> str:
    """Set a task's completion state.

    Completing stamps ``~<today>`` at the end of the line (replacing any
    earlier completion date); reopening removes completion dates. Other
    annotations are left verbatim.
    """
    index = absolute(line_index)
    document = Document.from_text(text)
    _require_task_line(document, index)

    line = strip_completion_dates(document[index])
    if is_completed:
        line = with_mark(line, MARK_DONE) + f" ~{coerce_date(today)}"
    else:
        line = with_mark(line, MARK_OPEN)
    return document.replace(index, index, [line]).text


def update_task_block(text: str, start_line: LineRef, original_line_count: int, new_content: str) -> str:
    """Replace ``original_line_count`` lines starting at a task line."""
    start = absolute(start_line)
    document = Document.from_text(text)
    if original_line_count < 1:
        raise RangeInvalid(
            f"Line count must be at least 1, got {original_line_count}.",
            start_line=start,
            original_line_count=original_line_count,
        )
    document.check_range(start, start + original_line_count - 1)
    _require_task_line(document, start)
    return document.replace(start, start + original_line_count - 1, _split(new_content)).text


def _current_block(document: Document, task: Task) -> Tuple[int, int]:
    block = task_block_at(document, task.line_index)
    if block is None or block[1] != task.block_end_line:
        raise TaskNotFound(
            f"Task block at lines {task.line_index}-{task.block_end_line} no longer matches the document.",
            line_index=task.line_index,
            block_end_line=task.block_end_line,
        )
    return block


def task_run(document: Document, line_index: int) -> List[Tuple[int, int]]:
    """The run of sibling task blocks containing ``line_index``.

    Blocks separated only by blank lines belong to the same run.
    """
    runs: List[List[Tuple[int, int]]] = []
    for block in find_task_blocks(document):
        if runs and document.next_non_blank(runs[-1][-1][1] + 1) == block[0]:
            runs[-1].append(block)
        else:
            runs.append([block])
    for run in runs:
        if any(start == line_index for start, _ in run):
            return run
    return []


def reorder_task(text: str, task: Task, direction: str) -> str:
    """Move a task block within its run of sibling blocks.

    ``direction`` is one of ``up``, ``down``, ``top`` or ``bottom``. Moving
    past either end of the run leaves the text unchanged. Blank lines
    between blocks stay where they are.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    document = Document.from_text(text)
    _current_block(document, task)

    run = task_run(document, task.line_index)
    position = next(i for i, (start, _) in enumerate(run) if start == task.line_index)
    if direction == "top":
        target = 0
    elif direction == "bottom":
        target = len(run) - 1
    elif direction == "up":
        target = position - 1
    else:
        target = position + 1
    if target < 0 or target >= len(run) or target == position:
        return text

    blocks = [document.block(start, end) for start, end in run]
    gaps = [document.lines[previous[1] + 1 : current[0]] for previous, current in zip(run, run[1:])]
    moving = blocks.pop(position)
    blocks.insert(target, moving)
    reordered: List[str] = list(blocks[0])
    for gap, block in zip(gaps, blocks[1:]):
        reordered.extend(gap)
        reordered.extend(block)
    return document.replace(run[0][0], run[-1][1], reordered).text


def add_task_updates(
    text: str,
    line_indexes: Iterable[LineRef],
    update_text: str,
    assignee_alias: Optional[str] = None,
    *,
    today: Union[str, date, None] = None,
) -> str:
    """Append the same dated update line to the end of several task blocks."""
    if not update_text or not update_text.strip():
        raise ValueError("Update text cannot be empty")
    document = Document.from_text(text)
    indexes = sorted({absolute(ref) for ref in line_indexes}, reverse=True)
    blocks = []
    for index in indexes:
        _require_task_line(document, index)
        blocks.append(task_block_at(document, index))

    line = format_update_line(coerce_date(today), update_text, assignee_alias)
    for _, block_end in blocks:
        document = document.insert(block_end + 1, [line])
    return document.text


# ---------------------------------------------------------------------------
# Assignees
# ---------------------------------------------------------------------------


def rename_assignee(text: str, old_alias: str, new_alias: str) -> str:
    """Rewrite every ``(@old_alias)`` annotation to ``(@new_alias)``."""
    return text.replace(f"(@{old_alias})", f"(@{new_alias})")


def remove_assignee(text: str, alias: str) -> str:
    """Drop every `` (@alias)`` annotation, including its leading space."""
    return re.sub(rf"[ \t]\(@{re.escape(alias)}\)", "", text)


def block_lines(text: str, start_line: int, end_line: int) -> Sequence[str]:
    return Document.from_text(text).block(start_line, end_line)
