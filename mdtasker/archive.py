"""Archive document handling.

Archived material lives in a second document. Each archived block is filed
under the headings it sat under in the active document, starting with a
``# <project title>`` heading, and is preceded by a marker line::

    # Project Titan
    ## Phase 1: Design
    _Archived on: 2024-07-28_
    - [x] UI/UX Design system ~2024-07-20

Operations work on the ``(active, archive)`` pair and return both new
texts together with the coordinates of the moved block, so that a restore
can be issued straight from an archive result.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from .document import Document
from .errors import SectionNotFound, TaskNotFound
from .grammar import ArchiveMarkerLine, HeadingLine, archive_marker, classify_line, coerce_date
from .models import ArchiveResult, HeadingRef, Task
from .mutations import SectionLike, section_bounds
from .parser import DEFAULT_PROJECT_TITLE, task_block_at

logger = logging.getLogger("mdtasker.archive")

# One deeper than the deepest heading the grammar recognises.
_BELOW_ALL_HEADINGS = 4


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _heading(document: Document, index: int, covered: FrozenSet[int] = frozenset()) -> Optional[HeadingLine]:
    """The heading at ``index``, ignoring lines that belong to archived blocks."""
    if index in covered:
        return None
    classified = document.classify(index)
    return classified if isinstance(classified, HeadingLine) else None


def _opening_level(block: Sequence[str]) -> Optional[int]:
    if not block:
        return None
    classified = classify_line(block[0])
    return classified.level if isinstance(classified, HeadingLine) else None


def _heading_line(ref: HeadingRef) -> str:
    return f"{'#' * ref.level} {ref.text}"


def _append_index(document: Document, end: int) -> int:
    """Insert-before index after ``end``, keeping a trailing newline last."""
    index = end + 1
    if index > 0 and index == len(document) and document[-1] == "":
        index -= 1
    return index


def _archive_layout(document: Document) -> List[Tuple[int, int, int]]:
    """Archived blocks as ``(marker, start, end)`` triples.

    A block runs from the line after its marker up to the next marker or
    the next heading at or above the level of the block's own opening
    heading. A block that does not open with a heading stops at any
    heading. A trailing newline at the end of the archive is not part of
    the last block.
    """
    layout = []
    for marker in range(len(document)):
        start = marker + 1
        if not isinstance(document.classify(marker), ArchiveMarkerLine) or start >= len(document):
            continue
        if isinstance(document.classify(start), ArchiveMarkerLine):
            continue
        ceiling = _opening_level(document.lines[start : start + 1]) or _BELOW_ALL_HEADINGS
        end = start + 1
        while end < len(document):
            classified = document.classify(end)
            if isinstance(classified, ArchiveMarkerLine) or (
                isinstance(classified, HeadingLine) and classified.level <= ceiling
            ):
                break
            end += 1
        end -= 1
        if end > start and end == len(document) - 1 and document[end] == "":
            end -= 1
        layout.append((marker, start, end))
    return layout


def _covered_lines(layout: Iterable[Tuple[int, int, int]]) -> FrozenSet[int]:
    """Marker and block lines; headings outside them are filing headings."""
    return frozenset(index for marker, _, end in layout for index in range(marker, end + 1))


def _enclosing_headings(
    document: Document, index: int, level: int, covered: FrozenSet[int] = frozenset()
) -> List[HeadingRef]:
    """Headings above ``index`` with a level below ``level``, outermost first."""
    path: List[HeadingRef] = []
    for position in range(index - 1, -1, -1):
        heading = _heading(document, position, covered)
        if heading is not None and heading.level < level:
            path.insert(0, HeadingRef(heading.text, heading.level))
            level = heading.level
            if level == 1:
                break
    return path


def _find_heading(
    document: Document, ref: HeadingRef, lower: int, limit: int, covered: FrozenSet[int]
) -> Optional[int]:
    for index in range(lower, limit + 1):
        heading = _heading(document, index, covered)
        if heading is not None and heading.level == ref.level and heading.text == ref.text:
            return index
    return None


def _scope_end(document: Document, index: int, level: int, limit: int, covered: FrozenSet[int]) -> int:
    """Last line governed by the heading at ``index``, no further than ``limit``."""
    for position in range(index + 1, limit + 1):
        heading = _heading(document, position, covered)
        if heading is not None and heading.level <= level:
            return position - 1
    return limit


def _own_end(document: Document, index: int, limit: int, covered: FrozenSet[int]) -> int:
    """Last line under the heading at ``index`` before its first sub-heading."""
    for position in range(index + 1, limit + 1):
        if _heading(document, position, covered) is not None:
            return position - 1
    return limit


def _locate(
    document: Document, path: Sequence[HeadingRef], covered: FrozenSet[int] = frozenset()
) -> Tuple[Optional[Tuple[int, int]], List[HeadingRef]]:
    """Match ``path`` heading by heading, each inside its parent's scope.

    Returns the deepest matched heading as ``(index, scope_end)`` (``None``
    when not even the first heading exists) and the headings still missing
    below it.
    """
    found = None
    lower, limit = 0, len(document) - 1
    for position, ref in enumerate(path):
        index = _find_heading(document, ref, lower, limit, covered)
        if index is None:
            return found, list(path[position:])
        limit = _scope_end(document, index, ref.level, limit, covered)
        found = (index, limit)
        lower = index + 1
    return found, []


def _task_path(task: Task) -> List[HeadingRef]:
    path = list(task.heading_hierarchy)
    if not path or path[0].level != 1:
        path.insert(0, HeadingRef(task.project_title or DEFAULT_PROJECT_TITLE, 1))
    return path


def _file_block(
    archive: Document,
    path: Sequence[HeadingRef],
    block: Tuple[str, ...],
    marker: str,
) -> Tuple[Document, int, int, int, int]:
    """File ``block`` under its heading path in the archive.

    Missing headings are created at the end of the deepest existing one.
    A block opening with a heading goes to the end of that heading's
    scope; any other block follows the blocks filed directly under it.
    Returns the new archive, the block's start and end line, and the
    insertion point and number of lines inserted.
    """
    if archive.lines == ("",):
        archive = Document(())
    covered = _covered_lines(_archive_layout(archive))
    found, missing = _locate(archive, path, covered)
    if found is None:
        insertion = _append_index(archive, len(archive) - 1)
    elif missing or _opening_level(block) is not None:
        insertion = _append_index(archive, found[1])
    else:
        insertion = _append_index(archive, _own_end(archive, found[0], found[1], covered))
    lines = [_heading_line(ref) for ref in missing] + [marker] + list(block)
    start = insertion + len(missing) + 1
    return archive.insert(insertion, lines), start, start + len(block) - 1, insertion, len(lines)


def _require_section_boundary(document: Document, start: int, end: int) -> None:
    starts_ok = start == 0 or isinstance(document.classify(start), HeadingLine)
    ends_ok = end == len(document) - 1 or isinstance(document.classify(end + 1), HeadingLine)
    if not (starts_ok and ends_ok):
        raise SectionNotFound(
            f"Lines {start}-{end} do not match a section boundary.", start_line=start, end_line=end
        )


def _filing_path(archive: Document, marker: int, level: Optional[int], covered: FrozenSet[int]) -> List[HeadingRef]:
    """Heading path an archived block was filed under, for a block opening at ``level``."""
    if level == 1:
        return []
    path = _enclosing_headings(archive, marker, level or _BELOW_ALL_HEADINGS, covered)
    if not path or path[0].level != 1:
        return []
    return path


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def archive_section(
    active: str,
    archive: str,
    section: SectionLike,
    project_title: str,
    *,
    today: Union[str, date, None] = None,
) -> ArchiveResult:
    """Move a section from the active document into the archive.

    The section is filed under ``# project_title`` and the headings that
    enclose it in the active document. A trailing newline at the end of
    the active document stays there.
    """
    start, end = section_bounds(section)
    active_doc = Document.from_text(active)
    active_doc.check_range(start, end)
    _require_section_boundary(active_doc, start, end)
    if end > start and end == len(active_doc) - 1 and active_doc[end] == "":
        end -= 1

    block = active_doc.block(start, end)
    level = _opening_level(block)
    path: List[HeadingRef] = []
    if level != 1:
        parents = _enclosing_headings(active_doc, start, level or _BELOW_ALL_HEADINGS)
        path = [HeadingRef(project_title or DEFAULT_PROJECT_TITLE, 1)] + [ref for ref in parents if ref.level > 1]
    archive_doc, block_start, block_end, _, _ = _file_block(
        Document.from_text(archive), path, block, archive_marker(coerce_date(today))
    )
    logger.debug(f"Archived lines {start}-{end} to archive lines {block_start}-{block_end}")
    return ArchiveResult(
        active=active_doc.remove(start, end).text,
        archive=archive_doc.text,
        start_line=block_start,
        end_line=block_end,
        blocks=[(block_start, block_end)],
    )


def restore_section(active: str, archive: str, section: SectionLike) -> ArchiveResult:
    """Move an archived block (and its marker) back into the active document.

    ``section`` must be exactly one block as listed by ``archived_blocks``.
    The block returns under the heading path it was filed under: a task
    block after the blocks directly below its deepest heading, a section
    at the end of that heading's scope. Missing sub-headings are recreated.
    When the project itself is gone the block goes to the end of the
    document.
    """
    start, end = section_bounds(section)
    archive_doc = Document.from_text(archive)
    layout = _archive_layout(archive_doc)
    marker = next((m for m, s, e in layout if (s, e) == (start, end)), None)
    if marker is None:
        raise SectionNotFound(
            f"Lines {start}-{end} are not an archived block.", start_line=start, end_line=end
        )

    block = archive_doc.block(start, end)
    level = _opening_level(block)
    path = _filing_path(archive_doc, marker, level, _covered_lines(layout))
    active_doc = Document.from_text(active)
    found, missing = _locate(active_doc, path)
    if found is None:
        missing = []
        insertion = _append_index(active_doc, len(active_doc) - 1)
    elif missing or level is not None:
        insertion = active_doc.content_end(*found)
    else:
        insertion = active_doc.content_end(found[0], _own_end(active_doc, found[0], found[1], frozenset()))

    lines = [_heading_line(ref) for ref in missing] + list(block)
    block_start = insertion + len(missing)
    block_end = block_start + len(block) - 1
    logger.debug(f"Restoring archive lines {start}-{end} to active lines {block_start}-{block_end}")
    return ArchiveResult(
        active=active_doc.insert(insertion, lines).text,
        archive=archive_doc.remove(marker, end).text,
        start_line=block_start,
        end_line=block_end,
        blocks=[(block_start, block_end)],
    )


def archive_tasks(
    active: str,
    archive: str,
    tasks: Iterable[Task],
    *,
    today: Union[str, date, None] = None,
) -> ArchiveResult:
    """Move task blocks into the archive, each with its own marker.

    Each block is filed under the task's heading hierarchy. All tasks are
    validated against the current text before anything is removed; blocks
    are lifted out bottom-up so earlier indices stay valid.
    """
    active_doc = Document.from_text(active)
    unique = {task.line_index: task for task in tasks}
    for task in unique.values():
        block = task_block_at(active_doc, task.line_index)
        if block is None or block[1] != task.block_end_line:
            raise TaskNotFound(
                f"Task block at lines {task.line_index}-{task.block_end_line} no longer matches the document.",
                line_index=task.line_index,
                block_end_line=task.block_end_line,
            )

    ordered = sorted(unique.values(), key=lambda task: task.line_index)
    extracted = [(_task_path(task), active_doc.block(task.line_index, task.block_end_line)) for task in ordered]
    for task in reversed(ordered):
        active_doc = active_doc.remove(task.line_index, task.block_end_line)

    marker = archive_marker(coerce_date(today))
    archive_doc = Document.from_text(archive)
    placed: List[Tuple[int, int]] = []
    for path, block in extracted:
        archive_doc, block_start, block_end, insertion, inserted = _file_block(archive_doc, path, block, marker)
        placed = [
            (start + inserted, end + inserted) if start >= insertion else (start, end)
            for start, end in placed
        ]
        placed.append((block_start, block_end))

    first = placed[0] if placed else (-1, -1)
    return ArchiveResult(
        active=active_doc.text,
        archive=archive_doc.text,
        start_line=first[0],
        end_line=first[1],
        blocks=placed,
    )


def archived_blocks(archive: str) -> List[dict]:
    """List every archived block with the coordinates ``restore_section`` expects."""
    document = Document.from_text(archive)
    layout = _archive_layout(document)
    covered = _covered_lines(layout)
    blocks = []
    for marker, start, end in layout:
        block = document.block(start, end)
        level = _opening_level(block)
        path = _filing_path(document, marker, level, covered)
        if level == 1:
            project_title: Optional[str] = document.classify(start).text
        else:
            project_title = path[0].text if path else None
        blocks.append(
            {
                "archived_on": document.classify(marker).text,
                "project_title": project_title,
                "start_line": start,
                "end_line": end,
                "content": "\n".join(block),
            }
        )
    return blocks


def clear_archive() -> str:
    return ""
