"""Structural parsing of md-tasker documents.

Three pure passes turn document text into the views the rest of the system
displays:

* ``parse_sections`` splits the text at level 1-3 headings.
* ``extract_tasks`` reads task lines and their update lines out of a run of
  lines, reporting absolute line indices.
* ``partition_projects`` groups sections under level-1 headings and
  aggregates their tasks.

Everything is recomputed from scratch on each call; nothing is cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .document import Document
from .grammar import (
    HeadingLine,
    TaskLine,
    UpdateLine,
    classify_line,
    is_blank,
    is_valid_date,
    parse_annotations,
    parse_update_text,
    slugify,
)
from .models import Heading, HeadingRef, Project, Section, Task, TaskUpdate

logger = logging.getLogger("mdtasker.parser")

DEFAULT_PROJECT_TITLE = "Project Overview"


# ---------------------------------------------------------------------------
# SectionParser
# ---------------------------------------------------------------------------


def parse_headings(lines: Sequence[str]) -> List[Heading]:
    headings: List[Heading] = []
    for index, line in enumerate(lines):
        classified = classify_line(line)
        if isinstance(classified, HeadingLine):
            headings.append(
                Heading(
                    text=classified.text,
                    slug=slugify(classified.text),
                    level=classified.level,
                    line=index,
                )
            )
    return headings


def parse_sections(text: str) -> List[Section]:
    """Split document text into contiguous sections at heading boundaries."""
    lines = text.split("\n")
    headings = parse_headings(lines)
    last = len(lines) - 1

    if not headings:
        return [Section(start_line=0, end_line=last, content=text, heading=None)]

    sections: List[Section] = []
    if headings[0].line > 0:
        end = headings[0].line - 1
        sections.append(Section(0, end, "\n".join(lines[: end + 1]), None))

    for position, heading in enumerate(headings):
        end = headings[position + 1].line - 1 if position + 1 < len(headings) else last
        sections.append(
            Section(
                start_line=heading.line,
                end_line=end,
                content="\n".join(lines[heading.line : end + 1]),
                heading=heading,
            )
        )
    return sections


# ---------------------------------------------------------------------------
# TaskExtractor
# ---------------------------------------------------------------------------


def extract_tasks(
    lines: Sequence[str],
    offset: int = 0,
    *,
    project_title: str = "",
    heading_hierarchy: Optional[Iterable[HeadingRef]] = None,
) -> List[Task]:
    """Parse task blocks out of ``lines``.

    ``offset`` is the absolute index of ``lines[0]``; every reported line
    index is absolute. A block is the task line plus the update lines that
    follow it; blank lines are skipped while collecting updates, and the
    first other line ends the block.
    """
    hierarchy = list(heading_hierarchy or [])
    section_title = hierarchy[-1].text if hierarchy else None
    tasks: List[Task] = []

    i = 0
    while i < len(lines):
        classified = classify_line(lines[i])
        if not isinstance(classified, TaskLine):
            i += 1
            continue

        line_index = offset + i
        annotations = parse_annotations(classified.rest, line_index)
        issues = [str(issue) for issue in annotations.issues]
        updates: List[TaskUpdate] = []
        block_end = i

        j = i + 1
        while j < len(lines):
            candidate = classify_line(lines[j])
            if isinstance(candidate, UpdateLine):
                text, alias = parse_update_text(candidate.text)
                if not is_valid_date(candidate.date):
                    issues.append(f"invalid update date: {candidate.date!r}")
                updates.append(TaskUpdate(offset + j, candidate.date, text, alias))
                block_end = j
            elif not is_blank(lines[j]):
                break
            j += 1

        tasks.append(
            Task(
                line_index=line_index,
                text=annotations.text,
                completed=classified.completed,
                pinned=classified.pinned,
                assignee_alias=annotations.assignee_alias,
                creation_date=annotations.creation_date,
                completion_date=annotations.completion_date,
                due_date=annotations.due_date,
                cost=annotations.cost,
                updates=updates,
                block_end_line=offset + block_end,
                heading_hierarchy=list(hierarchy),
                project_title=project_title,
                section_title=section_title,
                issues=issues,
            )
        )
        i = block_end + 1
    return tasks


def find_task_blocks(document: Document) -> List[Tuple[int, int]]:
    """Absolute ``(line_index, block_end_line)`` pairs for every task block."""
    return [(task.line_index, task.block_end_line) for task in extract_tasks(document.lines)]


def task_block_at(document: Document, line_index: int) -> Optional[Tuple[int, int]]:
    """The block starting at ``line_index`` in the current text, if any."""
    if not 0 <= line_index < len(document):
        return None
    if not isinstance(document.classify(line_index), TaskLine):
        return None
    tasks = extract_tasks(document.lines[line_index:], line_index)
    return (tasks[0].line_index, tasks[0].block_end_line)


# ---------------------------------------------------------------------------
# ProjectPartitioner
# ---------------------------------------------------------------------------


def _build_project(title: str, start: int, end: int, sections: List[Section]) -> Project:
    stack: List[HeadingRef] = []
    headings: List[Heading] = []
    tasks: List[Task] = []

    for section in sections:
        if section.heading is not None:
            while stack and stack[-1].level >= section.heading.level:
                stack.pop()
            stack.append(HeadingRef(section.heading.text, section.heading.level))
            if section.heading.level > 1:
                headings.append(section.heading)
        tasks.extend(
            extract_tasks(
                section.lines,
                section.start_line,
                project_title=title,
                heading_hierarchy=stack,
            )
        )

    grouped: dict = {}
    unassigned: List[Task] = []
    total_cost = 0.0
    for task in tasks:
        if task.cost:
            total_cost += task.cost
        if task.assignee_alias:
            grouped.setdefault(task.assignee_alias, []).append(task)
        else:
            unassigned.append(task)

    return Project(
        title=title,
        slug=slugify(title),
        start_line=start,
        end_line=end,
        headings=headings,
        grouped_tasks=grouped,
        unassigned_tasks=unassigned,
        total_cost=total_cost,
    )


def partition_projects(sections: List[Section]) -> List[Project]:
    """Group sections into projects bounded by level-1 headings.

    A document without level-1 headings is one project titled
    ``Project Overview``. When level-1 headings exist, lines before the
    first one belong to no project.
    """
    if not sections:
        return []
    last = sections[-1].end_line
    boundaries = [
        position
        for position, section in enumerate(sections)
        if section.heading is not None and section.heading.level == 1
    ]

    if not boundaries:
        return [_build_project(DEFAULT_PROJECT_TITLE, 0, last, sections)]

    projects: List[Project] = []
    for number, position in enumerate(boundaries):
        stop = boundaries[number + 1] if number + 1 < len(boundaries) else len(sections)
        members = sections[position:stop]
        projects.append(
            _build_project(
                members[0].heading.text,
                members[0].start_line,
                members[-1].end_line,
                members,
            )
        )
    logger.debug(f"Partitioned {len(sections)} sections into {len(projects)} projects (last line {last})")
    return projects


# ---------------------------------------------------------------------------
# Convenience
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ParsedDocument:
    """A consistent set of views computed from one document revision."""

    text: str
    sections: List[Section] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)

    @property
    def tasks(self) -> List[Task]:
        every: List[Task] = []
        for project in self.projects:
            every.extend(project.tasks)
        return every

    def find_task(self, line_index: int) -> Optional[Task]:
        for task in self.tasks:
            if task.line_index == line_index:
                return task
        return None

    def find_section(self, start_line: int) -> Optional[Section]:
        for section in self.sections:
            if section.start_line == start_line:
                return section
        return None

    def find_project(self, key: str) -> Optional[Project]:
        """Look a project up by exact title or slug."""
        for project in self.projects:
            if project.title == key or project.slug == key:
                return project
        return None

    def project_for_line(self, line_index: int) -> Optional[Project]:
        for project in self.projects:
            if project.contains(line_index):
                return project
        return None


def parse_document(text: str) -> ParsedDocument:
    sections = parse_sections(text)
    return ParsedDocument(text=text, sections=sections, projects=partition_projects(sections))
