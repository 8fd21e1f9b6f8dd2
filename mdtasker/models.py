"""Data models for md-tasker documents.

This module contains the structures derived from a document on every parse
(sections, headings, projects, tasks and their updates) together with the
small amount of state kept beside the documents (users, project state).
Derived structures are never persisted; they are recomputed from text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Heading:
    """A level 1-3 heading line."""

    text: str
    slug: str
    level: int
    line: int

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "slug": self.slug, "level": self.level, "line": self.line}


@dataclass(frozen=True, slots=True)
class HeadingRef:
    """One step of a task's heading hierarchy."""

    text: str
    level: int

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "level": self.level}


@dataclass(slots=True)
class Section:
    """A contiguous line range starting at a heading or at document start."""

    start_line: int
    end_line: int
    content: str
    heading: Optional[Heading] = None

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def is_preamble(self) -> bool:
        return self.heading is None

    @property
    def title(self) -> str:
        return self.heading.text if self.heading else "Preamble"

    @property
    def lines(self) -> List[str]:
        return self.content.split("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "start_line": self.start_line,
            "end_line": self.end_line,
            "content": self.content,
            "heading": self.heading.to_dict() if self.heading else None,
        }


@dataclass(slots=True)
class TaskUpdate:
    """A dated progress note belonging to a task."""

    line_index: int
    date: str
    text: str
    assignee_alias: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_index": self.line_index,
            "date": self.date,
            "text": self.text,
            "assignee_alias": self.assignee_alias,
        }


@dataclass(slots=True)
class Task:
    """Representation of a single checklist entry and its update lines."""

    line_index: int
    text: str
    completed: bool
    pinned: bool = False
    assignee_alias: Optional[str] = None
    creation_date: Optional[str] = None
    completion_date: Optional[str] = None
    due_date: Optional[str] = None
    cost: Optional[float] = None
    updates: List[TaskUpdate] = field(default_factory=list)
    block_end_line: Optional[int] = None
    heading_hierarchy: List[HeadingRef] = field(default_factory=list)
    project_title: str = ""
    section_title: Optional[str] = None
    issues: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.block_end_line is None:
            self.block_end_line = self.line_index

    @property
    def block_line_count(self) -> int:
        return self.block_end_line - self.line_index + 1

    def is_overdue(self, today: str) -> bool:
        """Open task whose due date lies before ``today`` (ISO strings compare)."""
        return not self.completed and self.due_date is not None and self.due_date < today

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "line_index": self.line_index,
            "text": self.text,
            "completed": self.completed,
            "pinned": self.pinned,
            "assignee_alias": self.assignee_alias,
            "creation_date": self.creation_date,
            "completion_date": self.completion_date,
            "due_date": self.due_date,
            "cost": self.cost,
            "updates": [update.to_dict() for update in self.updates],
            "block_end_line": self.block_end_line,
            "heading_hierarchy": [ref.to_dict() for ref in self.heading_hierarchy],
            "project_title": self.project_title,
            "section_title": self.section_title,
            "issues": list(self.issues),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            line_index=data["line_index"],
            text=data.get("text", ""),
            completed=data.get("completed", False),
            pinned=data.get("pinned", False),
            assignee_alias=data.get("assignee_alias"),
            creation_date=data.get("creation_date"),
            completion_date=data.get("completion_date"),
            due_date=data.get("due_date"),
            cost=data.get("cost"),
            updates=[TaskUpdate(**update) for update in data.get("updates", [])],
            block_end_line=data.get("block_end_line", data["line_index"]),
            heading_hierarchy=[HeadingRef(**ref) for ref in data.get("heading_hierarchy", [])],
            project_title=data.get("project_title", ""),
            section_title=data.get("section_title"),
            issues=data.get("issues", []),
        )


@dataclass(slots=True)
class Project:
    """A level-1 heading and everything up to the next level-1 heading."""

    title: str
    slug: str
    start_line: int
    end_line: int
    headings: List[Heading] = field(default_factory=list)
    grouped_tasks: Dict[str, List[Task]] = field(default_factory=dict)
    unassigned_tasks: List[Task] = field(default_factory=list)
    total_cost: float = 0.0

    @property
    def tasks(self) -> List[Task]:
        """All tasks in document order."""
        every = list(self.unassigned_tasks)
        for group in self.grouped_tasks.values():
            every.extend(group)
        return sorted(every, key=lambda task: task.line_index)

    @property
    def task_count(self) -> int:
        return len(self.unassigned_tasks) + sum(len(group) for group in self.grouped_tasks.values())

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.completed)

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line

    def get_completion_rate(self) -> float:
        """Get task completion rate as percentage."""
        if self.task_count == 0:
            return 0.0
        return (self.completed_count / self.task_count) * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "title": self.title,
            "slug": self.slug,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "headings": [heading.to_dict() for heading in self.headings],
            "grouped_tasks": {
                alias: [task.to_dict() for task in tasks] for alias, tasks in self.grouped_tasks.items()
            },
            "unassigned_tasks": [task.to_dict() for task in self.unassigned_tasks],
            "total_cost": self.total_cost,
            "task_count": self.task_count,
            "completed_count": self.completed_count,
        }


@dataclass(slots=True)
class User:
    """A person tasks can be assigned to via ``(@alias)``."""

    name: str
    alias: str
    email: str = ""
    avatar_url: str = ""

    def __post_init__(self) -> None:
        if not self.avatar_url and self.alias:
            self.avatar_url = f"https://picsum.photos/seed/{self.alias}/40/40"

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "alias": self.alias,
            "email": self.email,
            "avatarUrl": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        if not isinstance(data, dict):
            raise ValueError("User must be a JSON object")
        missing = [key for key in ("name", "alias") if not isinstance(data.get(key), str)]
        if missing:
            raise ValueError(f"Invalid user: {', '.join(missing)} (string) required")
        return cls(
            name=data["name"],
            alias=data["alias"],
            email=data.get("email", ""),
            avatar_url=data.get("avatarUrl", data.get("avatar_url", "")),
        )

    def validate(self) -> List[str]:
        """Validate the user and return any issues."""
        issues = []
        if not self.name:
            issues.append("Name is required")
        if not self.alias:
            issues.append("Alias is required")
        elif not self.alias.replace("_", "").isalnum() or not self.alias.isascii():
            issues.append(f"Alias may only contain letters, digits and underscores: {self.alias}")
        return issues


@dataclass(slots=True)
class ArchiveResult:
    """Outcome of an archive/restore: both documents plus the moved block."""

    active: str
    archive: str
    start_line: int = -1
    end_line: int = -1
    blocks: List[Tuple[int, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "archive": self.archive,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "blocks": [list(block) for block in self.blocks],
        }


@dataclass(slots=True)
class ProjectState:
    """The full exportable state: both documents and the users registry."""

    markdown: str
    archive_markdown: str = ""
    users: List[User] = field(default_factory=list)
    revision: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "markdown": self.markdown,
            "archiveMarkdown": self.archive_markdown,
            "users": [user.to_dict() for user in self.users],
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectState":
        """Create from dictionary representation."""
        if not isinstance(data, dict):
            raise ValueError("Project state must be a JSON object")
        if not isinstance(data.get("markdown"), str) or not isinstance(data.get("users"), list):
            raise ValueError("Invalid project state: 'markdown' (string) and 'users' (list) are required")
        return cls(
            markdown=data["markdown"],
            archive_markdown=data.get("archiveMarkdown") or "",
            users=[User.from_dict(user) for user in data["users"]],
            revision=data.get("revision", 0),
        )
