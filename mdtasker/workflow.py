"""Workflow management for md-tasker.

This module wraps the workspace for interactive callers: the section editor
state machine used when a section is opened for editing, and a manager
whose methods always return plain dictionaries so that an agent or UI can
show errors and suggestions instead of handling exceptions.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import (
    InvalidTransition,
    MutationError,
    RangeInvalid,
    SectionNotFound,
    SectionOverlap,
    StaleRevision,
    TaskNotFound,
)
from .models import Section
from .tasker_logging import log_error_with_context, log_performance, observability_hooks
from .workspace import Workspace

logger = logging.getLogger("mdtasker.workflow")


class EditState(str, Enum):
    PREVIEW = "preview"
    EDITING = "editing"


class SectionEditor:
    """Preview/editing state for one section.

    ``save`` writes the buffer back through the workspace and returns to
    preview; ``cancel`` discards the buffer. An editor opened for a new
    section starts in editing and inserts its content on save.
    """

    def __init__(self, workspace: Workspace, section: Section, *, revision: Optional[int] = None):
        self.workspace = workspace
        self.start_line = section.start_line
        self.end_line = section.end_line
        self.content = section.content
        self.revision = workspace.revision if revision is None else revision
        self.state = EditState.PREVIEW
        self.buffer: Optional[str] = None
        self.is_new = False

    @classmethod
    def for_new_section(
        cls, workspace: Workspace, destination_line: int, initial_content: str = ""
    ) -> "SectionEditor":
        editor = cls(workspace, Section(destination_line, destination_line, ""))
        editor.is_new = True
        editor.state = EditState.EDITING
        editor.buffer = initial_content
        return editor

    def _require(self, state: EditState, action: str) -> None:
        if self.state is not state:
            raise InvalidTransition(f"Cannot {action} while in {self.state.value} state")

    def begin_edit(self) -> str:
        self._require(EditState.PREVIEW, "begin editing")
        self.state = EditState.EDITING
        self.buffer = self.content
        return self.buffer

    def set_buffer(self, text: str) -> None:
        self._require(EditState.EDITING, "change the buffer")
        self.buffer = text

    def save(self) -> str:
        """Commit the buffer; on failure the editor stays in editing."""
        self._require(EditState.EDITING, "save")
        buffer = self.buffer or ""
        if self.is_new:
            markdown = self.workspace.insert_section(buffer, self.start_line, revision=self.revision)
            self.is_new = False
        else:
            markdown = self.workspace.update_section(
                self.start_line, self.end_line, buffer, revision=self.revision
            )
        self.content = buffer
        self.end_line = self.start_line + buffer.count("\n")
        self.revision = self.workspace.revision
        self.buffer = None
        self.state = EditState.PREVIEW
        return markdown

    def cancel(self) -> None:
        self._require(EditState.EDITING, "cancel")
        self.buffer = None
        self.state = EditState.PREVIEW


_SUGGESTIONS = {
    StaleRevision: "Call get_document to fetch the current revision and line numbers, then retry",
    RangeInvalid: "Check the line numbers against the latest list_sections or list_projects output",
    SectionOverlap: "Choose a destination line outside the section being moved",
    SectionNotFound: "Use the exact start/end lines reported by list_sections or list_archive",
    TaskNotFound: "Re-read the project with list_projects to get current task line indices",
}


class WorkflowManager:
    """Dictionary-returning facade over a ``Workspace``."""

    def __init__(self, root: Path | str):
        """Initialize workflow manager with workspace root."""
        self.workspace = Workspace(root)

    def _failure(self, operation: str, error: Exception) -> Dict[str, Any]:
        logger.error(f"{operation} failed: {error}")
        log_error_with_context(error, {"operation": operation, "revision": self.workspace.revision})
        suggestion = "Check the arguments and try again"
        for error_type, hint in _SUGGESTIONS.items():
            if isinstance(error, error_type):
                suggestion = hint
                break
        return {
            "error": str(error),
            "error_type": error.kind if isinstance(error, MutationError) else type(error).__name__,
            "suggestion": suggestion,
            "revision": self.workspace.revision,
            "message": f"Error: {error}",
        }

    def _document(self, message: str, **extra: Any) -> Dict[str, Any]:
        return {
            "markdown": self.workspace.markdown,
            "revision": self.workspace.revision,
            "message": message,
            **extra,
        }

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_document(self, include_archive: bool = False) -> Dict[str, Any]:
        result = self._document(f"Document at revision {self.workspace.revision}")
        if include_archive:
            result["archive_markdown"] = self.workspace.archive_markdown
        return result

    def list_sections(self, archive: bool = False) -> Dict[str, Any]:
        sections = self.workspace.archive_sections() if archive else self.workspace.sections()
        return {
            "sections": [section.to_dict() for section in sections],
            "count": len(sections),
            "revision": self.workspace.revision,
            "message": f"Found {len(sections)} sections",
        }

    def list_projects(self, project: Optional[str] = None, archive: bool = False) -> Dict[str, Any]:
        projects = self.workspace.archive_projects() if archive else self.workspace.projects()
        if project:
            projects = [item for item in projects if project in (item.title, item.slug)]
            if not projects:
                return {
                    "error": f"Project '{project}' not found",
                    "error_type": "ProjectNotFound",
                    "suggestion": "Call list_projects without a filter to see project titles",
                    "revision": self.workspace.revision,
                    "message": f"Error: project '{project}' not found",
                }
        return {
            "projects": [item.to_dict() for item in projects],
            "count": len(projects),
            "revision": self.workspace.revision,
            "message": f"Found {len(projects)} projects" if projects else "No projects yet. Add a '# Title' heading.",
        }

    def list_archive(self) -> Dict[str, Any]:
        blocks = self.workspace.archived_blocks()
        return {
            "blocks": blocks,
            "count": len(blocks),
            "archive_markdown": self.workspace.archive_markdown,
            "revision": self.workspace.revision,
            "message": f"Found {len(blocks)} archived blocks",
        }

    def open_editor(self, start_line: int) -> SectionEditor:
        """Editor for the section starting at ``start_line``."""
        section = self.workspace.parse().find_section(start_line)
        if section is None:
            raise SectionNotFound(f"No section starts at line {start_line}.", start_line=start_line)
        return SectionEditor(self.workspace, section)

    # ------------------------------------------------------------------
    # Section mutations
    # ------------------------------------------------------------------

    @log_performance("workflow_update_section")
    def update_section(
        self, start_line: int, end_line: int, new_content: str, revision: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            self.workspace.update_section(start_line, end_line, new_content, revision=revision)
            return self._document(f"Replaced lines {start_line}-{end_line}")
        except Exception as e:
            return self._failure("update_section", e)

    def insert_section(
        self, new_content: str, destination_line: int, revision: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            self.workspace.insert_section(new_content, destination_line, revision=revision)
            return self._document(f"Inserted content before line {destination_line}")
        except Exception as e:
            return self._failure("insert_section", e)

    @log_performance("workflow_move_section")
    def move_section(
        self, start_line: int, end_line: int, destination_line: int, revision: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            self.workspace.move_section(start_line, end_line, destination_line, revision=revision)
            return self._document(f"Moved lines {start_line}-{end_line} before line {destination_line}")
        except Exception as e:
            return self._failure("move_section", e)

    def duplicate_section(
        self, start_line: int, end_line: int, destination_line: int, revision: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            self.workspace.duplicate_section(start_line, end_line, destination_line, revision=revision)
            return self._document(f"Copied lines {start_line}-{end_line} before line {destination_line}")
        except Exception as e:
            return self._failure("duplicate_section", e)

    # ------------------------------------------------------------------
    # Task mutations
    # ------------------------------------------------------------------

    @log_performance("workflow_toggle_task")
    def toggle_task(
        self,
        line_index: int,
        is_completed: bool,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            self.workspace.toggle_task(line_index, is_completed, revision=revision, today=today)
            state = "completed" if is_completed else "reopened"
            return self._document(f"Task at line {line_index} {state}")
        except Exception as e:
            return self._failure("toggle_task", e)

    def update_task_block(
        self,
        start_line: int,
        original_line_count: int,
        new_content: str,
        revision: Optional[int] = None,
    ) -> Dict[str, Any]:
        try:
            self.workspace.update_task_block(start_line, original_line_count, new_content, revision=revision)
            return self._document(f"Replaced task block at line {start_line}")
        except Exception as e:
            return self._failure("update_task_block", e)

    def reorder_task(
        self,
        line_index: int,
        direction: str,
        block_end_line: Optional[int] = None,
        revision: Optional[int] = None,
    ) -> Dict[str, Any]:
        try:
            before = self.workspace.markdown
            self.workspace.reorder_task(
                line_index, direction, block_end_line=block_end_line, revision=revision
            )
            moved = self.workspace.markdown != before
            return self._document(
                f"Moved task at line {line_index} {direction}" if moved else "Task is already at that edge",
                moved=moved,
            )
        except Exception as e:
            return self._failure("reorder_task", e)

    def add_task_updates(
        self,
        line_indexes: Iterable[int],
        update_text: str,
        assignee_alias: Optional[str] = None,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            indexes = list(line_indexes)
            self.workspace.add_task_updates(
                indexes, update_text, assignee_alias, revision=revision, today=today
            )
            return self._document(f"Added an update to {len(indexes)} tasks")
        except Exception as e:
            return self._failure("add_task_updates", e)

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    @log_performance("workflow_archive_section")
    def archive_section(
        self,
        start_line: int,
        end_line: int,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            result = self.workspace.archive_section(start_line, end_line, revision=revision, today=today)
            return self._document(
                f"Archived lines {start_line}-{end_line}",
                archive_markdown=result.archive,
                archived_block={"start_line": result.start_line, "end_line": result.end_line},
            )
        except Exception as e:
            return self._failure("archive_section", e)

    def restore_section(self, start_line: int, end_line: int, revision: Optional[int] = None) -> Dict[str, Any]:
        try:
            result = self.workspace.restore_section(start_line, end_line, revision=revision)
            return self._document(
                f"Restored archived lines {start_line}-{end_line}",
                archive_markdown=result.archive,
                restored_block={"start_line": result.start_line, "end_line": result.end_line},
            )
        except Exception as e:
            return self._failure("restore_section", e)

    def archive_tasks(
        self,
        line_indexes: Iterable[int],
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            indexes = list(line_indexes)
            result = self.workspace.archive_tasks(indexes, revision=revision, today=today)
            return self._document(
                f"Archived {len(indexes)} tasks",
                archive_markdown=result.archive,
                archived_blocks=[{"start_line": start, "end_line": end} for start, end in result.blocks],
            )
        except Exception as e:
            return self._failure("archive_tasks", e)

    def clear_archive(self, revision: Optional[int] = None) -> Dict[str, Any]:
        try:
            self.workspace.clear_archive(revision=revision)
            return self._document("Archive cleared", archive_markdown=self.workspace.archive_markdown)
        except Exception as e:
            return self._failure("clear_archive", e)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self) -> Dict[str, Any]:
        users = self.workspace.users
        return {
            "users": [user.to_dict() for user in users],
            "count": len(users),
            "message": f"Found {len(users)} users" if users else "No users yet. Use add_user to register one.",
        }

    def add_user(self, name: str, alias: str, email: str = "", avatar_url: str = "") -> Dict[str, Any]:
        try:
            user = self.workspace.add_user(name, alias, email, avatar_url)
            return {
                "user": user.to_dict(),
                "revision": self.workspace.revision,
                "message": f"User @{user.alias} added",
            }
        except Exception as e:
            return self._failure("add_user", e)

    def update_user(
        self,
        alias: str,
        name: Optional[str] = None,
        new_alias: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
        revision: Optional[int] = None,
    ) -> Dict[str, Any]:
        try:
            user = self.workspace.update_user(
                alias,
                name=name,
                new_alias=new_alias,
                email=email,
                avatar_url=avatar_url,
                revision=revision,
            )
            return self._document(f"User @{alias} updated", user=user.to_dict())
        except Exception as e:
            return self._failure("update_user", e)

    def delete_user(self, alias: str, revision: Optional[int] = None) -> Dict[str, Any]:
        try:
            user = self.workspace.delete_user(alias, revision=revision)
            return self._document(f"User @{alias} deleted and unassigned", user=user.to_dict())
        except Exception as e:
            return self._failure("delete_user", e)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        state = self.workspace.export_state()
        observability_hooks.log_document_event("state_exported", revision=state.revision)
        return state.to_dict()

    def import_state(self, data: Any) -> Dict[str, Any]:
        try:
            state = self.workspace.import_state(data)
            return {
                "state": state.to_dict(),
                "revision": state.revision,
                "message": f"Imported project state with {len(state.users)} users",
            }
        except Exception as e:
            return self._failure("import_state", e)

    def summary(self) -> Dict[str, Any]:
        """Task counts per project."""
        projects = self.workspace.projects()
        rows: List[Dict[str, Any]] = [
            {
                "title": project.title,
                "task_count": project.task_count,
                "completed_count": project.completed_count,
                "completion_rate": project.get_completion_rate(),
                "total_cost": project.total_cost,
            }
            for project in projects
        ]
        return {"projects": rows, "count": len(rows), "revision": self.workspace.revision}
