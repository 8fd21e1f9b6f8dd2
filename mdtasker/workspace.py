"""Workspace management for md-tasker.

A workspace is the single writer for one project: it owns the active
document, the archive document and the users registry, persists them under
``<root>/.md-tasker/`` and stamps every committed change with a revision
number. Callers that computed coordinates from an earlier parse pass that
revision back; a mismatch is rejected before anything is touched.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from . import archive as archive_store
from . import mutations
from .errors import StaleRevision, TaskNotFound
from .models import ArchiveResult, Project, ProjectState, Section, Task, User
from .parser import ParsedDocument, extract_tasks, parse_document, parse_sections
from .tasker_logging import (
    log_archive_event,
    log_error_with_context,
    log_operation,
    log_performance,
    log_section_change,
    log_task_change,
    observability_hooks,
)

logger = logging.getLogger("mdtasker.workspace")

Outcome = Union[str, ArchiveResult]


class Workspace:
    """Own and persist the documents of one md-tasker project."""

    STORAGE_DIR_ENV = "MDTASKER_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = ".md-tasker"

    def __init__(self, root: Path | str):
        """Initialize workspace with given root directory."""
        try:
            self.root = Path(root).resolve()
            self.base_dir = self.root / (os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR)

            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create workspace directory: {e}")
                raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}")

            self._markdown = self._read(self.document_path)
            self._archive = self._read(self.archive_path)
            self._users: List[User] = []
            self._revision = 0
            self._load_state()

            logger.info(f"Workspace initialized at {self.root} (revision {self._revision})")
            observability_hooks.log_document_event(
                "workspace_initialized",
                revision=self._revision,
                root=str(self.root),
            )

        except Exception as e:
            logger.error(f"Failed to initialize workspace: {e}")
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @property
    def document_path(self) -> Path:
        return self.base_dir / "document.md"

    @property
    def archive_path(self) -> Path:
        return self.base_dir / "archive.md"

    @property
    def state_path(self) -> Path:
        return self.base_dir / "state.json"

    @staticmethod
    def _read(path: Path) -> str:
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def _load_state(self) -> None:
        if not self.state_path.exists():
            return
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt workspace state in {self.state_path}: {e}") from e
        self._users = [User.from_dict(user) for user in data.get("users", [])]
        self._revision = int(data.get("revision", 0))

    def _persist(self) -> None:
        self.document_path.write_text(self._markdown, encoding="utf-8")
        self.archive_path.write_text(self._archive, encoding="utf-8")
        state = {
            "revision": self._revision,
            "users": [user.to_dict() for user in self._users],
        }
        self.state_path.write_text(json.dumps(state, indent=2) + "\n", encoding="utf-8")

    def _commit(self, markdown: str, archive: str) -> int:
        self._markdown = markdown
        self._archive = archive
        self._revision += 1
        self._persist()
        return self._revision

    # ------------------------------------------------------------------
    # Current state
    # ------------------------------------------------------------------

    @property
    def markdown(self) -> str:
        return self._markdown

    @property
    def archive_markdown(self) -> str:
        return self._archive

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def users(self) -> List[User]:
        return list(self._users)

    def check_revision(self, revision: Optional[int]) -> None:
        """Reject coordinates computed against an older revision."""
        if revision is not None and revision != self._revision:
            raise StaleRevision(
                f"Document is at revision {self._revision}, not {revision}. Re-read it and retry.",
                expected_revision=revision,
                current_revision=self._revision,
            )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def parse(self) -> ParsedDocument:
        return parse_document(self._markdown)

    def sections(self) -> List[Section]:
        return parse_sections(self._markdown)

    def projects(self) -> List[Project]:
        return self.parse().projects

    def project(self, key: str) -> Optional[Project]:
        """Look a project up by title or slug."""
        return self.parse().find_project(key)

    def archive_sections(self) -> List[Section]:
        return parse_sections(self._archive)

    def archive_projects(self) -> List[Project]:
        return parse_document(self._archive).projects

    def archived_blocks(self) -> List[Dict[str, Any]]:
        return archive_store.archived_blocks(self._archive)

    def task_at(self, line_index: int) -> Task:
        """The task starting at ``line_index`` in the current text."""
        parsed = self.parse()
        task = parsed.find_task(line_index)
        if task is None:
            # Tasks above the first level-1 heading belong to no project.
            for candidate in extract_tasks(self._markdown.split("\n")):
                if candidate.line_index == line_index:
                    task = candidate
                    break
        if task is None:
            raise TaskNotFound(f"Line {line_index} is not a task line.", line_index=line_index)
        return task

    def task_block_text(self, line_index: int) -> str:
        task = self.task_at(line_index)
        return "\n".join(mutations.block_lines(self._markdown, task.line_index, task.block_end_line))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _apply(
        self,
        operation: str,
        revision: Optional[int],
        compute: Callable[[str, str], Outcome],
        **context: Any,
    ) -> Outcome:
        """Run ``compute`` against the current texts and commit its result."""
        try:
            with log_operation(operation, revision=self._revision, **context):
                self.check_revision(revision)
                outcome = compute(self._markdown, self._archive)
                if isinstance(outcome, ArchiveResult):
                    self._commit(outcome.active, outcome.archive)
                else:
                    self._commit(outcome, self._archive)
            return outcome

        except Exception as e:
            logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
            log_error_with_context(e, {"operation": operation, "revision": self._revision, **context})
            raise

    @log_performance("update_section")
    def update_section(self, start_line: int, end_line: int, new_content: str, *, revision: Optional[int] = None) -> str:
        markdown = self._apply(
            "update_section",
            revision,
            lambda active, _: mutations.update_section(active, start_line, end_line, new_content),
            start_line=start_line,
            end_line=end_line,
        )
        log_section_change("updated", start_line, end_line, self._revision)
        return markdown

    @log_performance("insert_section")
    def insert_section(self, new_content: str, destination_line: int, *, revision: Optional[int] = None) -> str:
        markdown = self._apply(
            "insert_section",
            revision,
            lambda active, _: mutations.insert_section(active, new_content, destination_line),
            destination_line=destination_line,
        )
        log_section_change(
            "inserted", destination_line, destination_line + new_content.count("\n"), self._revision
        )
        return markdown

    @log_performance("move_section")
    def move_section(
        self, start_line: int, end_line: int, destination_line: int, *, revision: Optional[int] = None
    ) -> str:
        markdown = self._apply(
            "move_section",
            revision,
            lambda active, _: mutations.move_section(active, (start_line, end_line), destination_line),
            start_line=start_line,
            end_line=end_line,
            destination_line=destination_line,
        )
        log_section_change("moved", start_line, end_line, self._revision, destination_line=destination_line)
        return markdown

    @log_performance("duplicate_section")
    def duplicate_section(
        self, start_line: int, end_line: int, destination_line: int, *, revision: Optional[int] = None
    ) -> str:
        markdown = self._apply(
            "duplicate_section",
            revision,
            lambda active, _: mutations.duplicate_section(active, (start_line, end_line), destination_line),
            start_line=start_line,
            end_line=end_line,
            destination_line=destination_line,
        )
        log_section_change("duplicated", start_line, end_line, self._revision, destination_line=destination_line)
        return markdown

    @log_performance("toggle_task")
    def toggle_task(
        self,
        line_index: int,
        is_completed: bool,
        *,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> str:
        markdown = self._apply(
            "toggle_task",
            revision,
            lambda active, _: mutations.toggle_task(active, line_index, is_completed, today=today),
            line_index=line_index,
            is_completed=is_completed,
        )
        log_task_change("toggled", line_index, self._revision, completed=is_completed)
        return markdown

    @log_performance("update_task_block")
    def update_task_block(
        self,
        start_line: int,
        original_line_count: int,
        new_content: str,
        *,
        revision: Optional[int] = None,
    ) -> str:
        markdown = self._apply(
            "update_task_block",
            revision,
            lambda active, _: mutations.update_task_block(active, start_line, original_line_count, new_content),
            start_line=start_line,
            original_line_count=original_line_count,
        )
        log_task_change("block_updated", start_line, self._revision, original_line_count=original_line_count)
        return markdown

    @log_performance("reorder_task")
    def reorder_task(
        self,
        line_index: int,
        direction: str,
        *,
        block_end_line: Optional[int] = None,
        revision: Optional[int] = None,
    ) -> str:
        """Move a task within its run of sibling blocks.

        ``block_end_line`` is the caller's view of where the block ends; when
        given it must still match the current text.
        """

        def compute(active: str, _: str) -> str:
            task = self.task_at(line_index)
            if block_end_line is not None:
                task = Task(
                    line_index=task.line_index,
                    text=task.text,
                    completed=task.completed,
                    block_end_line=block_end_line,
                )
            return mutations.reorder_task(active, task, direction)

        markdown = self._apply("reorder_task", revision, compute, line_index=line_index, direction=direction)
        log_task_change("reordered", line_index, self._revision, direction=direction)
        return markdown

    @log_performance("add_task_updates")
    def add_task_updates(
        self,
        line_indexes: Iterable[int],
        update_text: str,
        assignee_alias: Optional[str] = None,
        *,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> str:
        indexes = list(line_indexes)
        markdown = self._apply(
            "add_task_updates",
            revision,
            lambda active, _: mutations.add_task_updates(
                active, indexes, update_text, assignee_alias, today=today
            ),
            line_indexes=indexes,
        )
        for index in indexes:
            log_task_change("update_added", index, self._revision, assignee_alias=assignee_alias)
        return markdown

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    @log_performance("archive_section")
    def archive_section(
        self,
        start_line: int,
        end_line: int,
        *,
        project_title: Optional[str] = None,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> ArchiveResult:
        """Move a section into the archive under its project's heading."""

        def compute(active: str, archive: str) -> ArchiveResult:
            title = project_title
            if title is None:
                project = self.parse().project_for_line(start_line)
                title = project.title if project else ""
            return archive_store.archive_section(active, archive, (start_line, end_line), title, today=today)

        result = self._apply("archive_section", revision, compute, start_line=start_line, end_line=end_line)
        log_archive_event("section_archived", self._revision, result.blocks, start_line=start_line, end_line=end_line)
        return result

    @log_performance("restore_section")
    def restore_section(self, start_line: int, end_line: int, *, revision: Optional[int] = None) -> ArchiveResult:
        """Move an archived block back into the active document."""
        result = self._apply(
            "restore_section",
            revision,
            lambda active, archive: archive_store.restore_section(active, archive, (start_line, end_line)),
            start_line=start_line,
            end_line=end_line,
        )
        log_archive_event("section_restored", self._revision, result.blocks, start_line=start_line, end_line=end_line)
        return result

    @log_performance("archive_tasks")
    def archive_tasks(
        self,
        line_indexes: Iterable[int],
        *,
        revision: Optional[int] = None,
        today: Optional[str] = None,
    ) -> ArchiveResult:
        indexes = list(line_indexes)

        def compute(active: str, archive: str) -> ArchiveResult:
            tasks = [self.task_at(index) for index in indexes]
            return archive_store.archive_tasks(active, archive, tasks, today=today)

        result = self._apply("archive_tasks", revision, compute, line_indexes=indexes)
        log_archive_event("tasks_archived", self._revision, result.blocks, line_indexes=indexes)
        return result

    @log_performance("clear_archive")
    def clear_archive(self, *, revision: Optional[int] = None) -> str:
        self._apply(
            "clear_archive",
            revision,
            lambda active, _: ArchiveResult(active=active, archive=archive_store.clear_archive()),
        )
        log_archive_event("archive_cleared", self._revision, [])
        return self._archive

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(self, alias: str) -> Optional[User]:
        for user in self._users:
            if user.alias == alias:
                return user
        return None

    @log_performance("add_user")
    def add_user(self, name: str, alias: str, email: str = "", avatar_url: str = "") -> User:
        """Register a user; aliases are unique."""
        try:
            user = User(name=name.strip(), alias=alias.strip(), email=email.strip(), avatar_url=avatar_url)
            issues = user.validate()
            if issues:
                raise ValueError("; ".join(issues))
            if self.find_user(user.alias):
                raise ValueError(f"A user with alias '{user.alias}' already exists")

            with log_operation("add_user", alias=user.alias):
                self._users.append(user)
                self._commit(self._markdown, self._archive)

            observability_hooks.log_document_event("user_added", revision=self._revision, alias=user.alias)
            return user

        except Exception as e:
            logger.error(f"Failed to add user: {e}")
            log_error_with_context(e, {"operation": "add_user", "alias": alias})
            raise

    @log_performance("update_user")
    def update_user(
        self,
        alias: str,
        *,
        name: Optional[str] = None,
        new_alias: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
        revision: Optional[int] = None,
    ) -> User:
        """Edit a user. Renaming the alias rewrites both documents."""
        try:
            self.check_revision(revision)
            current = self.find_user(alias)
            if current is None:
                raise ValueError(f"Unknown user alias '{alias}'")

            target_alias = (new_alias or alias).strip()
            updated = User(
                name=(name if name is not None else current.name).strip(),
                alias=target_alias,
                email=(email if email is not None else current.email).strip(),
                avatar_url=avatar_url if avatar_url is not None else (
                    current.avatar_url if target_alias == alias else ""
                ),
            )
            issues = updated.validate()
            if issues:
                raise ValueError("; ".join(issues))
            if target_alias != alias and self.find_user(target_alias):
                raise ValueError(f"A user with alias '{target_alias}' already exists")

            with log_operation("update_user", alias=alias, new_alias=target_alias):
                markdown, archive = self._markdown, self._archive
                if target_alias != alias:
                    markdown = mutations.rename_assignee(markdown, alias, target_alias)
                    archive = mutations.rename_assignee(archive, alias, target_alias)
                self._users = [updated if user.alias == alias else user for user in self._users]
                self._commit(markdown, archive)

            observability_hooks.log_document_event(
                "user_updated", revision=self._revision, alias=alias, new_alias=target_alias
            )
            return updated

        except Exception as e:
            logger.error(f"Failed to update user: {e}")
            log_error_with_context(e, {"operation": "update_user", "alias": alias})
            raise

    @log_performance("delete_user")
    def delete_user(self, alias: str, *, revision: Optional[int] = None) -> User:
        """Remove a user and strip their assignments from both documents."""
        try:
            self.check_revision(revision)
            user = self.find_user(alias)
            if user is None:
                raise ValueError(f"Unknown user alias '{alias}'")

            with log_operation("delete_user", alias=alias):
                self._users = [other for other in self._users if other.alias != alias]
                self._commit(
                    mutations.remove_assignee(self._markdown, alias),
                    mutations.remove_assignee(self._archive, alias),
                )

            observability_hooks.log_document_event("user_deleted", revision=self._revision, alias=alias)
            return user

        except Exception as e:
            logger.error(f"Failed to delete user: {e}")
            log_error_with_context(e, {"operation": "delete_user", "alias": alias})
            raise

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_state(self) -> ProjectState:
        return ProjectState(
            markdown=self._markdown,
            archive_markdown=self._archive,
            users=self.users,
            revision=self._revision,
        )

    @log_performance("import_state")
    def import_state(self, data: Union[Dict[str, Any], str]) -> ProjectState:
        """Replace the whole project state from an exported payload."""
        try:
            if isinstance(data, str):
                try:
                    data = json.loads(data)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Project state is not valid JSON: {e}") from e
            state = ProjectState.from_dict(data)
            for user in state.users:
                issues = user.validate()
                if issues:
                    raise ValueError(f"Invalid user '{user.alias}': {'; '.join(issues)}")

            with log_operation("import_state", user_count=len(state.users)):
                self._users = list(state.users)
                self._commit(state.markdown, state.archive_markdown)

            observability_hooks.log_document_event(
                "state_imported", revision=self._revision, user_count=len(state.users)
            )
            return self.export_state()

        except Exception as e:
            logger.error(f"Failed to import state: {e}")
            log_error_with_context(e, {"operation": "import_state"})
            raise
