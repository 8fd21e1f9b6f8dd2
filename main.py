"""MCP server exposing md-tasker document tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from mdtasker.tasker_logging import setup_logging
from mdtasker.workflow import WorkflowManager
from mdtasker.workspace import Workspace

mcp = FastMCP("md-tasker")


PROJECT_MARKER_DIRECTORY = Workspace.DEFAULT_STORAGE_DIR
SERVER_ROOT = Path(__file__).resolve().parent


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    for parent in SERVER_ROOT.parents:
        if parent not in bases:
            bases.append(parent)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root() -> Optional[Path]:
    marker = os.getenv(Workspace.STORAGE_DIR_ENV) or PROJECT_MARKER_DIRECTORY
    for base in _candidate_bases():
        if (base / marker).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv("MDTASKER_PROJECT_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable MDTASKER_PROJECT_ROOT points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        "or set the MDTASKER_PROJECT_ROOT environment variable."
    )


def _manager(root: Optional[str]) -> WorkflowManager:
    return WorkflowManager(_resolve_root(root))


@mcp.resource("md-tasker://projects")
def resource_projects() -> str:
    """Resource view listing projects and their task progress."""

    try:
        manager = _manager(None)
    except ValueError:
        return "No project root detected. Launch tools with a 'root' argument or set MDTASKER_PROJECT_ROOT."

    projects = manager.workspace.projects()
    if not projects:
        return "The document has no projects yet."

    lines = ["md-tasker Projects"]
    for project in projects:
        lines.append("")
        lines.append(
            f"- {project.title} (lines {project.start_line}-{project.end_line}): "
            f"{project.completed_count}/{project.task_count} tasks done"
        )
        if project.total_cost:
            lines.append(f"  Total cost: ${project.total_cost:.2f}")
        for alias, tasks in project.grouped_tasks.items():
            lines.append(f"  @{alias}: {len(tasks)} tasks")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Reading
# ----------------------------------------------------------------------


@mcp.tool()
def get_document(include_archive: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the active markdown document and its revision.
    Pass the revision back to any mutating tool so stale line numbers are rejected."""

    return _manager(root).get_document(include_archive=include_archive)


@mcp.tool()
def list_projects(project: Optional[str] = None, archive: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """List projects (level-1 headings) with their tasks grouped by assignee.
    Filter by project title or slug; set archive=True to read the archive document."""

    return _manager(root).list_projects(project=project, archive=archive)


@mcp.tool()
def list_sections(archive: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """List the heading-delimited sections with their absolute line ranges."""

    return _manager(root).list_sections(archive=archive)


@mcp.tool()
def list_archive(root: Optional[str] = None) -> Dict[str, Any]:
    """List archived blocks with the line ranges restore_section expects."""

    return _manager(root).list_archive()


# ----------------------------------------------------------------------
# Sections
# ----------------------------------------------------------------------


@mcp.tool()
def update_section(
    start_line: int,
    end_line: int,
    new_content: str,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Replace the inclusive line range start_line..end_line with new_content."""

    return _manager(root).update_section(start_line, end_line, new_content, revision=revision)


@mcp.tool()
def insert_section(
    new_content: str,
    destination_line: int,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert new content before destination_line (use the line count to append)."""

    return _manager(root).insert_section(new_content, destination_line, revision=revision)


@mcp.tool()
def move_section(
    start_line: int,
    end_line: int,
    destination_line: int,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a line block so it sits before destination_line.
    destination_line is counted in the document as it is now, before the move."""

    return _manager(root).move_section(start_line, end_line, destination_line, revision=revision)


@mcp.tool()
def duplicate_section(
    start_line: int,
    end_line: int,
    destination_line: int,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a copy of a line block before destination_line."""

    return _manager(root).duplicate_section(start_line, end_line, destination_line, revision=revision)


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


@mcp.tool()
def toggle_task(
    line_index: int,
    is_completed: bool,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Complete (stamping ~today) or reopen the task at line_index."""

    return _manager(root).toggle_task(line_index, is_completed, revision=revision)


@mcp.tool()
def update_task_block(
    start_line: int,
    original_line_count: int,
    new_content: str,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Replace a task and its update lines (original_line_count lines from start_line)."""

    return _manager(root).update_task_block(start_line, original_line_count, new_content, revision=revision)


@mcp.tool()
def reorder_task(
    line_index: int,
    direction: str,
    block_end_line: Optional[int] = None,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a task within its run of sibling tasks (blank lines do not break a run). direction: up, down, top or bottom."""

    return _manager(root).reorder_task(line_index, direction, block_end_line=block_end_line, revision=revision)


@mcp.tool()
def add_task_updates(
    line_indexes: List[int],
    update_text: str,
    assignee_alias: Optional[str] = None,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Append the same dated progress note to each listed task."""

    return _manager(root).add_task_updates(line_indexes, update_text, assignee_alias, revision=revision)


# ----------------------------------------------------------------------
# Archive
# ----------------------------------------------------------------------


@mcp.tool()
def archive_section(
    start_line: int,
    end_line: int,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a whole section into the archive document under its project heading."""

    return _manager(root).archive_section(start_line, end_line, revision=revision)


@mcp.tool()
def restore_section(
    start_line: int,
    end_line: int,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move an archived block back under the headings it was archived from.
    Line numbers must match one block from list_archive exactly."""

    return _manager(root).restore_section(start_line, end_line, revision=revision)


@mcp.tool()
def archive_tasks(
    line_indexes: List[int],
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move the listed tasks (with their updates) into the archive."""

    return _manager(root).archive_tasks(line_indexes, revision=revision)


@mcp.tool()
def clear_archive(revision: Optional[int] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Empty the archive document."""

    return _manager(root).clear_archive(revision=revision)


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------


@mcp.tool()
def list_users(root: Optional[str] = None) -> Dict[str, Any]:
    """List registered users and their aliases."""

    return _manager(root).list_users()


@mcp.tool()
def add_user(
    name: str,
    alias: str,
    email: str = "",
    avatar_url: str = "",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Register a user that tasks can be assigned to with (@alias)."""

    return _manager(root).add_user(name, alias, email=email, avatar_url=avatar_url)


@mcp.tool()
def update_user(
    alias: str,
    name: Optional[str] = None,
    new_alias: Optional[str] = None,
    email: Optional[str] = None,
    avatar_url: Optional[str] = None,
    revision: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit a user. Changing the alias rewrites (@alias) in both documents."""

    return _manager(root).update_user(
        alias,
        name=name,
        new_alias=new_alias,
        email=email,
        avatar_url=avatar_url,
        revision=revision,
    )


@mcp.tool()
def delete_user(alias: str, revision: Optional[int] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Remove a user and strip their (@alias) assignments from both documents."""

    return _manager(root).delete_user(alias, revision=revision)


# ----------------------------------------------------------------------
# Import / export
# ----------------------------------------------------------------------


@mcp.tool()
def export_state(root: Optional[str] = None) -> Dict[str, Any]:
    """Export {markdown, archiveMarkdown, users} as one JSON object."""

    return _manager(root).export_state()


@mcp.tool()
def import_state(state: Dict[str, Any], root: Optional[str] = None) -> Dict[str, Any]:
    """Replace the whole project state with a previously exported object."""

    return _manager(root).import_state(state)


def main() -> None:
    log_file = os.getenv("MDTASKER_LOG_FILE")
    setup_logging(
        os.getenv("MDTASKER_LOG_LEVEL", "INFO").upper(),
        Path(log_file) if log_file else None,
    )
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
