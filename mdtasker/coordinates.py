"""Line coordinate spaces.

Parsed entities always report absolute line indices. Views that show a
single project number lines from the project's heading instead; those
indices travel as ``RelativeToProject`` and are converted exactly once,
here, before they reach the mutation engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .models import Project


@dataclass(frozen=True, slots=True)
class Absolute:
    """A zero-based line index into the whole document."""

    index: int

    def to_relative(self, project_start: int) -> "RelativeToProject":
        return RelativeToProject(self.index - project_start, project_start)


@dataclass(frozen=True, slots=True)
class RelativeToProject:
    """A zero-based line index counted from a project's first line."""

    index: int
    project_start: int

    def to_absolute(self) -> Absolute:
        return Absolute(self.project_start + self.index)

    @classmethod
    def within(cls, project: "Project", index: int) -> "RelativeToProject":
        return cls(index, project.start_line)


LineRef = Union[int, Absolute, RelativeToProject]


def absolute(ref: LineRef) -> int:
    """Resolve any line reference to an absolute index."""
    if isinstance(ref, RelativeToProject):
        return ref.to_absolute().index
    if isinstance(ref, Absolute):
        return ref.index
    if isinstance(ref, bool) or not isinstance(ref, int):
        raise TypeError(f"Unsupported line reference: {ref!r}")
    return ref


def relative_to(project: "Project", ref: LineRef) -> RelativeToProject:
    return Absolute(absolute(ref)).to_relative(project.start_line)
