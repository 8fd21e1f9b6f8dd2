"""Immutable line-array view of a document.

Mutations never edit a line list in place: every change composes slices of
the old tuple into a new one, so a rejected operation can simply discard
its partial result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

from .errors import RangeInvalid
from .grammar import ClassifiedLine, classify_line


@dataclass(frozen=True, slots=True)
class Document:
    """An ordered, immutable sequence of text lines."""

    lines: Tuple[str, ...]

    @classmethod
    def from_text(cls, text: str) -> "Document":
        return cls(tuple(text.split("\n")))

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self.lines)

    def __getitem__(self, index: int) -> str:
        return self.lines[index]

    def classify(self, index: int) -> ClassifiedLine:
        return classify_line(self.lines[index])

    # ------------------------------------------------------------------
    # Bounds checks
    # ------------------------------------------------------------------

    def check_range(self, start: int, end: int) -> None:
        """Validate an inclusive line range."""
        if start > end:
            raise RangeInvalid(
                f"Start line {start} is after end line {end}.", start_line=start, end_line=end
            )
        if start < 0 or end >= len(self.lines):
            raise RangeInvalid(
                f"Lines {start}-{end} are outside the document (0-{len(self.lines) - 1}).",
                start_line=start,
                end_line=end,
                line_count=len(self.lines),
            )

    def check_insertion_point(self, index: int) -> None:
        """Validate an insert-before index; ``len(doc)`` means end of document."""
        if index < 0 or index > len(self.lines):
            raise RangeInvalid(
                f"Destination line {index} is outside the document (0-{len(self.lines)}).",
                destination_line=index,
                line_count=len(self.lines),
            )

    # ------------------------------------------------------------------
    # Slice/splice composition
    # ------------------------------------------------------------------

    def block(self, start: int, end: int) -> Tuple[str, ...]:
        self.check_range(start, end)
        return self.lines[start : end + 1]

    def splice(self, start: int, delete_count: int, insert: Sequence[str] = ()) -> "Document":
        """Return a new document with ``delete_count`` lines at ``start`` replaced."""
        return Document(self.lines[:start] + tuple(insert) + self.lines[start + delete_count :])

    def replace(self, start: int, end: int, insert: Sequence[str]) -> "Document":
        self.check_range(start, end)
        return self.splice(start, end - start + 1, insert)

    def remove(self, start: int, end: int) -> "Document":
        self.check_range(start, end)
        return self.splice(start, end - start + 1)

    def insert(self, index: int, insert: Sequence[str]) -> "Document":
        self.check_insertion_point(index)
        return self.splice(index, 0, insert)

    # ------------------------------------------------------------------
    # Structural helpers
    # ------------------------------------------------------------------

    def next_non_blank(self, index: int) -> int:
        """Index of the first non-blank line at or after ``index``, or ``len``."""
        while index < len(self.lines) and self.lines[index].strip() == "":
            index += 1
        return index

    def content_end(self, start: int, end: int) -> int:
        """Insert-before index just after the last non-blank line in ``[start, end]``."""
        index = end + 1
        while index - 1 >= start and self.lines[index - 1].strip() == "":
            index -= 1
        return index
