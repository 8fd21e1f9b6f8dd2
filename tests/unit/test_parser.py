"""Unit tests for section parsing, task extraction and project partitioning."""

import pytest

from mdtasker.document import Document
from mdtasker.grammar import format_task_block
from mdtasker.parser import (
    DEFAULT_PROJECT_TITLE,
    extract_tasks,
    find_task_blocks,
    parse_document,
    parse_headings,
    parse_sections,
    partition_projects,
    task_block_at,
)


SAMPLE = "\n".join([
    "Intro line",                                           # 0
    "# Project Titan",                                      # 1
    "## Phase 1: Design",                                   # 2
    "- [x] UI/UX Design system (@alice) ($2500) ~2024-07-20",  # 3
    "  - 2024-07-10: Kickoff (@alice)",                     # 4
    "",                                                     # 5
    "  - 2024-07-18: Review done",                          # 6
    "- [ ] Wireframes +2024-07-01 !2024-08-10 (@bob) ($1500)",  # 7
    "### Notes",                                            # 8
    "- [!] Pinned reminder",                                # 9
    "# Project Apollo",                                     # 10
    "- [ ] Launch",                                         # 11
    "",                                                     # 12
])


class TestParseSections:
    """Test cases for the section parser."""

    def test_no_headings_single_section(self):
        """Test a document without headings is one headless section."""
        sections = parse_sections("just text\nmore text\n")

        assert len(sections) == 1
        assert sections[0].start_line == 0
        assert sections[0].end_line == 2
        assert sections[0].is_preamble
        assert sections[0].title == "Preamble"

    def test_preamble_and_heading_sections(self):
        """Test sections split at every level 1-3 heading."""
        sections = parse_sections(SAMPLE)

        assert [(s.start_line, s.end_line) for s in sections] == [
            (0, 0), (1, 1), (2, 7), (8, 9), (10, 12),
        ]
        assert sections[0].heading is None
        assert sections[2].heading.text == "Phase 1: Design"
        assert sections[2].heading.slug == "phase-1-design"

    def test_sections_reconstruct_document(self):
        """Test section contents joined back give the original text."""
        sections = parse_sections(SAMPLE)

        assert "\n".join(section.content for section in sections) == SAMPLE

    def test_empty_document(self):
        """Test the empty document is one empty section."""
        sections = parse_sections("")

        assert len(sections) == 1
        assert sections[0].content == ""

    def test_parse_is_idempotent(self):
        """Test re-parsing yields the same boundaries."""
        first = parse_sections(SAMPLE)
        second = parse_sections("\n".join(section.content for section in first))

        assert [(s.start_line, s.end_line) for s in first] == [(s.start_line, s.end_line) for s in second]

    def test_parse_headings(self):
        headings = parse_headings(SAMPLE.split("\n"))

        assert [(h.level, h.line) for h in headings] == [(1, 1), (2, 2), (3, 8), (1, 10)]


class TestExtractTasks:
    """Test cases for the task extractor."""

    def test_task_fields_and_updates(self):
        """Test annotations, updates and block end are extracted."""
        tasks = extract_tasks(SAMPLE.split("\n"))
        design = tasks[0]

        assert design.line_index == 3
        assert design.text == "UI/UX Design system"
        assert design.completed
        assert design.assignee_alias == "alice"
        assert design.cost == 2500
        assert design.completion_date == "2024-07-20"
        assert [u.line_index for u in design.updates] == [4, 6]
        assert design.updates[0].assignee_alias == "alice"
        assert design.updates[0].text == "Kickoff"
        assert design.updates[1].assignee_alias is None
        assert design.block_end_line == 6

    def test_offset_makes_indices_absolute(self):
        """Test line indices are reported relative to the given offset."""
        tasks = extract_tasks(["- [ ] a", "  - 2024-01-01: note"], offset=40)

        assert tasks[0].line_index == 40
        assert tasks[0].updates[0].line_index == 41
        assert tasks[0].block_end_line == 41

    def test_trailing_blank_not_in_block(self):
        """Test blank lines after the last update do not extend the block."""
        tasks = extract_tasks(["- [ ] a", "", "", "text"])

        assert tasks[0].block_end_line == 0

    def test_non_update_line_ends_block(self):
        """Test an update after plain text belongs to no task."""
        tasks = extract_tasks(["- [ ] a", "plain", "  - 2024-01-01: orphan"])

        assert tasks[0].updates == []
        assert tasks[0].block_end_line == 0

    def test_pinned_task(self):
        tasks = extract_tasks(["- [!] pinned"])

        assert tasks[0].pinned
        assert not tasks[0].completed

    def test_invalid_update_date_recorded(self):
        """Test an impossible update date is recorded as an issue."""
        tasks = extract_tasks(["- [ ] a", "  - 2024-02-31: bad date"])

        assert len(tasks[0].updates) == 1
        assert tasks[0].issues == ["invalid update date: '2024-02-31'"]

    def test_find_task_blocks(self):
        blocks = find_task_blocks(Document.from_text(SAMPLE))

        assert blocks == [(3, 6), (7, 7), (9, 9), (11, 11)]

    def test_task_block_at(self):
        document = Document.from_text(SAMPLE)

        assert task_block_at(document, 3) == (3, 6)
        assert task_block_at(document, 4) is None
        assert task_block_at(document, 99) is None

    def test_format_task_block_round_trip(self):
        """Test a formatted block parses to the same fields."""
        original = extract_tasks(SAMPLE.split("\n"))[0]
        lines = format_task_block(original).split("\n")
        reparsed = extract_tasks(lines)[0]

        assert reparsed.text == original.text
        assert reparsed.assignee_alias == original.assignee_alias
        assert reparsed.completion_date == original.completion_date
        assert [u.text for u in reparsed.updates] == [u.text for u in original.updates]


class TestPartitionProjects:
    """Test cases for the project partitioner."""

    def test_projects_bounded_by_h1(self):
        """Test projects span from one H1 to the line before the next."""
        projects = partition_projects(parse_sections(SAMPLE))

        assert [(p.title, p.start_line, p.end_line) for p in projects] == [
            ("Project Titan", 1, 9),
            ("Project Apollo", 10, 12),
        ]

    def test_preamble_belongs_to_no_project(self):
        """Test lines before the first H1 are outside every project."""
        parsed = parse_document(SAMPLE)

        assert parsed.project_for_line(0) is None
        assert parsed.project_for_line(5).title == "Project Titan"

    def test_no_h1_gives_overview_project(self):
        """Test a document without level-1 headings forms one project."""
        projects = partition_projects(parse_sections("## Todo\n- [ ] a (@x)\n- [ ] b\n"))

        assert len(projects) == 1
        assert projects[0].title == DEFAULT_PROJECT_TITLE
        assert projects[0].start_line == 0
        assert projects[0].end_line == 3

    def test_headings_outline_and_grouping(self):
        """Test headings outline, assignee grouping and totals."""
        titan = partition_projects(parse_sections(SAMPLE))[0]

        assert [h.text for h in titan.headings] == ["Phase 1: Design", "Notes"]
        assert list(titan.grouped_tasks) == ["alice", "bob"]
        assert [t.line_index for t in titan.unassigned_tasks] == [9]
        assert titan.total_cost == 4000
        assert titan.task_count == 3
        assert titan.completed_count == 1
        assert titan.get_completion_rate() == pytest.approx(100 / 3)

    def test_heading_hierarchy(self):
        """Test each task knows its enclosing headings."""
        titan = partition_projects(parse_sections(SAMPLE))[0]
        pinned = [t for t in titan.tasks if t.line_index == 9][0]

        assert [(h.text, h.level) for h in pinned.heading_hierarchy] == [
            ("Project Titan", 1), ("Phase 1: Design", 2), ("Notes", 3),
        ]
        assert pinned.section_title == "Notes"
        assert pinned.project_title == "Project Titan"

    def test_tasks_sorted_in_document_order(self):
        titan = partition_projects(parse_sections(SAMPLE))[0]

        assert [t.line_index for t in titan.tasks] == [3, 7, 9]


class TestParsedDocument:
    """Test cases for the parsed document lookups."""

    def test_find_project_by_title_or_slug(self):
        parsed = parse_document(SAMPLE)

        assert parsed.find_project("Project Apollo").start_line == 10
        assert parsed.find_project("project-apollo").start_line == 10
        assert parsed.find_project("missing") is None

    def test_find_task_and_section(self):
        parsed = parse_document(SAMPLE)

        assert parsed.find_task(11).text == "Launch"
        assert parsed.find_task(4) is None
        assert parsed.find_section(8).heading.text == "Notes"
