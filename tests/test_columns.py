"""Tests for roadsync.columns: status <-> column mapping."""

import pytest

from roadsync.columns import (
    DEFAULT_COLUMNS,
    default_column,
    find_column,
    is_untracked,
    lookup_status,
    map_column_to_status,
    map_status_to_column,
    resolve_columns,
)
from roadsync.models import Column, ColumnConfig

CUSTOM = [
    Column(id="ideas", name="Ideas", order=0),
    Column(id="building", name="Building", order=1),
    Column(id="shipped", name="Shipped", order=2, archived=True),
]


class TestResolveColumns:
    def test_defaults(self) -> None:
        assert [c.name for c in resolve_columns(None)] == ["Backlog", "In Progress", "Done"]
        assert resolve_columns(ColumnConfig()) == list(DEFAULT_COLUMNS)

    def test_sorted_by_order(self) -> None:
        config = ColumnConfig(columns=list(reversed(CUSTOM)))
        assert [c.name for c in resolve_columns(config)] == ["Ideas", "Building", "Shipped"]

    def test_done_is_archived_but_keeps_forum(self) -> None:
        done = find_column(DEFAULT_COLUMNS, "done")
        assert done is not None
        assert done.archived is True
        assert done.create_forum is True

    def test_default_column(self) -> None:
        assert default_column(DEFAULT_COLUMNS).name == "Backlog"
        assert default_column(CUSTOM).name == "Ideas"
        assert default_column([]).name == "Backlog"


class TestLookupStatus:
    def test_case_insensitive(self) -> None:
        assert lookup_status({"In Review": "In Progress"}, "in review") == (True, "In Progress")

    def test_missing(self) -> None:
        assert lookup_status({"In Review": "In Progress"}, "Blocked") == (False, None)
        assert lookup_status(None, "Blocked") == (False, None)

    def test_untracked(self) -> None:
        assert is_untracked("Won't Do", {"Won't Do": None}) is True
        assert is_untracked("Done", {"Won't Do": None}) is False
        assert is_untracked(None, {"Won't Do": None}) is False


class TestMapStatusToColumn:
    @pytest.mark.parametrize(
        ("status", "category", "expected"),
        [
            ("Product Backlog", "Done", "Backlog"),
            ("Selected", "To Do", "Backlog"),
            ("Code Review", "In Progress", "In Progress"),
            ("Released", "Done", "Done"),
            ("Doing", None, "In Progress"),
            ("Closed", None, "Done"),
            ("TODO", None, "Backlog"),
            ("Triage", None, "Backlog"),
            (None, None, "Backlog"),
        ],
    )
    def test_default_rules(self, status: str | None, category: str | None, expected: str) -> None:
        assert map_status_to_column(status, category) == expected

    def test_deterministic(self) -> None:
        results = {map_status_to_column("Code Review", "In Progress", DEFAULT_COLUMNS) for _ in range(5)}
        assert results == {"In Progress"}

    def test_configured_mapping_beats_category(self) -> None:
        mapping = {"QA": "Done"}
        assert map_status_to_column("qa", "In Progress", DEFAULT_COLUMNS, mapping) == "Done"

    def test_untracked_maps_to_default(self) -> None:
        assert map_status_to_column("Won't Do", "Done", DEFAULT_COLUMNS, {"Won't Do": None}) == "Backlog"

    def test_mapping_to_unknown_column_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        assert map_status_to_column("QA", "In Progress", DEFAULT_COLUMNS, {"QA": "Testing"}) == "In Progress"
        assert "unknown column" in caplog.text

    def test_custom_columns_fall_back_to_default(self) -> None:
        assert map_status_to_column("In Progress", "In Progress", CUSTOM) == "Ideas"
        assert map_status_to_column("Live", None, CUSTOM, {"Live": "Shipped"}) == "Shipped"


class TestMapColumnToStatus:
    def test_fixed_table(self) -> None:
        assert map_column_to_status("Backlog") == "To Do"
        assert map_column_to_status("in progress") == "In Progress"
        assert map_column_to_status("Done") == "Done"

    def test_configured_mapping_first(self) -> None:
        assert map_column_to_status("Done", {"Won't Do": None, "Released": "Done"}) == "Released"

    def test_unknown_column(self) -> None:
        assert map_column_to_status("Someday") == "To Do"
