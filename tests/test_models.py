"""Tests for roadsync.models."""

import pytest

from roadsync.models import (
    Card,
    CardOperationOutcome,
    CardResult,
    CardSuggestion,
    Column,
    ColumnConfig,
    SyncOperation,
    SyncResult,
    SyncStats,
    UpdateCardInput,
)


def test_card_frozen(sample_card: Card) -> None:
    with pytest.raises(Exception):
        sample_card.title = "changed"  # type: ignore[misc]


def test_card_defaults(sample_card: Card) -> None:
    card = Card(id="ROAD-2", title="Bare", column="Backlog", url="https://x", updated_at=sample_card.updated_at)
    assert card.description == ""
    assert card.labels == []
    assert card.assignees == []
    assert card.metadata == {}


class TestColumn:
    def test_create_forum_follows_archived(self) -> None:
        assert Column(id="done", name="Done", archived=True).create_forum is False
        assert Column(id="todo", name="To Do").create_forum is True

    def test_explicit_create_forum_wins(self) -> None:
        assert Column(id="done", name="Done", archived=True, create_forum=True).create_forum is True

    def test_null_create_forum_treated_as_unset(self) -> None:
        column = Column.model_validate({"id": "done", "name": "Done", "archived": True, "create_forum": None})
        assert column.create_forum is False


class TestColumnConfig:
    def test_blank_mapping_means_untracked(self) -> None:
        config = ColumnConfig.model_validate({"status_mapping": {"Won't Do": "", "Review": "In Progress"}})
        assert config.status_mapping == {"Won't Do": None, "Review": "In Progress"}

    def test_defaults(self) -> None:
        config = ColumnConfig()
        assert config.columns == []
        assert config.status_mapping == {}


class TestUpdateCardInput:
    def test_changes_excludes_unset(self) -> None:
        assert UpdateCardInput(title="New").changes() == {"title": "New"}

    def test_empty_string_counts_as_change(self) -> None:
        assert UpdateCardInput(description="").changes() == {"description": ""}

    def test_no_changes(self) -> None:
        assert UpdateCardInput().changes() == {}


class TestSyncStats:
    def test_record(self) -> None:
        stats = SyncStats()
        stats.record(SyncOperation.CREATED)
        stats.record(SyncOperation.CREATED)
        stats.record(SyncOperation.SKIPPED)
        stats.record(SyncOperation.REUSED)
        assert stats.created == 2
        assert stats.skipped == 1
        assert stats.reused == 1
        assert stats.moved == 0

    def test_result_success(self, sample_card: Card) -> None:
        result = SyncResult(synced_at=sample_card.updated_at)
        assert result.success is True
        assert result.stats.total == 0


class TestCardOperationOutcome:
    def test_plain_success(self, sample_card: Card) -> None:
        outcome = CardOperationOutcome(result=CardResult(card=sample_card, success=True, message="Created card ROAD-1"))
        assert outcome.success is True
        assert outcome.sync_failed is False
        assert outcome.message == "Created card ROAD-1"

    def test_sync_failure_keeps_success(self, sample_card: Card) -> None:
        outcome = CardOperationOutcome(
            result=CardResult(card=sample_card, success=True, message="Created card ROAD-1"),
            sync_error="Missing Access",
            unknown_labels=["ui"],
        )
        assert outcome.success is True
        assert outcome.sync_failed is True
        assert outcome.message == (
            "Created card ROAD-1, but forum sync failed (Missing Access). A manual resync may be required."
            " Unknown labels: ui."
        )

    def test_write_failure_message(self, sample_card: Card) -> None:
        outcome = CardOperationOutcome(result=CardResult(card=sample_card, success=False, message="boom"))
        assert outcome.success is False
        assert outcome.message == "boom"


def test_suggestion_label() -> None:
    assert CardSuggestion(card_id="ROAD-1", title="Dark mode").label == "ROAD-1: Dark mode"
