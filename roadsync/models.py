"""Shared pydantic models: the contract between providers, the sync engine and callers."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Assignee(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str  # provider display name, never rendered to end users
    avatar_url: str | None = None


class Card(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str  # provider-native key, e.g. ROAD-42
    title: str
    description: str = ""
    labels: list[str] = []
    column: str  # logical column name, not the tracker's raw status
    assignees: list[Assignee] = []
    url: str
    updated_at: datetime
    metadata: dict[str, Any] = {}


class Column(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    order: int = 0
    archived: bool = False
    create_forum: bool = True

    @model_validator(mode="before")
    @classmethod
    def _default_create_forum(cls, data: Any) -> Any:
        # Unset create_forum follows the archive flag: terminal columns get no forum.
        if isinstance(data, dict) and data.get("create_forum") is None:
            data = {**data, "create_forum": not data.get("archived", False)}
        return data


class ColumnConfig(BaseModel):
    """Per-provider column layout and native status -> column name mapping.

    A ``None`` mapping value means the status is tracked but never mirrored to a forum.
    """

    model_config = ConfigDict(frozen=True)

    columns: list[Column] = []
    status_mapping: dict[str, str | None] = {}

    @field_validator("status_mapping", mode="before")
    @classmethod
    def _blank_means_untracked(cls, value: Any) -> Any:
        # TOML has no null, so profiles spell "untracked" as an empty string.
        if isinstance(value, dict):
            return {k: (v if v not in ("", False) else None) for k, v in value.items()}
        return value


class CreateCardInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    description: str | None = None
    column: str
    issue_type: str | None = None
    labels: list[str] = []
    assignees: list[Assignee] = []


class UpdateCardInput(BaseModel):
    """Strictly partial update: only fields that are not None are sent to the tracker."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description: str | None = None
    column: str | None = None
    labels: list[str] | None = None
    assignees: list[Assignee] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CardResult(BaseModel):
    """Outcome of a write. On failure ``card`` is a best-effort partial reconstruction."""

    model_config = ConfigDict(frozen=True)

    card: Card
    success: bool
    message: str


CreateCardResult = CardResult
UpdateCardResult = CardResult


DateField = Literal["created", "updated"]


class DateRangeFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: date | datetime | str | None = None
    end_date: date | datetime | str | None = None
    date_field: DateField = "updated"


class ProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    capabilities: list[str]
    metadata: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Forum platform
# ---------------------------------------------------------------------------


class ForumTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class ThreadInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    forum_id: str
    title: str
    tag_ids: list[str] = []
    archived: bool = False
    url: str | None = None
    message_count: int = 0  # includes the starter message


class StarterMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    content: str


class ThreadHistoryEntry(BaseModel):
    """A superseded thread, kept so the card can return to it if it moves back to ``column``."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    column: str
    forum_id: str
    moved_at: datetime
    message_count: int = 0


# ---------------------------------------------------------------------------
# Sync results
# ---------------------------------------------------------------------------


class SyncOperation(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    REUSED = "reused"
    ARCHIVED = "archived"
    UNARCHIVED = "unarchived"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class ThreadSyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    operation: SyncOperation
    thread_id: str | None = None
    forum_id: str | None = None
    thread_url: str | None = None
    previous_thread_id: str | None = None  # set on moves and reuses


class CardSyncError(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    message: str


class SyncStats(BaseModel):
    total: int = 0
    created: int = 0
    updated: int = 0
    moved: int = 0
    reused: int = 0
    archived: int = 0
    unarchived: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, operation: SyncOperation) -> None:
        setattr(self, operation.value, getattr(self, operation.value) + 1)


class SyncResult(BaseModel):
    cards: list[Card] = []
    columns: list[Column] = []
    synced_at: datetime
    dry_run: bool = False
    stats: SyncStats = Field(default_factory=SyncStats)
    results: list[ThreadSyncResult] = []
    errors: list[CardSyncError] = []

    @property
    def success(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Command layer
# ---------------------------------------------------------------------------


class CardOperationOutcome(BaseModel):
    """A provider write plus the follow-up thread sync.

    The write is authoritative: a sync failure never turns a successful write into a failure.
    """

    model_config = ConfigDict(frozen=True)

    result: CardResult
    thread: ThreadSyncResult | None = None
    sync_error: str | None = None
    unknown_labels: list[str] = []

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def sync_failed(self) -> bool:
        return self.sync_error is not None

    @property
    def message(self) -> str:
        message = self.result.message
        if self.success and self.sync_failed:
            message += f", but forum sync failed ({self.sync_error}). A manual resync may be required."
        if self.unknown_labels:
            message += f" Unknown labels: {', '.join(self.unknown_labels)}."
        return message


class CardSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    title: str

    @property
    def label(self) -> str:
        return f"{self.card_id}: {self.title}"
