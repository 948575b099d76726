"""Shared test fixtures."""

from collections import Counter, defaultdict
from datetime import datetime, timezone

import pytest

from roadsync.columns import DEFAULT_COLUMNS
from roadsync.errors import ForumError, ProviderConnectionError
from roadsync.forum import MemorySettingsStore
from roadsync.models import (
    Assignee,
    Card,
    CardResult,
    Column,
    CreateCardInput,
    DateRangeFilter,
    ForumTag,
    ProviderInfo,
    StarterMessage,
    ThreadInfo,
    UpdateCardInput,
)
from roadsync.service import AutocompleteCache, RoadmapService
from roadsync.sync import SyncEngine

COMMUNITY = "guild-1"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
FORUMS = {"Backlog": "forum-backlog", "In Progress": "forum-progress", "Done": "forum-done"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeForum:
    """Records mutations and keeps thread state so repeated syncs see their own edits."""

    bot_user_id = "bot-user"

    def __init__(self) -> None:
        self.threads: dict[str, ThreadInfo] = {}
        self.starters: dict[str, StarterMessage] = {}
        self.tags: dict[str, list[ForumTag]] = {}
        self.messages: dict[str, list[str]] = defaultdict(list)
        self.calls: list[tuple] = []
        self.failures: dict[str, ForumError] = {}
        self._counter = 0

    def _check(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    def add_thread(self, thread: ThreadInfo, starter_author: str | None = None, content: str = "") -> None:
        self.threads[thread.id] = thread
        self.starters[thread.id] = StarterMessage(
            id=f"msg-{thread.id}", author_id=starter_author or self.bot_user_id, content=content
        )

    async def create_thread(self, forum_id: str, title: str, body: str, tag_ids: list[str]) -> ThreadInfo:
        self._check("create_thread")
        self._counter += 1
        thread = ThreadInfo(
            id=f"thread-{self._counter}",
            forum_id=forum_id,
            title=title,
            tag_ids=list(tag_ids),
            url=f"https://chat.example/{forum_id}/thread-{self._counter}",
        )
        self.add_thread(thread, content=body)
        self.calls.append(("create_thread", forum_id, thread.id))
        return thread

    async def fetch_thread(self, thread_id: str) -> ThreadInfo | None:
        self._check("fetch_thread")
        return self.threads.get(thread_id)

    async def fetch_starter_message(self, thread_id: str) -> StarterMessage | None:
        return self.starters.get(thread_id)

    async def edit_thread(self, thread_id: str, *, title: str | None = None, tag_ids: list[str] | None = None) -> None:
        self._check("edit_thread")
        self.calls.append(("edit_thread", thread_id, title, tag_ids))
        update: dict = {}
        if title is not None:
            update["title"] = title
        if tag_ids is not None:
            update["tag_ids"] = list(tag_ids)
        self.threads[thread_id] = self.threads[thread_id].model_copy(update=update)

    async def edit_starter_message(self, thread_id: str, body: str) -> None:
        self._check("edit_starter_message")
        self.calls.append(("edit_starter_message", thread_id))
        self.starters[thread_id] = self.starters[thread_id].model_copy(update={"content": body})

    async def set_archived(self, thread_id: str, archived: bool) -> None:
        self._check("set_archived")
        self.calls.append(("set_archived", thread_id, archived))
        self.threads[thread_id] = self.threads[thread_id].model_copy(update={"archived": archived})

    async def get_forum_tags(self, forum_id: str) -> list[ForumTag]:
        self._check("get_forum_tags")
        return list(self.tags.get(forum_id, []))

    async def send_message(self, thread_id: str, content: str) -> None:
        self._check("send_message")
        self.calls.append(("send_message", thread_id))
        self.messages[thread_id].append(content)


class FakeProvider:
    def __init__(self, cards: list[Card] | None = None, columns: list[Column] | None = None) -> None:
        self.cards: dict[str, Card] = {card.id: card for card in cards or []}
        self.columns = list(columns or DEFAULT_COLUMNS)
        self.status_mapping: dict[str, str | None] | None = None
        self.labels = ["bug", "enhancement"]
        self.issue_types = ["Task", "Story", "Bug"]
        self.failing_ids: set[str] = set()
        self.fail_writes = False
        self.calls: Counter[str] = Counter()

    def validate_config(self) -> bool:
        return True

    async def init(self) -> None:
        self.calls["init"] += 1

    async def fetch_cards(self) -> list[Card]:
        self.calls["fetch_cards"] += 1
        return list(self.cards.values())

    async def fetch_cards_by_date_range(self, date_filter: DateRangeFilter) -> list[Card]:
        return await self.fetch_cards()

    async def get_columns(self) -> list[Column]:
        self.calls["get_columns"] += 1
        return list(self.columns)

    async def get_issue_types(self) -> list[str]:
        self.calls["get_issue_types"] += 1
        return list(self.issue_types)

    async def get_labels(self) -> list[str]:
        self.calls["get_labels"] += 1
        return list(self.labels)

    async def get_card(self, card_id: str) -> Card | None:
        self.calls["get_card"] += 1
        if card_id in self.failing_ids:
            raise ProviderConnectionError(f"Unable to reach tracker for {card_id}")
        return self.cards.get(card_id)

    async def create_card(self, card: CreateCardInput) -> CardResult:
        key = f"ROAD-{len(self.cards) + 100}"
        created = Card(
            id=key,
            title=card.title,
            description=card.description or "",
            labels=list(card.labels),
            column=card.column,
            url=f"https://tracker.example/browse/{key}",
            updated_at=NOW,
        )
        if self.fail_writes:
            return CardResult(card=created.model_copy(update={"id": "unknown"}), success=False, message="boom")
        self.cards[key] = created
        return CardResult(card=created, success=True, message=f"Created card {key}")

    async def update_card(self, card_id: str, changes: UpdateCardInput) -> CardResult:
        card = self.cards[card_id]
        update = {k: v for k, v in changes.changes().items() if k in ("title", "description", "column", "labels")}
        card = card.model_copy(update=update)
        self.cards[card_id] = card
        return CardResult(card=card, success=True, message=f"Updated card {card_id}")

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(name="Fake", version="0.0.1", capabilities=["cards"])

    def get_status_mapping(self) -> dict[str, str | None] | None:
        return self.status_mapping


@pytest.fixture
def sample_card() -> Card:
    return Card(
        id="ROAD-1",
        title="Dark mode",
        description="Support a dark theme across the app.",
        labels=["Enhancement", "ui"],
        column="Backlog",
        assignees=[Assignee(id="acc-1", name="Jane Doe")],
        url="https://tracker.example/browse/ROAD-1",
        updated_at=NOW,
        metadata={"original_status": "To Do"},
    )


@pytest.fixture
def forum() -> FakeForum:
    fake = FakeForum()
    for forum_id in FORUMS.values():
        prefix = forum_id.removeprefix("forum-")
        fake.tags[forum_id] = [
            ForumTag(id=f"{prefix}-bug", name="bug"),
            ForumTag(id=f"{prefix}-enhancement", name="enhancement"),
        ]
    return fake


@pytest.fixture
def store() -> MemorySettingsStore:
    settings = MemorySettingsStore()
    for column, forum_id in FORUMS.items():
        settings.set_forum_channel(COMMUNITY, column, forum_id)
    settings.set_authorized_roles(COMMUNITY, ["role-roadmap"])
    return settings


@pytest.fixture
def provider(sample_card: Card) -> FakeProvider:
    return FakeProvider([sample_card])


@pytest.fixture
def engine(provider: FakeProvider, forum: FakeForum, store: MemorySettingsStore) -> SyncEngine:
    return SyncEngine(provider, forum, store)


@pytest.fixture
def service(provider: FakeProvider, engine: SyncEngine, store: MemorySettingsStore) -> RoadmapService:
    return RoadmapService(provider, engine, store, AutocompleteCache())
