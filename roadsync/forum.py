"""Chat-platform collaborators consumed by the sync engine: forum threads and the settings store.

Implementations live with the chat integration. Forum calls raise ``ForumError`` with
``kind=FORBIDDEN`` or ``kind=NOT_FOUND`` so the engine can tell recoverable failures apart.
"""

from collections import defaultdict
from datetime import datetime
from typing import Protocol, runtime_checkable

from roadsync.models import ForumTag, StarterMessage, ThreadHistoryEntry, ThreadInfo


@runtime_checkable
class ForumPlatform(Protocol):
    @property
    def bot_user_id(self) -> str: ...

    async def create_thread(self, forum_id: str, title: str, body: str, tag_ids: list[str]) -> ThreadInfo: ...

    async def fetch_thread(self, thread_id: str) -> ThreadInfo | None:
        """Return None when the thread no longer exists."""
        ...

    async def fetch_starter_message(self, thread_id: str) -> StarterMessage | None: ...

    async def edit_thread(
        self, thread_id: str, *, title: str | None = None, tag_ids: list[str] | None = None
    ) -> None:
        """Only the supplied fields change."""
        ...

    async def edit_starter_message(self, thread_id: str, body: str) -> None: ...

    async def set_archived(self, thread_id: str, archived: bool) -> None: ...

    async def get_forum_tags(self, forum_id: str) -> list[ForumTag]: ...

    async def send_message(self, thread_id: str, content: str) -> None: ...


@runtime_checkable
class SettingsStore(Protocol):
    """Per-community persisted settings. Authoritative for card -> thread mappings."""

    def get_synced_thread_id(self, community_id: str, card_id: str) -> str | None: ...

    def set_synced_thread_id(self, community_id: str, card_id: str, thread_id: str) -> None: ...

    def get_synced_threads(self, community_id: str) -> dict[str, str]: ...

    def get_authorized_roles(self, community_id: str) -> list[str]: ...

    def get_forum_channels(self, community_id: str) -> dict[str, str]:
        """Column name -> forum channel id."""
        ...

    def get_assignee_mapping(self, community_id: str) -> dict[str, str]:
        """Provider assignee name -> chat platform user id."""
        ...

    def set_last_sync(self, community_id: str, synced_at: datetime) -> None: ...

    def get_thread_history(self, community_id: str, card_id: str) -> list[ThreadHistoryEntry]:
        """Superseded threads of a card, oldest first."""
        ...

    def add_thread_history(self, community_id: str, card_id: str, entry: ThreadHistoryEntry) -> None: ...


class MemorySettingsStore:
    """In-process SettingsStore, for embedding and tests."""

    def __init__(self) -> None:
        self.synced_threads: dict[str, dict[str, str]] = defaultdict(dict)
        self.authorized_roles: dict[str, list[str]] = defaultdict(list)
        self.forum_channels: dict[str, dict[str, str]] = defaultdict(dict)
        self.assignee_mappings: dict[str, dict[str, str]] = defaultdict(dict)
        self.last_sync: dict[str, datetime] = {}
        self.thread_history: dict[str, dict[str, list[ThreadHistoryEntry]]] = defaultdict(lambda: defaultdict(list))

    def get_synced_thread_id(self, community_id: str, card_id: str) -> str | None:
        return self.synced_threads[community_id].get(card_id)

    def set_synced_thread_id(self, community_id: str, card_id: str, thread_id: str) -> None:
        self.synced_threads[community_id][card_id] = thread_id

    def get_synced_threads(self, community_id: str) -> dict[str, str]:
        return dict(self.synced_threads[community_id])

    def get_authorized_roles(self, community_id: str) -> list[str]:
        return list(self.authorized_roles[community_id])

    def set_authorized_roles(self, community_id: str, role_ids: list[str]) -> None:
        self.authorized_roles[community_id] = list(role_ids)

    def get_forum_channels(self, community_id: str) -> dict[str, str]:
        return dict(self.forum_channels[community_id])

    def set_forum_channel(self, community_id: str, column: str, forum_id: str) -> None:
        self.forum_channels[community_id][column] = forum_id

    def get_assignee_mapping(self, community_id: str) -> dict[str, str]:
        return dict(self.assignee_mappings[community_id])

    def set_last_sync(self, community_id: str, synced_at: datetime) -> None:
        self.last_sync[community_id] = synced_at

    def get_thread_history(self, community_id: str, card_id: str) -> list[ThreadHistoryEntry]:
        return list(self.thread_history[community_id][card_id])

    def add_thread_history(self, community_id: str, card_id: str, entry: ThreadHistoryEntry) -> None:
        # one entry per thread; a re-archived thread moves to the end
        history = [e for e in self.thread_history[community_id][card_id] if e.thread_id != entry.thread_id]
        history.append(entry)
        self.thread_history[community_id][card_id] = history
