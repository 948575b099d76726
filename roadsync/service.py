"""Entry points for chat commands: card writes followed by a targeted thread sync."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from roadsync.cache import DEFAULT_TTL, TTLCache
from roadsync.errors import NotFoundError, RoadmapError
from roadsync.forum import SettingsStore
from roadsync.models import (
    Card,
    CardOperationOutcome,
    CardSuggestion,
    CreateCardInput,
    ThreadSyncResult,
    UpdateCardInput,
)
from roadsync.providers.base import RoadmapProvider, ensure_provider
from roadsync.sync import SyncEngine

logger = logging.getLogger(__name__)

AUTOCOMPLETE_KINDS = ("columns", "labels", "issue_types")
MAX_SUGGESTIONS = 25


class AutocompleteCache:
    """Short-lived per-community lists for interactive autocomplete.

    Construct one at startup and share it between handlers; it is independent of any
    provider-internal cache.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: TTLCache[list[str]] = TTLCache(ttl, clock)

    def get(self, community_id: str, kind: str) -> list[str] | None:
        return self._entries.get((community_id, kind))

    def set(self, community_id: str, kind: str, values: list[str]) -> None:
        self._entries.set((community_id, kind), list(values))

    def invalidate(self, community_id: str) -> None:
        for kind in AUTOCOMPLETE_KINDS:
            self._entries.invalidate((community_id, kind))

    def clear(self) -> None:
        self._entries.clear()


def parse_labels(raw: str | Iterable[str] | None) -> list[str]:
    """Split comma-separated label input, dropping blanks and case-insensitive duplicates."""
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    labels: list[str] = []
    seen: set[str] = set()
    for part in parts:
        label = part.strip()
        if label and label.lower() not in seen:
            seen.add(label.lower())
            labels.append(label)
    return labels


class RoadmapService:
    def __init__(
        self,
        provider: RoadmapProvider,
        engine: SyncEngine,
        store: SettingsStore,
        autocomplete: AutocompleteCache | None = None,
        *,
        lookup_concurrency: int = 10,
    ) -> None:
        self.provider = ensure_provider(provider)
        self.engine = engine
        self.store = store
        self.autocomplete = autocomplete if autocomplete is not None else AutocompleteCache()
        self.lookup_concurrency = max(1, lookup_concurrency)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def can_create_cards(self, community_id: str, role_ids: Iterable[str], *, is_admin: bool = False) -> bool:
        if is_admin:
            return True
        allowed = set(self.store.get_authorized_roles(community_id))
        return bool(allowed.intersection(role_ids))

    # ------------------------------------------------------------------
    # Autocomplete metadata
    # ------------------------------------------------------------------

    async def _cached(self, community_id: str, kind: str, load: Callable[[], Awaitable[list[str]]]) -> list[str]:
        cached = self.autocomplete.get(community_id, kind)
        if cached is not None:
            return list(cached)
        values = await load()
        self.autocomplete.set(community_id, kind, values)
        return list(values)

    async def get_columns(self, community_id: str) -> list[str]:
        async def load() -> list[str]:
            return [column.name for column in await self.provider.get_columns()]

        return await self._cached(community_id, "columns", load)

    async def get_labels(self, community_id: str) -> list[str]:
        return await self._cached(community_id, "labels", self.provider.get_labels)

    async def get_issue_types(self, community_id: str) -> list[str]:
        return await self._cached(community_id, "issue_types", self.provider.get_issue_types)

    async def unknown_labels(self, community_id: str, labels: Iterable[str]) -> list[str]:
        labels = list(labels)
        if not labels:
            return []
        known = {label.lower() for label in await self.get_labels(community_id)}
        return [label for label in labels if label.lower() not in known]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _sync(self, community_id: str, card: Card) -> tuple[ThreadSyncResult | None, str | None]:
        try:
            return await self.engine.sync_single_card(community_id, card), None
        except RoadmapError as exc:
            logger.error("Card %s was saved but its thread could not be synced: %s", card.id, exc)
            return None, str(exc)

    async def create_card(self, community_id: str, card: CreateCardInput) -> CardOperationOutcome:
        unknown = await self.unknown_labels(community_id, card.labels)
        if unknown:
            logger.info("Creating card with labels unknown to the provider: %s", ", ".join(unknown))

        result = await self.provider.create_card(card)
        if not result.success:
            return CardOperationOutcome(result=result, unknown_labels=unknown)

        self.autocomplete.invalidate(community_id)
        thread, sync_error = await self._sync(community_id, result.card)
        return CardOperationOutcome(result=result, thread=thread, sync_error=sync_error, unknown_labels=unknown)

    async def update_card(self, community_id: str, card_id: str, changes: UpdateCardInput) -> CardOperationOutcome:
        unknown = await self.unknown_labels(community_id, changes.labels or [])
        result = await self.provider.update_card(card_id, changes)
        if not result.success:
            return CardOperationOutcome(result=result, unknown_labels=unknown)

        if changes.labels is not None:
            self.autocomplete.invalidate(community_id)
        thread, sync_error = await self._sync(community_id, result.card)
        return CardOperationOutcome(result=result, thread=thread, sync_error=sync_error, unknown_labels=unknown)

    async def sync_card(self, community_id: str, card_id: str) -> ThreadSyncResult:
        """Re-sync one card on demand.

        Raises:
            NotFoundError: the provider has no such card.
            SyncError: the thread could not be reconciled.
        """
        card = await self.provider.get_card(card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found")
        return await self.engine.sync_single_card(community_id, card)

    # ------------------------------------------------------------------
    # Card title autocomplete
    # ------------------------------------------------------------------

    async def suggest_cards(
        self, community_id: str, query: str = "", limit: int = MAX_SUGGESTIONS
    ) -> list[CardSuggestion]:
        """Look up the titles of already-synced cards in parallel; failed lookups are dropped."""
        card_ids = list(self.store.get_synced_threads(community_id))
        semaphore = asyncio.Semaphore(self.lookup_concurrency)

        async def lookup(card_id: str) -> Card | None:
            async with semaphore:
                return await self.provider.get_card(card_id)

        found: list[Any] = await asyncio.gather(*(lookup(card_id) for card_id in card_ids), return_exceptions=True)

        needle = query.strip().lower()
        suggestions: list[CardSuggestion] = []
        for card_id, card in zip(card_ids, found):
            if isinstance(card, BaseException):
                logger.debug("Title lookup for %s failed: %s", card_id, card)
                continue
            if card is None:
                continue
            suggestion = CardSuggestion(card_id=card.id, title=card.title)
            if needle in suggestion.label.lower():
                suggestions.append(suggestion)
        return suggestions[:limit]
