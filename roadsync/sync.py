"""Sync engine: mirror roadmap cards into forum threads, one thread per card."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from functools import partial

from roadsync.columns import find_column, is_untracked
from roadsync.errors import ForumError, ForumErrorKind, RoadmapError, SyncCanceledError, SyncError
from roadsync.forum import ForumPlatform, SettingsStore
from roadsync.models import (
    Card,
    CardSyncError,
    Column,
    ForumTag,
    StarterMessage,
    SyncOperation,
    SyncResult,
    ThreadHistoryEntry,
    ThreadInfo,
    ThreadSyncResult,
)
from roadsync.providers.base import RoadmapProvider, ensure_provider

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 2000
MAX_TAGS = 5

_SEPARATOR = "\n\n---\n\n"
_TRUNCATED = "\n... (truncated)"

ProgressCallback = Callable[[int, int], None]


def thread_title(title: str) -> str:
    title = title.strip()
    if len(title) <= MAX_TITLE_LENGTH:
        return title
    return title[: MAX_TITLE_LENGTH - 3] + "..."


def format_card_content(card: Card, mentions: Sequence[str] = (), max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Render the starter message body for a card's thread.

    ``mentions`` are already-resolved platform mentions for the card's assignees; provider
    display names are never rendered.
    """
    lines = []
    if mentions:
        lines.append(f"**Assignees:** {', '.join(mentions)}")
    if card.labels:
        lines.append(f"**Labels:** {', '.join(card.labels)}")
    lines.append(f"**Last Updated:** {card.updated_at.date().isoformat()}")

    content = (card.description.strip() or "No description provided.") + _SEPARATOR + "\n".join(lines)
    if len(content) > max_length:
        content = content[: max_length - len(_TRUNCATED)] + _TRUNCATED
    return content


def map_labels_to_tags(labels: Sequence[str], tags: Sequence[ForumTag], limit: int = MAX_TAGS) -> list[str]:
    """Return ids of forum tags whose names match card labels, case-insensitively, in label order."""
    by_name: dict[str, str] = {}
    for tag in tags:
        by_name.setdefault(tag.name.lower(), tag.id)
    applied: list[str] = []
    for label in labels:
        if len(applied) >= limit:
            break
        tag_id = by_name.get(label.lower())
        if tag_id and tag_id not in applied:
            applied.append(tag_id)
    return applied


def _forum_for(channels: Mapping[str, str], column: str) -> str | None:
    if column in channels:
        return channels[column]
    lowered = column.lower()
    return next((forum for name, forum in channels.items() if name.lower() == lowered), None)


def _column_for(channels: Mapping[str, str], forum_id: str) -> str | None:
    return next((name for name, forum in channels.items() if forum == forum_id), None)


class SyncEngine:
    def __init__(
        self,
        provider: RoadmapProvider,
        forum: ForumPlatform,
        store: SettingsStore,
        *,
        max_tags: int = MAX_TAGS,
        concurrency: int = 1,
        mention_format: str = "<@{user_id}>",
    ) -> None:
        self.provider = ensure_provider(provider)
        self.forum = forum
        self.store = store
        self.max_tags = max_tags
        self.concurrency = max(1, concurrency)
        self.mention_format = mention_format

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mentions(self, community_id: str, card: Card) -> list[str]:
        mapping = self.store.get_assignee_mapping(community_id)
        mentions: list[str] = []
        for assignee in card.assignees:
            user_id = mapping.get(assignee.name)
            mention = self.mention_format.format(user_id=user_id) if user_id else None
            if mention and mention not in mentions:
                mentions.append(mention)
        return mentions

    async def _call(
        self,
        action: Callable[[], Awaitable[None]],
        what: str,
        card_id: str,
        *,
        tolerate: bool = False,
        dry_run: bool = False,
    ) -> bool:
        """Run a forum mutation.

        With ``tolerate`` set, forbidden and not-found failures are logged and reported as False;
        every other failure becomes a SyncError. A dry run only logs the mutation.
        """
        if dry_run:
            logger.info("[DRY RUN] Would %s for card %s", what, card_id)
            return True
        try:
            await action()
        except ForumError as exc:
            if tolerate and exc.recoverable:
                logger.warning("Could not %s for card %s (%s): %s", what, card_id, exc.kind, exc)
                return False
            raise SyncError(f"Failed to {what} for card {card_id}: {exc}", card_id=card_id, cause=exc) from exc
        return True

    async def _forum_tags(self, forum_id: str) -> list[ForumTag] | None:
        """The forum's tag vocabulary, or None when it cannot be read."""
        try:
            return await self.forum.get_forum_tags(forum_id)
        except ForumError as exc:
            if not exc.recoverable:
                raise
            logger.warning("Could not read tags of forum %s; leaving thread tags alone: %s", forum_id, exc)
            return None

    async def _fetch_thread(self, thread_id: str) -> ThreadInfo | None:
        try:
            return await self.forum.fetch_thread(thread_id)
        except ForumError as exc:
            if exc.kind is ForumErrorKind.NOT_FOUND:
                return None
            raise

    async def _fetch_starter(self, thread_id: str) -> StarterMessage | None:
        try:
            return await self.forum.fetch_starter_message(thread_id)
        except ForumError as exc:
            if not exc.recoverable:
                raise
            logger.warning("Could not read starter message of thread %s: %s", thread_id, exc)
            return None

    def _skipped(self, card: Card, reason: str) -> ThreadSyncResult:
        logger.debug("Skipping card %s: %s", card.id, reason)
        return ThreadSyncResult(card_id=card.id, operation=SyncOperation.SKIPPED)

    # ------------------------------------------------------------------
    # Targeted sync
    # ------------------------------------------------------------------

    async def sync_single_card(
        self, community_id: str, card: Card, columns: Sequence[Column] | None = None, *, dry_run: bool = False
    ) -> ThreadSyncResult:
        """Reconcile one card with its forum thread.

        With ``dry_run`` set, forum state is read but nothing is changed and no mapping is stored;
        the result reports the operation that would have run.

        Raises:
            SyncError: the thread could not be created, moved or edited.
        """
        try:
            return await self._sync_card(community_id, card, columns, dry_run)
        except SyncError:
            raise
        except ForumError as exc:
            raise SyncError(f"Failed to sync card {card.id}: {exc}", card_id=card.id, cause=exc) from exc

    async def _sync_card(
        self, community_id: str, card: Card, columns: Sequence[Column] | None, dry_run: bool
    ) -> ThreadSyncResult:
        if columns is None:
            columns = await self.provider.get_columns()
        column = find_column(columns, card.column)
        if column is None:
            raise SyncError(f"Card {card.id} is in unknown column {card.column!r}", card_id=card.id)

        if card.metadata.get("untracked") or is_untracked(
            card.metadata.get("original_status"), self.provider.get_status_mapping()
        ):
            return self._skipped(card, "status is tracked but not mirrored")
        if not column.create_forum:
            return self._skipped(card, f"column {column.name!r} has no forum")

        channels = self.store.get_forum_channels(community_id)
        forum_id = _forum_for(channels, column.name)
        thread_id = self.store.get_synced_thread_id(community_id, card.id)
        thread = await self._fetch_thread(thread_id) if thread_id else None
        if thread is None and thread_id:
            logger.warning("Thread %s for card %s no longer exists", thread_id, card.id)

        if not forum_id:
            if not column.archived:
                raise SyncError(f"No forum channel configured for column {column.name!r}", card_id=card.id)
            return await self._archive_in_place(card, thread, column, dry_run)

        forum_tags = await self._forum_tags(forum_id)
        tag_ids = None if forum_tags is None else map_labels_to_tags(card.labels, forum_tags, self.max_tags)
        title = thread_title(card.title)
        body = format_card_content(card, self._mentions(community_id, card))

        if thread is None:
            if column.archived:
                return self._skipped(card, f"no thread to archive in {column.name!r}")
            return await self._create(community_id, card, forum_id, title, body, tag_ids, dry_run)

        if thread.forum_id != forum_id:
            reused = await self._reuse(community_id, card, thread, column, forum_id, title, body, tag_ids, dry_run)
            if reused is not None:
                return reused
            return await self._move(community_id, card, thread, column, forum_id, title, body, tag_ids, dry_run)
        return await self._update(card, thread, column, title, body, tag_ids, dry_run)

    async def _archive_in_place(
        self, card: Card, thread: ThreadInfo | None, column: Column, dry_run: bool
    ) -> ThreadSyncResult:
        """Archive-flagged column without a forum of its own: the thread stays where it is."""
        if thread is None:
            return self._skipped(card, f"column {column.name!r} has no forum channel and the card no thread")
        operation = SyncOperation.UNCHANGED
        if not thread.archived and await self._call(
            partial(self.forum.set_archived, thread.id, True), "archive thread", card.id, tolerate=True, dry_run=dry_run
        ):
            operation = SyncOperation.ARCHIVED
            if not dry_run:
                logger.info("Archived thread %s for card %s in place (%s)", thread.id, card.id, column.name)
        return ThreadSyncResult(
            card_id=card.id,
            operation=operation,
            thread_id=thread.id,
            forum_id=thread.forum_id,
            thread_url=thread.url,
        )

    async def _create(
        self,
        community_id: str,
        card: Card,
        forum_id: str,
        title: str,
        body: str,
        tag_ids: list[str] | None,
        dry_run: bool,
    ) -> ThreadSyncResult:
        if dry_run:
            logger.info("[DRY RUN] Would create thread %r for card %s in forum %s", title, card.id, forum_id)
            return ThreadSyncResult(card_id=card.id, operation=SyncOperation.CREATED, forum_id=forum_id)
        try:
            created = await self.forum.create_thread(forum_id, title, body, tag_ids or [])
        except ForumError as exc:
            raise SyncError(f"Failed to create thread for card {card.id}: {exc}", card_id=card.id, cause=exc) from exc
        self.store.set_synced_thread_id(community_id, card.id, created.id)
        logger.info("Created thread %s for card %s in forum %s", created.id, card.id, forum_id)
        return ThreadSyncResult(
            card_id=card.id,
            operation=SyncOperation.CREATED,
            thread_id=created.id,
            forum_id=forum_id,
            thread_url=created.url,
        )

    async def _retire(
        self, community_id: str, card: Card, old: ThreadInfo, current: ThreadInfo, column: Column
    ) -> None:
        """Point the superseded thread at ``current``, archive it and remember it for a later return."""
        notice = f"This card moved to **{column.name}**. The discussion continues at {current.url or current.id}"
        try:
            await self.forum.send_message(old.id, notice)
        except ForumError as exc:
            logger.warning("Could not post move notice in thread %s for card %s: %s", old.id, card.id, exc)
        try:
            await self.forum.set_archived(old.id, True)
        except ForumError as exc:
            logger.warning("Could not archive superseded thread %s for card %s: %s", old.id, card.id, exc)

        channels = self.store.get_forum_channels(community_id)
        self.store.add_thread_history(
            community_id,
            card.id,
            ThreadHistoryEntry(
                thread_id=old.id,
                column=_column_for(channels, old.forum_id) or old.forum_id,
                forum_id=old.forum_id,
                moved_at=datetime.now(timezone.utc),
                message_count=old.message_count,
            ),
        )

    async def _reuse(
        self,
        community_id: str,
        card: Card,
        old: ThreadInfo,
        column: Column,
        forum_id: str,
        title: str,
        body: str,
        tag_ids: list[str] | None,
        dry_run: bool,
    ) -> ThreadSyncResult | None:
        """Reactivate the thread the card had in ``forum_id`` before it moved away.

        Returns None when there is no usable earlier thread; the caller then creates a new one.
        """
        history = self.store.get_thread_history(community_id, card.id)
        entry = next((e for e in reversed(history) if e.forum_id == forum_id and e.thread_id != old.id), None)
        if entry is None:
            return None
        try:
            candidate = await self.forum.fetch_thread(entry.thread_id)
        except ForumError as exc:
            logger.debug("Could not fetch earlier thread %s for card %s: %s", entry.thread_id, card.id, exc)
            return None
        if candidate is None or candidate.forum_id != forum_id:
            logger.debug("Earlier thread %s for card %s is gone or was moved", entry.thread_id, card.id)
            return None

        if dry_run:
            logger.info("[DRY RUN] Would reuse thread %s for card %s in %s", candidate.id, card.id, column.name)
            return ThreadSyncResult(
                card_id=card.id,
                operation=SyncOperation.REUSED,
                thread_id=candidate.id,
                forum_id=forum_id,
                thread_url=candidate.url,
                previous_thread_id=old.id,
            )

        if candidate.archived and not column.archived:
            try:
                await self.forum.set_archived(candidate.id, False)
            except ForumError as exc:
                logger.warning("Could not reopen thread %s for card %s: %s", candidate.id, card.id, exc)
                return None
            candidate = candidate.model_copy(update={"archived": False})
        try:
            await self._update(card, candidate, column, title, body, tag_ids, False)
        except SyncError as exc:
            logger.warning(
                "Could not refresh thread %s for card %s; creating a new one: %s", candidate.id, card.id, exc
            )
            return None

        self.store.set_synced_thread_id(community_id, card.id, candidate.id)
        await self._retire(community_id, card, old, candidate, column)
        logger.info("Card %s returned to %s; reusing thread %s", card.id, column.name, candidate.id)
        return ThreadSyncResult(
            card_id=card.id,
            operation=SyncOperation.REUSED,
            thread_id=candidate.id,
            forum_id=forum_id,
            thread_url=candidate.url,
            previous_thread_id=old.id,
        )

    async def _move(
        self,
        community_id: str,
        card: Card,
        old: ThreadInfo,
        column: Column,
        forum_id: str,
        title: str,
        body: str,
        tag_ids: list[str] | None,
        dry_run: bool,
    ) -> ThreadSyncResult:
        """Re-create the thread in the column's forum; the old thread is archived, never deleted."""
        if dry_run:
            logger.info("[DRY RUN] Would move card %s from thread %s to forum %s", card.id, old.id, forum_id)
            return ThreadSyncResult(
                card_id=card.id, operation=SyncOperation.MOVED, forum_id=forum_id, previous_thread_id=old.id
            )
        try:
            created = await self.forum.create_thread(forum_id, title, body, tag_ids or [])
        except ForumError as exc:
            raise SyncError(
                f"Failed to move card {card.id} to {column.name!r}; keeping thread {old.id}: {exc}",
                card_id=card.id,
                cause=exc,
            ) from exc
        self.store.set_synced_thread_id(community_id, card.id, created.id)
        logger.info("Moved card %s from thread %s to %s (%s)", card.id, old.id, created.id, column.name)

        # message_count includes the starter message
        replies = old.message_count - 1
        if replies > 0:
            link = f"See {replies} message{'' if replies == 1 else 's'} in the previous discussion: {old.url or old.id}"
            try:
                await self.forum.send_message(created.id, link)
            except ForumError as exc:
                logger.warning(
                    "Could not link previous discussion in thread %s for card %s: %s", created.id, card.id, exc
                )

        await self._retire(community_id, card, old, created, column)

        if column.archived:
            await self._call(
                partial(self.forum.set_archived, created.id, True), "archive thread", card.id, tolerate=True
            )

        return ThreadSyncResult(
            card_id=card.id,
            operation=SyncOperation.MOVED,
            thread_id=created.id,
            forum_id=forum_id,
            thread_url=created.url,
            previous_thread_id=old.id,
        )

    async def _update(
        self,
        card: Card,
        thread: ThreadInfo,
        column: Column,
        title: str,
        body: str,
        tag_ids: list[str] | None,
        dry_run: bool,
    ) -> ThreadSyncResult:
        operation: SyncOperation | None = None
        changed = False

        if thread.archived and not column.archived:
            if await self._call(
                partial(self.forum.set_archived, thread.id, False),
                "unarchive thread",
                card.id,
                tolerate=True,
                dry_run=dry_run,
            ):
                operation = SyncOperation.UNARCHIVED

        if thread.title != title:
            await self._call(
                partial(self.forum.edit_thread, thread.id, title=title), "rename thread", card.id, dry_run=dry_run
            )
            changed = True

        if tag_ids is not None and set(thread.tag_ids) != set(tag_ids):
            changed |= await self._call(
                partial(self.forum.edit_thread, thread.id, tag_ids=tag_ids),
                "update tags",
                card.id,
                tolerate=True,
                dry_run=dry_run,
            )

        starter = await self._fetch_starter(thread.id)
        if starter is not None and starter.author_id == self.forum.bot_user_id and starter.content != body:
            await self._call(
                partial(self.forum.edit_starter_message, thread.id, body),
                "edit starter message",
                card.id,
                dry_run=dry_run,
            )
            changed = True

        if column.archived and (not thread.archived or changed):
            archived = await self._call(
                partial(self.forum.set_archived, thread.id, True),
                "archive thread",
                card.id,
                tolerate=True,
                dry_run=dry_run,
            )
            if archived and not thread.archived:
                operation = SyncOperation.ARCHIVED

        if operation is None:
            operation = SyncOperation.UPDATED if changed else SyncOperation.UNCHANGED
        if operation is not SyncOperation.UNCHANGED and not dry_run:
            logger.info("Thread %s for card %s: %s", thread.id, card.id, operation)
        return ThreadSyncResult(
            card_id=card.id,
            operation=operation,
            thread_id=thread.id,
            forum_id=thread.forum_id,
            thread_url=thread.url,
        )

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def sync_roadmap(
        self,
        community_id: str,
        *,
        on_progress: ProgressCallback | None = None,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> SyncResult:
        """Fetch every card and reconcile it. Per-card failures are recorded, never raised.

        Setting ``cancel`` stops the sync before the next card starts; cards already in flight
        finish.

        Raises:
            SyncCanceledError: ``cancel`` was set before every card was processed. The error
                carries the partial result.
        """
        cards = await self.provider.fetch_cards()
        columns = await self.provider.get_columns()
        result = SyncResult(cards=cards, columns=columns, synced_at=datetime.now(timezone.utc), dry_run=dry_run)
        result.stats.total = len(cards)
        logger.info(
            "Syncing %d card(s) for community %s%s", len(cards), community_id, " [DRY RUN]" if dry_run else ""
        )

        semaphore = asyncio.Semaphore(self.concurrency)
        done = 0

        async def run(card: Card) -> None:
            nonlocal done
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return
                try:
                    outcome = await self.sync_single_card(community_id, card, columns, dry_run=dry_run)
                except RoadmapError as exc:
                    logger.error("Failed to sync card %s: %s", card.id, exc)
                    result.errors.append(CardSyncError(card_id=card.id, message=str(exc)))
                    result.stats.errors += 1
                except Exception as exc:
                    logger.exception("Unexpected error syncing card %s", card.id)
                    result.errors.append(CardSyncError(card_id=card.id, message=str(exc) or type(exc).__name__))
                    result.stats.errors += 1
                else:
                    result.results.append(outcome)
                    result.stats.record(outcome.operation)
                done += 1
                if on_progress is not None:
                    try:
                        on_progress(done, len(cards))
                    except Exception:
                        logger.warning("Progress callback failed", exc_info=True)

        await asyncio.gather(*(run(card) for card in cards))

        if done < len(cards):
            logger.info("Sync canceled for community %s after %d/%d card(s)", community_id, done, len(cards))
            raise SyncCanceledError(result)

        if not dry_run:
            self.store.set_last_sync(community_id, result.synced_at)
        logger.info(
            "Sync finished for community %s: %s",
            community_id,
            ", ".join(f"{k}={v}" for k, v in result.stats.model_dump().items()),
        )
        return result
