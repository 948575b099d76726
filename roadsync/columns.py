"""Logical columns and the mapping between tracker statuses and column names."""

import logging
from collections.abc import Mapping, Sequence

from roadsync.models import Column, ColumnConfig

logger = logging.getLogger(__name__)

BACKLOG = "Backlog"
IN_PROGRESS = "In Progress"
DONE = "Done"

DEFAULT_COLUMNS: tuple[Column, ...] = (
    Column(id="backlog", name=BACKLOG, order=0, archived=False, create_forum=True),
    Column(id="in-progress", name=IN_PROGRESS, order=1, archived=False, create_forum=True),
    Column(id="done", name=DONE, order=2, archived=True, create_forum=True),
)

# Native status categories, lowercased
_CATEGORY_COLUMNS = {"to do": BACKLOG, "in progress": IN_PROGRESS, "done": DONE}

# Ordered keyword heuristics applied to the lowercased status name
_KEYWORD_COLUMNS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("todo", "to do"), BACKLOG),
    (("progress", "doing"), IN_PROGRESS),
    (("done", "complete", "closed"), DONE),
)

_COLUMN_STATUSES = {BACKLOG: "To Do", IN_PROGRESS: "In Progress", DONE: "Done"}
INITIAL_STATUS = "To Do"


def resolve_columns(config: ColumnConfig | None) -> list[Column]:
    if config and config.columns:
        return sorted(config.columns, key=lambda c: c.order)
    return list(DEFAULT_COLUMNS)


def find_column(columns: Sequence[Column], name: str | None) -> Column | None:
    if not name:
        return None
    wanted = name.strip().lower()
    return next((c for c in columns if c.name.lower() == wanted), None)


def default_column(columns: Sequence[Column]) -> Column:
    """The column named Backlog when present, otherwise the lowest-ordered one."""
    if not columns:
        return DEFAULT_COLUMNS[0]
    return find_column(columns, BACKLOG) or min(columns, key=lambda c: c.order)


def lookup_status(mapping: Mapping[str, str | None] | None, status: str | None) -> tuple[bool, str | None]:
    """Return ``(found, column)`` for ``status`` in ``mapping``, matching case-insensitively."""
    if not mapping or not status:
        return False, None
    if status in mapping:
        return True, mapping[status]
    lowered = status.lower()
    for key, value in mapping.items():
        if key.lower() == lowered:
            return True, value
    return False, None


def is_untracked(status: str | None, mapping: Mapping[str, str | None] | None) -> bool:
    found, column = lookup_status(mapping, status)
    return found and column is None


def _named(columns: Sequence[Column], name: str) -> str:
    column = find_column(columns, name) or default_column(columns)
    return column.name


def map_status_to_column(
    status_name: str | None,
    status_category: str | None = None,
    columns: Sequence[Column] | None = None,
    status_mapping: Mapping[str, str | None] | None = None,
) -> str:
    """Map a native tracker status to a column name that exists in ``columns``.

    First match wins: a literal "backlog" in the status name, the configured mapping, the
    native status category, keyword heuristics, then the default column. A status configured
    as untracked (``None``) resolves to the default column.
    """
    columns = list(columns) if columns else list(DEFAULT_COLUMNS)
    fallback = default_column(columns).name
    if not status_name:
        return fallback

    status = status_name.lower()
    if "backlog" in status:
        return _named(columns, BACKLOG)

    found, mapped = lookup_status(status_mapping, status_name)
    if found:
        if mapped is None:
            return fallback
        column = find_column(columns, mapped)
        if column:
            return column.name
        logger.warning("Status %r is mapped to unknown column %r, ignoring mapping", status_name, mapped)

    if status_category:
        target = _CATEGORY_COLUMNS.get(status_category.strip().lower())
        if target:
            return _named(columns, target)

    for keywords, target in _KEYWORD_COLUMNS:
        if any(keyword in status for keyword in keywords):
            return _named(columns, target)

    return fallback


def map_column_to_status(column_name: str, status_mapping: Mapping[str, str | None] | None = None) -> str:
    """Return the native status to transition to when a card is placed in ``column_name``."""
    wanted = column_name.strip().lower()
    for status, column in (status_mapping or {}).items():
        if column and column.lower() == wanted:
            return status
    for name, status in _COLUMN_STATUSES.items():
        if name.lower() == wanted:
            return status
    return INITIAL_STATUS
