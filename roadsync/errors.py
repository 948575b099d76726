"""Exception hierarchy shared by providers, the sync engine and the service layer."""

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from roadsync.models import SyncResult


class RoadmapError(Exception):
    """Base class for every error raised by roadsync."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigurationError(RoadmapError):
    """Missing or malformed credentials or identifiers."""

    def __init__(self, message: str, *, field: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.field = field


class AuthenticationError(RoadmapError):
    """The tracker rejected the configured credentials."""


class ProviderConnectionError(RoadmapError):
    """The tracker could not be reached. Safe for callers to retry."""


class ProviderError(RoadmapError):
    """The tracker answered with an unexpected status or payload."""

    def __init__(self, message: str, *, status_code: int | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class CardValidationError(RoadmapError):
    """Bad input shape, e.g. a missing title or an unknown column."""

    def __init__(self, message: str, *, choices: list[str] | None = None, cause: BaseException | None = None) -> None:
        if choices:
            message = f"{message}. Valid options: {', '.join(choices)}"
        super().__init__(message, cause=cause)
        self.choices = choices or []


class NotFoundError(RoadmapError):
    """A card or thread does not exist."""


class ForumErrorKind(StrEnum):
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    OTHER = "other"


class ForumError(RoadmapError):
    """Raised by forum platform implementations; ``kind`` drives the swallow-and-warn policy."""

    def __init__(
        self, message: str, *, kind: ForumErrorKind = ForumErrorKind.OTHER, cause: BaseException | None = None
    ) -> None:
        super().__init__(message, cause=cause)
        self.kind = kind

    @property
    def recoverable(self) -> bool:
        return self.kind in (ForumErrorKind.FORBIDDEN, ForumErrorKind.NOT_FOUND)


class SyncError(RoadmapError):
    """A card could not be reconciled with its forum thread."""

    def __init__(self, message: str, *, card_id: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.card_id = card_id


class SyncCanceledError(RoadmapError):
    """A full sync was stopped before every card was processed. ``result`` holds the progress so far."""

    def __init__(self, result: "SyncResult") -> None:
        super().__init__("Sync canceled")
        self.result = result
