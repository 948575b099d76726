"""Provider contract every tracker backend satisfies."""

from typing import Protocol, runtime_checkable

from roadsync.models import Card, CardResult, Column, CreateCardInput, DateRangeFilter, ProviderInfo, UpdateCardInput

PROVIDER_METHODS: tuple[str, ...] = (
    "validate_config",
    "init",
    "fetch_cards",
    "fetch_cards_by_date_range",
    "get_columns",
    "get_issue_types",
    "get_labels",
    "get_card",
    "create_card",
    "update_card",
    "get_provider_info",
    "get_status_mapping",
)


@runtime_checkable
class RoadmapProvider(Protocol):
    def validate_config(self) -> bool:
        """Check credentials and identifiers; log what is missing. Never raises."""
        ...

    async def init(self) -> None:
        """Make a cheap authenticated call. Raises AuthenticationError or ProviderConnectionError."""
        ...

    async def fetch_cards(self) -> list[Card]: ...

    async def fetch_cards_by_date_range(self, date_filter: DateRangeFilter) -> list[Card]: ...

    async def get_columns(self) -> list[Column]: ...

    async def get_issue_types(self) -> list[str]: ...

    async def get_labels(self) -> list[str]: ...

    async def get_card(self, card_id: str) -> Card | None:
        """Return None when the card does not exist."""
        ...

    async def create_card(self, card: CreateCardInput) -> CardResult: ...

    async def update_card(self, card_id: str, changes: UpdateCardInput) -> CardResult: ...

    def get_provider_info(self) -> ProviderInfo: ...

    def get_status_mapping(self) -> dict[str, str | None] | None: ...


def missing_methods(candidate: object) -> list[str]:
    return [name for name in PROVIDER_METHODS if not callable(getattr(candidate, name, None))]


def ensure_provider(candidate: object) -> RoadmapProvider:
    """Return ``candidate`` unchanged if it implements the full provider method set.

    Raises:
        TypeError: listing every missing method.
    """
    missing = missing_methods(candidate)
    if missing:
        raise TypeError(f"{type(candidate).__name__} is not a roadmap provider; missing: {', '.join(missing)}")
    return candidate  # type: ignore[return-value]
