"""Jira Cloud REST API (v3) provider."""

import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from roadsync.adf import adf_to_text, text_to_adf
from roadsync.cache import DEFAULT_TTL, TTLCache
from roadsync.columns import (
    default_column,
    find_column,
    is_untracked,
    map_column_to_status,
    map_status_to_column,
    resolve_columns,
)
from roadsync.errors import (
    AuthenticationError,
    CardValidationError,
    ConfigurationError,
    NotFoundError,
    ProviderConnectionError,
    ProviderError,
    RoadmapError,
)
from roadsync.models import (
    Assignee,
    Card,
    CardResult,
    Column,
    CreateCardInput,
    DateRangeFilter,
    ProviderInfo,
    UpdateCardInput,
)
from roadsync.settings import JiraConfig, JiraSettings, resolve_jira_config

logger = logging.getLogger(__name__)

API = "/rest/api/3"
TIMEOUT = 30

ISSUE_FIELDS = ["summary", "description", "labels", "status", "assignee", "updated", "created", "issuetype"]
VALID_ISSUE_TYPES = ("Epic", "Story", "Task", "Bug", "Subtask")
FALLBACK_ISSUE_TYPES = ["Task", "Story", "Bug", "Epic"]
FALLBACK_LABELS = ["bug", "enhancement", "feature"]
LABEL_PAGE_SIZE = 100
CAPABILITIES = ["cards", "columns", "labels", "assignees", "create", "get", "update"]

_AVATAR_SIZES = ("48x48", "32x32", "24x24")
_TZ_WITHOUT_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse Jira timestamps such as ``2024-01-02T10:00:00.000+0000``."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = _TZ_WITHOUT_COLON.sub(r"\1:\2", value.strip().replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _format_date(value: date | datetime | str | None) -> str | None:
    """Normalize a date bound to YYYY-MM-DD. Raises ValueError for unparseable strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = value.strip()
    if not text:
        return None
    parsed = _parse_timestamp(text)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed.date().isoformat()


def _map_assignee(user: Mapping[str, Any]) -> Assignee:
    avatars = user.get("avatarUrls") or {}
    avatar = next((avatars[size] for size in _AVATAR_SIZES if avatars.get(size)), None)
    return Assignee(
        id=user.get("accountId") or "unassigned",
        name=user.get("displayName") or "Unassigned",
        avatar_url=avatar,
    )


def _transition_matches(transition: Mapping[str, Any], target: str) -> bool:
    destination = transition.get("to") or {}
    name = (destination.get("name") or "").lower()
    category = ((destination.get("statusCategory") or {}).get("name") or "").lower()
    return target in name or target in category


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    messages = [str(m) for m in body.get("errorMessages") or []]
    messages += [f"{k}: {v}" for k, v in (body.get("errors") or {}).items()]
    return f": {'; '.join(messages)}" if messages else ""


class JiraProvider:
    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        options: Mapping[str, Any] | None = None,
        env: JiraSettings | None = None,
        cache_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._explicit = dict(config or {})
        self._options = dict(options or {})
        self._env = env
        self.config: JiraConfig = resolve_jira_config(self._explicit, self._options, self._env)
        self._issue_types_cache: TTLCache[list[str]] = TTLCache(cache_ttl, clock)
        self._labels_cache: TTLCache[list[str]] = TTLCache(cache_ttl, clock)
        self._date_range_cache: TTLCache[list[Card]] = TTLCache(cache_ttl, clock)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.config.email or "", self.config.token or "")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        if not self.config.url:
            raise ConfigurationError("Jira URL is not configured (JIRA_URL)", field="url")
        url = f"{self.config.url}{API}{path}"
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    auth=self._auth(),
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            raise ProviderConnectionError(f"Unable to reach Jira at {self.config.url}: {exc}", cause=exc) from exc

        self._raise_for_status(response, method, path)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Jira returned invalid JSON for {method} {path}", status_code=response.status_code, cause=exc
            ) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        detail = _error_detail(response)
        if status == 401:
            raise AuthenticationError("Authentication with Jira failed. Check the email and API token")
        if status == 403:
            raise ProviderError(f"Permission denied for {method} {path}{detail}", status_code=status)
        if status == 404:
            raise NotFoundError(f"Jira resource not found: {path}")
        if status == 400:
            raise CardValidationError(f"Jira rejected the request{detail}")
        raise ProviderError(f"Jira API error {status} for {method} {path}{detail}", status_code=status)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @staticmethod
    def _config_problems(config: JiraConfig) -> list[tuple[str, str]]:
        problems: list[tuple[str, str]] = []
        if not config.url:
            problems.append(("url", "Jira URL is required (JIRA_URL)"))
        else:
            try:
                parsed = httpx.URL(config.url)
            except httpx.InvalidURL:
                parsed = None
            if parsed is None or parsed.scheme not in ("http", "https") or not parsed.host:
                problems.append(("url", f"Jira URL is malformed: {config.url}"))
        if not config.email:
            problems.append(("email", "Jira email is required (JIRA_EMAIL)"))
        elif "@" not in config.email:
            problems.append(("email", f"Jira email is malformed: {config.email}"))
        if not config.token:
            problems.append(("api_token", "Jira API token is required (JIRA_API_TOKEN)"))
        if not config.project_key:
            problems.append(("project_key", "Jira project key is required (JIRA_PROJECT_KEY)"))
        return problems

    def validate_config(self) -> bool:
        config = resolve_jira_config(self._explicit, self._options, self._env)
        problems = self._config_problems(config)
        for _, message in problems:
            logger.error("Invalid Jira configuration: %s", message)
        if config.default_issue_type not in VALID_ISSUE_TYPES:
            logger.warning(
                "Default issue type %r is not a standard Jira type (%s)",
                config.default_issue_type,
                ", ".join(VALID_ISSUE_TYPES),
            )
        return not problems

    async def init(self) -> None:
        self.config = resolve_jira_config(self._explicit, self._options, self._env)
        problems = self._config_problems(self.config)
        if problems:
            field, _ = problems[0]
            raise ConfigurationError("; ".join(message for _, message in problems), field=field)
        try:
            await self._request("GET", "/myself")
        except AuthenticationError:
            logger.error("Authentication with Jira failed for %s", self.config.email)
            raise
        except RoadmapError as exc:
            raise ProviderConnectionError(f"Failed to connect to Jira: {exc}", cause=exc) from exc
        logger.info("Connected to Jira at %s", self.config.url)

    def get_status_mapping(self) -> dict[str, str | None] | None:
        column_config = self.config.column_config
        if column_config is None or not column_config.status_mapping:
            return None
        return dict(column_config.status_mapping)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name="Jira",
            version="1.0.0",
            capabilities=list(CAPABILITIES),
            metadata={"jira_url": self.config.url, "jql": self.config.jql},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def map_issue_to_card(self, issue: Mapping[str, Any], columns: Sequence[Column]) -> Card:
        key = issue["key"]
        fields = issue.get("fields") or {}
        status = fields.get("status") or {}
        status_name = status.get("name")
        category = (status.get("statusCategory") or {}).get("name")
        mapping = self.get_status_mapping()
        assignee = fields.get("assignee")

        metadata: dict[str, Any] = {
            "original_status": status_name,
            "status_category": category,
            "issue_type": (fields.get("issuetype") or {}).get("name"),
            "issue": dict(issue),
        }
        if is_untracked(status_name, mapping):
            metadata["untracked"] = True

        return Card(
            id=key,
            title=fields.get("summary") or key,
            description=adf_to_text(fields.get("description")),
            labels=list(fields.get("labels") or []),
            column=map_status_to_column(status_name, category, columns, mapping),
            assignees=[_map_assignee(assignee)] if assignee else [],
            url=f"{self.config.url}/browse/{key}",
            updated_at=_parse_timestamp(fields.get("updated")) or datetime.now(timezone.utc),
            metadata=metadata,
        )

    async def _search(self, jql: str) -> list[Card]:
        columns = await self.get_columns()
        cards: list[Card] = []
        token: str | None = None
        pages = 0
        while True:
            body: dict[str, Any] = {"jql": jql, "maxResults": self.config.max_results, "fields": ISSUE_FIELDS}
            if token:
                body["nextPageToken"] = token
            try:
                data = await self._request("POST", "/search/jql", json=body)
            except CardValidationError as exc:
                raise CardValidationError(f"Jira rejected the JQL query {jql!r}: {exc}", cause=exc) from exc

            data = data or {}
            issues = data.get("issues")
            if not isinstance(issues, list):
                raise ProviderError("Malformed Jira search response: 'issues' is not a list")
            for issue in issues:
                try:
                    cards.append(self.map_issue_to_card(issue, columns))
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    key = issue.get("key") if isinstance(issue, dict) else None
                    logger.warning("Skipping malformed Jira issue %s: %s", key or "<no key>", exc)

            pages += 1
            token = data.get("nextPageToken")
            if data.get("isLast") is True or not token:
                break
            page_size = data.get("maxResults")
            if isinstance(page_size, int | float) and page_size <= 0:
                logger.warning("Jira reported page size %s; stopping pagination", page_size)
                break

        logger.debug("Fetched %d card(s) from Jira in %d page(s)", len(cards), pages)
        return cards

    async def fetch_cards(self) -> list[Card]:
        return await self._search(self.config.jql)

    async def fetch_cards_by_date_range(self, date_filter: DateRangeFilter) -> list[Card]:
        field = date_filter.date_field
        try:
            start = _format_date(date_filter.start_date)
            end = _format_date(date_filter.end_date)
        except ValueError as exc:
            logger.warning("Ignoring date range query: %s", exc)
            return []

        try:
            if start is None and end is None:
                return await self.fetch_cards()

            if start and end and start > end:
                logger.info("Date range start %s is after end %s; returning no cards", start, end)
                return []

            cache_key = f"{field}:{start or 'none'}:{end or 'none'}"
            cached = self._date_range_cache.get(cache_key)
            if cached is not None:
                return list(cached)

            clauses = [f"({self.config.jql})"]
            if start:
                clauses.append(f"{field} >= '{start}'")
            if end:
                clauses.append(f"{field} <= '{end}'")
            cards = await self._search(f"{' AND '.join(clauses)} ORDER BY {field} DESC")
        except RoadmapError as exc:
            logger.error("Failed to fetch cards by %s date range %s..%s: %s", field, start, end, exc)
            return []

        self._date_range_cache.set(cache_key, cards)
        return list(cards)

    async def get_columns(self) -> list[Column]:
        return resolve_columns(self.config.column_config)

    async def get_issue_types(self) -> list[str]:
        cached = self._issue_types_cache.get("issue_types")
        if cached is not None:
            return list(cached)
        try:
            data = await self._request("GET", "/issuetype")
        except RoadmapError as exc:
            logger.warning("Failed to fetch Jira issue types, using defaults: %s", exc)
            return list(FALLBACK_ISSUE_TYPES)

        names: list[str] = []
        for issue_type in data or []:
            name = issue_type.get("name") if isinstance(issue_type, dict) else None
            if name and not issue_type.get("subtask") and name not in names:
                names.append(name)
        if not names:
            return list(FALLBACK_ISSUE_TYPES)
        self._issue_types_cache.set("issue_types", names)
        return list(names)

    async def get_labels(self) -> list[str]:
        cached = self._labels_cache.get("labels")
        if cached is not None:
            return list(cached)

        labels: list[str] = []
        seen: set[str] = set()
        start_at = 0
        try:
            while True:
                data = await self._request(
                    "GET", "/label", params={"startAt": start_at, "maxResults": LABEL_PAGE_SIZE}
                ) or {}
                values = data.get("values") or []
                for value in values:
                    if isinstance(value, str) and value.strip() and value.lower() not in seen:
                        seen.add(value.lower())
                        labels.append(value)
                page_size = data.get("maxResults", LABEL_PAGE_SIZE)
                if data.get("isLast", True) or not values or not isinstance(page_size, int) or page_size <= 0:
                    break
                start_at += page_size
        except RoadmapError as exc:
            logger.warning("Failed to fetch Jira labels, using defaults: %s", exc)
            return list(FALLBACK_LABELS)

        labels.sort(key=str.lower)
        self._labels_cache.set("labels", labels)
        return list(labels)

    async def get_card(self, card_id: str) -> Card | None:
        if not card_id or not card_id.strip():
            raise CardValidationError("Card ID is required")
        try:
            issue = await self._request(
                "GET", f"/issue/{quote(card_id.strip(), safe='')}", params={"fields": ",".join(ISSUE_FIELDS)}
            )
        except NotFoundError:
            return None
        return self.map_issue_to_card(issue, await self.get_columns())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _partial_card(
        self,
        card_id: str,
        *,
        title: str | None,
        description: str | None,
        column: str | None,
        labels: list[str] | None,
        url: str,
    ) -> Card:
        return Card(
            id=card_id,
            title=title or "",
            description=description or "",
            labels=list(labels or []),
            column=column or "Unknown",
            url=url,
            updated_at=datetime.now(timezone.utc),
        )

    def _assignee_field(self, assignees: Sequence[Assignee]) -> dict[str, str] | None:
        if not assignees:
            return None
        if len(assignees) > 1:
            logger.warning(
                "Jira supports a single assignee; using %s and ignoring %d other(s)",
                assignees[0].id,
                len(assignees) - 1,
            )
        return {"accountId": assignees[0].id}

    async def _resolve_issue_type(self, requested: str | None) -> str:
        if not requested or not requested.strip():
            return self.config.default_issue_type
        available = await self.get_issue_types()
        match = next((t for t in available if t.lower() == requested.strip().lower()), None)
        if match is None:
            raise CardValidationError(f"Invalid issue type '{requested}'", choices=available)
        return match

    async def _resolve_column(self, name: str) -> tuple[Column, list[Column]]:
        columns = await self.get_columns()
        column = find_column(columns, name)
        if column is None:
            raise CardValidationError(f"Invalid column '{name}'", choices=[c.name for c in columns])
        return column, columns

    async def _transition(self, issue_key: str, column_name: str) -> bool:
        """Best effort: move the issue to the status matching ``column_name``."""
        target = map_column_to_status(column_name, self.get_status_mapping()).lower()
        path = f"/issue/{quote(issue_key, safe='')}/transitions"
        try:
            data = await self._request("GET", path) or {}
            transitions = data.get("transitions") or []
            match = next((t for t in transitions if _transition_matches(t, target)), None)
            if match is None:
                logger.warning(
                    "No Jira transition to %r available for %s; available: %s",
                    target,
                    issue_key,
                    ", ".join(str(t.get("name")) for t in transitions) or "(none)",
                )
                return False
            await self._request("POST", path, json={"transition": {"id": match["id"]}})
        except RoadmapError as exc:
            logger.warning("Failed to transition %s to %r: %s", issue_key, target, exc)
            return False
        logger.info("Transitioned %s to %r", issue_key, target)
        return True

    async def _create(self, card: CreateCardInput) -> CardResult:
        title = card.title.strip()
        if not title:
            raise CardValidationError("Card title is required")
        issue_type = await self._resolve_issue_type(card.issue_type)
        if not self.config.project_key:
            raise ConfigurationError(
                "Jira project key is required to create cards (JIRA_PROJECT_KEY)", field="project_key"
            )
        column, columns = await self._resolve_column(card.column)

        fields: dict[str, Any] = {
            "project": {"key": self.config.project_key},
            "issuetype": {"name": issue_type},
            "summary": title,
            "description": text_to_adf(card.description),
        }
        if card.labels:
            fields["labels"] = list(card.labels)
        if assignee := self._assignee_field(card.assignees):
            fields["assignee"] = assignee

        created = await self._request("POST", "/issue", json={"fields": fields}) or {}
        key = created.get("key")
        if not key:
            raise ProviderError("Jira did not return a key for the created issue")
        logger.info("Created Jira issue %s (%s)", key, issue_type)

        if column.name != default_column(columns).name:
            await self._transition(key, column.name)

        try:
            fetched = await self.get_card(key)
        except RoadmapError as exc:
            logger.warning("Created %s but could not fetch it back: %s", key, exc)
            fetched = None
        if fetched is None:
            fetched = self._partial_card(
                key,
                title=title,
                description=card.description,
                column=column.name,
                labels=card.labels,
                url=f"{self.config.url}/browse/{key}",
            )
        return CardResult(card=fetched, success=True, message=f"Created card {key}")

    async def create_card(self, card: CreateCardInput) -> CardResult:
        try:
            return await self._create(card)
        except RoadmapError as exc:
            logger.error("Failed to create Jira issue %r: %s", card.title, exc)
            partial = self._partial_card(
                "unknown",
                title=card.title,
                description=card.description,
                column=card.column,
                labels=card.labels,
                url=self.config.url or "",
            )
            return CardResult(card=partial, success=False, message=f"Failed to create card: {exc}")

    async def _update(self, card_id: str, changes: UpdateCardInput) -> CardResult:
        if not card_id.strip():
            raise CardValidationError("Card ID is required")
        if not changes.changes():
            raise CardValidationError("At least one field must be provided to update a card")

        column = None
        if changes.column is not None:
            column, _ = await self._resolve_column(changes.column)

        fields: dict[str, Any] = {}
        if changes.title is not None:
            if not changes.title.strip():
                raise CardValidationError("Card title cannot be empty")
            fields["summary"] = changes.title.strip()
        if changes.description is not None:
            fields["description"] = text_to_adf(changes.description)
        if changes.labels is not None:
            fields["labels"] = list(changes.labels)
        if changes.assignees is not None:
            fields["assignee"] = self._assignee_field(changes.assignees)

        issue_path = f"/issue/{quote(card_id, safe='')}"
        if fields:
            await self._request("PUT", issue_path, json={"fields": fields})
            logger.info("Updated Jira issue %s (%s)", card_id, ", ".join(sorted(fields)))
        if column is not None:
            await self._transition(card_id, column.name)

        card = await self.get_card(card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found after update")
        return CardResult(card=card, success=True, message=f"Updated card {card_id}")

    async def update_card(self, card_id: str, changes: UpdateCardInput) -> CardResult:
        try:
            return await self._update(card_id, changes)
        except RoadmapError as exc:
            logger.error("Failed to update Jira issue %s: %s", card_id, exc)
            partial: Card | None = None
            if card_id and card_id.strip():
                try:
                    partial = await self.get_card(card_id)
                except RoadmapError as lookup_exc:
                    logger.debug("Could not fetch %s for the failure result: %s", card_id, lookup_exc)
            if partial is None:
                partial = self._partial_card(
                    card_id,
                    title=changes.title,
                    description=changes.description,
                    column=changes.column,
                    labels=changes.labels,
                    url=f"{self.config.url or ''}/browse/{card_id}",
                )
            return CardResult(card=partial, success=False, message=f"Failed to update card {card_id}: {exc}")
