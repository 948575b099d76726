"""Settings resolution: explicit config > options bag (profile) > environment, plus named TOML profiles."""

import math
import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, ConfigDict, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from roadsync.errors import ConfigurationError
from roadsync.models import ColumnConfig

CONFIG_PATH = Path.home() / ".config" / "roadsync" / "config.toml"

DEFAULT_JQL = '(issuetype = Epic AND (labels NOT IN ("Private") OR labels IS EMPTY)) OR labels IN ("Public")'
DEFAULT_MAX_RESULTS = 100
MAX_RESULTS_LIMIT = 1000
DEFAULT_ISSUE_TYPE = "Task"

_FIELDS = ("url", "email", "api_token", "jql", "max_results", "project_key", "default_issue_type")


class JiraSettings(BaseSettings):
    """Environment fallbacks: JIRA_URL, JIRA_EMAIL, JIRA_API_TOKEN, ..."""

    model_config = SettingsConfigDict(
        env_prefix="JIRA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str | None = None
    email: str | None = None
    api_token: SecretStr | None = None
    jql: str | None = None
    max_results: str | None = None  # parsed and clamped during resolution
    project_key: str | None = None
    default_issue_type: str | None = None


class JiraConfig(BaseModel):
    """Fully resolved adapter configuration."""

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    email: str | None = None
    api_token: SecretStr | None = None
    jql: str = DEFAULT_JQL
    max_results: int = DEFAULT_MAX_RESULTS
    project_key: str | None = None
    default_issue_type: str = DEFAULT_ISSUE_TYPE
    column_config: ColumnConfig | None = None

    @property
    def token(self) -> str | None:
        return self.api_token.get_secret_value() if self.api_token else None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    text = str(value).strip()
    return text or None


def _pick(field: str, *sources: Mapping[str, Any] | None) -> str | None:
    for source in sources:
        if source is None:
            continue
        value = _clean(source.get(field))
        if value is not None:
            return value
    return None


def normalize_url(url: str | None) -> str | None:
    if not url:
        return None
    return url.rstrip("/") or None


def normalize_max_results(value: Any) -> int:
    """Clamp a page size into [1, 1000]; anything unusable becomes the default of 100."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_RESULTS
    if not math.isfinite(number) or number <= 0:
        return DEFAULT_MAX_RESULTS
    return min(max(math.floor(number), 1), MAX_RESULTS_LIMIT)


def _column_config(*sources: Mapping[str, Any] | None) -> ColumnConfig | None:
    for source in sources:
        raw = source.get("column_config") if source else None
        if raw is None:
            continue
        if isinstance(raw, ColumnConfig):
            return raw
        return ColumnConfig.model_validate(dict(raw))
    return None


def resolve_jira_config(
    explicit: Mapping[str, Any] | None = None,
    options: Mapping[str, Any] | None = None,
    env: JiraSettings | None = None,
) -> JiraConfig:
    """Merge the three configuration layers field by field; blank values count as unset."""
    env_values = (env if env is not None else JiraSettings()).model_dump()
    picked = {field: _pick(field, explicit, options, env_values) for field in _FIELDS}

    return JiraConfig(
        url=normalize_url(picked["url"]),
        email=picked["email"],
        api_token=SecretStr(picked["api_token"]) if picked["api_token"] else None,
        jql=picked["jql"] or DEFAULT_JQL,
        max_results=normalize_max_results(picked["max_results"]),
        project_key=picked["project_key"],
        default_issue_type=picked["default_issue_type"] or DEFAULT_ISSUE_TYPE,
        column_config=_column_config(explicit, options),
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/roadsync/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.load(CONFIG_PATH.open())


def _list_profiles(config: Mapping) -> list[str]:
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def active_profile(profile: str | None = None) -> str | None:
    """Resolve the active profile name.

    Precedence (highest to lowest):
    1. profile argument (--profile CLI flag)
    2. ROADSYNC_PROFILE env var
    3. default_profile key in ~/.config/roadsync/config.toml
    4. First profile defined in ~/.config/roadsync/config.toml
    """
    toml_config = _load_toml()
    profiles = _list_profiles(toml_config)
    return (
        profile
        or os.environ.get("ROADSYNC_PROFILE")
        or toml_config.get("default_profile")
        or (profiles[0] if profiles else None)
    )


def load_profile(profile: str | None = None) -> dict[str, Any]:
    """Return the active profile table as a plain dict, or {} when no profile is configured."""
    name = active_profile(profile)
    if not name:
        return {}
    toml_config = _load_toml()
    table = toml_config.get(name)
    if not isinstance(table, Mapping):
        raise ConfigurationError(
            f"Profile '{name}' not found in {CONFIG_PATH}. Available: {_list_profiles(toml_config) or '(none)'}",
            field="profile",
        )
    return table.unwrap() if hasattr(table, "unwrap") else dict(table)
