"""roadsync CLI: operator commands for checking and driving a roadmap provider."""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Annotated, Any, TypeVar

import tomlkit
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from roadsync.dates import custom_range, last_days_range
from roadsync.errors import ConfigurationError, RoadmapError
from roadsync.models import Card, CardResult, CreateCardInput, DateRangeFilter, UpdateCardInput
from roadsync.providers.base import RoadmapProvider, ensure_provider
from roadsync.providers.jira import JiraProvider
from roadsync.service import parse_labels
from roadsync.settings import (
    CONFIG_PATH,
    _list_profiles,
    _load_toml,
    active_profile,
    load_profile,
    resolve_jira_config,
)

T = TypeVar("T")

app = typer.Typer(help="roadsync: mirror a tracker roadmap into forum threads", no_args_is_help=True)

ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-p", help="Profile name from ~/.config/roadsync/config.toml"),
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Provider factory
# ---------------------------------------------------------------------------


PROVIDERS: dict[str, Callable[..., RoadmapProvider]] = {"jira": JiraProvider}


def _provider_name(options: Mapping[str, Any]) -> str:
    name = str(options.get("provider", "jira")).lower()
    if name not in PROVIDERS:
        rprint(f"[red]Unknown provider '{name}'. Valid: {', '.join(PROVIDERS)}[/red]")
        raise typer.Exit(1)
    return name


def get_provider(profile: str | None = None) -> RoadmapProvider:
    try:
        options = load_profile(profile)
    except ConfigurationError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    name = _provider_name(options)
    options.pop("provider", None)
    return ensure_provider(PROVIDERS[name](options=options))


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a provider call, turning library errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except RoadmapError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


def _cards_table(title: str, cards: list[Card]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Column")
    table.add_column("Title")
    table.add_column("Labels")
    table.add_column("Updated", style="dim")
    for card in cards:
        table.add_row(
            card.id, card.column, card.title, ", ".join(card.labels) or "-", card.updated_at.date().isoformat()
        )
    return table


def _print_result(result: CardResult) -> None:
    if not result.success:
        rprint(f"[red]✗[/red] {result.message}")
        raise typer.Exit(1)
    rprint(f"[green]✓[/green] [bold]{result.card.id}[/bold] {result.card.title} [dim]({result.card.column})[/dim]")
    rprint(f"  {result.card.url}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("check")
def check(profile: ProfileOpt = None) -> None:
    """Validate configuration and test the connection."""
    provider = get_provider(profile)
    if not provider.validate_config():
        rprint("[red]Configuration is invalid. Run with -v for details.[/red]")
        raise typer.Exit(1)
    _run(provider.init())
    info = provider.get_provider_info()
    rprint(f"[green]✓[/green] Connected to {info.name} ({info.metadata.get('jira_url') or 'configured endpoint'})")


@app.command("info")
def info_cmd(profile: ProfileOpt = None) -> None:
    """Show provider details and capabilities."""
    info = get_provider(profile).get_provider_info()

    table = Table(title=f"{info.name} provider")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Version", info.version)
    table.add_row("Capabilities", ", ".join(info.capabilities))
    for key, value in info.metadata.items():
        table.add_row(key, str(value) if value is not None else "[dim](not set)[/dim]")

    rprint(table)


@app.command("cards")
def list_cards(
    profile: ProfileOpt = None,
    since: Annotated[str | None, typer.Option("--since", help="Start date (YYYY-MM-DD)")] = None,
    until: Annotated[str | None, typer.Option("--until", help="End date (YYYY-MM-DD)")] = None,
    days: Annotated[int | None, typer.Option("--days", min=1, help="Only cards from the last N days")] = None,
    date_field: Annotated[str, typer.Option("--date-field", help="created or updated")] = "updated",
) -> None:
    """List roadmap cards, optionally restricted to a date range."""
    if date_field not in ("created", "updated"):
        rprint("[red]--date-field must be 'created' or 'updated'[/red]")
        raise typer.Exit(1)

    if days is not None:
        date_filter: DateRangeFilter | None = last_days_range(days, date_field=date_field)  # type: ignore[arg-type]
    elif since and until:
        try:
            date_filter = custom_range(since, until, date_field=date_field)  # type: ignore[arg-type]
        except ValueError as exc:
            rprint(f"[red]{exc}[/red]")
            raise typer.Exit(1) from exc
    elif since or until:
        date_filter = DateRangeFilter(start_date=since, end_date=until, date_field=date_field)  # type: ignore[arg-type]
    else:
        date_filter = None

    provider = get_provider(profile)
    if date_filter is None:
        cards = _run(provider.fetch_cards())
    else:
        cards = _run(provider.fetch_cards_by_date_range(date_filter))

    rprint(_cards_table("Roadmap", cards))


@app.command("card")
def get_card(
    card_id: Annotated[str, typer.Argument(help="Card ID (e.g. ROAD-42)")],
    profile: ProfileOpt = None,
) -> None:
    """Show full details for a card."""
    card = _run(get_provider(profile).get_card(card_id))
    if card is None:
        rprint(f"[red]Card '{card_id}' not found[/red]")
        raise typer.Exit(1)

    table = Table(title=f"{card.id}: {card.title}")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Column", card.column)
    table.add_row("Status", str(card.metadata.get("original_status") or "-"))
    table.add_row("Labels", ", ".join(card.labels) if card.labels else "none")
    table.add_row("Assignees", str(len(card.assignees)))
    table.add_row("Updated", card.updated_at.isoformat())
    table.add_row("URL", card.url)
    table.add_row("Description", card.description or "_No description provided._")

    rprint(table)


@app.command("columns")
def list_columns(profile: ProfileOpt = None) -> None:
    """List logical columns."""
    columns = _run(get_provider(profile).get_columns())

    table = Table(title="Columns")
    table.add_column("Order", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Archived")
    table.add_column("Forum")
    for column in columns:
        table.add_row(
            str(column.order),
            column.name,
            "yes" if column.archived else "no",
            "yes" if column.create_forum else "no",
        )

    rprint(table)


@app.command("labels")
def list_labels(profile: ProfileOpt = None) -> None:
    """List labels known to the provider."""
    for label in _run(get_provider(profile).get_labels()):
        typer.echo(label)


@app.command("issue-types")
def list_issue_types(profile: ProfileOpt = None) -> None:
    """List issue types available for new cards."""
    for issue_type in _run(get_provider(profile).get_issue_types()):
        typer.echo(issue_type)


@app.command("create")
def create_card(
    title: Annotated[str, typer.Argument(help="Card title")],
    profile: ProfileOpt = None,
    description: Annotated[str | None, typer.Option("--description", "-d", help="Card description")] = None,
    column: Annotated[str, typer.Option("--column", "-c", help="Target column")] = "Backlog",
    issue_type: Annotated[str | None, typer.Option("--issue-type", "-t", help="Issue type")] = None,
    labels: Annotated[str | None, typer.Option("--labels", "-l", help="Comma-separated labels")] = None,
) -> None:
    """Create a card in the tracker."""
    provider = get_provider(profile)
    card_input = CreateCardInput(
        title=title, description=description, column=column, issue_type=issue_type, labels=parse_labels(labels)
    )
    _print_result(_run(provider.create_card(card_input)))


@app.command("edit")
def edit_card(
    card_id: Annotated[str, typer.Argument(help="Card ID (e.g. ROAD-42)")],
    profile: ProfileOpt = None,
    title: Annotated[str | None, typer.Option("--title", help="New title")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d", help="New description")] = None,
    column: Annotated[str | None, typer.Option("--column", "-c", help="Move to column")] = None,
    labels: Annotated[str | None, typer.Option("--labels", "-l", help="Replace labels (comma-separated)")] = None,
) -> None:
    """Update fields of an existing card."""
    changes = UpdateCardInput(
        title=title,
        description=description,
        column=column,
        labels=parse_labels(labels) if labels is not None else None,
    )
    if not changes.changes():
        rprint("[red]Nothing to update. Pass at least one of --title, --description, --column, --labels.[/red]")
        raise typer.Exit(1)
    _print_result(_run(get_provider(profile).update_card(card_id, changes)))


@app.command("set-default")
def set_default(
    profile: Annotated[str, typer.Argument(help="Profile name to make the default")],
) -> None:
    """Make PROFILE the default in ~/.config/roadsync/config.toml.

    An existing profile must name a supported provider. Without a config file, one is created
    holding only the default.
    """
    doc = tomlkit.parse(CONFIG_PATH.read_text()) if CONFIG_PATH.exists() else tomlkit.document()
    profiles = _list_profiles(doc)
    if profile in profiles:
        _provider_name(doc[profile])
    elif profiles:
        rprint(f"[red]Profile '{profile}' not found in {CONFIG_PATH}. Available: {', '.join(profiles)}[/red]")
        raise typer.Exit(1)

    doc["default_profile"] = profile
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _load_toml.cache_clear()
    rprint(f"[green]Default profile set to '{profile}'[/green] in {CONFIG_PATH}")


@app.command("config-show")
def config_show(profile: ProfileOpt = None) -> None:
    """Show resolved configuration (masks credentials)."""
    try:
        options = load_profile(profile)
    except ConfigurationError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    config = resolve_jira_config(options=options)

    def mask(val: str | None) -> str:
        if val is None:
            return "[dim](not set)[/dim]"
        if len(val) <= 5:
            return "***"
        return f"...{val[-5:]}"

    def show(val: str | None) -> str:
        return val or "[dim](not set)[/dim]"

    table = Table(title="roadsync configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("profile", show(active_profile(profile)))
    table.add_row("provider", str(options.get("provider", "jira")))
    table.add_row("url", show(config.url))
    table.add_row("email", show(config.email))
    table.add_row("api_token", mask(config.token))
    table.add_row("project_key", show(config.project_key))
    table.add_row("default_issue_type", config.default_issue_type)
    table.add_row("max_results", str(config.max_results))
    table.add_row("jql", config.jql)
    table.add_row("column_config", "custom" if config.column_config else "[dim](default)[/dim]")

    rprint(table)
