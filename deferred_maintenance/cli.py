"""CLI for deferred maintenance."""

import sys
import time
from datetime import datetime, timezone
from typing import Annotated, Literal, NoReturn

import structlog
from cyclopts import App, Parameter

from deferred_maintenance.backends import JupiterOneGraphClient
from deferred_maintenance.config import (
    ConfigError,
    Settings,
    discover_code_repo,
    discover_user_email,
    get_config,
    load_settings,
)
from deferred_maintenance.config_commands import config_app
from deferred_maintenance.graph import GraphClient, GraphRequestError
from deferred_maintenance.maintenance import BatchAbortedError, MaintenanceLifecycleManager
from deferred_maintenance.models import (
    CloseInfo,
    MaintenanceContent,
    MaintenanceSummary,
    TargetEntity,
    ValidationError,
)
from deferred_maintenance.retry import RetryExecutor, RetryExhaustedError

logger = structlog.get_logger()

EXIT_BATCH_ABORTED = 1
EXIT_PRECONDITION = 2

DAY_MS = 24 * 60 * 60 * 1000
DUE_IN_DAYS = {"7d": 7, "30d": 30, "60d": 60, "90d": 90, "180d": 180, "365d": 365}

app = App(
    help="Deferred Maintenance - Manage maintenance Findings in JupiterOne for one or more CodeRepos",
)

app.command(config_app)


def configure_logging(log_level: str) -> None:
    """Configure structlog with the specified log level."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level.lower()))


def fail(message: str, code: int = EXIT_PRECONDITION) -> NoReturn:
    """Print an error and exit with a non-zero status."""
    print(message, file=sys.stderr)
    sys.exit(code)


def get_settings() -> Settings:
    """Load and validate settings, exiting if credentials are missing."""
    try:
        settings = load_settings(get_config())
        settings.validate()
    except ConfigError as e:
        fail(str(e))
    return settings


def get_graph_client(settings: Settings) -> GraphClient:
    """Get the graph client for the configured account."""
    return JupiterOneGraphClient(account=settings.account, token=settings.api_token, url=settings.url)


def get_manager(settings: Settings) -> MaintenanceLifecycleManager:
    """Build the lifecycle manager for one run."""
    return MaintenanceLifecycleManager(get_graph_client(settings), RetryExecutor(settings.retry_policy))


def gather_targets(manager: MaintenanceLifecycleManager, query: str) -> list[TargetEntity]:
    """Run the target query, exiting if it fails or returns nothing."""
    try:
        entities = manager.gather_entities(query)
    except (RetryExhaustedError, GraphRequestError) as e:
        fail(f"Query failed: {e}", EXIT_BATCH_ABORTED)
    except ValidationError as e:
        fail(f"Query returned unusable rows: {e}")
    if not entities:
        fail("invalid query, or no results")
    print(f"This will impact {len(entities)} entities")
    return entities


def due_date_from_now(due: str, now_ms: int | None = None) -> int:
    """Convert a due window such as ``30d`` to an epoch-millisecond timestamp."""
    if due not in DUE_IN_DAYS:
        raise ValidationError(f"Unknown due window {due!r}, choose one of {', '.join(DUE_IN_DAYS)}")
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return now_ms + DUE_IN_DAYS[due] * DAY_MS


def format_summary(summary: MaintenanceSummary) -> str:
    """Format one open maintenance item as a single line."""
    due = "N/A"
    if summary.due_date is not None:
        due = datetime.fromtimestamp(summary.due_date / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    return f"● {summary.maintenance_id} due {due}: {summary.description} {summary.web_link or ''}".rstrip()


@app.command(name="open")
def open_maintenance(
    query: str,
    short_description: str,
    web_link: str,
    description: str = "",
    due: Literal["7d", "30d", "60d", "90d", "180d", "365d"] = "7d",
) -> None:
    """Open a maintenance Finding for every entity a J1QL query returns.

    Args:
        query: J1QL query selecting the target entities, e.g. FIND CodeRepo with name = 'foo'
        short_description: Very short description of the maintenance needed (50 chars max)
        web_link: URL with details (issue, chat thread, etc)
        description: Fuller description of the maintenance
        due: Due date, relative to now
    """
    settings = get_settings()
    try:
        content = MaintenanceContent(
            short_description=short_description,
            description=description,
            web_link=web_link,
            due_date=due_date_from_now(due),
            created_by=discover_user_email(settings),
        )
    except ValidationError as e:
        fail(str(e))

    manager = get_manager(settings)
    entities = gather_targets(manager, query)

    try:
        applied = manager.apply_maintenance(entities, content)
    except BatchAbortedError as e:
        fail(f"Open failed at entity {e.index + 1} of {len(entities)}: {e.cause}", EXIT_BATCH_ABORTED)

    print(f"Opened maintenance {applied[0].maintenance_id} on {len(applied)} entities")
    for result in applied:
        print(f"● {result.target.label} ({result.target.id}): {result.entity_key}")
    print("Open OK")


@app.command(name="close")
def close_maintenance(
    query: str,
    reason: Literal["COMPLETE", "ERROR", "RISK_ACCEPTED"],
    link: str | None = None,
) -> None:
    """Close the maintenance Findings a J1QL query returns.

    Args:
        query: J1QL query returning deferred_maintenance entities
        reason: Why the maintenance is being closed
        link: URL linking to the maintenance performed; required unless reason is ERROR
    """
    settings = get_settings()
    try:
        close_info = CloseInfo(close_reason=reason, maintenance_link=link, closed_by=discover_user_email(settings))
    except ValidationError as e:
        fail(str(e))

    manager = get_manager(settings)
    entities = gather_targets(manager, query)

    try:
        closed = manager.close_maintenance(entities, close_info)
    except BatchAbortedError as e:
        fail(f"Close failed at entity {e.index + 1} of {len(entities)}: {e.cause}", EXIT_BATCH_ABORTED)

    print(f"Closed {len(closed)} maintenance findings")
    print("Close OK")


@app.command
def report(repo: str | None = None, mine: bool = False) -> None:
    """Show open maintenance for the current repository.

    Args:
        repo: Repository name; defaults to the current git checkout
        mine: Also show open maintenance created by you
    """
    settings = get_settings()
    manager = get_manager(settings)
    print("Gathering maintenance report...")
    try:
        _print_report(manager, repo or discover_code_repo(), discover_user_email(settings) if mine else None)
    except (RetryExhaustedError, GraphRequestError) as e:
        fail(f"Report query failed: {e}", EXIT_BATCH_ABORTED)
    print("OK")


def _print_report(manager: MaintenanceLifecycleManager, repo: str | None, email: str | None) -> None:
    if repo:
        summaries = manager.open_maintenance_for_repo(repo)
        if summaries:
            print(f"{repo} maintenance needed:")
            for summary in summaries:
                print(format_summary(summary))
            print()

    if email:
        summaries = manager.open_maintenance_created_by(email)
        if summaries:
            print(f"{email} created open maintenance items:")
            for summary in summaries:
                print(format_summary(summary))


@app.meta.default
def main(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "critical",
) -> None:
    """Main entry point with global options."""
    configure_logging(log_level)
    app(tokens)


if __name__ == "__main__":
    app.meta()
