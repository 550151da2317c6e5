"""Service Tracker administration commands."""

import asyncio
from typing import Final, NoReturn

import typer
from rich.console import Console
from rich.table import Table
from sqlmodel import Session

from .application.access_service import (
    approve_directly,
    deactivate_allowlist,
    list_access_requests,
    reopen_request,
    unblock,
)
from .application.service_day_service import cache_service_day
from .client.api import ServiceDayApiClient
from .config import Settings
from .domain.access import RequestStatus
from .domain.exceptions import DomainError
from .infrastructure.database.database import create_database_engine, init_db
from .infrastructure.telegram import TelegramGateway
from .logging_config import setup_logging
from .presentation.webhook_routes import WEBHOOK_PATH

console = Console()

CLI_DECIDER: Final = "cli"

app = typer.Typer(
    name="service-tracker-admin",
    help="""Service Tracker administration

    Examples:
      service-tracker-admin requests --status pending
      service-tracker-admin approve <uid>
      service-tracker-admin unblock <uid>
      service-tracker-admin set-webhook https://tracker.example.com
      service-tracker-admin serve --reload
    """,
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _settings() -> Settings:
    settings = Settings()
    setup_logging(settings, log_level="WARNING")
    return settings


def _session(settings: Settings) -> Session:
    engine = create_database_engine(settings.database_url, settings.debug)
    init_db(engine)
    return Session(engine)


def _fail(error: Exception) -> NoReturn:
    console.print(f"❌ {error}", style="red")
    raise typer.Exit(code=1)


@app.command("init-db")
def init_database() -> None:
    """Create all tables."""
    settings = _settings()
    init_db(create_database_engine(settings.database_url, settings.debug))
    console.print("✅ Database initialized", style="green")


@app.command("requests")
def requests(
    status: RequestStatus | None = typer.Option(
        None, "--status", "-s", help="Only requests with this status"
    ),
) -> None:
    """List access requests, most recently updated first."""
    settings = _settings()
    with _session(settings) as session:
        records = list_access_requests(session, status)

    if not records:
        console.print("No access requests.", style="yellow")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("UID")
    table.add_column("Email")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Notification")
    table.add_column("Updated")
    for record in records:
        table.add_row(
            record.uid,
            record.email,
            record.display_name,
            record.status,
            str(record.request_count),
            record.notification_state,
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def approve(uid: str = typer.Argument(..., help="uid to grant")) -> None:
    """Grant access directly, resolving any open request."""
    settings = _settings()
    with _session(settings) as session:
        try:
            approve_directly(session, uid, CLI_DECIDER)
        except DomainError as e:
            _fail(e)
    console.print(f"✅ {uid} approved", style="green")


@app.command()
def reopen(uid: str = typer.Argument(..., help="uid of the request")) -> None:
    """Put a denied or blocked request back to pending."""
    settings = _settings()
    with _session(settings) as session:
        try:
            reopen_request(session, uid)
        except DomainError as e:
            _fail(e)
    console.print(f"✅ Request of {uid} reopened", style="green")


@app.command("unblock")
def unblock_command(uid: str = typer.Argument(..., help="uid to unblock")) -> None:
    """Remove the uid and e-mail blocks of a user."""
    settings = _settings()
    with _session(settings) as session:
        removed = unblock(session, uid)
    if removed:
        console.print(f"✅ Removed {removed} block entries for {uid}", style="green")
    else:
        console.print(f"No block entries for {uid}", style="yellow")


@app.command()
def deactivate(uid: str = typer.Argument(..., help="uid to deactivate")) -> None:
    """Deactivate an allowlist entry without deleting it."""
    settings = _settings()
    with _session(settings) as session:
        try:
            deactivate_allowlist(session, uid)
        except DomainError as e:
            _fail(e)
    console.print(f"✅ {uid} deactivated", style="green")


@app.command("set-webhook")
def set_webhook(
    base_url: str = typer.Argument(..., help="Public base URL of this service"),
) -> None:
    """Register the webhook with Telegram, callback updates only."""
    settings = _settings()
    if not settings.telegram_webhook_secret:
        _fail(DomainError("TELEGRAM_WEBHOOK_SECRET is not configured"))

    async def register() -> bool:
        async with TelegramGateway(
            settings.telegram_bot_token,
            settings.telegram_api_base_url,
            settings.telegram_timeout_seconds,
        ) as gateway:
            return await gateway.set_webhook(
                f"{base_url.rstrip('/')}{WEBHOOK_PATH}",
                settings.telegram_webhook_secret,
            )

    try:
        asyncio.run(register())
    except DomainError as e:
        _fail(e)
    console.print("✅ Webhook registered", style="green")


@app.command("sync-day")
def sync_day(
    date: str = typer.Argument(..., help="Service date (YYYY-MM-DD)"),
    pin: str = typer.Option("", "--pin", help="Upstream API PIN"),
    force: bool = typer.Option(False, "--force", help="Ask for a forced refresh"),
) -> None:
    """Fetch one date from the upstream API and store it as the cache."""
    settings = _settings()

    async def fetch():
        source = ServiceDayApiClient(
            settings.source_api_base_url, settings.source_api_timeout_seconds
        )
        try:
            return await source.fetch_service_day(date, pin, force_refresh=force)
        finally:
            await source.aclose()

    try:
        day = asyncio.run(fetch())
    except DomainError as e:
        _fail(e)

    with _session(settings) as session:
        day = cache_service_day(session, day)
    console.print(
        f"✅ {date}: {len(day.pickups)} deliveries, {len(day.returns)} returns",
        style="green",
    )


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "service_tracker.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=reload,
    )


def main():
    """Main entry point for the admin CLI."""
    app()
