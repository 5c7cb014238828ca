"""Command-line interface for eventnet.

This module provides a Typer-based operator CLI that drives the engine
against the local SQLite store. Commands that act on behalf of a user take
``--as USER_ID``.

Commands:
- init / status / metrics: Store setup and statistics
- add-user / profile / people: Profiles and the people directory
- events / create-event / register / unregister / attend: Events
- connect / respond / requests / contacts: Connections
- chats / send / transcript: Event chats

Example:
    $ eventnet init
    $ eventnet add-user "Ada Lovelace" --email ada@example.com
    $ eventnet create-event --as <ada-id> --title "PyCon" --type conference \\
        --format offline --date 2025-06-01T10:00 --max 100
    $ eventnet transcript <event-id> --as <ada-id> --follow
"""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from loguru import logger as loguru_logger
from rich.console import Console
from rich.table import Table

from eventnet.chat import ChatMembership, TranscriptPoller
from eventnet.config import ConnectionStatus, EventFormat, EventType, settings
from eventnet.config import Table as StoreTable
from eventnet.connections import ConnectionGraph
from eventnet.database import SQLiteDataStore
from eventnet.errors import EventNetError
from eventnet.logging import logger, set_request_context
from eventnet.metrics import generate_metrics_output
from eventnet.models import Message, Profile
from eventnet.registrations import EventCatalog, RegistrationAggregator
from eventnet.session import LocalAuthProvider, SessionContext
from eventnet.utils import new_id

# Initialize CLI app
app     = typer.Typer(
    name="eventnet",
    help="Events, registrations, connections and event chats",
    add_completion=False,
)
console = Console()

AS_USER_HELP = "ID of the user to act as"


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Send logs to stderr; warnings only unless verbose."""
    loguru_logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "{message}",
    )


def run_async(coro):
    """Run async coroutine in event loop."""
    return asyncio.run(coro)


def fail(message: str) -> typer.Exit:
    console.print(f"❌ [bold red]{message}[/bold red]")
    return typer.Exit(code=1)


@dataclass
class Engine:
    """Engine components wired to one store and session."""

    store: SQLiteDataStore
    session: SessionContext
    graph: ConnectionGraph
    registrations: RegistrationAggregator
    catalog: EventCatalog
    chat: ChatMembership

    @property
    def user_id(self) -> str:
        return self.session.require_user_id()


@asynccontextmanager
async def open_engine(as_user: Optional[str] = None) -> AsyncIterator[Engine]:
    """Open the local store and, with ``as_user``, sign in as that user."""
    store = SQLiteDataStore()
    store.initialize()
    auth = LocalAuthProvider(store)
    session = SessionContext(auth, store)
    try:
        if as_user:
            await auth.impersonate(as_user)
        else:
            await session.initialize()
        registrations = RegistrationAggregator(store)
        yield Engine(
            store=store,
            session=session,
            graph=ConnectionGraph(store),
            registrations=registrations,
            catalog=EventCatalog(store, registrations),
            chat=ChatMembership(store, registrations),
        )
    finally:
        session.close()
        store.close()


def run_engine(as_user: Optional[str], action) -> None:
    """Run ``action(engine)`` and turn engine errors into exit code 1."""

    async def _run():
        set_request_context(request_id=new_id()[:8], operation=action.__name__.lstrip("_"))
        async with open_engine(as_user) as engine:
            await action(engine)

    try:
        run_async(_run())
    except EventNetError as e:
        raise fail(e.message) from e
    except ValueError as e:
        raise fail(f"Invalid input: {e}") from e


def profile_label(profile: Optional[Profile]) -> str:
    if profile is None:
        return "Unknown user"
    return profile.display_name


def short_time(message: Message) -> str:
    return message.created_at.strftime("%Y-%m-%d %H:%M")


# =============================================================================
# Store Commands
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force re-initialization (recreate database)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Initialize the local store.

    Examples:
        $ eventnet init
        $ eventnet init --force
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]eventnet Initialization[/bold cyan]\n")

    db_path = Path(str(settings.database_path))
    if db_path.exists():
        if not force:
            console.print(
                f"⚠️  Database already exists at {settings.database_path}\n"
                "Use --force to recreate it."
            )
            return
        for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
            path.unlink(missing_ok=True)

    store = SQLiteDataStore()
    store.initialize()
    store.close()

    console.print(f"✅ Database created at [yellow]{settings.database_path}[/yellow]")
    console.print("\nNext steps:")
    console.print("  1. Run: eventnet add-user \"Your Name\" --email you@example.com")
    console.print("  2. Run: eventnet create-event --as <user-id> ...")


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show configuration and store statistics.

    Examples:
        $ eventnet status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]eventnet Status[/bold cyan]\n")

    config_table = Table(title="Configuration", show_header=False)
    config_table.add_column("Key", style="cyan")
    config_table.add_column("Value", style="yellow")
    config_table.add_row("Environment", settings.environment.value)
    config_table.add_row("Database Path", str(settings.database_path))
    config_table.add_row("Backend URL", settings.backend_url or "not configured")
    config_table.add_row("Backend Key", settings.redact_key())
    config_table.add_row("Poll Interval", f"{settings.poll_interval_seconds} s")
    console.print(config_table)
    console.print()

    async def _status(engine: Engine) -> None:
        counts = await engine.store.get_entity_counts()
        stats_table = Table(title="Store Statistics")
        stats_table.add_column("Table", style="cyan")
        stats_table.add_column("Rows", justify="right", style="green")
        for name, count in counts.items():
            stats_table.add_row(name, f"{count:,}")
        console.print(stats_table)

    run_engine(None, _status)


@app.command()
def metrics() -> None:
    """Print metrics of this process in the Prometheus text format."""
    console.print(generate_metrics_output().decode(), markup=False, highlight=False)


# =============================================================================
# Profiles and People
# =============================================================================


@app.command("add-user")
def add_user(
    full_name: str = typer.Argument(..., help="Display name"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Contact email"),
    company: Optional[str] = typer.Option(None, "--company", help="Current company"),
    position: Optional[str] = typer.Option(None, "--position", help="Job title"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Create a user profile and print its ID."""
    setup_logging(verbose)

    async def _add(engine: Engine) -> None:
        row = await engine.store.insert(
            StoreTable.PROFILES,
            {
                "id": new_id(),
                "full_name": full_name.strip() or None,
                "email": email,
                "company": company,
                "position": position,
            },
        )
        console.print(f"✅ Created user [bold]{full_name}[/bold]: [yellow]{row['id']}[/yellow]")

    run_engine(None, _add)


@app.command()
def profile(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    full_name: Optional[str] = typer.Option(None, "--name", help="New display name"),
    company: Optional[str] = typer.Option(None, "--company", help="New company"),
    position: Optional[str] = typer.Option(None, "--position", help="New job title"),
    bio: Optional[str] = typer.Option(None, "--bio", help="New biography"),
    linkedin_url: Optional[str] = typer.Option(None, "--linkedin", help="New LinkedIn URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show your profile, updating the given fields first."""
    setup_logging(verbose)

    updates = {
        key: value
        for key, value in {
            "full_name": full_name,
            "company": company,
            "position": position,
            "bio": bio,
            "linkedin_url": linkedin_url,
        }.items()
        if value is not None
    }

    async def _profile(engine: Engine) -> None:
        current = engine.session.profile
        if updates:
            current = await engine.session.update_profile(**updates)
            console.print("✅ Profile updated\n")
        if current is None:
            raise fail("Profile not found")

        table = Table(title=f"{current.display_name} ({current.initials})", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        for field in ("id", "email", "company", "position", "bio", "linkedin_url"):
            table.add_row(field, getattr(current, field) or "-")
        console.print(table)

    run_engine(as_user, _profile)


@app.command()
def people(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    search: Optional[str] = typer.Option(
        None, "--search", "-s", help="Match name, company or position"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Browse other users and your relationship with each."""
    setup_logging(verbose)

    async def _people(engine: Engine) -> None:
        results = await engine.graph.browse(engine.user_id, search)
        if not results:
            console.print("No people found")
            return

        table = Table(title="People")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Company")
        table.add_column("Position")
        table.add_column("Status", style="yellow")
        for entry in results:
            table.add_row(
                entry.profile.id,
                entry.profile.display_name,
                entry.profile.company or "",
                entry.profile.position or "",
                entry.state.value,
            )
        console.print(table)

    run_engine(as_user, _people)


# =============================================================================
# Events
# =============================================================================


@app.command()
def events(
    as_user: Optional[str] = typer.Option(None, "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """List events by date with live registration counts."""
    setup_logging(verbose)

    async def _events(engine: Engine) -> None:
        views = await engine.catalog.list_events(engine.session.user_id)
        if not views:
            console.print("No events yet")
            return

        table = Table(title="Events")
        table.add_column("ID", style="dim")
        table.add_column("Date", style="cyan")
        table.add_column("Title", style="bold")
        table.add_column("Type")
        table.add_column("Format")
        table.add_column("Participants", justify="right", style="green")
        table.add_column("Registered", justify="center")
        for view in views:
            event = view.event
            limit = f" / {event.max_participants}" if event.max_participants else ""
            registered = "✅" if view.is_registered else ("full" if view.is_full else "")
            table.add_row(
                event.id,
                event.date.strftime("%Y-%m-%d %H:%M"),
                event.title,
                event.event_type.value,
                event.format.value,
                f"{view.registrations_count}{limit}",
                registered,
            )
        console.print(table)

    run_engine(as_user, _events)


@app.command("create-event")
def create_event(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    title: str = typer.Option(..., "--title", "-t", help="Event title"),
    event_type: EventType = typer.Option(..., "--type", help="Kind of event"),
    event_format: EventFormat = typer.Option(..., "--format", help="Where it takes place"),
    date: str = typer.Option(..., "--date", help="Start, ISO 8601 (UTC if no offset)"),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="End, ISO 8601"),
    location: Optional[str] = typer.Option(None, "--location", help="Address or link"),
    max_participants: Optional[int] = typer.Option(None, "--max", help="Participant limit"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Create an event and print its ID."""
    setup_logging(verbose)

    async def _create(engine: Engine) -> None:
        event = await engine.catalog.create_event(
            engine.user_id,
            title=title,
            event_type=event_type,
            format=event_format,
            date=date,
            end_date=end_date,
            location=location,
            max_participants=max_participants,
            description=description,
        )
        console.print(f"✅ Created event [bold]{event.title}[/bold]: [yellow]{event.id}[/yellow]")

    run_engine(as_user, _create)


@app.command()
def register(
    event_id: str = typer.Argument(..., help="Event to register for"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Register for an event."""
    setup_logging(verbose)

    async def _register(engine: Engine) -> None:
        await engine.registrations.register(event_id, engine.user_id)
        count = await engine.registrations.registration_count_for(event_id)
        console.print(f"✅ Registered ({count} participants)")

    run_engine(as_user, _register)


@app.command()
def unregister(
    event_id: str = typer.Argument(..., help="Event to leave"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Cancel your registration for an event."""
    setup_logging(verbose)

    async def _unregister(engine: Engine) -> None:
        removed = await engine.registrations.unregister(event_id, engine.user_id)
        count = await engine.registrations.registration_count_for(event_id)
        if removed:
            console.print(f"✅ Registration cancelled ({count} participants)")
        else:
            console.print(f"You were not registered ({count} participants)")

    run_engine(as_user, _unregister)


@app.command()
def attend(
    event_id: str = typer.Argument(..., help="Event that took place"),
    user_id: str = typer.Argument(..., help="Participant who attended"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Mark a registered participant as attended (event creator only)."""
    setup_logging(verbose)

    async def _attend(engine: Engine) -> None:
        await engine.registrations.mark_attended(event_id, user_id, actor_id=engine.user_id)
        console.print(f"✅ {user_id} marked as attended")

    run_engine(as_user, _attend)


# =============================================================================
# Connections
# =============================================================================


@app.command()
def connect(
    user_id: str = typer.Argument(..., help="User to connect with"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Send a connection request."""
    setup_logging(verbose)

    async def _connect(engine: Engine) -> None:
        connection = await engine.graph.request_connection(engine.user_id, user_id)
        console.print(f"✅ Request sent: [yellow]{connection.id}[/yellow]")

    run_engine(as_user, _connect)


@app.command()
def respond(
    connection_id: str = typer.Argument(..., help="Request to answer"),
    outcome: str = typer.Argument(..., help="accepted or rejected"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Accept or reject a connection request addressed to you."""
    setup_logging(verbose)

    async def _respond(engine: Engine) -> None:
        connection = await engine.graph.respond(connection_id, outcome, actor_id=engine.user_id)
        verb = "accepted" if connection.status == ConnectionStatus.ACCEPTED else "rejected"
        console.print(f"✅ Request {verb}")

    run_engine(as_user, _respond)


@app.command()
def requests(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """List connection requests awaiting your answer, oldest first."""
    setup_logging(verbose)

    async def _requests(engine: Engine) -> None:
        pending = await engine.graph.list_pending(engine.user_id)
        if not pending:
            console.print("No pending requests")
            return

        table = Table(title="Pending Requests")
        table.add_column("Request ID", style="dim")
        table.add_column("From", style="cyan")
        table.add_column("Company")
        table.add_column("Sent", style="yellow")
        for view in pending:
            sent = view.connection.created_at if view.connection else None
            table.add_row(
                view.connection_id or "",
                profile_label(view.other),
                (view.other.company if view.other else None) or "",
                sent.strftime("%Y-%m-%d %H:%M") if sent else "",
            )
        console.print(table)

    run_engine(as_user, _requests)


@app.command()
def contacts(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """List your accepted connections."""
    setup_logging(verbose)

    async def _contacts(engine: Engine) -> None:
        accepted = await engine.graph.list_accepted(engine.user_id)
        if not accepted:
            console.print("No connections yet")
            return

        table = Table(title="Connections")
        table.add_column("Name", style="cyan")
        table.add_column("Company")
        table.add_column("Position")
        table.add_column("LinkedIn", style="blue")
        for view in accepted:
            other = view.other
            table.add_row(
                profile_label(other),
                (other.company if other else None) or "",
                (other.position if other else None) or "",
                (other.linkedin_url if other else None) or "",
            )
        console.print(table)

    run_engine(as_user, _contacts)


# =============================================================================
# Chats
# =============================================================================


@app.command()
def chats(
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """List the event chats you can access with their latest message."""
    setup_logging(verbose)

    async def _chats(engine: Engine) -> None:
        rooms = await engine.chat.chat_rooms(engine.user_id)
        if not rooms:
            console.print("No chats. Register for an event to join its chat.")
            return

        table = Table(title="Chats")
        table.add_column("Event ID", style="dim")
        table.add_column("Event", style="cyan")
        table.add_column("Messages", justify="right", style="green")
        table.add_column("Latest")
        for room in rooms:
            latest = room.messages[-1].content if room.messages else ""
            table.add_row(room.event.id, room.event.title, str(len(room.messages)), latest)
        console.print(table)

    run_engine(as_user, _chats)


@app.command()
def send(
    event_id: str = typer.Argument(..., help="Event whose chat to write in"),
    content: str = typer.Argument(..., help="Message text"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Send a message to an event chat."""
    setup_logging(verbose)

    async def _send(engine: Engine) -> None:
        message = await engine.chat.send_message(event_id, engine.user_id, content)
        console.print(f"✅ Sent at {short_time(message)}")

    run_engine(as_user, _send)


@app.command()
def transcript(
    event_id: str = typer.Argument(..., help="Event whose chat to read"),
    as_user: str = typer.Option(..., "--as", help=AS_USER_HELP),
    follow: bool = typer.Option(
        False, "--follow", "-f", help="Keep polling for new messages"
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Seconds between polls (defaults to settings)"
    ),
    duration: Optional[float] = typer.Option(
        None, "--duration", help="Stop following after this many seconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Print an event chat, optionally following new messages."""
    setup_logging(verbose)

    async def _transcript(engine: Engine) -> None:
        entries = await engine.chat.transcript_entries(event_id, engine.user_id)
        names = {e.message.sender_id: profile_label(e.sender) for e in entries}
        seen: set[str] = set()

        def show(messages: list[Message]) -> None:
            for message in messages:
                if message.id in seen:
                    continue
                seen.add(message.id)
                name = names.get(message.sender_id, message.sender_id)
                console.print(
                    f"[dim]{short_time(message)}[/dim] [cyan]{name}[/cyan]: {message.content}"
                )

        show([e.message for e in entries])
        if not entries:
            console.print("No messages yet")
        if not follow:
            return

        poller = TranscriptPoller(
            engine.chat,
            on_update=lambda _event_id, messages: show(messages),
            interval=interval,
            reader_id=engine.user_id,
        )
        async with poller, poller.watch(event_id):
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)

    try:
        run_engine(as_user, _transcript)
    except KeyboardInterrupt:
        console.print("\n👋 Stopped following")


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
