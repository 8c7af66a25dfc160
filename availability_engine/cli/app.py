"""
Main CLI application using Typer.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.google_calendar import GoogleCalendarClient
from ..adapters.graph_authenticator import GraphAuthenticator
from ..adapters.graph_client import GraphClient
from ..adapters.mock_calendar import MockCalendarClient
from ..boundary import availability_response_body, parse_availability_payload, parse_booking_payload
from ..config import CONFIG_ENV_VAR, AppConfig, get_default_config_path
from ..domain.exceptions import EngineError, UpstreamUnavailable
from ..domain.models import AvailabilityResponse, BookingOutcome, BookingResponse
from ..services.availability import AvailabilityService, ScanSettings
from ..services.booking import BookingService

app = typer.Typer(
    name="availability-engine",
    help="Find bookable clinician slots and book them safely",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)

EXIT_CONFLICT = 2

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config", "-c",
        envvar=CONFIG_ENV_VAR,
        help="Path to config file. Defaults to ./config.yaml",
    ),
]
MockOption = Annotated[
    bool, typer.Option("--mock", help="Use the mock calendar instead of the configured backend.")
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """
    Availability & booking engine for calendar-backed clinicians.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    try:
        return AppConfig.load_from_yaml(config_file or get_default_config_path())
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _build_calendar(config: AppConfig, mock: bool):
    """Create the busy-source / reservation-sink adapter for the configured backend."""
    timeout = config.search.upstream_timeout_seconds
    logger.debug("Using %s calendar backend", "mock" if mock else config.backend)

    if mock or config.backend == "mock":
        return MockCalendarClient.from_file(config.mock.data_file)

    if config.backend == "google":
        token = os.environ.get(config.google.access_token_env, "")
        if not token:
            console.print(
                f"[bold red]Error:[/bold red] set {config.google.access_token_env} "
                "to a Google Calendar access token."
            )
            raise typer.Exit(1)
        return GoogleCalendarClient(token, base_url=config.google.base_url, timeout=timeout)

    authenticator = GraphAuthenticator(
        client_id=config.graph.client_id,
        tenant_id=config.graph.tenant_id,
        authority_url=config.graph.get_authority_url(),
    )
    try:
        token = authenticator.get_access_token(force_refresh=False)
    except UpstreamUnavailable as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)
    return GraphClient(access_token=token, timeout=timeout)


def _print_error(kind: str, message: str) -> None:
    console.print(f"[bold red]Error ({kind}):[/bold red] {message}")


def _print_slots(response: AvailabilityResponse) -> None:
    if not response.slots:
        console.print(
            "[yellow]No bookable slots found.[/yellow]\n"
            "Try more days or a shorter duration."
        )
        return

    show_display = any(slot.display_start is not None for slot in response.slots)
    table = Table(
        title=f"Bookable slots for {response.resource_id} ({response.resource_timezone})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", style="dim", justify="right")
    table.add_column("Date", style="bold")
    table.add_column("Start")
    table.add_column("End")
    if show_display:
        table.add_column("Caller time", style="green")

    for index, slot in enumerate(response.slots, start=1):
        row = [
            str(index),
            slot.date.format("ddd YYYY-MM-DD"),
            slot.start.format("HH:mm"),
            slot.end.format("HH:mm"),
        ]
        if show_display:
            row.append(slot.label)
        table.add_row(*row)

    console.print()
    console.print(table)
    console.print()


@app.command()
def slots(
    resource: Annotated[str, typer.Argument(help="Resource id, name or calendar id")],
    config_file: ConfigOption = None,
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="First day (YYYY-MM-DD). Defaults to today.")] = None,
    days: Annotated[Optional[int], typer.Option("--days", help="Number of days to scan")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", help="Required free minutes per slot")] = None,
    alignment: Annotated[Optional[int], typer.Option("--alignment", help="Grid step in minutes")] = None,
    max_slots: Annotated[Optional[int], typer.Option("--max-slots", "-n", help="Maximum number of slots")] = None,
    tz: Annotated[Optional[str], typer.Option("--tz", help="Show slots in this timezone too")] = None,
    mock: MockOption = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw response as JSON.")] = False,
):
    """
    List bookable slots for a resource.

    Examples:

        availability-engine slots dr-jensen

        availability-engine slots dr-jensen --date 2026-11-24 --days 5 --tz America/Los_Angeles
    """
    config = _load_config(config_file)

    payload: Dict[str, Any] = {
        "resource_id": resource,
        "requested_date": date,
        "days_to_check": days,
        "required_free_minutes": duration,
        "alignment_minutes": alignment,
        "max_slots": max_slots,
        "caller_timezone": tz,
    }
    try:
        request = parse_availability_payload({k: v for k, v in payload.items() if v is not None})
    except EngineError as e:
        _print_error(e.kind, e.message)
        raise typer.Exit(1)

    service = AvailabilityService(
        busy_source=_build_calendar(config, mock),
        policy_table=config.build_policy_table(),
        settings=ScanSettings(**config.search.model_dump()),
    )
    response = asyncio.run(service.find_slots(request))

    if as_json:
        console.print_json(data=availability_response_body(response))
    elif response.error is None:
        _print_slots(response)

    if response.error is not None:
        if not as_json:
            _print_error(response.error.kind, response.error.message)
        raise typer.Exit(1)


@app.command()
def book(
    resource: Annotated[str, typer.Argument(help="Resource id, name or calendar id")],
    start: Annotated[str, typer.Argument(help="Chosen start, e.g. 2026-11-24T14:00 or with an offset")],
    config_file: ConfigOption = None,
    duration: Annotated[int, typer.Option("--duration", help="Appointment length in minutes")] = 30,
    tz: Annotated[Optional[str], typer.Option("--tz", help="Timezone of START when it has no offset")] = None,
    name: Annotated[str, typer.Option("--name", help="Attendee name")] = "",
    email: Annotated[str, typer.Option("--email", help="Attendee e-mail")] = "",
    description: Annotated[str, typer.Option("--description", help="Event description")] = "",
    notify: Annotated[bool, typer.Option("--notify", help="Send the attendee an invitation.")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Book without asking for confirmation.")] = False,
    mock: MockOption = False,
):
    """
    Book a slot after re-checking that it is still free.
    """
    config = _load_config(config_file)

    confirmed = yes or typer.confirm(f"Book {resource} at {start} for {duration} minutes?")
    payload = {
        "resource_id": resource,
        "chosen_start": start,
        "duration_minutes": duration,
        "caller_timezone": tz,
        "attendee_name": name,
        "attendee_email": email,
        "description": description,
        "send_notifications": notify,
        "confirm_booking": confirmed,
    }
    try:
        request = parse_booking_payload({k: v for k, v in payload.items() if v is not None})
    except EngineError as e:
        _print_error(e.kind, e.message)
        raise typer.Exit(1)

    calendar = _build_calendar(config, mock)
    service = BookingService(
        busy_source=calendar,
        reservation_sink=calendar,
        policy_table=config.build_policy_table(),
        upstream_timeout_seconds=config.search.upstream_timeout_seconds,
    )
    response: BookingResponse = asyncio.run(service.book(request))

    if response.outcome is BookingOutcome.RESERVED:
        booked = response.booked_range
        console.print(Panel.fit(
            f"[bold green]Reserved[/bold green]\n\n"
            f"[bold]When:[/bold] {booked}\n"
            f"[bold]Id:[/bold] {response.reservation_id}\n"
            f"[bold]Link:[/bold] {response.reservation_link or 'N/A'}",
            title="Booking",
        ))
        return

    _print_error(response.error.kind, response.error.message)
    if response.outcome is BookingOutcome.CONFLICT:
        raise typer.Exit(EXIT_CONFLICT)
    raise typer.Exit(1)


@app.command()
def resources(config_file: ConfigOption = None):
    """
    List configured resources and their resolved scheduling policies.
    """
    config = _load_config(config_file)
    table_data = config.build_policy_table()

    if not len(table_data):
        console.print("[yellow]No resources defined in the config file.[/yellow]")
        return

    table = Table(title="Configured resources", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold yellow")
    table.add_column("Name")
    table.add_column("Calendar", style="dim")
    table.add_column("Timezone")
    table.add_column("Hours")
    table.add_column("Weekends")
    table.add_column("Grid / Free")

    for profile in table_data:
        policy = profile.policy
        table.add_row(
            profile.id,
            profile.display_name(),
            profile.calendar_id,
            policy.timezone,
            f"{policy.operating_start_hour:02d}:00-{policy.operating_end_hour:02d}:00",
            "yes" if policy.allow_weekends else "no",
            f"{policy.alignment_minutes} / {policy.required_free_minutes} min",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def test_auth(
    config_file: ConfigOption = None,
    force: Annotated[bool, typer.Option("--force", help="Force re-authentication")] = False,
):
    """
    Test Microsoft Graph authentication.
    """
    config = _load_config(config_file)

    authenticator = GraphAuthenticator(
        client_id=config.graph.client_id,
        tenant_id=config.graph.tenant_id,
        authority_url=config.graph.get_authority_url(),
    )
    try:
        access_token = authenticator.get_access_token(force_refresh=force)
        user_info = GraphClient(access_token=access_token).test_connection()
    except UpstreamUnavailable as e:
        console.print(f"\n[bold red]Error:[/bold red] {e.message}\n")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"[bold green]Authentication successful[/bold green]\n\n"
        f"[bold]User:[/bold] {user_info.get('displayName', 'N/A')}\n"
        f"[bold]E-mail:[/bold] {user_info.get('mail') or user_info.get('userPrincipalName', 'N/A')}\n"
        f"[bold]Token cache:[/bold] {authenticator.cache_backend}",
        title="Connection test",
    ))


@app.command()
def clear_cache(config_file: ConfigOption = None):
    """
    Clear the Microsoft Graph token cache.
    """
    config = _load_config(config_file)

    authenticator = GraphAuthenticator(
        client_id=config.graph.client_id,
        tenant_id=config.graph.tenant_id,
    )
    authenticator.clear_cache()
    console.print("\n[green]Token cache cleared.[/green] You will need to sign in again.\n")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]availability-engine[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
