"""CLI: ratscout fetch, ratscout simulate, ratscout host"""

import asyncio
import uuid
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ratscout.aggregator import Aggregator, HostService
from ratscout.client import PeripheralSyncClient
from ratscout.display import DisplayState
from ratscout.models.snapshot import Snapshot
from ratscout.settings import Settings
from ratscout.sources.schedule import BUCKET_LABELS
from ratscout.transport.http import HttpClient
from ratscout.transport.link import LoopbackLink

console = Console()

DEFAULT_APP_ID = 1000


def _run(coro):
    from ratscout.cli.main import _run
    return _run(coro)


def _print_snapshot(snapshot: Snapshot) -> None:
    table = Table(title="Snapshot")
    table.add_column("Section", style="bold")
    table.add_column("Value")
    g, w, a, s = snapshot.glucose, snapshot.weather, snapshot.astronomy, snapshot.schedule
    table.add_row("glucose", f"{g.value} {g.delta} ({g.age_minutes}m ago)" if g else "[dim]unavailable[/dim]")
    table.add_row(
        "weather",
        f"{w.temperature:g}°{w.temperature_unit}, wind {w.wind:g} {w.wind_unit}" if w else "[dim]unavailable[/dim]",
    )
    table.add_row(
        "astronomy",
        (f"sun {'↑' if a.sun_is_rising else '↓'} {a.sun_event_time}, "
         f"moon {'↑' if a.moon_is_rising else '↓'} {a.moon_event_time}, phase {a.moon_phase_index}")
        if a else "[dim]unavailable[/dim]",
    )
    table.add_row(
        "schedule",
        f"{s.code} ({BUCKET_LABELS[s.code]}, {s.day})" if s else "[dim]none[/dim]",
    )
    console.print(table)


def _print_display(display: DisplayState) -> None:
    table = Table(title="Watch display")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("glucose", f"{display.glucose_value} {display.glucose_delta} {display.glucose_age}".strip())
    table.add_row("sun", f"{'↑' if display.sun_is_rising else '↓'}☀ {display.sun_time}")
    table.add_row("moon", f"{display.moon_symbol} {display.moon_time}")
    table.add_row("weather", f"{display.temperature} {display.wind}")
    table.add_row("schedule", display.schedule_code or "-")
    console.print(table)


@click.command("fetch")
@click.option("--json-output", "--json", is_flag=True)
@click.option("--timeout", default=20.0, type=float, show_default=True, help="Per-source timeout in seconds")
def fetch_cmd(json_output: bool, timeout: float):
    """Fetch one snapshot from the configured upstreams."""

    async def _fetch() -> Snapshot:
        http = HttpClient()
        try:
            aggregator = Aggregator.create(Settings.from_file(), http, source_timeout_s=timeout)
            return await aggregator.collect()
        finally:
            await http.close()

    with console.status("Fetching..."):
        snapshot = _run(_fetch())
    if json_output:
        console.print_json(data=snapshot.to_payload())
        return
    _print_snapshot(snapshot)


@click.command("simulate")
@click.option("--app-id", default=DEFAULT_APP_ID, type=int, show_default=True)
@click.option("--timeout", default=60.0, type=float, show_default=True, help="Watch response window in seconds")
def simulate_cmd(app_id: int, timeout: float):
    """Run phone and watch in-process and show what the watch would display."""

    async def _simulate() -> DisplayState:
        http = HttpClient()
        phone_end, watch_end = LoopbackLink.pair()
        host = HostService(phone_end, Aggregator.create(Settings.from_file(), http))
        client = PeripheralSyncClient(watch_end, app_id, response_timeout_s=timeout)
        host.start()
        try:
            return await client.sync_once(timeout=timeout + 5)
        finally:
            await client.close()
            host.stop()
            await watch_end.close()
            await phone_end.close()
            await http.close()

    display = _run(_simulate())
    _print_display(display)


@click.command("host")
@click.option("--url", required=True, help="Socket.IO relay URL")
@click.option("--device-id", default=None, help="Relay device id (random if omitted)")
@click.option("--token", default=None, help="Relay auth token")
def host_cmd(url: str, device_id: Optional[str], token: Optional[str]):
    """Serve the phone side over a Socket.IO relay until interrupted."""
    from ratscout.transport.socketio import SocketIOLink

    async def _host() -> None:
        http = HttpClient()
        link = SocketIOLink(url, device_id or str(uuid.uuid4()), token=token)
        with console.status("Connecting to relay..."):
            await link.connect()
        host = HostService(link, Aggregator.create(Settings.from_file(), http))
        host.start()
        console.print("[green]Serving watch requests (Ctrl+C to exit)[/green]")
        try:
            await asyncio.Event().wait()
        finally:
            host.stop()
            await link.close()
            await http.close()

    try:
        _run(_host())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
