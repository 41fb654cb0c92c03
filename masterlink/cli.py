"""Masterlink command line: run the gateway, master a file, or probe the CDN.

Usage:
    masterlink serve --port 8080
    masterlink master song.wav --gateway-url http://localhost:8080 --mode warm
    masterlink probe jobs/abc/mix.wav --cdn-url d123.cloudfront.net --ext mp3,wav
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Literal

import httpx
import tyro
import uvicorn
from rich import box
from rich.console import Console
from rich.table import Table

from masterlink.cdn.candidates import AUDIO_EXTENSIONS, parse_extensions
from masterlink.cdn.probe import PROBE_MAX_HITS, PROBE_TIMEOUT_SECONDS, probe_candidates
from masterlink.client.api import GatewayClient
from masterlink.client.media import download_formats
from masterlink.client.session import MasteringSession, PollingConfig
from masterlink.client.state import PlaybackState
from masterlink.contracts import MasteringMode
from masterlink.gateway import create_app
from masterlink.gateway.config import Settings
from masterlink.gateway.logging_config import configure_logging


@dataclass
class Serve:
    """Run the gateway HTTP server. Configuration comes from env / .env."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


@dataclass
class Master:
    """Upload a local file, submit it for mastering and follow it until playable."""

    file: Annotated[Path, tyro.conf.Positional]
    """Audio file to master."""

    gateway_url: str = "http://localhost:8000"
    mode: Literal["process", "lite", "warm"] = "process"
    title: str | None = None
    """Defaults to the file name without extension."""

    interval: float = 3.0
    """Seconds between polls."""

    max_wait: float = 15 * 60
    """Give up following the job after this many seconds."""

    log_level: str = "WARNING"


@dataclass
class Probe:
    """Probe the CDN directly for renders of a storage key."""

    key: Annotated[str, tyro.conf.Positional]
    """Storage key of the uploaded source, e.g. jobs/abc/mix.wav."""

    cdn_url: str
    ext: str = ",".join(AUDIO_EXTENSIONS)
    """Comma-separated extensions to try."""

    max_hits: int = PROBE_MAX_HITS
    timeout: float = PROBE_TIMEOUT_SECONDS


Cmd = (
    Annotated[Serve, tyro.conf.subcommand(name="serve", prefix_name=False)]
    | Annotated[Master, tyro.conf.subcommand(name="master", prefix_name=False)]
    | Annotated[Probe, tyro.conf.subcommand(name="probe", prefix_name=False)]
)


def serve(cmd: Serve) -> None:
    settings = Settings()  # type: ignore
    configure_logging(settings.log_dir, cmd.log_level)
    uvicorn.run(create_app(settings), host=cmd.host, port=cmd.port, log_config=None)


def print_session(state: PlaybackState, console: Console) -> None:
    table = Table(title="Mastering Result", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Job", state.job_id or "-")
    table.add_row("Storage key", state.storage_key or "-")
    table.add_row("Status", state.status or "-")
    table.add_row("Original", state.original_from_api or state.original_preview or "-")

    for i, url in enumerate(state.mastered_files):
        marker = " [green](selected)[/green]" if i == state.selected_mastered_index else ""
        table.add_row(f"Render {i + 1}", f"{url}{marker}")

    for entry in sorted(state.intensities, key=lambda e: e.level):
        value = entry.url if entry.playable else "[yellow]pending[/yellow]"
        table.add_row(f"Level {entry.level}", value)

    formats = download_formats(state.selected_mastered_url)
    if formats:
        table.add_row("Download", ", ".join(label for _, label in formats))
    console.print(table)


async def run_master(cmd: Master, console: Console) -> None:
    state = PlaybackState()
    state.listeners.append(lambda text: console.print(f"[dim]{text}[/dim]"))
    polling = PollingConfig(interval_seconds=cmd.interval)

    session = MasteringSession(GatewayClient(cmd.gateway_url), polling=polling, state=state)
    try:
        session.select_file(cmd.file)
        await session.start(MasteringMode(cmd.mode), cmd.title)
        try:
            async with asyncio.timeout(cmd.max_wait):
                await session.wait()
        except TimeoutError:
            console.print(f"[yellow]Stopped following after {cmd.max_wait:.0f}s[/yellow]")
    finally:
        await session.aclose()

    print_session(state, console)


async def run_probe(cmd: Probe, console: Console) -> None:
    extensions = parse_extensions(cmd.ext, AUDIO_EXTENSIONS)
    async with httpx.AsyncClient() as client:
        urls = await probe_candidates(client, cmd.cdn_url, cmd.key, extensions, cmd.max_hits, cmd.timeout)
    if not urls:
        console.print("[yellow]Nothing found on the CDN yet[/yellow]")
        return
    for url in urls:
        console.print(f"[green]✓[/green] {url}")


def main() -> None:
    cmd = tyro.cli(Cmd, description=__doc__)
    console = Console()

    if isinstance(cmd, Serve):
        serve(cmd)
    elif isinstance(cmd, Master):
        configure_logging(level=cmd.log_level)
        asyncio.run(run_master(cmd, console))
    elif isinstance(cmd, Probe):
        configure_logging(level="WARNING")
        asyncio.run(run_probe(cmd, console))


if __name__ == "__main__":
    main()
