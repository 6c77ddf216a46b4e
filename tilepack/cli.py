"""Command-line interface for the offline map packager."""

import concurrent.futures
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import get_config
from .errors import TilePackError
from .models.job import Job, JobStatus
from .models.provider import TileProvider
from .models.region import BoundingBox, GenerationRequest
from .services.generation_service import MapPackService
from .utils.format_utils import format_size

console = Console()

STATUS_STYLES = {
    JobStatus.COMPLETED: "green",
    JobStatus.ERROR: "red",
    JobStatus.CANCELLED: "dim",
    JobStatus.PAUSED: "yellow",
}


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_config().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # Per-tile request logs are too noisy for the console
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(1)


def _status_text(status: JobStatus) -> str:
    style = STATUS_STYLES.get(status, "cyan")
    return f"[{style}]{status.value}[/{style}]"


def _print_job(job: Job) -> None:
    table = Table(title=f"Download: {job.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Region", f"{job.region_name or '-'}" + (f" ({job.region_code})" if job.region_code else ""))
    table.add_row("Status", _status_text(job.status))
    table.add_row("Progress", f"{job.progress_percent}%")
    if job.bounds is not None:
        table.add_row("Bounds", f"{job.bounds.south:.4f},{job.bounds.west:.4f} to {job.bounds.north:.4f},{job.bounds.east:.4f}")
        table.add_row("Zoom", f"{job.min_zoom}-{job.max_zoom}")
    if job.provider is not None:
        table.add_row("Provider", job.provider.label)
    table.add_row("Tiles", f"{job.downloaded_tiles}/{job.total_tiles} ({job.failed_tiles} failed)")
    table.add_row("Tile Data", format_size(job.total_size_bytes))
    table.add_row("Archive", format_size(job.archive_size_bytes))
    table.add_row("Chunks", f"{job.chunk_count} x {format_size(job.chunk_size_bytes)}")
    table.add_row("Created", job.created_at.strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Updated", job.updated_at.strftime("%Y-%m-%d %H:%M:%S"))
    if job.error:
        table.add_row("Error", f"[red]{job.error}[/red]")

    console.print(table)


def _follow(service: MapPackService, download_id: str) -> Job:
    """Show a progress bar until the download's current run returns."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Downloading tiles...", total=100)
        while True:
            try:
                job = service.wait(download_id, timeout=0.5)
                break
            except concurrent.futures.TimeoutError:
                job = service.get_progress(download_id)
                progress.update(task, completed=job.progress_percent, description=f"{job.status.value.title()}...")
        progress.update(task, completed=job.progress_percent, description=_status_text(job.status))
    return job


def _report_result(job: Job, chunks_dir: Path) -> None:
    _print_job(job)
    if job.status != JobStatus.COMPLETED:
        raise SystemExit(1)
    console.print(f"\n[green]Success![/green] {job.chunk_count} chunks in {chunks_dir / job.id}")


def _bounds_options(f):
    f = click.option("--east", type=float, required=True, help="East longitude")(f)
    f = click.option("--north", type=float, required=True, help="North latitude")(f)
    f = click.option("--west", type=float, required=True, help="West longitude")(f)
    f = click.option("--south", type=float, required=True, help="South latitude")(f)
    return f


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Tilepack - Generate chunked offline map packs."""
    _configure_logging(verbose)


@main.command()
def providers():
    """List the available tile providers."""
    config = get_config()

    table = Table(title="Tile Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("API Key")

    for provider in TileProvider:
        if not provider.requires_api_key:
            key_status = "-"
        elif config.thunderforest_api_key:
            key_status = "[green]configured[/green]"
        else:
            key_status = "[red]missing[/red]"
        table.add_row(provider.value, provider.label, key_status)

    console.print(table)


@main.command()
@_bounds_options
@click.option("--min-zoom", type=int, default=None, help="Minimum zoom level")
@click.option("--max-zoom", type=int, default=None, help="Maximum zoom level")
def estimate(south: float, west: float, north: float, east: float, min_zoom: Optional[int], max_zoom: Optional[int]):
    """Estimate the tile count and size of a region."""
    config = get_config()
    min_zoom = config.default_min_zoom if min_zoom is None else min_zoom
    max_zoom = config.default_max_zoom if max_zoom is None else max_zoom

    try:
        request = GenerationRequest(
            region_name="estimate",
            bounds=BoundingBox.from_edges(south, west, north, east),
            min_zoom=min_zoom,
            max_zoom=max_zoom,
        )
        with MapPackService(config) as service:
            result = service.estimate(request)
    except (TilePackError, ValueError) as e:
        _fail(str(e))

    table = Table(title="Tile Estimate")
    table.add_column("Zoom", style="cyan", justify="right")
    table.add_column("Tiles", style="green", justify="right")
    for zoom, count in result.tiles_by_zoom.items():
        table.add_row(str(zoom), f"{count:,}")
    console.print(table)

    console.print(f"[bold]Total tiles:[/bold] {result.total_tiles:,}")
    console.print(f"[bold]Estimated size:[/bold] {format_size(result.estimated_bytes)}")


@main.command()
@click.option("--name", "-n", required=True, help="Region name")
@click.option("--code", "-c", default=None, help="Short region code")
@click.option("--ref", default=None, help="External reference id for the region")
@_bounds_options
@click.option("--min-zoom", type=int, default=None, help="Minimum zoom level")
@click.option("--max-zoom", type=int, default=None, help="Maximum zoom level")
@click.option(
    "--provider", "-p",
    type=click.Choice([p.value for p in TileProvider], case_sensitive=False),
    default=None,
    help="Tile provider",
)
@click.option("--chunk-size", type=int, default=None, help="Chunk size in bytes")
def generate(
    name: str,
    code: Optional[str],
    ref: Optional[str],
    south: float,
    west: float,
    north: float,
    east: float,
    min_zoom: Optional[int],
    max_zoom: Optional[int],
    provider: Optional[str],
    chunk_size: Optional[int],
):
    """Download a region and package it into chunks."""
    config = get_config()

    try:
        request = GenerationRequest(
            region_name=name,
            region_code=code,
            region_ref=ref,
            bounds=BoundingBox.from_edges(south, west, north, east),
            min_zoom=config.default_min_zoom if min_zoom is None else min_zoom,
            max_zoom=config.default_max_zoom if max_zoom is None else max_zoom,
            provider=TileProvider.parse(provider) if provider else config.default_provider,
            chunk_size=chunk_size,
        )
    except (TilePackError, ValueError) as e:
        _fail(str(e))

    console.print(f"[bold]Region:[/bold] {request.region_name}")
    console.print(f"[bold]Provider:[/bold] {request.provider.label}")
    console.print(f"[bold]Zoom:[/bold] {request.min_zoom}-{request.max_zoom}")

    with MapPackService(config) as service:
        try:
            download_id = service.start_generation(request)
        except TilePackError as e:
            _fail(str(e))

        console.print(f"[bold]Download id:[/bold] {download_id}")
        job = _follow(service, download_id)

    _report_result(job, config.chunks_dir)


@main.command()
@click.argument("download_id")
def resume(download_id: str):
    """Resume a paused download in the foreground."""
    config = get_config()
    with MapPackService(config) as service:
        try:
            service.resume(download_id)
        except TilePackError as e:
            _fail(str(e))
        job = _follow(service, download_id)

    _report_result(job, config.chunks_dir)


@main.command()
@click.argument("download_id")
def progress(download_id: str):
    """Show the progress of a download."""
    try:
        with MapPackService(get_config()) as service:
            job = service.get_progress(download_id)
    except TilePackError as e:
        _fail(str(e))

    console.print(f"{job.id}: {_status_text(job.status)} {job.progress_percent}% "
                  f"({job.downloaded_tiles}/{job.total_tiles} tiles, {job.failed_tiles} failed)")


@main.command(name="list")
def list_downloads():
    """List all downloads."""
    with MapPackService(get_config()) as service:
        jobs = service.list_jobs()
    if not jobs:
        console.print("[dim]No downloads found[/dim]")
        return

    table = Table(title="Downloads")
    table.add_column("Id", style="cyan")
    table.add_column("Region", style="green")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Created")

    for job in jobs:
        table.add_row(
            job.id,
            job.region_name or "-",
            _status_text(job.status),
            f"{job.progress_percent}%",
            str(job.chunk_count),
            format_size(job.archive_size_bytes),
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@main.command()
@click.argument("download_id")
def info(download_id: str):
    """Show a download's details and chunk files."""
    with MapPackService(get_config()) as service:
        try:
            job = service.get_progress(download_id)
            files = service.describe_chunks(download_id)
        except TilePackError as e:
            _fail(str(e))

    _print_job(job)
    if files:
        table = Table(title="Chunk Files")
        table.add_column("File", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("MD5")
        for chunk_file in files:
            table.add_row(chunk_file.filename, format_size(chunk_file.size), chunk_file.checksum)
        console.print(table)


@main.command()
@click.argument("download_id")
def verify(download_id: str):
    """Verify a download's chunks against their checksums."""
    try:
        with MapPackService(get_config()) as service:
            report = service.verify_integrity(download_id)
    except TilePackError as e:
        _fail(str(e))

    console.print(f"[bold]Valid chunks:[/bold] {report.valid_count}/{report.total_count}")
    if report.is_valid:
        console.print("[green]All chunks are valid[/green]")
        return

    for filename in report.invalid_files:
        console.print(f"  [red]Invalid:[/red] {filename}")
    raise SystemExit(1)


@main.command()
@click.argument("download_id")
@click.option("--output", "-o", type=click.Path(), help="Output archive path")
def reconstruct(download_id: str, output: Optional[str]):
    """Rebuild a download's archive from its chunks."""
    output_path = Path(output) if output else Path.cwd() / f"{download_id}.zip"
    try:
        with MapPackService(get_config()) as service:
            result = service.reconstruct(download_id, output_path)
    except TilePackError as e:
        _fail(str(e))

    console.print(f"[green]Success![/green] Rebuilt {format_size(result.size_bytes)} "
                  f"from {result.chunks_used} chunks: {result.output_path}")


@main.command(name="chunk-archive")
@click.argument("archive_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", "-n", default=None, help="Region name used to look up a stable id")
@click.option("--chunk-size", type=int, default=None, help="Chunk size in bytes")
def chunk_archive(archive_path: str, name: Optional[str], chunk_size: Optional[int]):
    """Split an existing archive into chunks."""
    try:
        with MapPackService(get_config()) as service:
            job = service.chunk_archive(Path(archive_path), name, chunk_size)
    except TilePackError as e:
        _fail(str(e))

    console.print(f"[green]Success![/green] {job.chunk_count} chunks created for {job.id}")


@main.command()
@click.option("--days", "-d", type=int, default=30, help="Remove chunk sets older than this many days")
def cleanup(days: int):
    """Remove old finished downloads."""
    with MapPackService(get_config()) as service:
        result = service.cleanup(older_than_days=days)
    for job_id in result.removed:
        console.print(f"  [yellow]Removed:[/yellow] {job_id}")
    console.print(f"[bold]Removed {len(result.removed)}[/bold], {result.remaining} remaining")


@main.command()
def recover():
    """Release downloads left running by a crashed process.

    Do not run this while a server is using the same data directory.
    """
    with MapPackService(get_config()) as service:
        jobs = service.recover_interrupted()
    for job in jobs:
        console.print(f"  [yellow]Recovered:[/yellow] {job.id} -> {_status_text(job.status)}")
    console.print(f"[bold]Recovered {len(jobs)}[/bold] download(s)")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    from .api.main import app

    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
