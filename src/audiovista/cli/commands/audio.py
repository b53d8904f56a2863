"""
CLI commands for operating the local audio cache.

Provides ``audiovista audio download|status|usage|cleanup|remove|list``.
Downloads run in the foreground here and share the single-flight claim with
the API server, so a download started from the CLI and one requested over
HTTP never run at the same time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from audiovista.config.database import db_manager
from audiovista.container import container
from audiovista.exceptions import (
    EXIT_CODE_EXTRACTION_FAILED,
    EXIT_CODE_GENERAL_ERROR,
    EXIT_CODE_IN_PROGRESS,
    EXIT_CODE_INTERRUPTED,
    EXIT_CODE_INVALID_ARGS,
    EXIT_CODE_QUOTA_EXCEEDED,
    DownloadInProgressError,
    ExtractionError,
    QuotaExceededError,
    ValidationError,
)
from audiovista.models.audio import AudioFileInfo, CleanupResult, DiskUsage
from audiovista.models.enums import AudioStatus, DownloadState

console = Console()

_STATUS_STYLES = {
    DownloadState.NONE: "dim",
    DownloadState.PENDING: "yellow",
    DownloadState.DOWNLOADING: "cyan",
    DownloadState.READY: "green",
    DownloadState.ERROR: "red",
}

app = typer.Typer(
    name="audio",
    help="Manage the local audio cache.",
    no_args_is_help=True,
)


T = TypeVar("T")


def _run(coro: Coroutine[Any, Any, T], interrupted_message: str) -> T:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print(f"\n[yellow]{interrupted_message}[/yellow]")
        raise typer.Exit(code=EXIT_CODE_INTERRUPTED)


def _format_mb(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def _print_usage(usage: DiskUsage) -> None:
    table = Table(title="Audio Cache Usage", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files", str(usage.total_files))
    table.add_row("Size", f"{usage.total_size_gb:.2f} GB")
    table.add_row("Maximum", f"{usage.max_size_gb:.2f} GB")

    style = "red" if usage.usage_percent >= 90 else "green"
    table.add_row("Usage", f"[{style}]{usage.usage_percent:.1f}%[/{style}]")
    console.print(table)


# ---------------------------------------------------------------------------
# download
# ---------------------------------------------------------------------------


@app.command(name="download")
def download(
    video_id: str = typer.Argument(..., help="YouTube video ID (11 characters)"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Download even when the cache is above its admission threshold",
    ),
) -> None:
    """
    Download a video's audio into the cache and wait for it to finish.

    Examples:
        audiovista audio download dQw4w9WgXcQ
        audiovista audio download dQw4w9WgXcQ --force
    """
    info = _run(_download_async(video_id, force), "Download interrupted by user")
    console.print(
        f"[green]✓[/green] {info.video_id} ready: {info.file_path} "
        f"({_format_mb(info.file_size)})"
    )


async def _download_async(video_id: str, force: bool) -> AudioFileInfo:
    service = container.audio_download_service
    quota = container.disk_quota_manager
    info: AudioFileInfo | None = None
    try:
        async for session in db_manager.get_session():
            if not force:
                await quota.ensure_admission(session)
            with console.status(f"Downloading audio for {video_id}..."):
                info = await service.download(session, video_id)
    except ValidationError as e:
        console.print(f"[red]Error: {e.message}: {video_id}[/red]")
        raise typer.Exit(code=EXIT_CODE_INVALID_ARGS)
    except QuotaExceededError as e:
        console.print(f"[red]{e.message}[/red] (use --force to override)")
        raise typer.Exit(code=EXIT_CODE_QUOTA_EXCEEDED)
    except DownloadInProgressError:
        console.print(f"[yellow]A download for {video_id} is already running[/yellow]")
        raise typer.Exit(code=EXIT_CODE_IN_PROGRESS)
    except ExtractionError as e:
        console.print(f"[red]Download failed: {e.message}[/red]")
        raise typer.Exit(code=EXIT_CODE_EXTRACTION_FAILED)
    finally:
        await db_manager.close()

    if info is None:
        raise typer.Exit(code=EXIT_CODE_GENERAL_ERROR)
    return info


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@app.command(name="status")
def status(
    video_id: str = typer.Argument(..., help="YouTube video ID (11 characters)"),
) -> None:
    """Show the download status of a video."""
    _run(_status_async(video_id), "Interrupted by user")


async def _status_async(video_id: str) -> None:
    service = container.audio_download_service
    try:
        async for session in db_manager.get_session():
            result = await service.get_status(session, video_id)
            style = _STATUS_STYLES.get(result.status, "white")
            console.print(f"{video_id}: [{style}]{result.status.value}[/{style}]")
            if result.error_message:
                console.print(f"  [red]{result.error_message}[/red]")
    finally:
        await db_manager.close()


# ---------------------------------------------------------------------------
# usage
# ---------------------------------------------------------------------------


@app.command(name="usage")
def usage() -> None:
    """Show disk usage of the audio cache."""
    _run(_usage_async(), "Interrupted by user")


async def _usage_async() -> None:
    try:
        async for session in db_manager.get_session():
            _print_usage(await container.disk_quota_manager.usage(session))
    finally:
        await db_manager.close()


# ---------------------------------------------------------------------------
# cleanup
# ---------------------------------------------------------------------------


@app.command(name="cleanup")
def cleanup() -> None:
    """
    Evict audio files not played within the retention horizon.

    Also purges old error records and expired resolved URLs.
    """
    _run(_cleanup_async(), "Cleanup interrupted by user")


async def _cleanup_async() -> None:
    quota = container.disk_quota_manager
    try:
        async for session in db_manager.get_session():
            result: CleanupResult = await quota.evict_stale(session)
            await session.commit()
            console.print(
                f"[green]✓[/green] Evicted {result.deleted_count} files "
                f"({_format_mb(result.freed_bytes)}), purged "
                f"{result.error_records_purged} error records and "
                f"{result.expired_urls_purged} expired URLs"
            )
            _print_usage(await quota.usage(session))
    finally:
        await db_manager.close()


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------


@app.command(name="remove")
def remove(
    video_id: str = typer.Argument(..., help="YouTube video ID (11 characters)"),
) -> None:
    """Remove a cached audio file and its record."""
    _run(_remove_async(video_id), "Interrupted by user")


async def _remove_async(video_id: str) -> None:
    service = container.audio_download_service
    try:
        async for session in db_manager.get_session():
            if await service.remove(session, video_id):
                console.print(f"[green]✓[/green] Removed {video_id}")
            else:
                console.print(f"[yellow]{video_id} is not cached[/yellow]")
    except ValidationError as e:
        console.print(f"[red]Error: {e.message}: {video_id}[/red]")
        raise typer.Exit(code=EXIT_CODE_INVALID_ARGS)
    except DownloadInProgressError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(code=EXIT_CODE_IN_PROGRESS)
    finally:
        await db_manager.close()


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


@app.command(name="list")
def list_files(
    status_filter: Optional[AudioStatus] = typer.Option(
        None,
        "--status",
        "-s",
        help="Only list records in this status",
        case_sensitive=False,
    ),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum rows", min=1),
) -> None:
    """
    List cached audio records, most recently played first.

    Examples:
        audiovista audio list
        audiovista audio list --status error
    """
    _run(_list_async(status_filter, limit), "Interrupted by user")


async def _list_async(status_filter: Optional[AudioStatus], limit: int) -> None:
    repository = container.create_audio_file_repository()
    try:
        async for session in db_manager.get_session():
            records = await repository.get_by_status(
                session, status_filter, limit=limit
            )
            if not records:
                console.print("[yellow]No audio records found[/yellow]")
                return

            table = Table(title="Cached Audio")
            table.add_column("Video ID", style="cyan")
            table.add_column("Status")
            table.add_column("Size", justify="right")
            table.add_column("Last Played")
            table.add_column("Error", style="red", overflow="fold")

            for record in records:
                state = DownloadState(record.status)
                style = _STATUS_STYLES.get(state, "white")
                table.add_row(
                    record.video_id,
                    f"[{style}]{state.value}[/{style}]",
                    _format_mb(record.file_size or 0),
                    record.last_played_at.strftime("%Y-%m-%d %H:%M")
                    if record.last_played_at
                    else "-",
                    record.error_message or "",
                )
            console.print(table)
    finally:
        await db_manager.close()
