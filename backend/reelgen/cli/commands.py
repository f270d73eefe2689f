"""CLI commands for reelgen using Typer and Rich.

Implements the job commands:
- generate: Create a video job and run the pipeline inline
- iterate: Fork a new version of a job with feedback and run it inline
- status: Show detailed job information
- list: List a creator's jobs in a table
- history: Show the version chain of a job
- cancel: Cancel a queued or running job
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reelgen.config import settings
from reelgen.db import async_session, init_database, shutdown
from reelgen.db.models import DEFAULT_CREATOR_ID, VideoJob
from reelgen.errors import ReelgenError
from reelgen.orchestrator.pipeline import run_pipeline
from reelgen.orchestrator.queries import JobQueries
from reelgen.orchestrator.service import VideoService
from reelgen.pipeline.context import PipelineContext, build_context

app = typer.Typer(name="reelgen", help="Prompt-to-video generation pipeline")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show pipeline logs"),
):
    """Prompt-to-video generation pipeline."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _open_pipeline() -> AsyncIterator[PipelineContext]:
    await init_database()
    ctx = build_context(settings, async_session)
    try:
        yield ctx
    finally:
        await ctx.close()
        await shutdown()


def _queries(ctx: PipelineContext) -> JobQueries:
    return JobQueries(
        ctx.job_store,
        ctx.artifacts,
        page_size=settings.pipeline.list_page_size,
        max_page_size=settings.pipeline.max_list_page_size,
    )


def _parse_job_id(job_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(job_id)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid job UUID: {job_id}")
        raise typer.Exit(code=1)


def _fail(e: Exception) -> None:
    console.print(f"[red]Error:[/red] {str(e)}")
    raise typer.Exit(code=1)


def _get_status_color(status: str) -> str:
    """Get Rich color for a job status.

    Color coding:
    - completed: green
    - failed: red
    - cancelled: magenta
    - in-progress states: yellow
    - queued: dim
    """
    if status == "completed":
        return "green"
    elif status == "failed":
        return "red"
    elif status == "cancelled":
        return "magenta"
    elif status in ["scripting", "imaging", "narrating", "generating_code", "rendering"]:
        return "yellow"
    elif status == "queued":
        return "dim"
    else:
        return "white"


async def _run_inline(ctx: PipelineContext, job: VideoJob) -> None:
    """Run a freshly created job in this process with a progress display."""
    console.print(f"[green]Created job:[/green] {job.id} (version {job.version})")
    console.print()

    try:
        with console.status("[bold green]Starting pipeline...") as status:
            def callback_wrapper(msg: str):
                status.update(f"[bold green]{msg}")

            await run_pipeline(job.id, ctx, progress_callback=callback_wrapper)
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Pipeline interrupted; the job will be marked interrupted on next server start.[/yellow]")
        raise typer.Exit(code=130)

    progress = await _queries(ctx).get_progress(job.id)
    if progress.status == "completed":
        console.print("[green]✓[/green] Video generation complete!")
        console.print(f"[green]Video:[/green] {progress.video_url}")
        if progress.thumbnail_url:
            console.print(f"[green]Thumbnail:[/green] {progress.thumbnail_url}")
    elif progress.status == "cancelled":
        console.print("[magenta]Job cancelled.[/magenta]")
    else:
        console.print(f"[red]✗ Pipeline failed:[/red] {progress.error}")
        console.print(f"[yellow]You can try again with:[/yellow] reelgen iterate {job.id} \"<feedback>\"")
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Text prompt for the video"),
    style: str = typer.Option(settings.pipeline.default_style, "--style", "-s", help="Visual style"),
    aspect_ratio: str = typer.Option(settings.pipeline.default_aspect_ratio, "--aspect-ratio", "-a", help="9:16, 16:9 or 1:1"),
    duration: int = typer.Option(settings.pipeline.default_duration_seconds, "--duration", "-d", help="Target duration in seconds"),
    voice_id: Optional[str] = typer.Option(None, "--voice", help="Voice id for narration"),
    creator_id: str = typer.Option(DEFAULT_CREATOR_ID, "--creator", help="Creator id"),
    course_id: Optional[str] = typer.Option(None, "--course", help="Associated course id"),
    product_id: Optional[str] = typer.Option(None, "--product", help="Associated product id"),
):
    """Generate a new video from a text prompt.

    Creates a job and runs the full pipeline: script, images, narration,
    composition code and render.
    """
    asyncio.run(_generate_async(
        prompt, style, aspect_ratio, duration, voice_id, creator_id, course_id, product_id,
    ))


async def _generate_async(
    prompt: str, style: str, aspect_ratio: str, duration: int, voice_id: Optional[str],
    creator_id: str, course_id: Optional[str], product_id: Optional[str],
):
    """Async implementation of generate command."""
    async with _open_pipeline() as ctx:
        service = VideoService(ctx.job_store, lambda _job_id: None, settings)
        try:
            job = await service.generate(
                creator_id,
                prompt,
                course_id=course_id,
                product_id=product_id,
                style=style,
                target_duration_seconds=duration,
                aspect_ratio=aspect_ratio,
                voice_id=voice_id,
            )
        except ReelgenError as e:
            _fail(e)
        await _run_inline(ctx, job)


@app.command()
def iterate(
    job_id: str = typer.Argument(..., help="Job UUID to iterate on"),
    feedback: str = typer.Argument(..., help="What to change in the next version"),
):
    """Create the next version of a video from feedback and run it."""
    asyncio.run(_iterate_async(job_id, feedback))


async def _iterate_async(job_id_str: str, feedback: str):
    """Async implementation of iterate command."""
    job_uuid = _parse_job_id(job_id_str)
    async with _open_pipeline() as ctx:
        service = VideoService(ctx.job_store, lambda _job_id: None, settings)
        try:
            job = await service.iterate(job_uuid, feedback)
        except ReelgenError as e:
            _fail(e)
        await _run_inline(ctx, job)


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job UUID"),
):
    """Show detailed job status and information."""
    asyncio.run(_status_async(job_id))


async def _status_async(job_id_str: str):
    """Async implementation of status command."""
    job_uuid = _parse_job_id(job_id_str)
    async with _open_pipeline() as ctx:
        try:
            job = await _queries(ctx).get_job(job_uuid)
        except ReelgenError as e:
            _fail(e)

        status_color = _get_status_color(job.status)
        prompt_display = job.prompt if len(job.prompt) <= 80 else job.prompt[:77] + "..."

        info_lines = [
            f"[bold]ID:[/bold] {job.job_id}",
            f"[bold]Prompt:[/bold] {prompt_display}",
            f"[bold]Status:[/bold] [{status_color}]{job.status}[/{status_color}] ({job.progress}%)",
            f"[bold]Version:[/bold] {job.version}",
            f"[bold]Style:[/bold] {job.style}",
            f"[bold]Aspect Ratio:[/bold] {job.aspect_ratio}",
            f"[bold]Duration:[/bold] {job.target_duration_seconds}s",
            f"[bold]Created:[/bold] {job.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
            f"[bold]Updated:[/bold] {job.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        if job.parent_job_id:
            info_lines.append(f"[bold]Parent:[/bold] {job.parent_job_id}")
        if job.iteration_prompt:
            info_lines.append(f"[bold]Feedback:[/bold] {job.iteration_prompt}")
        if job.retry_count:
            info_lines.append(f"[bold]Retries:[/bold] {job.retry_count}")
        if job.stage_timings:
            timings = ", ".join(f"{stage} {seconds:.1f}s" for stage, seconds in job.stage_timings.items())
            info_lines.append(f"[bold]Stage Timings:[/bold] {timings}")
        if job.video_url:
            info_lines.append(f"[bold]Video:[/bold] [green]{job.video_url}[/green]")
        if job.status == "failed" and job.error:
            info_lines.append(f"[bold]Error:[/bold] [red]{job.error}[/red]")

        console.print(Panel(
            "\n".join(info_lines),
            title="[bold]Job Status[/bold]",
            border_style="blue",
        ))


@app.command(name="list")
def list_jobs(
    creator_id: str = typer.Option(DEFAULT_CREATOR_ID, "--creator", help="Creator id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum jobs to show"),
):
    """List a creator's video jobs, most recent first."""
    asyncio.run(_list_async(creator_id, limit))


async def _list_async(creator_id: str, limit: Optional[int]):
    """Async implementation of list command."""
    async with _open_pipeline() as ctx:
        jobs = await _queries(ctx).list_jobs(creator_id, limit)

    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Prompt")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Created")

    for job in jobs:
        prompt_display = job.prompt if len(job.prompt) <= 50 else job.prompt[:47] + "..."
        status_color = _get_status_color(job.status)
        table.add_row(
            job.job_id[:8] + "...",
            prompt_display,
            f"v{job.version}",
            f"[{status_color}]{job.status}[/{status_color}] {job.progress}%",
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def history(
    job_id: str = typer.Argument(..., help="Any job UUID in the chain"),
):
    """Show the version chain a job belongs to, root first."""
    asyncio.run(_history_async(job_id))


async def _history_async(job_id_str: str):
    """Async implementation of history command."""
    job_uuid = _parse_job_id(job_id_str)
    async with _open_pipeline() as ctx:
        try:
            chain = await _queries(ctx).get_version_history(job_uuid)
        except ReelgenError as e:
            _fail(e)

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Version")
    table.add_column("ID", style="dim")
    table.add_column("Feedback")
    table.add_column("Status")
    table.add_column("Created")

    for entry in chain:
        status_color = _get_status_color(entry.status)
        marker = " *" if entry.job_id == str(job_uuid) else ""
        table.add_row(
            f"v{entry.version}{marker}",
            entry.job_id,
            entry.iteration_prompt or "",
            f"[{status_color}]{entry.status}[/{status_color}]",
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job UUID to cancel"),
):
    """Cancel a queued or running job."""
    asyncio.run(_cancel_async(job_id))


async def _cancel_async(job_id_str: str):
    """Async implementation of cancel command."""
    job_uuid = _parse_job_id(job_id_str)
    async with _open_pipeline() as ctx:
        service = VideoService(ctx.job_store, lambda _job_id: None, settings)
        try:
            job = await service.cancel(job_uuid)
        except ReelgenError as e:
            _fail(e)

    if job.status == "cancelled":
        console.print(f"[magenta]Job {job.id} cancelled.[/magenta]")
    else:
        console.print(
            f"[yellow]Cancellation requested;[/yellow] job {job.id} stops at its next stage boundary."
        )
