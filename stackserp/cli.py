"""CLI entry-point: worker, seeding, and job control."""

import logging
import signal
from pathlib import Path

import httpx
import typer
import yaml
from rich.console import Console
from rich.table import Table

from stackserp.client import JobsClient
from stackserp.config import get_settings
from stackserp.control import ControlError, ControlSurface
from stackserp.jobs import ContentLength, get_job_store
from stackserp.keywords import get_keyword_store
from stackserp.websites import WebsiteConfig, get_website_store

app = typer.Typer(help="StackSERP content generation pipeline")
console = Console()


def _control() -> ControlSurface:
    return ControlSurface(get_job_store(), get_keyword_store(), get_website_store())


def _status_style(status: str) -> str:
    return {
        "completed": "green",
        "failed": "red",
        "cancelled": "yellow",
        "processing": "cyan",
    }.get(status, "white")


@app.command()
def worker(
    once: bool = typer.Option(False, "--once", help="Drain the queue once and exit"),
    poll_interval: float = typer.Option(None, help="Seconds between polls (default from env)"),
):
    """Run the worker loop: claim queued jobs and drive them through all stages."""
    logging.basicConfig(level=logging.INFO)
    from stackserp.pipeline import build_orchestrator
    from stackserp.worker import WorkerLoop

    settings = get_settings()
    try:
        orchestrator = build_orchestrator(settings)
    except Exception as e:
        console.print(f"[red]Error: could not configure providers ({e})[/red]")
        raise typer.Exit(1)

    loop = WorkerLoop(
        get_job_store(),
        orchestrator,
        keywords=get_keyword_store(),
        poll_interval=poll_interval or settings.stackserp_poll_interval,
        stuck_after=settings.stackserp_stuck_after_seconds,
    )
    if once:
        processed = loop.tick()
        console.print(f"Processed {processed} job(s)")
        return

    def _shutdown(signum, frame):
        console.print("[yellow]Stopping after the current job...[/yellow]")
        loop.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    loop.run_forever()


@app.command()
def seed(path: str = typer.Argument(..., help="YAML file with websites and keywords")):
    """Load websites and keywords from a YAML seed file."""
    seed_path = Path(path)
    if not seed_path.exists():
        console.print(f"[red]Error: {seed_path} not found[/red]")
        raise typer.Exit(1)
    with open(seed_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    websites = get_website_store()
    keywords = get_keyword_store()
    for entry in data.get("websites", []):
        entry = dict(entry)
        kw_entries = entry.pop("keywords", [])
        site = websites.save(WebsiteConfig.model_validate(entry))
        existing = {kw.keyword.lower() for kw in keywords.list_by_website(site.website_id)}
        added = 0
        for kw in kw_entries:
            text, priority = (kw, 0) if isinstance(kw, str) else (kw["keyword"], kw.get("priority", 0))
            if text.lower() in existing:
                continue
            keywords.add(site.website_id, text, priority=priority)
            existing.add(text.lower())
            added += 1
        console.print(f"[green]{site.website_id}[/green]: saved website, added {added} keyword(s)")


@app.command()
def generate(
    website_id: str = typer.Argument(..., help="Website id"),
    keyword_id: str = typer.Option(None, help="Keyword id (default: highest-priority pending keyword)"),
    length: ContentLength = typer.Option(ContentLength.MEDIUM, help="Content length tier"),
    images: bool = typer.Option(True, "--images/--no-images"),
    faq: bool = typer.Option(True, "--faq/--no-faq"),
    toc: bool = typer.Option(True, "--toc/--no-toc"),
    auto_publish: bool = typer.Option(False, "--auto-publish"),
    count: int = typer.Option(None, help="Queue up to this many pending keywords (1-10)"),
):
    """Queue a generation job, or several with --count."""
    options = {
        "content_length": length,
        "include_images": images,
        "include_faq": faq,
        "include_toc": toc,
        "auto_publish": auto_publish,
    }
    try:
        if count is None:
            queued = [_control().generate(website_id, keyword_id, options)]
        else:
            ids = [keyword_id] if keyword_id else None
            queued = _control().generate_bulk(website_id, ids, count, options)
    except ControlError as e:
        console.print(f"[red]Error ({e.status_code}): {e}[/red]")
        raise typer.Exit(1)
    for job, keyword in queued:
        console.print(f"Queued [bold]{job.job_id}[/bold] for keyword \"{keyword.keyword}\"")


@app.command()
def retry(job_id: str = typer.Argument(..., help="Failed job id")):
    """Retry a failed job as a new job."""
    try:
        job = _control().retry(job_id)
    except ControlError as e:
        console.print(f"[red]Error ({e.status_code}): {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Retrying as [bold]{job.job_id}[/bold]")


@app.command()
def cancel(job_id: str = typer.Argument(..., help="Queued or processing job id")):
    """Cancel a job (processing jobs stop at the next stage boundary)."""
    try:
        job = _control().cancel(job_id)
    except ControlError as e:
        console.print(f"[red]Error ({e.status_code}): {e}[/red]")
        raise typer.Exit(1)
    if job.status.value == "cancelled":
        console.print(f"Cancelled {job.job_id}")
    else:
        console.print(f"Cancellation requested for {job.job_id}; it stops after the current stage")


@app.command()
def jobs(
    website_id: str = typer.Argument(..., help="Website id"),
    limit: int = typer.Option(20, help="Max jobs to show"),
):
    """List recent jobs of a website."""
    table = Table(title=f"Jobs for {website_id}")
    table.add_column("Job")
    table.add_column("Keyword")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Progress", justify="right")
    table.add_column("Error")
    for job in _control().list_jobs(website_id, limit=limit):
        style = _status_style(job.status.value)
        stage = (job.failed_stage or job.current_stage)
        table.add_row(
            job.job_id,
            job.input.keyword,
            f"[{style}]{job.status.value}[/{style}]",
            stage.value if stage else "-",
            f"{job.progress}%",
            (job.error_message or "")[:60],
        )
    console.print(table)


@app.command()
def watch(
    website_id: str = typer.Argument(..., help="Website id"),
    api_url: str = typer.Option("http://localhost:8000", help="API base URL"),
    interval: float = typer.Option(3.0, help="Seconds between polls"),
):
    """Poll the API until no job of the website is queued or processing."""
    def _changed(job):
        style = _status_style(job.status)
        console.print(
            f"{job.id} [{style}]{job.status}[/{style}] {job.current_step or '-'} {job.progress}%"
            + (f" [red]{job.error}[/red]" if job.error else "")
        )

    try:
        with JobsClient(api_url) as client:
            client.watch(website_id, interval=interval, on_change=_changed)
    except httpx.HTTPError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(None, help="Port (default from PORT)"),
    embedded_worker: bool = typer.Option(False, "--embedded-worker", help="Run the worker inside the API process"),
):
    """Run the HTTP API."""
    import os

    import uvicorn

    if embedded_worker:
        os.environ["STACKSERP_EMBEDDED_WORKER"] = "true"
    uvicorn.run("backend.main:app", host=host, port=port or get_settings().port)


if __name__ == "__main__":
    app()
