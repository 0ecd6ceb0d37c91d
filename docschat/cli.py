"""CLI interface for docschat."""

from __future__ import annotations

import logging
import os
import sqlite3

import click

from docschat.services.llm import BackendUnavailable


@click.group()
def cli():
    """docschat — chat with summarized meeting transcripts."""
    pass


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--ollama-url", default=None, help="Override the Ollama base URL")
@click.option("--model", default=None, help="Override the model name")
@click.option("--database", "database_path", default=None, help="Override the database path")
def ingest(input_path: str, ollama_url: str | None, model: str | None, database_path: str | None):
    """Summarize every transcript in an NDJSON file into the meetings database.

    Records already in the database are skipped, so an interrupted run can be
    restarted over the same file.

    Example:
        docschat ingest train.json
    """
    from docschat.config import load_settings
    from docschat.context import AppContext
    from docschat.main import build_provider
    from docschat.services.ingestion import IngestionPipeline, count_records
    from docschat.services.logging_setup import configure_logging
    from docschat.services.meeting_store import MeetingStore

    cwd = os.getcwd()
    data_dir = os.path.join(cwd, "data")
    config_path = os.path.join(data_dir, "config.json")
    settings = load_settings(
        config_path, ollama_url=ollama_url, model=model, database_path=database_path
    )
    ctx = AppContext(cwd=cwd, data_dir=data_dir, config_path=config_path, settings=settings)
    ctx.ensure_dirs()
    configure_logging(ctx.logs_dir, prefix="ingest", console_level=logging.WARNING)

    try:
        store = MeetingStore(ctx.database_path)
    except sqlite3.Error as exc:
        raise click.ClickException(f"Cannot open database {ctx.database_path}: {exc}")

    provider = build_provider(ctx)
    try:
        provider.ping()
    except BackendUnavailable as exc:
        store.close()
        raise click.ClickException(str(exc))

    total = count_records(input_path)
    click.echo(f"Processing {total} entries")
    pipeline = IngestionPipeline(store, provider, stream_timeout=settings.stream_timeout)
    try:
        with click.progressbar(length=total, label="Ingesting", show_pos=True) as bar:
            report = pipeline.run(input_path, on_progress=lambda done, _total: bar.update(1))
    except BackendUnavailable as exc:
        raise click.ClickException(f"Backend became unavailable: {exc}")
    finally:
        store.close()

    click.echo(
        f"Done: {report.created} created, {report.skipped} skipped, "
        f"{report.malformed} malformed, {report.failed} failed."
    )
    if report.failed_uids:
        click.echo("Failed uids (re-run to retry): " + ", ".join(report.failed_uids), err=True)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=3000, show_default=True, type=int)
def serve(host: str, port: int):
    """Start the web server."""
    import uvicorn

    uvicorn.run("docschat.main:create_app", factory=True, host=host, port=port, log_config=None)


def main():
    cli()


if __name__ == "__main__":
    main()
