"""
Command-line interface for the Daily Resolver.

Uses Typer for commands and Rich for output. Loads a .env file so provider
API keys can live outside the YAML config.
"""

from __future__ import annotations

import json
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
import typer

from .config import AppConfig, load_config
from .core.errors import ConsistencyError, PreconditionError
from .core.types import BatchSummary
from .input.batch_parser import load_batch
from .llm.tracing import flush
from .runner import Pipeline, build_pipeline, ingest_batch, resolve_batch

app = typer.Typer(add_completion=False, help="Resolve daily candidate batches into canonical articles.")
console = Console()

ConfigOption = typer.Option(Path("config.yaml"), "--config", "-c", help="YAML config file.")
DateOption = typer.Option(..., "--date", "-d", help="Batch date (YYYY-MM-DD).")


def _load(config: Path | None, db: Path | None = None, log_level: str | None = None) -> tuple[AppConfig, str | None]:
    load_dotenv()
    path = str(config) if config and config.exists() else None
    try:
        cfg = load_config(path)
    except ValueError as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    if db is not None:
        cfg.storage.db_path = str(db)
    if log_level:
        cfg.logging.level = log_level
    return cfg, path


def _open(config: Path | None, db: Path | None, log_level: str | None = None, with_provider: bool = True) -> Pipeline:
    cfg, path = _load(config, db, log_level)
    return build_pipeline(cfg, config_path=path, with_provider=with_provider)


def _fail(exc: Exception, code: int) -> None:
    console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
    raise typer.Exit(code=code) from exc


@app.command()
def ingest(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Batch JSON file."),
    date: str | None = typer.Option(None, "--date", "-d", help="Expected batch date."),
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
):
    """Load a candidate batch as pending candidates."""
    pipeline = _open(config, db, log_level, with_provider=False)
    try:
        batch = load_batch(input, expected_date=date)
        count = ingest_batch(pipeline, batch)
    except PreconditionError as exc:
        _fail(exc, 2)
    finally:
        pipeline.close()
    console.print(f"Ingested {count} candidate(s) for {batch.date}")


@app.command()
def resolve(
    date: str = DateOption,
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify only; write nothing."),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    api_key: str | None = typer.Option(
        None,
        "--api-key",
        help="Override provider API key (or set it in the environment / .env).",
    ),
):
    """Classify, arbitrate and apply every unresolved candidate for a date."""
    cfg, path = _load(config, db, log_level)
    if api_key:
        cfg.provider.api_key = api_key
    pipeline = build_pipeline(cfg, config_path=path, with_provider=not dry_run)
    try:
        summary = resolve_batch(
            pipeline, date, dry_run=dry_run, show_progress=progress, console=console
        )
    except PreconditionError as exc:
        _fail(exc, 2)
    except ConsistencyError as exc:
        _fail(exc, 3)
    finally:
        pipeline.close()
        flush()

    _print_summary(summary)
    if summary.failed or summary.pending:
        raise typer.Exit(code=1)


@app.command()
def regenerate(
    date: str = DateOption,
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
):
    """Rebuild the publication for a date from its NEW articles."""
    pipeline = _open(config, db)
    try:
        publication, changed = pipeline.regenerator.regenerate(date)
    finally:
        pipeline.close()
        flush()
    state = "written" if changed else "unchanged"
    console.print(f"Publication {publication.slug} {state}: {publication.article_count} article(s)")
    console.print(f"[bold]{publication.headline}[/bold]")


@app.command("rebuild-index")
def rebuild_index(
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
):
    """Drop and rebuild the full-text index from all NEW articles."""
    pipeline = _open(config, db, with_provider=False)
    try:
        indexed = pipeline.index.rebuild()
        pipeline.index.verify()
    finally:
        pipeline.close()
    console.print(f"Index rebuilt with {indexed} article(s)")


@app.command("verify-index")
def verify_index(
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
):
    """Check index integrity against the article store."""
    pipeline = _open(config, db, with_provider=False)
    try:
        indexed = pipeline.index.verify()
    except PreconditionError as exc:
        _fail(exc, 2)
    finally:
        pipeline.close()
    console.print(f"Index OK: {indexed} article(s)")


@app.command()
def show(
    article_id: str = typer.Argument(..., help="Article or candidate id."),
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
):
    """Show an article, following merge and duplicate redirects."""
    pipeline = _open(config, db, with_provider=False)
    try:
        record = pipeline.store.get_record(article_id)
        article = pipeline.store.get_article(article_id)
    except KeyError as exc:
        _fail(exc, 1)
    except ConsistencyError as exc:
        _fail(exc, 3)
    finally:
        pipeline.close()

    if article.id != article_id and record is not None:
        console.print(
            f"[yellow]{article_id}[/yellow] resolved {record.resolution.value} -> {article.id}"
        )
    console.print(f"[bold]{article.headline}[/bold] ({article.slug}, {article.pub_date})")
    console.print(article.summary)
    if article.sources:
        console.print(f"Sources: {len(article.sources)}")
    for update in article.updates:
        console.print(
            f"  update {update.datetime} [{update.severity_change}] {update.summary}"
        )


@app.command()
def stats(
    date: str | None = typer.Option(None, "--date", "-d", help="Restrict to one batch date."),
    config: Path | None = ConfigOption,
    db: Path | None = typer.Option(None, "--db", help="Override storage.db_path."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON."),
    records: bool = typer.Option(False, "--records", help="List every candidate's record (needs --date)."),
):
    """Resolution counts and average scores, for threshold tuning."""
    if records and not date:
        console.print("[red]--records needs --date[/red]")
        raise typer.Exit(code=2)
    pipeline = _open(config, db, with_provider=False)
    try:
        data = pipeline.store.resolution_stats(date)
        rows = pipeline.store.records_for_date(date) if records else []
    finally:
        pipeline.close()

    if records:
        data["records"] = [
            {
                "candidate_id": r.candidate_id,
                "status": r.status.value,
                "resolution": r.resolution.value if r.resolution else None,
                "score": r.similarity_score,
                "matched_article_id": r.matched_article_id,
                "method": r.method,
                "error": r.error,
            }
            for r in rows
        ]
    if as_json:
        console.print_json(json.dumps(data))
        return
    table = Table(title=f"Resolutions {date or '(all dates)'}")
    table.add_column("Status")
    table.add_column("Resolution")
    table.add_column("Count", justify="right")
    table.add_column("Avg score", justify="right")
    for row in data["by_resolution"]:
        avg = "" if row["avg_score"] is None else f"{row['avg_score']:.1f}"
        table.add_row(row["status"], row["resolution"], str(row["count"]), avg)
    console.print(table)
    console.print(f"Canonical articles: {data['articles']}")
    if records:
        detail = Table(title=f"Candidates {date}")
        for column in ("Candidate", "Status", "Resolution", "Score", "Matched"):
            detail.add_column(column)
        for record in data["records"]:
            score = "" if record["score"] is None else f"{record['score']:.1f}"
            detail.add_row(
                record["candidate_id"],
                record["status"],
                record["resolution"] or "-",
                score,
                record["matched_article_id"] or "",
            )
        console.print(detail)


def _print_summary(summary: BatchSummary) -> None:
    title = f"Batch {summary.date}" + (" (dry run)" if summary.dry_run else "")
    table = Table(title=title)
    table.add_column("Outcome")
    table.add_column("Count", justify="right")
    table.add_row("Processed", str(summary.processed))
    table.add_row("New", str(summary.new))
    table.add_row("Duplicate (auto)", str(summary.duplicate_auto))
    if summary.dry_run:
        table.add_row("Ambiguous", str(summary.ambiguous))
    else:
        table.add_row("Duplicate (confirmed)", str(summary.duplicate_confirmed))
        table.add_row("Merged", str(summary.merged))
        table.add_row("Failed (arbitration)", str(summary.failed))
        table.add_row("Pending (apply error)", str(summary.pending))
        table.add_row("LLM calls", str(summary.llm_calls))
    console.print(table)
    for candidate_id in summary.failed_ids:
        console.print(f"[red]failed[/red] {candidate_id}")
    for candidate_id in summary.pending_ids:
        console.print(f"[yellow]pending[/yellow] {candidate_id}")
    if summary.publication_regenerated:
        console.print("Publication regenerated")


if __name__ == "__main__":
    app()
