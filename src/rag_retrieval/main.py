import json

from typer import Argument, Exit, Option, Typer
from typing import Annotated
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import MAX_TOP_K, resolve_db_path
from .errors import (
    InvalidQueryError,
    NoProviderAvailableError,
    RetrievalError,
    RetrievalFailedError,
)
from .service import RetrievalService
from .storage import DuckDBStorage

app = Typer(help="Semantic retrieval over embedded chunks, with a response cache.")
cache_app = Typer(help="Inspect and maintain the semantic response cache.")
providers_app = Typer(help="Embedding provider diagnostics.")
app.add_typer(cache_app, name="cache")
app.add_typer(providers_app, name="providers")

console = Console()

DbPathOption = Annotated[
    str | None,
    Option("--db-path", help="DuckDB file to use (default: RAG_RETRIEVAL_DB_PATH or ~/.rag_retrieval/index.duckdb)."),
]


def _build_service(db_path: str | None) -> RetrievalService:
    return RetrievalService(DuckDBStorage(resolve_db_path(db_path)))


def _fail(exc: RetrievalError) -> Exit:
    if isinstance(exc, InvalidQueryError):
        console.print(f"[bold red]Invalid request:[/] {exc}")
        return Exit(code=2)
    no_provider = isinstance(exc, NoProviderAvailableError) or (
        isinstance(exc, RetrievalFailedError) and isinstance(exc.cause, NoProviderAvailableError)
    )
    if no_provider:
        console.print(f"[bold red]No embedding provider configured:[/] {exc}")
        return Exit(code=3)
    console.print(f"[bold red]Provider call failed:[/] {exc}")
    return Exit(code=1)


@app.command()
def search(
    query: Annotated[str, Argument(help="Text to search for.")],
    top_k: Annotated[int | None, Option("--top-k", "-k", help=f"Maximum results (1-{MAX_TOP_K}).")] = None,
    threshold: Annotated[
        float | None, Option("--threshold", "-t", help="Minimum cosine similarity in [0, 1].")
    ] = None,
    provider: Annotated[str | None, Option("--provider", "-p", help="Preferred embedding provider.")] = None,
    include_notes: Annotated[bool, Option("--notes/--no-notes")] = True,
    include_details: Annotated[bool, Option("--details/--no-details")] = True,
    include_header_context: Annotated[bool, Option("--header-context/--no-header-context")] = True,
    as_json: Annotated[bool, Option("--json", help="Print raw JSON results.")] = False,
    db_path: DbPathOption = None,
) -> None:
    """Rank stored chunks against QUERY."""
    if top_k is not None and top_k > MAX_TOP_K:
        console.print(f"[bold red]Invalid request:[/] --top-k must be at most {MAX_TOP_K}")
        raise Exit(code=2)
    service = _build_service(db_path)
    try:
        results = service.search(
            query,
            top_k=top_k,
            similarity_threshold=threshold,
            provider=provider,
            include_header_context=include_header_context,
            include_notes=include_notes,
            include_details=include_details,
        )
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()

    if as_json:
        console.print_json(json.dumps([result.to_dict() for result in results]))
        return
    if not results:
        console.print("[yellow]No chunks matched above the similarity threshold.[/]")
        return

    table = Table(title=f"Results for: {query}")
    table.add_column("#", justify="right")
    table.add_column("Chunk", justify="right")
    table.add_column("Document", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Best field")
    table.add_column("Content")
    for rank, result in enumerate(results, start=1):
        preview = result.content if len(result.content) <= 80 else result.content[:77] + "..."
        table.add_row(
            str(rank),
            str(result.chunk_id),
            str(result.document_id),
            f"{result.max_similarity:.4f}",
            result.best_field,
            preview,
        )
    console.print(table)


@cache_app.command("lookup")
def cache_lookup(
    query: Annotated[str, Argument(help="Query text to look up.")],
    threshold: Annotated[float | None, Option("--threshold", "-t")] = None,
    exact_only: Annotated[bool, Option("--exact", help="Only match identical text.")] = False,
    db_path: DbPathOption = None,
) -> None:
    service = _build_service(db_path)
    try:
        hit = service.cache_lookup_hit(query, threshold=threshold, exact_only=exact_only)
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()

    if hit is None:
        console.print("[yellow]Cache miss.[/]")
        raise Exit(code=4)
    match = "exact" if hit.exact else f"similarity {hit.similarity:.4f}"
    console.print(
        Panel(
            hit.response_text,
            title=f"Cache hit ({match})",
            title_align="left",
            border_style="bold green",
        )
    )


@cache_app.command("store")
def cache_store(
    query: Annotated[str, Argument(help="Query text.")],
    response: Annotated[str, Argument(help="Response to cache for the query.")],
    ttl_hours: Annotated[float | None, Option("--ttl-hours")] = None,
    overwrite: Annotated[bool, Option("--overwrite")] = False,
    db_path: DbPathOption = None,
) -> None:
    service = _build_service(db_path)
    try:
        outcome = service.cache_store(query, response, ttl_hours=ttl_hours, overwrite=overwrite)
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()
    console.print(f"Cache entry {outcome.value}.")


@cache_app.command("purge")
def cache_purge(
    max_age_hours: Annotated[
        float | None, Option("--max-age-hours", help="Delete entries older than this (default 1h).")
    ] = None,
    db_path: DbPathOption = None,
) -> None:
    """Delete expired cache entries."""
    service = _build_service(db_path)
    try:
        deleted = service.purge_cache(max_age_hours)
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()
    console.print(f"Purged {deleted} cache entries.")


@cache_app.command("delete")
def cache_delete(
    entry_id: Annotated[int | None, Option("--id", help="Delete one entry by id.")] = None,
    query: Annotated[str | None, Option("--query", help="Delete entries with this exact text.")] = None,
    delete_all: Annotated[bool, Option("--all", help="Delete every entry.")] = False,
    db_path: DbPathOption = None,
) -> None:
    service = _build_service(db_path)
    try:
        deleted = service.delete_cache(entry_id=entry_id, query_text=query, delete_all=delete_all)
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()
    console.print(f"Deleted {deleted} cache entries.")


@cache_app.command("stats")
def cache_stats(db_path: DbPathOption = None) -> None:
    service = _build_service(db_path)
    try:
        stats = service.cache_stats()
    finally:
        service.storage.close()

    table = Table(title="Semantic cache")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total entries", str(stats.total_entries))
    table.add_row("Last hour", str(stats.entries_last_hour))
    table.add_row("Last 24 hours", str(stats.entries_last_24_hours))
    table.add_row("Oldest", str(stats.oldest_entry or "-"))
    table.add_row("Newest", str(stats.newest_entry or "-"))
    table.add_row(
        "Avg response size",
        f"{stats.avg_response_size:.1f}" if stats.avg_response_size is not None else "-",
    )
    table.add_row(
        "Avg embedding bytes",
        f"{stats.avg_embedding_size:.1f}" if stats.avg_embedding_size is not None else "-",
    )
    console.print(table)


@providers_app.command("list")
def providers_list(db_path: DbPathOption = None) -> None:
    """Show configured providers in fallback order."""
    service = _build_service(db_path)
    try:
        rows = service.list_providers()
    finally:
        service.storage.close()

    table = Table(title="Embedding providers")
    table.add_column("Priority", justify="right")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Active")
    table.add_column("Available")
    for row in rows:
        table.add_row(
            str(row["priority"]),
            row["provider"],
            str(row.get("model") or "-"),
            "yes" if row.get("is_active") else "no",
            "yes" if row["available"] else "no",
        )
    console.print(table)


@providers_app.command("test")
def providers_test(
    text: Annotated[str, Argument(help="Text to embed.")] = "Hello, world!",
    provider: Annotated[str | None, Option("--provider", "-p")] = None,
    test_all: Annotated[bool, Option("--all", help="Test every configured provider.")] = False,
    db_path: DbPathOption = None,
) -> None:
    """Embed TEXT once and show the resulting vector."""
    service = _build_service(db_path)
    try:
        if test_all:
            rows = service.test_all_providers(text)
        else:
            result = service.test_embedding(text, provider=provider)
    except RetrievalError as exc:
        raise _fail(exc) from exc
    finally:
        service.storage.close()

    if test_all:
        table = Table(title="Provider test")
        table.add_column("Provider")
        table.add_column("Result")
        table.add_column("Dimensions", justify="right")
        table.add_column("Detail")
        for row in rows:
            if row["success"]:
                outcome = "[green]ok[/]"
            elif row["skipped"]:
                outcome = "[yellow]skipped[/]"
            else:
                outcome = "[red]failed[/]"
            table.add_row(
                row["provider"],
                outcome,
                str(row.get("dimension", "-")),
                row.get("preview") or row.get("error") or "",
            )
        console.print(table)
        if all(row["skipped"] for row in rows):
            raise Exit(code=3)
        if any(not row["success"] and not row["skipped"] for row in rows):
            raise Exit(code=1)
        return

    console.print(
        Panel(
            f"Model: {result['model']}\nDimensions: {result['dimension']}\nPreview: {result['preview']}",
            title=f"Embedding from {result['provider']}",
            title_align="left",
            border_style="bold cyan",
        )
    )


@app.command()
def serve(
    host: Annotated[str, Option("--host")] = "127.0.0.1",
    port: Annotated[int, Option("--port")] = 8000,
) -> None:
    """Run the HTTP API."""
    from .server import run_server

    run_server(host=host, port=port)
