"""
SQL Copilot CLI

Command-line interface for training schemas and asking questions.

Usage:
    sqlcopilot ask shop "Which customers spent the most last month?"
    sqlcopilot train shop schema.json --table orders --table customers
    sqlcopilot graph shop --json
    sqlcopilot example shop "Top 5 customers" "SELECT name FROM customers LIMIT 5"
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from sqlcopilot import __version__
from sqlcopilot.config import get_settings
from sqlcopilot.knowledge.examples import ExampleStore
from sqlcopilot.knowledge.graph import SchemaGraphBuilder
from sqlcopilot.knowledge.schema_store import JsonFileSchemaStore
from sqlcopilot.knowledge.training import SchemaTrainer
from sqlcopilot.knowledge.vectors import ChromaVectorStore
from sqlcopilot.models.examples import QAExample
from sqlcopilot.models.schema import TableList
from sqlcopilot.pipeline.orchestrator import PipelineResult, Text2SQLPipeline

console = Console()

MAX_DISPLAY_ROWS = 50


def configure_cli_logging(verbose: bool = False) -> None:
    """Keep library logs quiet unless asked for."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.getLogger().setLevel(level)
    for name in ("httpx", "openai", "chromadb", "asyncpg"):
        logging.getLogger(name).setLevel(logging.WARNING)


def create_pipeline() -> Text2SQLPipeline:
    return Text2SQLPipeline.from_settings()


def create_schema_store() -> JsonFileSchemaStore:
    return JsonFileSchemaStore(get_settings().schema_store.directory)


def create_trainer() -> SchemaTrainer:
    settings = get_settings()
    vector_store = ChromaVectorStore(
        persist_directory=settings.chroma.persist_dir,
        openai_api_key=settings.llm.openai_api_key,
        embedding_model=settings.chroma.embedding_model,
        collection_prefix=settings.chroma.collection_prefix,
    )
    return SchemaTrainer(vector_store, create_schema_store())


def create_example_store() -> ExampleStore:
    settings = get_settings()
    vector_store = ChromaVectorStore(
        persist_directory=settings.chroma.persist_dir,
        openai_api_key=settings.llm.openai_api_key,
        embedding_model=settings.chroma.embedding_model,
        collection_prefix=settings.examples.collection_prefix,
    )
    return ExampleStore(vector_store, settings.examples)


def format_rows(rows: list[dict[str, Any]]) -> Table:
    """Render result rows as a rich table."""
    table = Table(show_header=True, header_style="bold cyan")
    columns = list(rows[0].keys()) if rows else []
    for column in columns:
        table.add_column(str(column))
    for row in rows[:MAX_DISPLAY_ROWS]:
        table.add_row(*["" if row.get(col) is None else str(row.get(col)) for col in columns])
    return table


def format_result(result: PipelineResult) -> None:
    """Display a pipeline result."""
    if result.error:
        console.print(Panel(result.error, title="[bold red]Error[/bold red]", border_style="red"))
        return

    if result.resolved_question != result.question:
        console.print(f"[dim]Interpreted as: {result.resolved_question}[/dim]")

    console.print(Panel(Markdown(result.answer or ""), title="[bold green]Answer[/bold green]"))

    if result.sql:
        console.print("\n[bold cyan]Generated SQL:[/bold cyan]")
        console.print(Panel(Syntax(result.sql, "sql"), title="SQL", border_style="cyan"))

    if result.rows:
        console.print("\n[bold cyan]Results:[/bold cyan]")
        console.print(format_rows(result.rows))
        if len(result.rows) > MAX_DISPLAY_ROWS:
            console.print(f"[dim]Showing {MAX_DISPLAY_ROWS} of {len(result.rows)} rows[/dim]")


@click.group()
@click.version_option(version=__version__, prog_name="sqlcopilot")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs")
def cli(verbose: bool):
    """SQL Copilot - Ask questions about your database in natural language."""
    configure_cli_logging(verbose)


@cli.command()
@click.argument("connection_id")
@click.argument("question")
def ask(connection_id: str, question: str):
    """Ask a single question against a trained connection."""

    async def run_query():
        pipeline = None
        try:
            pipeline = create_pipeline()
            with console.status("[cyan]Processing query...[/cyan]", spinner="dots"):
                result = await pipeline.ask(connection_id, question)
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
        finally:
            if pipeline is not None:
                await pipeline.close()

        format_result(result)
        if not result.success:
            sys.exit(1)

    asyncio.run(run_query())


@cli.command()
@click.argument("connection_id")
@click.argument("schema_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--table",
    "tables",
    multiple=True,
    help="Only train this table (repeatable)",
)
def train(connection_id: str, schema_file: Path, tables: tuple[str, ...]):
    """Train table metadata from a JSON schema file."""
    try:
        schema = TableList.validate_json(schema_file.read_bytes())
    except ValidationError as e:
        console.print(f"[red]Invalid schema file {schema_file}:[/red]\n{e}")
        sys.exit(1)

    async def run_training():
        trainer = create_trainer()
        return await trainer.train_tables(connection_id, schema, list(tables) or None)

    try:
        trained = asyncio.run(run_training())
    except Exception as e:
        console.print(f"[red]Training failed: {e}[/red]")
        sys.exit(1)

    if trained == 0:
        console.print("[yellow]No tables were trained[/yellow]")
        sys.exit(1)
    console.print(f"[green]✓ Trained {trained} table(s) for {connection_id}[/green]")


@cli.command()
@click.argument("connection_id")
@click.option("--json", "as_json", is_flag=True, help="Print the node-link JSON")
def graph(connection_id: str, as_json: bool):
    """Show the relationship graph of a trained schema."""

    async def load_schema():
        return await create_schema_store().get_by_connection_id(connection_id)

    schema = asyncio.run(load_schema())
    if not schema:
        console.print(f"[red]No trained schema for {connection_id}[/red]")
        sys.exit(1)

    schema_graph = SchemaGraphBuilder().build(schema)

    if as_json:
        click.echo(json.dumps(schema_graph.to_dict(), indent=2, default=str))
        return

    stats = schema_graph.get_stats()
    table = Table(title=f"Schema graph: {connection_id}", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Nodes", str(stats["total_nodes"]))
    table.add_row("Edges", str(stats["total_edges"]))
    for node_type, count in sorted(stats["node_types"].items()):
        table.add_row(f"Nodes: {node_type}", str(count))
    for edge_type, count in sorted(stats["edge_types"].items()):
        table.add_row(f"Edges: {edge_type}", str(count))
    for table_type, count in sorted(stats["table_types"].items()):
        table.add_row(f"Tables: {table_type}", str(count))
    console.print(table)


@cli.command()
@click.argument("connection_id")
@click.argument("question")
@click.argument("sql")
@click.option("--description", help="Note shown with the example")
@click.option("--category", help="Free-form grouping label")
@click.option("--incorrect-sql", help="Wrong SQL this example corrects")
def example(
    connection_id: str,
    question: str,
    sql: str,
    description: str | None,
    category: str | None,
    incorrect_sql: str | None,
):
    """Store a solved question as a few-shot example."""

    async def store_example():
        store = create_example_store()
        if incorrect_sql:
            return await store.create_from_correction(
                connection_id, question, sql, incorrect_sql, description
            )
        new_example = QAExample(
            connection_id=connection_id,
            question=question,
            sql_query=sql,
            description=description,
            category=category,
        )
        return new_example if await store.add_example(new_example) else None

    try:
        stored = asyncio.run(store_example())
    except Exception as e:
        console.print(f"[red]Saving example failed: {e}[/red]")
        sys.exit(1)

    if stored is None:
        console.print("[yellow]An example needs both a question and SQL[/yellow]")
        sys.exit(1)
    console.print(
        f"[green]✓ Stored {stored.source} example {stored.id} for {connection_id}[/green]"
    )


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
