"""
Store Insights Pipeline - CLI Entry Point.
Production-grade CLI using Click and Rich.
"""

import sys
import asyncio
import json
from pathlib import Path
from functools import wraps
from typing import Optional, Union

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from store_insights.config.settings import get_settings
from store_insights.models.schemas import AnalysisRequest, AnalysisType, StoreSnapshot
from store_insights.pipeline.lite import LitePipeline
from store_insights.pipeline.orchestrator import PipelineError, StoreAnalysisPipeline
from store_insights.pipeline.persistence import AnalysisRepository, InMemoryAnalysisRepository
from store_insights.pipeline.router import AnalysisRouter
from store_insights.services.ai_providers import ProviderName
from store_insights.services.embedding_service import EmbeddingService
from store_insights.services.json_extractor import JsonExtractor
from store_insights.utils.formatters import generate_analysis_report, save_report
from store_insights.utils.logger import setup_logging

# Initialize Rich Consoles
console = Console()
err_console = Console(stderr=True)

ANALYSIS_TYPES = [t.value for t in AnalysisType]

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper

def setup_logger(verbose: bool, json_logs: bool = False):
    """Configure logging based on verbosity."""
    settings = get_settings()
    if json_logs or settings.log_json:
        setup_logging(level="DEBUG" if verbose else settings.log_level, json_format=True)
        return

    setup_logging(
        level="DEBUG" if verbose else "WARNING",
        json_format=False,
        handler=RichHandler(console=err_console, rich_tracebacks=True),
    )

def load_request(path: Path, analysis_type: Optional[str] = None) -> AnalysisRequest:
    """
    Load an analysis request from JSON.

    Accepts either a bare store snapshot or a request object with a
    ``store`` key plus history.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if "store" not in data:
        data = {"store": StoreSnapshot.model_validate(data).model_dump()}
    if analysis_type:
        data["analysis_type"] = analysis_type
    return AnalysisRequest.model_validate(data)

async def run_request(
    request: AnalysisRequest,
    lite: bool,
    repository: AnalysisRepository,
):
    pipeline: Union[LitePipeline, StoreAnalysisPipeline]
    if lite:
        pipeline = LitePipeline(repository=repository)
        try:
            return await pipeline.run(request)
        finally:
            await pipeline.close()

    async with StoreAnalysisPipeline(repository=repository) as pipeline:
        return await pipeline.run(request)

async def build_report(result, request: AnalysisRequest, repository: AnalysisRepository) -> str:
    return generate_analysis_report(
        result,
        request.store.name,
        await repository.get_analysis(result.analysis_id),
        await repository.get_suggestions(result.analysis_id),
    )

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Store Insights Pipeline"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument('snapshot', type=click.Path(exists=True, dir_okay=False))
@click.option('--type', 'analysis_type', type=click.Choice(ANALYSIS_TYPES), default=None, help='Analysis module')
@click.option('--lite', is_flag=True, help='Run the two-stage lite pipeline')
@click.option('--output', type=click.Path(dir_okay=False), default=None, help='Write a Markdown report')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@click.option('--json-logs', is_flag=True, help='Structured JSON logs')
@async_command
async def analyze(snapshot: str, analysis_type: Optional[str], lite: bool, output: Optional[str], verbose: bool, json_logs: bool):
    """
    Analyze one store.

    SNAPSHOT: JSON file with a store snapshot or an analysis request.
    """
    setup_logger(verbose, json_logs)

    try:
        request = load_request(Path(snapshot), analysis_type)
    except (ValueError, OSError) as e:
        console.print(f"[bold red]Invalid snapshot:[/bold red] {e}")
        sys.exit(1)

    mode = "lite" if lite else "full"
    console.print(Panel.fit(
        f"[bold blue]Store Analysis[/bold blue] ({mode})\nStore: [cyan]{request.store.name}[/cyan]"
    ))

    repository = InMemoryAnalysisRepository()
    start_time = asyncio.get_event_loop().time()
    try:
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
            task = progress.add_task("[cyan]Running pipeline...", total=None)
            result = await run_request(request, lite, repository)
            progress.update(task, completed=True, description="[green]Analysis complete!")
    except PipelineError as e:
        console.print(f"[bold red]Analysis failed[/bold red] at stage [yellow]{e.stage}[/yellow]: {e.message}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    duration = asyncio.get_event_loop().time() - start_time
    health = result.overall_health

    table = Table(title="Analysis Summary", show_header=False)
    table.add_row("Analysis ID", result.analysis_id)
    table.add_row("Pipeline", result.pipeline)
    table.add_row("Niche", result.niche)
    table.add_row("Health Score", str(health.get("score", "-")))
    table.add_row("Status", str(health.get("classification", "-")))
    table.add_row("Suggestions", str(result.suggestions_count))
    table.add_row("Duration", f"{duration:.2f}s")
    console.print(table)

    suggestions = await repository.get_suggestions(result.analysis_id)
    if suggestions:
        suggestion_table = Table(title="Suggestions")
        suggestion_table.add_column("#")
        suggestion_table.add_column("Title")
        suggestion_table.add_column("Impact")
        for suggestion in suggestions:
            suggestion_table.add_row(str(suggestion.priority), suggestion.title, suggestion.expected_impact)
        console.print(suggestion_table)

    if output:
        report = await build_report(result, request, repository)
        path = save_report(report, Path(output))
        console.print(f"[green]✓[/green] Report saved to {path}")


@cli.command()
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--concurrency', default=3, show_default=True, help='Max concurrent analyses')
@click.option('--lite', is_flag=True, help='Run the two-stage lite pipeline')
@click.option('--output-dir', type=click.Path(file_okay=False), default=None, help='Write one report per store')
@async_command
async def batch(directory: str, concurrency: int, lite: bool, output_dir: Optional[str]):
    """
    Analyze every store snapshot in a directory.

    DIRECTORY: Folder of snapshot JSON files.
    """
    setup_logger(False)

    files = sorted(Path(directory).glob("*.json"))
    if not files:
        console.print("[red]No snapshot files found in directory.[/red]")
        sys.exit(1)

    console.print(f"[bold]Batch Processing [cyan]{len(files)}[/cyan] stores with concurrency [cyan]{concurrency}[/cyan][/bold]")

    semaphore = asyncio.Semaphore(concurrency)
    repository = InMemoryAnalysisRepository()

    async def process_one(path: Path):
        async with semaphore:
            try:
                request = load_request(path)
                result = await run_request(request, lite, repository)
                if output_dir:
                    report = await build_report(result, request, repository)
                    save_report(report, Path(output_dir) / path.stem)
                return path.name, True, f"{result.suggestions_count} suggestions"
            except (PipelineError, ValueError, OSError) as e:
                return path.name, False, str(e)

    with Progress(console=console) as progress:
        task = progress.add_task("[cyan]Processing...", total=len(files))

        results = []
        for coro in asyncio.as_completed([process_one(f) for f in files]):
            name, success, detail = await coro
            progress.advance(task)
            results.append((name, success, detail))

            if success:
                console.print(f"[green]✓ {name}[/green] ({detail})")
            else:
                console.print(f"[red]✗ {name}: {detail}[/red]")

    # Summary
    success_count = sum(1 for r in results if r[1])
    console.print(Panel(f"Batch Complete\nSuccess: [green]{success_count}[/green]\nFailed: [red]{len(files) - success_count}[/red]"))
    if success_count < len(files):
        sys.exit(1)


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--label', default='cli', help='Label used in extraction logs')
def extract_json(file_path: str, label: str):
    """
    Extract JSON from a raw model reply.
    Outputs the recovered structure to stdout.
    """
    setup_logger(False)

    text = Path(file_path).read_text(encoding='utf-8')
    result = JsonExtractor.extract(text, label)
    if result is None:
        console.print("[bold red]Extraction Failed:[/bold red] no valid JSON found")
        sys.exit(1)
    console.print_json(json.dumps(result, ensure_ascii=False))


@cli.command()
@click.argument('analysis_type')
def resolve_module(analysis_type: str):
    """Show the module configuration for an analysis type."""
    config = AnalysisRouter().resolve(analysis_type)
    console.print_json(config.to_json())


@cli.command()
def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()
    except ValueError as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    for provider in ProviderName:
        configured = settings.is_provider_configured(provider.value)
        status = "[green]Pass[/green]" if configured else "[yellow]Missing[/yellow]"
        default = " (default)" if provider.value == settings.ai_provider else ""
        table.add_row(f"{provider.value.title()} API Key", status, f"{'configured' if configured else 'not set'}{default}")

    embeddings = EmbeddingService(settings)
    status = "[green]Pass[/green]" if embeddings.is_configured else "[yellow]Disabled[/yellow]"
    table.add_row("Embeddings", status, f"{embeddings.provider} / {embeddings.model or '-'}")

    table.add_row("Similarity Threshold", "[blue]Info[/blue]", str(settings.similarity_threshold))
    table.add_row("Stage Timeout", "[blue]Info[/blue]", f"{settings.stage_timeout_seconds}s")
    table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

    console.print(table)

    if not settings.is_provider_configured(settings.ai_provider):
        console.print(f"\n[red]Default AI provider '{settings.ai_provider}' is not configured.[/red]")
        sys.exit(1)

if __name__ == "__main__":
    cli()
