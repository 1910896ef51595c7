"""CLI interface for the review insight service."""

import asyncio
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from sentiment_hub.config import Config, load_config
from sentiment_hub.errors import ConfigError, SessionStateError
from sentiment_hub.model_providers import create_provider
from sentiment_hub.monitoring import setup_langsmith, setup_logging
from sentiment_hub.prompts import SAMPLE_REVIEWS
from sentiment_hub.session import SessionStateController, create_session

console = Console()


@click.group()
@click.option("--config", "-c", default="config.yaml", help="Path to configuration file")
@click.pass_context
def cli(ctx: click.Context, config: str):
    """Sentiment Hub: AI insight reports for customer reviews."""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


def _load(ctx: click.Context) -> Config:
    config_path = ctx.obj["config_path"]
    try:
        cfg = load_config(config_path)
    except FileNotFoundError:
        console.print(f"[yellow]→[/yellow] {config_path} not found, using defaults")
        cfg = Config()
    setup_logging(cfg.logging)
    return cfg


def _build_session(cfg: Config) -> SessionStateController:
    setup_langsmith()
    try:
        provider = create_provider(cfg.model.model_dump())
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    return create_session(cfg, provider)


def _read_reviews(path: Optional[str], sample: bool) -> str:
    if sample:
        return SAMPLE_REVIEWS
    if path:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise click.UsageError("Provide --file, --sample or pipe reviews on stdin")


async def _run_analysis(controller: SessionStateController, raw_text: str) -> bool:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task("Analyzing reviews...", total=None)
        result = await controller.run_analysis(raw_text)
        progress.update(task, completed=True)

    if result is None:
        console.print(f"[red]✗[/red] {controller.notice}")
        return False
    console.print(f"[green]✓[/green] Analyzed {len(result.reviews)} reviews")
    return True


@cli.command()
@click.option("--file", "-f", "path", type=click.Path(exists=True, dir_okay=False), help="Text file with reviews")
@click.option("--sample", is_flag=True, help="Use the built-in sample reviews")
@click.option("--stars", "-s", type=click.IntRange(1, 5), help="Only list reviews with this star rating")
@click.pass_context
def analyze(ctx: click.Context, path: Optional[str], sample: bool, stars: Optional[int]):
    """Analyze customer reviews and print the insight report."""
    cfg = _load(ctx)
    controller = _build_session(cfg)
    raw_text = _read_reviews(path, sample)

    if not asyncio.run(_run_analysis(controller, raw_text)):
        sys.exit(1)
    controller.set_star_filter(stars)
    display_report(controller)


@cli.command()
@click.option("--file", "-f", "path", type=click.Path(exists=True, dir_okay=False), help="Text file with reviews")
@click.option("--sample", is_flag=True, help="Use the built-in sample reviews")
@click.pass_context
def chat(ctx: click.Context, path: Optional[str], sample: bool):
    """Analyze reviews, then chat with the insight assistant."""
    cfg = _load(ctx)
    controller = _build_session(cfg)
    raw_text = _read_reviews(path, sample)

    if not asyncio.run(analyze_and_chat(controller, raw_text)):
        sys.exit(1)


async def analyze_and_chat(controller: SessionStateController, raw_text: str) -> bool:
    """Run the analysis and the chat loop on one event loop."""
    if not await _run_analysis(controller, raw_text):
        return False
    display_summary(controller)
    await chat_loop(controller)
    return True


async def chat_loop(controller: SessionStateController) -> None:
    """Read questions until an empty line or EOF."""
    console.print("[bold blue]Insight Assistant[/bold blue] Ask me anything about your analysis results!")
    while True:
        try:
            question = console.input("[bold cyan]you>[/bold cyan] ")
        except EOFError:
            break
        if not question.strip():
            break
        try:
            turn = controller.start_chat_turn(question)
        except SessionStateError as e:
            console.print(f"[red]✗[/red] {e}")
            continue

        console.print("[bold magenta]assistant>[/bold magenta] ", end="")
        printed = ""
        async for message in turn.stream():
            if message.text.startswith(printed):
                console.print(message.text[len(printed):], end="", markup=False, highlight=False)
            else:
                console.print()
                console.print(message.text, end="", markup=False, highlight=False)
            printed = message.text
        console.print()


@cli.command()
@click.pass_context
def serve(ctx: click.Context):
    """Run the HTTP API."""
    from sentiment_hub.api import run

    cfg = _load(ctx)
    console.print(f"[blue]Serving on {cfg.api.host}:{cfg.api.port}[/blue]")
    run(cfg)


@cli.command()
@click.pass_context
def validate(ctx: click.Context):
    """Validate configuration file."""
    console.print("[blue]Validating configuration...[/blue]")

    try:
        cfg = load_config(ctx.obj["config_path"])
        console.print("[green]✓[/green] Configuration is valid")

        table = Table(title="Configuration Summary")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Provider", cfg.model.provider)
        table.add_row("Model", cfg.model.model)
        table.add_row("Analysis Timeout", f"{cfg.analysis.timeout_seconds:.0f}s")
        table.add_row("Refresh Chat On Reanalysis", str(cfg.chat.refresh_context_on_reanalysis))
        table.add_row("API", f"{cfg.api.host}:{cfg.api.port}")

        console.print(table)
    except Exception as e:
        console.print(f"[red]✗[/red] Configuration validation failed: {e}")
        sys.exit(1)


def display_summary(controller: SessionStateController):
    """Display headline statistics."""
    stats = controller.derive_stats()
    table = Table(title="Insight Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Avg. Rating", f"{stats.average_rating:.1f}")
    table.add_row("Positive Sentiment", f"{stats.positive_percentage}%")
    table.add_row("Processed Reviews", str(stats.total_reviews))

    console.print(table)


def display_report(controller: SessionStateController):
    """Display the full insight report."""
    result = controller.result
    display_summary(controller)

    console.print(Panel(result.trend_analysis, title="AI Trend Analysis", border_style="blue"))
    console.print(Panel(result.summary, title="Summary"))

    trend = Table(title="Sentiment Trend")
    trend.add_column("Date", style="cyan")
    trend.add_column("Score %", justify="right")
    trend.add_column("Rating", justify="right")
    for point in controller.trend_series():
        trend.add_row(point.date.isoformat(), f"{point.score:.0f}", f"{point.rating:g}")
    console.print(trend)

    keywords = Table(title="Keywords")
    keywords.add_column("Top Praises", style="green")
    keywords.add_column("Top Complaints", style="red")
    for i in range(max(len(result.positive_keywords), len(result.negative_keywords))):
        pos = result.positive_keywords[i] if i < len(result.positive_keywords) else None
        neg = result.negative_keywords[i] if i < len(result.negative_keywords) else None
        keywords.add_row(
            f"{pos.text} ({pos.value:g})" if pos else "",
            f"{neg.text} ({neg.value:g})" if neg else "",
        )
    console.print(keywords)

    lines = ["## What People Love"]
    lines += [f"- {item}" for item in result.most_liked]
    lines += ["", "## Pain Points"]
    lines += [f"- {item}" for item in result.most_disliked]
    lines += ["", "## Actionable Business Plan"]
    lines += [f"{i}. {item}" for i, item in enumerate(result.actionable_improvements, start=1)]
    console.print(Markdown("\n".join(lines)))

    label = f"{controller.star_filter} Stars" if controller.star_filter else "All Ratings"
    reviews = Table(title=f"Reviews ({label})")
    reviews.add_column("Date", style="cyan")
    reviews.add_column("Rating", justify="right")
    reviews.add_column("Sentiment")
    reviews.add_column("Text")
    colors = {"positive": "green", "negative": "red", "neutral": "white"}
    for review in controller.filtered_reviews:
        reviews.add_row(
            review.date.isoformat(),
            f"{review.rating:g}",
            f"[{colors[review.sentiment]}]{review.sentiment}[/{colors[review.sentiment]}]",
            review.text,
        )
    console.print(reviews)
