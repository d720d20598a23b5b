"""CLI interface for refract."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from refract.config import RefractConfig, TimingMode, load_config, merge_cli_overrides
from refract.prods.generator import ProdGenerator
from refract.prods.models import FALLBACK_PROD_TEXT, ProdRequest
from refract.session import WritingSession
from refract.themes.highlight import (
    build_cut_points,
    compute_segment_paint_state,
    create_segments,
    ranges_from_themes,
)
from refract.themes.models import EmbeddingsRequest, Theme
from refract.themes.services import analyze
from refract.themes.store import ThemeStore
from refract.writing.segmenter import segment
from refract.writing.topic import extract_keywords
from refract.writing.triggers import ManualTimers

app = typer.Typer(
    name="refract",
    help="Reflective writing tools: sentence segmentation, prods and themes.",
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from refract import __version__

        console.print(f"refract {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .refract.toml config file."),
    ] = None,
    mode: Annotated[
        Optional[TimingMode],
        typer.Option("--mode", "-m", help="Timing preset: production or demo."),
    ] = None,
) -> None:
    """Refract - reflective prompts and themes for your writing."""
    _setup_logging(verbose)
    ctx.obj = {"config_path": config_path, "mode": mode}


def _config(ctx: typer.Context) -> RefractConfig:
    options = ctx.obj or {}
    config = load_config(options.get("config_path"))
    return merge_cli_overrides(config, mode=options.get("mode"))


def _read(file: Path) -> str:
    try:
        return file.read_text(encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Error:[/red] Could not read {file}: {exc}")
        raise typer.Exit(1)


def _highlighted(text: str, themes: list[Theme]) -> Text:
    """Render *text* with each theme's sentences on its colour."""
    sentence_map = {s.id: s for s in segment(text)}
    ranges = ranges_from_themes(themes, sentence_map)
    segments = create_segments(build_cut_points(text, ranges))
    rendered = Text()
    for seg, paint in zip(segments, compute_segment_paint_state(segments, ranges)):
        style = f"black on {paint.color}" if paint.active else ""
        rendered.append(text[seg.start : seg.end], style=style)
    return rendered


@app.command("segment")
def segment_cmd(
    file: Annotated[Path, typer.Argument(help="Text file to segment.", exists=True, dir_okay=False)],
    as_json: Annotated[bool, typer.Option("--json", help="Print sentences as JSON.")] = False,
) -> None:
    """Split a text file into sentences with stable IDs and offsets."""
    sentences = segment(_read(file))
    if as_json:
        typer.echo(json.dumps([s.to_wire() for s in sentences], indent=2))
        return

    if not sentences:
        console.print("[yellow]No sentences found.[/yellow]")
        return

    table = Table(title=f"{len(sentences)} sentence(s)")
    table.add_column("ID", style="cyan")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Text")
    for s in sentences:
        table.add_row(s.id, str(s.start_index), str(s.end_index), s.text)
    console.print(table)


@app.command("analyze")
def analyze_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Text file to analyze.", exists=True, dir_okay=False)],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw response as JSON.")] = False,
    save: Annotated[
        bool,
        typer.Option("--save", help="Persist themes, text and sentences to the local store."),
    ] = False,
) -> None:
    """Cluster a text file's sentences into labelled themes."""
    config = _config(ctx)
    text = _read(file)
    sentences = segment(text)
    request = EmbeddingsRequest(sentences=sentences, full_text=text)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    ) as progress:
        progress.add_task("Generating themes...", total=None)
        status, response = asyncio.run(analyze(request, config))

    if status != 200:
        console.print(f"[red]Error:[/red] {response.error}")
        raise typer.Exit(1)

    if save:
        store = ThemeStore(config.storage.path)
        store.save_themes(response.themes)
        store.save_text(text)
        store.save_sentences(sentences)

    if as_json:
        typer.echo(json.dumps(response.to_wire(), indent=2))
        return

    table = Table(title=f"{len(response.themes)} theme(s)")
    table.add_column("Theme")
    table.add_column("Confidence", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Description")
    for theme in response.themes:
        table.add_row(
            Text(theme.label, style=f"bold {theme.color}"),
            f"{theme.confidence:.2f}",
            str(theme.chunk_count),
            theme.description,
        )
    console.print(table)
    console.print(_highlighted(text, response.themes))
    console.print(
        f"[dim]{response.usage.tokens} tokens, ${response.usage.cost:.6f}[/dim]"
    )
    if save:
        console.print(f"[green]Saved to {config.storage.path}[/green]")


@app.command("prod")
def prod_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Text file; the last sentence is prodded.", exists=True, dir_okay=False)],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Show a prod even when the model would skip."),
    ] = False,
) -> None:
    """Ask for a reflective prod about the last sentence of a file."""
    config = _config(ctx)
    if not config.has_prod_credentials():
        console.print("[yellow]ANTHROPIC_API_KEY is not set; prods are disabled.[/yellow]")
        raise typer.Exit(1)

    text = _read(file)
    sentences = segment(text)
    if not sentences:
        console.print("[yellow]No sentences found.[/yellow]")
        raise typer.Exit(0)

    last = sentences[-1]
    request = ProdRequest(last_paragraph=last.text, full_text=text, keywords=extract_keywords(text))
    response = asyncio.run(ProdGenerator(config).generate(request))

    skip = response.should_skip or response.confidence < config.queue.confidence_threshold
    if skip and not force:
        console.print(f"[dim]No prod for this sentence (confidence {response.confidence:.2f}).[/dim]")
        return

    console.print(f"[dim]{last.text}[/dim]")
    console.print(f"[bold]{response.selected_prod.strip() or FALLBACK_PROD_TEXT}[/bold]")
    console.print(f"[dim]confidence {response.confidence:.2f}[/dim]")


async def _replay(text: str, config: RefractConfig, cps: float, request_prods: bool) -> WritingSession:
    timers = ManualTimers()
    session = WritingSession(config, request_prods=request_prods, timers=timers, clock=timers.now)
    session.start()
    step_ms = 1000 / cps
    for end in range(1, len(text) + 1):
        session.update(text[:end])
        timers.advance(step_ms)
    # idle long enough for the watchdog
    timers.advance(config.timing.watchdog_idle_ms + config.timing.watchdog_interval_ms)
    if request_prods:
        await session.scheduler.drain()
    session.close()
    return session


@app.command("replay")
def replay_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Text file to type out.", exists=True, dir_okay=False)],
    cps: Annotated[float, typer.Option("--cps", help="Simulated typing speed, characters per second.")] = 8.0,
    prods: Annotated[bool, typer.Option("--prods", help="Request prods for fired triggers.")] = False,
) -> None:
    """Type a file out on a simulated clock and show where prods would trigger."""
    if cps <= 0:
        console.print("[red]Error:[/red] --cps must be positive")
        raise typer.Exit(1)
    config = _config(ctx)
    if prods and not config.has_prod_credentials():
        console.print("[yellow]ANTHROPIC_API_KEY is not set; replaying without prods.[/yellow]")
        prods = False

    session = asyncio.run(_replay(_read(file), config, cps, prods))

    table = Table(title=f"{len(session.events)} trigger(s) in {config.timing.mode} mode")
    table.add_column("At (ms)", justify="right")
    table.add_column("Reason", style="cyan")
    table.add_column("Forced")
    table.add_column("Sentence")
    for event in session.events:
        table.add_row(
            f"{event.at:.0f}",
            event.reason,
            "yes" if event.force else "",
            event.sentence.text,
        )
    console.print(table)

    for prod in session.prods:
        console.print(f"[bold]{prod.text}[/bold] [dim]({prod.source_text[:40]})[/dim]")
