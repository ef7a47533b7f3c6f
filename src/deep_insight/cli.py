"""CLI entry point for deep insight."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress

from .collector import FolderVault, collect_notes
from .config import SETTINGS_FILE, Settings, load_settings, save_settings, set_value
from .constants import get_model_config
from .errors import InsightError
from .models import FinalResult, RunConfig, RunEvent, RunState
from .orchestrator import InsightRun, describe_error
from .planner import chunk_budget, limit_for_test_mode, plan_chunks, reserved_overhead
from .providers import create_provider
from .reports import print_cost_summary, print_models, print_plan, print_settings
from .sink import NoteSink

console = Console()


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False),
    default=str(SETTINGS_FILE),
    help="Path to the settings file",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, settings_path, verbose):
    """Generate insights from a folder of markdown notes with an LLM."""
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = Path(settings_path)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load(ctx) -> Settings:
    try:
        return load_settings(ctx.obj["settings_path"])
    except InsightError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)


def _prompt_paths(settings: Settings) -> list[str]:
    return [
        p
        for p in (settings.system_prompt_path, settings.user_prompt_path, settings.combination_prompt_path)
        if p
    ]


class ProgressReporter:
    """Renders run events as a rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task = None

    def __call__(self, event: RunEvent):
        if event.state == RunState.EXECUTING and event.chunk_count:
            if self.task is None:
                self.task = self.progress.add_task(event.message, total=event.chunk_count)
            self.progress.update(
                self.task,
                completed=event.chunk_index,
                description=f"[{event.chunk_index + 1}/{event.chunk_count}] {event.message}",
            )
        elif event.state in (RunState.COMBINING, RunState.DONE) and self.task is not None:
            self.progress.update(self.task, completed=event.chunk_count, description=event.message)
        elif event.state != RunState.FAILED:
            self.progress.console.print(f"[cyan]{event.message}[/cyan]")


async def _generate(vault: FolderVault, config: RunConfig, sink, skip_paths: list[str]) -> FinalResult:
    provider = create_provider(config.provider, timeout=config.request_timeout)
    try:
        with Progress(console=console) as progress:
            run = InsightRun(
                vault,
                config,
                provider,
                on_event=ProgressReporter(progress),
                sink=sink,
                skip_paths=skip_paths,
            )
            return await run.run()
    finally:
        await provider.aclose()


@cli.command()
@click.argument("vault_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--note", "note_path", required=True, help="Note to insert insights into, relative to the vault")
@click.option("--position", type=click.Choice(["top", "bottom", "cursor"]), help="Where to insert the insights")
@click.option("--line", type=int, help="Line number for --position cursor")
@click.option("--dry-run", is_flag=True, help="Print the insights instead of inserting them")
@click.pass_context
def generate(ctx, vault_dir, note_path, position, line, dry_run):
    """Analyze the notes in VAULT_DIR and insert the result into a note."""
    settings = _load(ctx)
    vault = FolderVault(Path(vault_dir))

    try:
        config = settings.to_run_config(vault)
    except InsightError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    position = position or config.insert_position
    sink = None if dry_run else NoteSink(Path(vault_dir) / note_path, position=position, cursor_line=line)
    skip_paths = [note_path] + _prompt_paths(settings)

    if config.test_mode.enabled:
        console.print("[yellow]Test mode is on: input is capped.[/yellow]")

    try:
        result = asyncio.run(_generate(vault, config, sink, skip_paths))
    except InsightError as e:
        console.print(f"[red]{describe_error(e)}[/red]")
        ctx.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled. Nothing was inserted.[/yellow]")
        ctx.exit(130)

    if dry_run:
        console.print(result.text)
    elif result.chunk_count:
        console.print(f"[green]Insights inserted into {note_path}[/green] ({position})")

    if settings.show_cost_summary and result.chunk_count:
        print_cost_summary(result, get_model_config(config.provider.model, config.provider.type))


@cli.command()
@click.argument("vault_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--note", "note_path", help="Target note to leave out of the corpus")
@click.pass_context
def plan(ctx, vault_dir, note_path):
    """Show how VAULT_DIR would be split into requests, without calling the API."""
    settings = _load(ctx)
    vault = FolderVault(Path(vault_dir))

    try:
        config = settings.to_run_config(vault, require_api_key=False)
        model_config = get_model_config(config.provider.model, config.provider.type)
        notes = collect_notes(
            vault,
            exclude_folders=config.exclude_folders,
            test_mode=config.test_mode,
            skip_paths=([note_path] if note_path else []) + _prompt_paths(settings),
        )
        overhead = reserved_overhead(config.prompts.system, config.prompts.user)
        budget = chunk_budget(config, model_config, overhead)
        chunks = plan_chunks([(n.path, n.content) for n in notes], budget, overhead)
        chunks = limit_for_test_mode(chunks, config.test_mode)
    except InsightError as e:
        console.print(f"[red]{describe_error(e)}[/red]")
        ctx.exit(1)

    console.print(f"Found [green]{len(notes)}[/green] notes")
    print_plan(chunks, model_config, budget, overhead)


@cli.command()
def models():
    """List supported models with context windows and pricing."""
    print_models()


@cli.group("config")
def config_group():
    """Show or change settings."""


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Show current settings."""
    print_settings(_load(ctx))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Change one setting, e.g. `config set model gpt-4o`."""
    settings = _load(ctx)
    try:
        set_value(settings, key, value)
    except InsightError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    save_settings(settings, ctx.obj["settings_path"])
    console.print(f"[green]Set {key}[/green]")


@config_group.command("reset")
@click.pass_context
def config_reset(ctx):
    """Restore default settings."""
    save_settings(Settings(), ctx.obj["settings_path"])
    console.print("[green]Settings reset to defaults[/green]")


if __name__ == "__main__":
    cli()
