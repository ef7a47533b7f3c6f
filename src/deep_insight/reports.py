"""Report generation for CLI output."""

from rich.console import Console
from rich.table import Table

from .config import Settings
from .constants import AI_MODELS, MODEL_CONFIGS
from .models import Chunk, FinalResult, ModelConfig
from .tokens import count_tokens, estimate_input_cost

console = Console()


def print_plan(chunks: list[Chunk], model_config: ModelConfig, budget: int, overhead: int):
    """Print the chunk plan with estimated and exact token counts."""
    if not chunks:
        console.print("[yellow]Nothing to process.[/yellow]")
        return

    table = Table(title=f"Chunk Plan ({model_config.display_name})")
    table.add_column("Chunk", style="cyan", justify="right")
    table.add_column("Notes", justify="right")
    table.add_column("First Note")
    table.add_column("Est. Tokens", style="green", justify="right")
    table.add_column("tiktoken", justify="right")

    total_estimated = 0
    for chunk in chunks:
        sources = chunk.source_ids
        split = any(part.part_count > 1 for part in chunk.parts)
        table.add_row(
            str(chunk.index + 1),
            str(len(sources)),
            sources[0] + (" [dim](split)[/dim]" if split else ""),
            f"{chunk.estimated_tokens:,}",
            f"{count_tokens(chunk.text):,}",
        )
        total_estimated += chunk.estimated_tokens

    console.print(table)
    console.print(f"Budget per request: {budget:,} tokens ({overhead:,} reserved for prompts and response)")

    requests = len(chunks) + (1 if len(chunks) > 1 else 0)
    cost = estimate_input_cost(total_estimated + overhead * len(chunks), model_config)
    console.print(f"Requests: {requests}  Estimated input cost: [green]${cost:.4f}[/green]")


def print_cost_summary(result: FinalResult, model_config: ModelConfig):
    """Print token usage and cost for a finished run."""
    usage = result.usage

    table = Table(title="Cost Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Model", model_config.display_name)
    table.add_row("Chunks", str(result.chunk_count))
    table.add_row("Combined", "yes" if result.combined else "no")
    table.add_row("Requests", str(usage.requests))
    if usage.failed_requests:
        table.add_row("Failed Attempts", f"[yellow]{usage.failed_requests}[/yellow]")
    table.add_row("Input Tokens", f"{usage.input_tokens:,}")
    table.add_row("Output Tokens", f"{usage.output_tokens:,}")
    table.add_row("Estimated Cost", f"${result.estimated_cost:.4f}")

    console.print(table)


def print_models():
    """Print the model registry."""
    table = Table(title="Models")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    table.add_column("Description")
    table.add_column("Context", justify="right")
    table.add_column("$/1K in", justify="right")
    table.add_column("$/1K out", justify="right")

    for provider, models in AI_MODELS.items():
        for model, description in models.items():
            config = MODEL_CONFIGS[model]
            table.add_row(
                provider,
                model,
                description,
                f"{config.context_window:,}",
                f"{config.input_cost_per_1k:.4f}",
                f"{config.output_cost_per_1k:.4f}",
            )

    console.print(table)


def _mask(key: str) -> str:
    if not key:
        return "[dim](from environment)[/dim]"
    return key[:6] + "..." + key[-4:] if len(key) > 12 else "****"


def print_settings(settings: Settings):
    """Print current settings with the API key masked."""
    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("provider", settings.provider.type)
    table.add_row("model", settings.provider.model)
    table.add_row("api_key", _mask(settings.provider.api_key))
    table.add_row("insert_position", settings.insert_position)
    table.add_row("exclude_folders", ", ".join(settings.exclude_folders))
    table.add_row("max_tokens_per_request", f"{settings.max_tokens_per_request:,}")
    table.add_row("retry_attempts", str(settings.retry_attempts))
    table.add_row("max_concurrency", str(settings.max_concurrency))
    table.add_row("request_timeout", f"{settings.request_timeout:g}s")
    table.add_row("show_cost_summary", str(settings.show_cost_summary))
    table.add_row(
        "test_mode",
        f"{settings.test_mode.enabled} (max files {settings.test_mode.max_files}, "
        f"max tokens {settings.test_mode.max_tokens})",
    )
    for name in ("system", "user", "combination"):
        path = getattr(settings, f"{name}_prompt_path")
        table.add_row(f"{name}_prompt_path", path or "[dim](default prompt)[/dim]")

    console.print(table)
