"""Run orchestration: collect, plan, execute, combine, insert."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

from .collector import Vault, collect_notes
from .combiner import combine
from .constants import UI_MESSAGES, get_model_config
from .errors import (
    BudgetError,
    CombinationError,
    ConfigurationError,
    FatalProviderError,
    InputError,
    ProviderError,
    TransientProviderError,
)
from .executor import RequestExecutor
from .models import Chunk, ChunkResult, FinalResult, Note, RunConfig, RunEvent, RunState, Usage
from .planner import chunk_budget, limit_for_test_mode, plan_chunks, reserved_overhead
from .prompts import build_chunk_prompt
from .providers import Provider
from .tokens import estimate_cost

logger = logging.getLogger(__name__)

EventHandler = Callable[[RunEvent], None]
Sink = Callable[[FinalResult], Awaitable[None] | None]


def describe_error(error: BaseException) -> str:
    """User-facing message for a failed run."""
    if isinstance(error, asyncio.CancelledError):
        return "Run cancelled"
    if isinstance(error, ProviderError):
        where = f" (chunk {error.chunk_index + 1})" if error.chunk_index is not None else ""
        if error.status_code == 429:
            return f"{UI_MESSAGES['rate_limit']}{where}"
        if isinstance(error, TransientProviderError) and error.status_code is None:
            return f"{UI_MESSAGES['network_error']}{where}: {error}"
        if isinstance(error, FatalProviderError):
            return f"{UI_MESSAGES['api_error']}{where}: {error}"
        return f"Provider error{where}: {error}"
    if isinstance(error, (InputError, BudgetError, CombinationError, ConfigurationError)):
        return str(error)
    return f"Unexpected error: {error}"


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # No running event loop
        return None


def _failed_chunk(error: BaseException) -> int:
    chunk_index = getattr(error, "chunk_index", None)
    return chunk_index if chunk_index is not None else -1


class InsightRun:
    """One "generate insights" invocation.

    Moves through IDLE -> COLLECTING -> PLANNING -> EXECUTING -> COMBINING ->
    INSERTING -> DONE, or to FAILED from any step. Nothing reaches the sink
    unless every chunk succeeded.
    """

    def __init__(
        self,
        vault: Vault,
        config: RunConfig,
        provider: Provider,
        on_event: EventHandler | None = None,
        sink: Sink | None = None,
        skip_paths: list[str] | tuple[str, ...] = (),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.vault = vault
        self.config = config
        self.on_event = on_event
        self.sink = sink
        self.skip_paths = skip_paths
        self.model_config = get_model_config(config.provider.model, config.provider.type)
        self.usage = Usage()
        self.executor = RequestExecutor(
            provider,
            retry_attempts=config.retry_attempts,
            request_timeout=config.request_timeout,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            usage=self.usage,
            sleep=sleep,
        )
        self.state = RunState.IDLE
        self.chunks: list[Chunk] = []
        self.error: BaseException | None = None
        self._task: asyncio.Task | None = None
        self._cancel_requested = False

    def _emit(self, state: RunState, message: str, **kwargs):
        self.state = state
        event = RunEvent(state=state, message=message, **kwargs)
        logger.debug("%s: %s", state.value, message)
        if self.on_event:
            self.on_event(event)

    def cancel(self):
        """Stop the run at its current suspension point. Nothing is inserted.

        May be called before run() starts or from an event handler; the run
        then stops at its next checkpoint.
        """
        self._cancel_requested = True
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()

    def _check_cancelled(self):
        if self._cancel_requested:
            raise asyncio.CancelledError()

    async def run(self) -> FinalResult:
        """Execute the whole pipeline.

        Raises:
            InsightError: Any pipeline failure, after a FAILED event was emitted.
            asyncio.CancelledError: If cancelled before insertion.
        """
        if self.state != RunState.IDLE:
            raise RuntimeError("An InsightRun can only be run once")
        self._task = asyncio.current_task()

        try:
            self._check_cancelled()
            notes = self._collect()
            self.chunks = self._plan(notes)
            if not self.chunks:
                self._emit(RunState.DONE, "Nothing to process")
                return FinalResult(text="", chunk_count=0, combined=False, usage=self.usage)

            results = await self._execute(self.chunks)
            result = await self._combine(results)
            await self._insert(result)
        except (Exception, asyncio.CancelledError) as e:
            self.error = e
            self._emit(RunState.FAILED, describe_error(e), error=e)
            raise

        self._emit(RunState.DONE, UI_MESSAGES["success"], chunk_count=len(self.chunks))
        return result

    def _collect(self) -> list[Note]:
        self._emit(RunState.COLLECTING, "Collecting notes...")
        notes = collect_notes(
            self.vault,
            exclude_folders=self.config.exclude_folders,
            test_mode=self.config.test_mode,
            skip_paths=self.skip_paths,
        )
        logger.info("Collected %d notes", len(notes))
        return notes

    def _plan(self, notes: list[Note]) -> list[Chunk]:
        self._emit(RunState.PLANNING, f"Planning chunks for {len(notes)} notes...")
        prompts = self.config.prompts
        overhead = reserved_overhead(prompts.system, prompts.user)
        chunks = plan_chunks(
            [(note.path, note.content) for note in notes],
            budget_tokens=chunk_budget(self.config, self.model_config, overhead),
            reserved_overhead=overhead,
        )
        logger.info("Planned %d chunks", len(chunks))
        return limit_for_test_mode(chunks, self.config.test_mode)

    async def _run_chunk(self, chunk: Chunk, chunk_count: int) -> ChunkResult:
        messages = UI_MESSAGES["processing"]
        self._emit(
            RunState.EXECUTING,
            messages[chunk.index % len(messages)],
            chunk_index=chunk.index,
            chunk_count=chunk_count,
        )
        self._check_cancelled()
        prompt = build_chunk_prompt(self.config.prompts.user, chunk, chunk_count)
        try:
            completion = await self.executor.execute(self.config.prompts.system, prompt)
        except ProviderError as e:
            e.chunk_index = chunk.index
            raise
        return ChunkResult(index=chunk.index, text=completion.text, usage=completion.usage)

    async def _execute(self, chunks: list[Chunk]) -> list[ChunkResult]:
        if self.config.max_concurrency <= 1 or len(chunks) == 1:
            return [await self._run_chunk(chunk, len(chunks)) for chunk in chunks]

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(chunk: Chunk) -> ChunkResult:
            async with semaphore:
                return await self._run_chunk(chunk, len(chunks))

        results: dict[int, ChunkResult] = {}
        pending = {asyncio.create_task(bounded(chunk)) for chunk in chunks}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                # Read every exception so none is reported as unretrieved
                errors = [task.exception() for task in done if not task.cancelled() and task.exception() is not None]
                if errors:
                    raise min(errors, key=_failed_chunk)
                self._check_cancelled()
                for task in done:
                    result = task.result()
                    results[result.index] = result
        finally:
            # First permanent failure (or cancellation) abandons the rest
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return [results[i] for i in sorted(results)]

    async def _combine(self, results: list[ChunkResult]) -> FinalResult:
        if len(self.chunks) == 1:
            text = results[0].text
            combined = False
        else:
            self._emit(RunState.COMBINING, UI_MESSAGES["combining"], chunk_count=len(self.chunks))
            completion = await combine(
                results,
                expected_count=len(self.chunks),
                combination_prompt=self.config.prompts.combination,
                system_prompt=self.config.prompts.system,
                executor=self.executor,
                context_window=self.model_config.context_window,
            )
            text = completion.text
            combined = True

        return FinalResult(
            text=text,
            chunk_count=len(self.chunks),
            combined=combined,
            usage=self.usage,
            estimated_cost=estimate_cost(self.usage, self.model_config),
        )

    async def _insert(self, result: FinalResult):
        self._emit(RunState.INSERTING, "Inserting insights...")
        self._check_cancelled()
        if self.sink is None:
            return
        outcome = self.sink(result)
        if inspect.isawaitable(outcome):
            await outcome
