import asyncio
import gc
from unittest.mock import MagicMock

import pytest

from deep_insight.constants import TOKEN_LIMITS
from deep_insight.errors import FatalProviderError, InputError, TransientProviderError
from deep_insight.models import Completion, RunState, TestModeConfig, Usage
from deep_insight.orchestrator import InsightRun, describe_error

from conftest import MemoryVault, ScriptedProvider, make_config

# Short prompts reserve exactly the fixed token limits
OVERHEAD = sum(TOKEN_LIMITS.values())


def three_chunk_vault() -> MemoryVault:
    # Each note renders to ~330 chars; a 100 token budget holds one per chunk
    return MemoryVault({"a.md": "A" * 300, "b.md": "B" * 300, "c.md": "C" * 300})


def three_chunk_config(**overrides):
    return make_config(max_tokens_per_request=OVERHEAD + 100, **overrides)


def echo(system, prompt):
    """Deterministic provider: describes what it was sent."""
    letters = "".join(sorted({ch for ch in prompt if ch in "ABC"}))
    return Completion(text=f"insight[{letters}]:{len(prompt)}", usage=Usage(input_tokens=len(prompt) // 4, output_tokens=3))


@pytest.mark.asyncio
async def test_single_chunk_skips_combination(run_config):
    vault = MemoryVault({"note.md": "word " * 400})  # ~500 tokens
    provider = ScriptedProvider(["the insights"])
    sink = MagicMock()
    run = InsightRun(vault, run_config, provider, sink=sink)

    result = await run.run()

    assert run.state == RunState.DONE
    assert len(run.chunks) == 1
    assert len(provider.calls) == 1
    assert result.text == "the insights"
    assert result.combined is False
    assert result.chunk_count == 1
    sink.assert_called_once_with(result)


@pytest.mark.asyncio
async def test_multiple_chunks_are_combined_in_order():
    provider = ScriptedProvider(["r0", "r1", "r2", "merged"])
    sink = MagicMock()
    run = InsightRun(three_chunk_vault(), three_chunk_config(), provider, sink=sink)

    result = await run.run()

    assert len(run.chunks) == 3
    assert len(provider.calls) == 4
    assert result.text == "merged"
    assert result.combined is True
    combination_prompt = provider.calls[-1][1]
    assert combination_prompt.startswith("combine")
    assert combination_prompt.index("r0") < combination_prompt.index("r1") < combination_prompt.index("r2")
    assert result.usage.requests == 4
    assert result.estimated_cost > 0
    sink.assert_called_once()


@pytest.mark.asyncio
async def test_permanent_chunk_failure_fails_run_without_insertion():
    config = three_chunk_config(retry_attempts=1)
    failures = [TransientProviderError("503", status_code=503), TransientProviderError("503", status_code=503)]
    provider = ScriptedProvider(["r0", "r1"] + failures + ["unused"])
    sink = MagicMock()
    events = []
    run = InsightRun(three_chunk_vault(), config, provider, on_event=events.append, sink=sink)

    with pytest.raises(TransientProviderError) as exc_info:
        await run.run()

    assert exc_info.value.chunk_index == 2
    assert run.state == RunState.FAILED
    assert len(provider.calls) == 4
    sink.assert_not_called()
    assert events[-1].state == RunState.FAILED
    assert "chunk 3" in events[-1].message
    assert RunState.COMBINING not in [e.state for e in events]
    assert RunState.INSERTING not in [e.state for e in events]


@pytest.mark.asyncio
async def test_first_failure_abandons_remaining_chunks():
    provider = ScriptedProvider([FatalProviderError("401 invalid key", status_code=401)])
    run = InsightRun(three_chunk_vault(), three_chunk_config(retry_attempts=5), provider)

    with pytest.raises(FatalProviderError):
        await run.run()

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_events_follow_state_machine():
    events = []
    run = InsightRun(three_chunk_vault(), three_chunk_config(), ScriptedProvider(responder=echo), on_event=events.append)

    await run.run()

    states = [e.state for e in events]
    assert states == [
        RunState.COLLECTING,
        RunState.PLANNING,
        RunState.EXECUTING,
        RunState.EXECUTING,
        RunState.EXECUTING,
        RunState.COMBINING,
        RunState.INSERTING,
        RunState.DONE,
    ]
    executing = [e for e in events if e.state == RunState.EXECUTING]
    assert [e.chunk_index for e in executing] == [0, 1, 2]
    assert all(e.chunk_count == 3 for e in executing)


@pytest.mark.asyncio
async def test_no_eligible_notes_fails_before_any_request(run_config):
    vault = MemoryVault({"templates/daily.md": "{{date}}"})
    provider = ScriptedProvider()
    events = []
    run = InsightRun(vault, run_config, provider, on_event=events.append)

    with pytest.raises(InputError):
        await run.run()

    assert provider.calls == []
    assert run.state == RunState.FAILED
    assert events[-1].error is run.error


@pytest.mark.asyncio
async def test_excluded_folders_never_reach_the_provider(run_config):
    vault = MemoryVault({"archive/secret.md": "TOPSECRET", "inbox.md": "hello"})
    provider = ScriptedProvider(["done"])

    await InsightRun(vault, run_config, provider).run()

    assert all("TOPSECRET" not in prompt for _, prompt in provider.calls)


@pytest.mark.asyncio
async def test_runs_are_idempotent_with_deterministic_provider():
    outcomes = []
    for _ in range(2):
        run = InsightRun(three_chunk_vault(), three_chunk_config(), ScriptedProvider(responder=echo))
        result = await run.run()
        outcomes.append(([c.text for c in run.chunks], result.text))

    assert outcomes[0] == outcomes[1]


@pytest.mark.asyncio
async def test_concurrent_execution_preserves_chunk_order():
    async def slow_first(system, prompt):
        # The chunk holding note A answers last
        if "A" * 10 in prompt:
            await asyncio.sleep(0.05)
        return echo(system, prompt)

    provider = ScriptedProvider(responder=slow_first)
    run = InsightRun(three_chunk_vault(), three_chunk_config(max_concurrency=3), provider)

    await run.run()

    combination_prompt = provider.calls[-1][1]
    assert combination_prompt.index("insight[A]") < combination_prompt.index("insight[B]")
    assert combination_prompt.index("insight[B]") < combination_prompt.index("insight[C]")


@pytest.mark.asyncio
async def test_concurrent_failure_cancels_in_flight_chunks():
    cancelled = asyncio.Event()

    async def responder(system, prompt):
        if "A" * 10 in prompt:
            raise FatalProviderError("400 bad request", status_code=400)
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return echo(system, prompt)

    sink = MagicMock()
    run = InsightRun(three_chunk_vault(), three_chunk_config(max_concurrency=3), ScriptedProvider(responder=responder), sink=sink)

    with pytest.raises(FatalProviderError) as exc_info:
        await asyncio.wait_for(run.run(), timeout=2)

    assert exc_info.value.chunk_index == 0
    assert cancelled.is_set()
    sink.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_stops_run_without_insertion(run_config):
    started = asyncio.Event()

    async def hang(system, prompt):
        started.set()
        await asyncio.sleep(10)

    sink = MagicMock()
    run = InsightRun(MemoryVault({"a.md": "text"}), run_config, ScriptedProvider(responder=hang), sink=sink)
    task = asyncio.create_task(run.run())
    await started.wait()

    run.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert run.state == RunState.FAILED
    sink.assert_not_called()


@pytest.mark.asyncio
async def test_run_can_only_happen_once(run_config):
    run = InsightRun(MemoryVault({"a.md": "text"}), run_config, ScriptedProvider())
    await run.run()

    with pytest.raises(RuntimeError):
        await run.run()


def test_describe_error_messages():
    rate_limited = TransientProviderError("slow down", status_code=429)
    rate_limited.chunk_index = 1
    assert "Rate limit" in describe_error(rate_limited)
    assert "chunk 2" in describe_error(rate_limited)

    assert "Connection error" in describe_error(TransientProviderError("reset"))
    assert "API error" in describe_error(FatalProviderError("invalid x-api-key", status_code=401))
    assert describe_error(InputError("No notes found in the vault")) == "No notes found in the vault"
    assert describe_error(asyncio.CancelledError()) == "Run cancelled"


@pytest.mark.asyncio
async def test_cancel_before_run_starts_inserts_nothing(run_config):
    provider = ScriptedProvider(["insights"])
    sink = MagicMock()
    events = []
    run = InsightRun(MemoryVault({"a.md": "text"}), run_config, provider, on_event=events.append, sink=sink)

    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run.run()

    assert run.state == RunState.FAILED
    assert events[-1].message == "Run cancelled"
    assert provider.calls == []
    sink.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_just_before_insertion_inserts_nothing(run_config):
    sink = MagicMock()
    run = None

    def cancel_on_insert(event):
        if event.state == RunState.INSERTING:
            run.cancel()

    provider = ScriptedProvider(["insights"])
    run = InsightRun(MemoryVault({"a.md": "text"}), run_config, provider, on_event=cancel_on_insert, sink=sink)

    with pytest.raises(asyncio.CancelledError):
        await run.run()

    assert run.state == RunState.FAILED
    sink.assert_not_called()


@pytest.mark.asyncio
async def test_test_mode_sends_only_the_first_chunk():
    notes = {f"n{i}.md": "word " * 40000 for i in range(5)}
    config = make_config(test_mode=TestModeConfig(enabled=True, max_files=5, max_tokens=0))
    provider = ScriptedProvider(["first chunk insights"])
    run = InsightRun(MemoryVault(notes), config, provider)

    result = await run.run()

    assert len(run.chunks) == 1
    assert len(provider.calls) == 1
    assert result.combined is False
    assert result.text == "first chunk insights"


@pytest.mark.asyncio
async def test_test_mode_max_tokens_bounds_the_request():
    notes = {f"n{i}.md": "word " * 2000 for i in range(3)}
    config = make_config(test_mode=TestModeConfig(enabled=True, max_files=5, max_tokens=1000))
    provider = ScriptedProvider(["capped"])
    run = InsightRun(MemoryVault(notes), config, provider)

    await run.run()

    assert len(run.chunks) == 1
    assert run.chunks[0].estimated_tokens <= 1000
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_simultaneous_chunk_failures_are_all_retrieved():
    loop = asyncio.get_running_loop()
    reported = []
    loop.set_exception_handler(lambda loop, context: reported.append(context))

    async def reject(system, prompt):
        raise FatalProviderError("400 bad request", status_code=400)

    run = InsightRun(three_chunk_vault(), three_chunk_config(max_concurrency=3), ScriptedProvider(responder=reject))
    try:
        with pytest.raises(FatalProviderError) as exc_info:
            await run.run()
        assert exc_info.value.chunk_index == 0
        del exc_info, run
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert not [c for c in reported if "never retrieved" in c.get("message", "")]
