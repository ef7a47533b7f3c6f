import inspect

import pytest

from deep_insight.models import Completion, Prompts, ProviderConfig, RunConfig, Usage


class MemoryVault:
    """Vault over an in-memory dict of path -> content."""

    def __init__(self, notes: dict[str, str]):
        self.notes = notes
        self.reads: list[str] = []

    def list_notes(self) -> list[str]:
        return list(self.notes)

    def read_note(self, path: str) -> str:
        self.reads.append(path)
        return self.notes[path]


class ScriptedProvider:
    """Plays back scripted outcomes, then falls back to a responder.

    An outcome is a Completion, a str (wrapped in a Completion) or an exception to raise.
    """

    def __init__(self, outcomes=None, responder=None):
        self.outcomes = list(outcomes or [])
        self.responder = responder
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def complete(self, system: str, prompt: str) -> Completion:
        self.calls.append((system, prompt))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, Completion):
                return outcome
            return Completion(text=outcome, usage=Usage(input_tokens=10, output_tokens=5))
        if self.responder:
            result = self.responder(system, prompt)
            if inspect.isawaitable(result):
                result = await result
            return result
        return Completion(text="ok", usage=Usage(input_tokens=10, output_tokens=5))

    async def aclose(self):
        self.closed = True


def make_config(**overrides) -> RunConfig:
    values = dict(
        provider=ProviderConfig(type="anthropic", api_key="test-key", model="claude-3-5-haiku-latest"),
        prompts=Prompts(system="sys", user="user", combination="combine"),
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )
    values.update(overrides)
    return RunConfig(**values)


@pytest.fixture
def run_config():
    return make_config()
