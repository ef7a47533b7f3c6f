"""Data models for deep insight runs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

ProviderType = Literal["anthropic", "openai"]
InsertPosition = Literal["top", "bottom", "cursor"]


@dataclass(frozen=True)
class ProviderConfig:
    """Which provider, key and model a run talks to."""

    type: ProviderType
    api_key: str
    model: str


@dataclass(frozen=True)
class ModelConfig:
    """Static per-model limits and pricing."""

    max_tokens: int
    input_cost_per_1k: float
    output_cost_per_1k: float
    display_name: str
    context_window: int


@dataclass(frozen=True)
class TestModeConfig:
    """Caps for cheap iteration. Zero or None means no limit."""

    __test__ = False

    enabled: bool = False
    max_files: int | None = 5
    max_tokens: int | None = 1000


@dataclass(frozen=True)
class Prompts:
    system: str
    user: str
    combination: str


@dataclass(frozen=True)
class RunConfig:
    """Everything a single run reads. Never mutated once built."""

    provider: ProviderConfig
    prompts: Prompts
    max_tokens_per_request: int = 90000
    retry_attempts: int = 1
    test_mode: TestModeConfig = field(default_factory=TestModeConfig)
    exclude_folders: tuple[str, ...] = ("templates", "archive")
    insert_position: InsertPosition = "bottom"
    max_concurrency: int = 1
    request_timeout: float = 120.0
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0


@dataclass
class Note:
    """A markdown note read from the vault."""

    path: str
    content: str


@dataclass(frozen=True)
class ChunkPart:
    """A contiguous slice of one note.

    part_count is 1 when the note fits whole in a chunk.
    """

    source_id: str
    text: str
    part_index: int = 0
    part_count: int = 1


@dataclass
class Chunk:
    """An ordered slice of the corpus sent as one model request."""

    index: int
    parts: list[ChunkPart] = field(default_factory=list)
    estimated_tokens: int = 0

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts)

    @property
    def source_ids(self) -> list[str]:
        seen: list[str] = []
        for part in self.parts:
            if part.source_id not in seen:
                seen.append(part.source_id)
        return seen


@dataclass
class Usage:
    """Token usage accumulated across provider calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    failed_requests: int = 0

    def add(self, other: "Usage"):
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.requests += other.requests
        self.failed_requests += other.failed_requests

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Completion:
    """Normalised provider response."""

    text: str
    usage: Usage = field(default_factory=Usage)


@dataclass
class ChunkResult:
    """Model output for one chunk, keyed by chunk index."""

    index: int
    text: str
    usage: Usage = field(default_factory=Usage)


@dataclass
class FinalResult:
    """The text to insert plus what it cost to produce."""

    text: str
    chunk_count: int
    combined: bool
    usage: Usage
    estimated_cost: float = 0.0


class RunState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMBINING = "combining"
    INSERTING = "inserting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunEvent:
    """Progress notification emitted by the orchestrator."""

    state: RunState
    message: str
    chunk_index: int | None = None
    chunk_count: int | None = None
    error: Exception | None = None
