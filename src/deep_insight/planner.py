"""Token-bounded chunk planning over an ordered note corpus."""

import logging
import re
from typing import Iterable

from .constants import TOKEN_LIMITS
from .errors import BudgetError
from .models import Chunk, ChunkPart, ModelConfig, RunConfig, TestModeConfig
from .prompts import render_notes, render_part
from .tokens import estimate_tokens, tokens_to_chars

logger = logging.getLogger(__name__)

# Boundaries tried in order when a note must be split. Separators stay attached
# to the preceding piece so joining the pieces gives back the note.
SPLIT_BOUNDARIES = [
    re.compile(r"\n\s*\n"),  # paragraphs
    re.compile(r"\n"),  # lines
    re.compile(r"[ \t]+"),  # words
]

# Room for ' part="NNNNNN/NNNNNN"' on split notes
_PART_ATTR_CHARS = len(' part="/"') + 12


def reserved_overhead(system_prompt: str, user_prompt: str) -> int:
    """Tokens held back from each request for prompts, tags and the response."""
    return (
        max(TOKEN_LIMITS["system_prompt"], estimate_tokens(system_prompt))
        + max(TOKEN_LIMITS["user_prompt"], estimate_tokens(user_prompt))
        + TOKEN_LIMITS["xml_tags"]
        + TOKEN_LIMITS["response"]
    )


def chunk_budget(config: RunConfig, model_config: ModelConfig, overhead: int = 0) -> int:
    """Request ceiling for a run: the configured maximum, capped by the model's limits.

    In test mode, max_tokens bounds the notes sent per request on top of the
    overhead reserved for prompts and the response.
    """
    budget = min(config.max_tokens_per_request, model_config.max_tokens, model_config.context_window)
    if config.test_mode.enabled and config.test_mode.max_tokens:
        budget = min(budget, config.test_mode.max_tokens + overhead)
    return budget


def limit_for_test_mode(chunks: list[Chunk], test_mode: TestModeConfig) -> list[Chunk]:
    """Test mode processes only the first chunk."""
    if test_mode.enabled and len(chunks) > 1:
        logger.info("Test mode: processing 1 of %d chunks", len(chunks))
        return chunks[:1]
    return chunks


def _segments(text: str, boundary: re.Pattern) -> list[str]:
    segments = []
    start = 0
    for match in boundary.finditer(text):
        if match.end() > start:
            segments.append(text[start : match.end()])
            start = match.end()
    if start < len(text):
        segments.append(text[start:])
    return segments


def split_text(text: str, limit: int, level: int = 0) -> list[str]:
    """Split text into pieces of at most limit characters at the coarsest boundary possible."""
    if len(text) <= limit:
        return [text]

    if level >= len(SPLIT_BOUNDARIES):
        return [text[i : i + limit] for i in range(0, len(text), limit)]

    pieces = []
    buffer = ""
    for segment in _segments(text, SPLIT_BOUNDARIES[level]):
        if len(segment) > limit:
            if buffer:
                pieces.append(buffer)
                buffer = ""
            pieces.extend(split_text(segment, limit, level + 1))
        elif len(buffer) + len(segment) > limit:
            pieces.append(buffer)
            buffer = segment
        else:
            buffer += segment

    if buffer:
        pieces.append(buffer)

    return pieces


def _note_parts(source_id: str, text: str, limit_chars: int) -> list[ChunkPart]:
    whole = ChunkPart(source_id=source_id, text=text)
    if len(render_part(whole)) <= limit_chars:
        return [whole]

    wrapper_chars = len(render_part(ChunkPart(source_id=source_id, text=""))) + _PART_ATTR_CHARS
    piece_limit = limit_chars - wrapper_chars
    if piece_limit <= 0:
        raise BudgetError(f"Token budget is too small to hold any part of {source_id}")

    pieces = split_text(text, piece_limit)
    return [
        ChunkPart(source_id=source_id, text=piece, part_index=i, part_count=len(pieces))
        for i, piece in enumerate(pieces)
    ]


def plan_chunks(
    corpus: Iterable[tuple[str, str]],
    budget_tokens: int,
    reserved_overhead: int = 0,
) -> list[Chunk]:
    """Partition an ordered corpus of (source_id, text) into budget-bounded chunks.

    Notes are packed greedily in order. A note that cannot fit a chunk on its own
    is split into parts; nothing is reordered, dropped or truncated. The estimate
    covers each part's <note> wrapper, so every chunk's rendered payload stays
    within budget_tokens - reserved_overhead.

    Raises:
        BudgetError: If the effective budget cannot hold any content at all.
    """
    available = budget_tokens - reserved_overhead
    if available <= 0:
        raise BudgetError(
            f"Token budget {budget_tokens} leaves no room after reserving {reserved_overhead} tokens"
        )
    limit_chars = tokens_to_chars(available)

    parts: list[ChunkPart] = []
    for source_id, text in corpus:
        if not text:
            continue
        parts.extend(_note_parts(source_id, text, limit_chars))

    chunks: list[Chunk] = []
    current: list[ChunkPart] = []
    current_chars = 0

    def close():
        chunks.append(
            Chunk(index=len(chunks), parts=list(current), estimated_tokens=estimate_tokens(render_notes(current)))
        )

    for part in parts:
        part_chars = len(render_part(part))
        if current and current_chars + part_chars > limit_chars:
            close()
            current = []
            current_chars = 0
        current.append(part)
        current_chars += part_chars

    if current:
        close()

    return chunks
