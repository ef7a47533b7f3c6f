"""Merging per-chunk outputs into one document."""

import logging

from .constants import TOKEN_LIMITS
from .errors import BudgetError, CombinationError
from .executor import RequestExecutor
from .models import ChunkResult, Completion
from .prompts import build_combination_prompt
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)


def order_results(results: list[ChunkResult], expected_count: int) -> list[ChunkResult]:
    """Sort results by chunk index, requiring exactly one per chunk.

    Raises:
        CombinationError: If any chunk index in 0..expected_count-1 has no result.
    """
    by_index = {result.index: result for result in results}
    missing = [i for i in range(expected_count) if i not in by_index]
    if missing:
        raise CombinationError(
            f"Cannot combine: missing results for chunk(s) {', '.join(str(i + 1) for i in missing)}",
            missing=missing,
        )
    return [by_index[i] for i in range(expected_count)]


async def combine(
    results: list[ChunkResult],
    expected_count: int,
    combination_prompt: str,
    system_prompt: str,
    executor: RequestExecutor,
    context_window: int,
) -> Completion:
    """Merge chunk results, in chunk order, with a single combination request.

    Raises:
        CombinationError: If a chunk result is missing.
        BudgetError: If the merged payload would not fit the context window.
    """
    ordered = order_results(results, expected_count)
    prompt = build_combination_prompt(combination_prompt, ordered)

    needed = estimate_tokens(system_prompt) + estimate_tokens(prompt) + TOKEN_LIMITS["response"]
    if needed > context_window:
        raise BudgetError(
            f"Combined sections need ~{needed:,} tokens, more than the {context_window:,} token context window"
        )

    logger.info("Combining %d sections (~%d tokens)", len(ordered), needed)
    return await executor.execute(system_prompt, prompt)
