"""Token estimation and cost calculations."""

import logging
import math

import tiktoken

from .constants import CHARS_PER_TOKEN
from .models import ModelConfig, Usage

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Approximate token count from character count.

    Deliberately not a tokenizer: one token per CHARS_PER_TOKEN characters, rounded up.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    """Largest character count whose estimate stays within tokens."""
    return max(tokens, 0) * CHARS_PER_TOKEN


def count_tokens(text: str, model: str = "cl100k_base") -> int:
    """Count tokens in text using tiktoken. Used for reports only."""
    try:
        enc = tiktoken.get_encoding(model)
        return len(enc.encode(text))
    except Exception as e:
        # Fallback: the planning estimate
        logger.debug("tiktoken unavailable, using estimate: %s", e)
        return estimate_tokens(text)


def estimate_cost(usage: Usage, model_config: ModelConfig) -> float:
    """Dollar cost of the given usage."""
    return (
        usage.input_tokens / 1000 * model_config.input_cost_per_1k
        + usage.output_tokens / 1000 * model_config.output_cost_per_1k
    )


def estimate_input_cost(tokens: int, model_config: ModelConfig) -> float:
    return tokens / 1000 * model_config.input_cost_per_1k
