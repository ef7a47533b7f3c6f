"""Exceptions raised by the insight pipeline."""

from .models import Usage


class InsightError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class ConfigurationError(InsightError):
    """Settings are missing or unusable."""


class InputError(InsightError):
    """No eligible notes to process."""


class ProviderError(InsightError):
    """A provider call failed.

    chunk_index is filled in by the orchestrator when the failure belongs to a chunk.
    """

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        status_code: int | None = None,
        attempts: int = 1,
        usage: Usage | None = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code
        self.attempts = attempts
        self.usage = usage
        self.chunk_index: int | None = None


class TransientProviderError(ProviderError):
    """Network failure, timeout, rate limit or 5xx. Safe to retry."""


class FatalProviderError(ProviderError):
    """Bad credentials, malformed request or policy rejection. Never retried."""


class BudgetError(InsightError):
    """Content cannot fit the token budget or context window."""


class CombinationError(InsightError):
    """A chunk result is missing when combining."""

    def __init__(self, message: str, missing: list[int]):
        super().__init__(message)
        self.missing = missing
