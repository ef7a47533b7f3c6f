"""Provider requests with bounded retries."""

import asyncio
import logging
import random
from typing import Awaitable, Callable

from .errors import FatalProviderError, ProviderError, TransientProviderError
from .models import Completion, Usage
from .providers import Provider

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Issues provider requests, retrying transient failures.

    A request is attempted at most retry_attempts + 1 times. Fatal errors are
    raised on the first attempt. Usage of every attempt, failed ones included,
    is added to the shared usage object.
    """

    def __init__(
        self,
        provider: Provider,
        retry_attempts: int = 1,
        request_timeout: float | None = 120.0,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        usage: Usage | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.retry_attempts = max(retry_attempts, 0)
        self.request_timeout = request_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.usage = usage if usage is not None else Usage()
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        ceiling = min(self.max_delay, self.base_delay * (2**attempt))
        return random.uniform(0, ceiling)

    def _record_failure(self, error: ProviderError):
        self.usage.requests += 1
        self.usage.failed_requests += 1
        if error.usage:
            self.usage.input_tokens += error.usage.input_tokens
            self.usage.output_tokens += error.usage.output_tokens

    async def _attempt(self, system: str, prompt: str) -> Completion:
        try:
            return await asyncio.wait_for(self.provider.complete(system, prompt), timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransientProviderError(f"Request timed out after {self.request_timeout}s", e) from e

    async def execute(self, system: str, prompt: str) -> Completion:
        """Send one request through the retry policy.

        Raises:
            FatalProviderError: Immediately, for non-retryable failures.
            TransientProviderError: When every attempt failed transiently.
        """
        total_attempts = self.retry_attempts + 1
        last_error: TransientProviderError | None = None

        for attempt in range(total_attempts):
            try:
                completion = await self._attempt(system, prompt)
            except FatalProviderError as e:
                self._record_failure(e)
                e.attempts = attempt + 1
                logger.error("Request failed permanently: %s", e)
                raise
            except TransientProviderError as e:
                self._record_failure(e)
                last_error = e
                logger.warning("Request failed (attempt %d/%d): %s", attempt + 1, total_attempts, e)
                if attempt < total_attempts - 1:
                    await self.sleep(self.backoff_delay(attempt))
                continue

            self.usage.requests += 1
            self.usage.input_tokens += completion.usage.input_tokens
            self.usage.output_tokens += completion.usage.output_tokens
            return completion

        raise TransientProviderError(
            f"Request failed after {total_attempts} attempts: {last_error}",
            last_error,
            status_code=last_error.status_code if last_error else None,
            attempts=total_attempts,
        ) from last_error
