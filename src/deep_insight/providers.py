"""Provider clients normalised to completion text plus token usage."""

import logging
from typing import Protocol

import anthropic
import httpx
from anthropic import AsyncAnthropic

from .constants import API_CONSTANTS
from .errors import ConfigurationError, FatalProviderError, ProviderError, TransientProviderError
from .models import Completion, ProviderConfig, Usage

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """A text-generation backend."""

    async def complete(self, system: str, prompt: str) -> Completion:
        """Send one request. Raises TransientProviderError or FatalProviderError."""
        ...

    async def aclose(self):
        ...


def is_transient_status(status_code: int) -> bool:
    """Rate limits, request timeouts and server errors are worth retrying."""
    return status_code in (408, 429) or status_code >= 500


def status_error(status_code: int, message: str, cause: Exception | None = None) -> ProviderError:
    if is_transient_status(status_code):
        return TransientProviderError(message, cause, status_code=status_code)
    return FatalProviderError(message, cause, status_code=status_code)


class AnthropicProvider:
    """Claude via the Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        max_tokens: int = API_CONSTANTS["anthropic"]["default_max_tokens"],
        client: AsyncAnthropic | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        # Retries are handled by RequestExecutor
        self.client = client or AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(self, system: str, prompt: str) -> Completion:
        logger.debug("Anthropic request: model=%s, %d prompt chars", self.model, len(prompt))
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise status_error(e.status_code, f"Anthropic API error {e.status_code}: {e.message}", e) from e
        except anthropic.APIConnectionError as e:
            raise TransientProviderError(f"Anthropic connection error: {e}", e) from e

        usage = Usage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        if response.stop_reason == "refusal":
            raise FatalProviderError("Anthropic declined the request (content policy)", usage=usage)

        text = "".join(block.text for block in response.content if block.type == "text")
        return Completion(text=text, usage=usage)

    async def aclose(self):
        await self.client.close()


class OpenAIProvider:
    """OpenAI chat completions over plain HTTP."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        max_tokens: int = API_CONSTANTS["openai"]["default_max_tokens"],
        base_url: str = API_CONSTANTS["openai"]["base_url"],
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def complete(self, system: str, prompt: str) -> Completion:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        logger.debug("OpenAI request: model=%s, %d prompt chars", self.model, len(prompt))

        try:
            response = await self.client.post(self.base_url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise status_error(
                status_code, f"OpenAI API error {status_code}: {e.response.text[:500]}", e
            ) from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"OpenAI connection error: {e}", e) from e

        try:
            data = response.json()
            choice = data["choices"][0]
            text = choice["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise FatalProviderError(f"Malformed OpenAI response: {e}", e) from e

        usage_data = data.get("usage") or {}
        usage = Usage(
            input_tokens=usage_data.get("prompt_tokens", 0),
            output_tokens=usage_data.get("completion_tokens", 0),
        )

        if choice.get("finish_reason") == "content_filter":
            raise FatalProviderError("OpenAI rejected the request (content filter)", usage=usage)

        return Completion(text=text, usage=usage)

    async def aclose(self):
        await self.client.aclose()


def create_provider(config: ProviderConfig, timeout: float = 120.0) -> Provider:
    """Build the client for a provider config.

    Raises:
        ConfigurationError: If the API key is empty or the provider type is unknown.
    """
    if not config.api_key:
        raise ConfigurationError(f"No API key configured for {config.type}")

    if config.type == "anthropic":
        return AnthropicProvider(config.api_key, config.model, timeout=timeout)
    if config.type == "openai":
        return OpenAIProvider(config.api_key, config.model, timeout=timeout)

    raise ConfigurationError(f"Unknown provider: {config.type}")
