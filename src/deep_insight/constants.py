"""Provider endpoints, model registry and token limits."""

from .models import ModelConfig

CHARS_PER_TOKEN = 4

MODEL_CONFIGS: dict[str, ModelConfig] = {
    # Anthropic
    "claude-3-5-sonnet-latest": ModelConfig(
        max_tokens=200000,
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.075,
        display_name="Claude 3.5 Sonnet",
        context_window=200000,
    ),
    "claude-3-5-haiku-latest": ModelConfig(
        max_tokens=200000,
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        display_name="Claude 3.5 Haiku",
        context_window=200000,
    ),
    # OpenAI
    "gpt-4o": ModelConfig(
        max_tokens=128000,
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        display_name="GPT-4o",
        context_window=128000,
    ),
    "gpt-4o-mini": ModelConfig(
        max_tokens=16385,
        input_cost_per_1k=0.0015,
        output_cost_per_1k=0.002,
        display_name="GPT-4o mini",
        context_window=16385,
    ),
}

AI_MODELS = {
    "anthropic": {
        "claude-3-5-sonnet-latest": "Claude 3.5 Sonnet (Powerful)",
        "claude-3-5-haiku-latest": "Claude 3.5 Haiku (Affordable)",
    },
    "openai": {
        "gpt-4o": "GPT-4o Flagship (Powerful)",
        "gpt-4o-mini": "GPT-4o mini (Affordable)",
    },
}

API_CONSTANTS = {
    # Endpoint and version header come from the anthropic SDK
    "anthropic": {
        "default_max_tokens": 8192,
    },
    "openai": {
        "base_url": "https://api.openai.com/v1/chat/completions",
        "default_max_tokens": 4096,
    },
}

# Fixed reservations subtracted from the request budget when planning chunks
TOKEN_LIMITS = {
    "system_prompt": 1000,
    "user_prompt": 500,
    "response": 10000,
    "xml_tags": 200,
}

UI_MESSAGES = {
    "processing": [
        "Analyzing your notes...",
        "Extracting insights...",
        "Connecting ideas...",
        "Processing content...",
        "Synthesizing information...",
    ],
    "success": "Analysis complete!",
    "combining": "Combining multiple sections...",
    "network_error": "Connection error: please check your network",
    "api_error": "API error: please check your settings",
    "rate_limit": "Rate limit reached: please try again later",
}


def get_model_config(model: str, provider: str | None = None) -> ModelConfig:
    """Look up a model, falling back to the smallest known model of its provider."""
    if model in MODEL_CONFIGS:
        return MODEL_CONFIGS[model]

    fallback = "gpt-4o-mini" if provider == "openai" else "claude-3-5-haiku-latest"
    base = MODEL_CONFIGS[fallback]
    return ModelConfig(
        max_tokens=base.max_tokens,
        input_cost_per_1k=base.input_cost_per_1k,
        output_cost_per_1k=base.output_cost_per_1k,
        display_name=model,
        context_window=base.context_window,
    )
