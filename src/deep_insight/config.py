"""Persisted settings and per-run configuration."""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

from .collector import Vault
from .errors import ConfigurationError
from .models import Prompts, ProviderConfig, RunConfig, TestModeConfig
from .prompts import DEFAULT_PROMPTS

logger = logging.getLogger(__name__)

SETTINGS_FILE = Path.home() / ".deep-insight" / "settings.json"

API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}

INSERT_POSITIONS = ("top", "bottom", "cursor")


@dataclass
class ProviderSettings:
    type: str = "anthropic"
    api_key: str = ""
    model: str = "claude-3-5-haiku-latest"


@dataclass
class TestModeSettings:
    __test__ = False

    enabled: bool = False
    max_files: int | None = 5
    max_tokens: int | None = 1000


@dataclass
class Settings:
    """User settings, stored as JSON.

    Prompt paths point at notes inside the vault; when empty the matching
    default prompt text is used.
    """

    provider: ProviderSettings = field(default_factory=ProviderSettings)
    system_prompt_path: str = ""
    user_prompt_path: str = ""
    combination_prompt_path: str = ""
    exclude_folders: list[str] = field(default_factory=lambda: ["templates", "archive"])
    max_tokens_per_request: int = 90000
    default_system_prompt: str = DEFAULT_PROMPTS["system"]
    default_user_prompt: str = DEFAULT_PROMPTS["user"]
    default_combination_prompt: str = DEFAULT_PROMPTS["combination"]
    retry_attempts: int = 1
    show_cost_summary: bool = True
    test_mode: TestModeSettings = field(default_factory=TestModeSettings)
    insert_position: str = "bottom"
    max_concurrency: int = 1
    request_timeout: float = 120.0

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from stored data, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if isinstance(values.get("provider"), dict):
            values["provider"] = ProviderSettings(**_known(ProviderSettings, values["provider"]))
        if isinstance(values.get("test_mode"), dict):
            values["test_mode"] = TestModeSettings(**_known(TestModeSettings, values["test_mode"]))
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)

    def resolve_api_key(self) -> str:
        """Stored key, or the provider's environment variable."""
        if self.provider.api_key:
            return self.provider.api_key
        env_var = API_KEY_ENV.get(self.provider.type)
        return os.environ.get(env_var, "") if env_var else ""

    def validate(self):
        """Raise ConfigurationError for values a run cannot use."""
        if self.provider.type not in API_KEY_ENV:
            raise ConfigurationError(f"Unknown provider: {self.provider.type}")
        if self.insert_position not in INSERT_POSITIONS:
            raise ConfigurationError(f"Invalid insert position: {self.insert_position}")
        if self.max_tokens_per_request <= 0:
            raise ConfigurationError("max_tokens_per_request must be positive")
        if self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts cannot be negative")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")

    def load_prompts(self, vault: Vault | None = None) -> Prompts:
        """Read prompt notes from the vault, falling back to the default texts."""
        return Prompts(
            system=_read_prompt(vault, self.system_prompt_path, self.default_system_prompt),
            user=_read_prompt(vault, self.user_prompt_path, self.default_user_prompt),
            combination=_read_prompt(vault, self.combination_prompt_path, self.default_combination_prompt),
        )

    def to_run_config(self, vault: Vault | None = None, require_api_key: bool = True) -> RunConfig:
        """Freeze the settings into the configuration for one run.

        Raises:
            ConfigurationError: If settings are invalid or no API key is available.
        """
        self.validate()
        api_key = self.resolve_api_key()
        if require_api_key and not api_key:
            raise ConfigurationError(
                f"No API key for {self.provider.type}. Set it with 'deep-insight config set api_key ...' "
                f"or the {API_KEY_ENV[self.provider.type]} environment variable."
            )

        return RunConfig(
            provider=ProviderConfig(type=self.provider.type, api_key=api_key, model=self.provider.model),
            prompts=self.load_prompts(vault),
            max_tokens_per_request=self.max_tokens_per_request,
            retry_attempts=self.retry_attempts,
            test_mode=TestModeConfig(
                enabled=self.test_mode.enabled,
                max_files=self.test_mode.max_files,
                max_tokens=self.test_mode.max_tokens,
            ),
            exclude_folders=tuple(f for f in self.exclude_folders if f.strip()),
            insert_position=self.insert_position,
            max_concurrency=self.max_concurrency,
            request_timeout=self.request_timeout,
        )


def _known(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _read_prompt(vault: Vault | None, path: str, default: str) -> str:
    if not path or vault is None:
        return default
    try:
        text = vault.read_note(path)
    except OSError as e:
        raise ConfigurationError(f"Failed to read prompt note {path}: {e}", e) from e
    return text if text.strip() else default


def load_settings(path: Path = SETTINGS_FILE) -> Settings:
    """Load settings, returning defaults when the file does not exist."""
    if not path.exists():
        return Settings()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Settings file {path} is not valid JSON: {e}", e) from e
    return Settings.from_dict(data)


def save_settings(settings: Settings, path: Path = SETTINGS_FILE):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2))
    logger.debug("Saved settings to %s", path)


# Keys accepted by `config set`, with their parsers
SETTABLE_KEYS = {
    "provider": lambda v: v,
    "api_key": lambda v: v,
    "model": lambda v: v,
    "system_prompt_path": lambda v: v,
    "user_prompt_path": lambda v: v,
    "combination_prompt_path": lambda v: v,
    "exclude_folders": lambda v: [f.strip() for f in v.split(",") if f.strip()],
    "max_tokens_per_request": int,
    "retry_attempts": int,
    "show_cost_summary": lambda v: v.lower() in ("1", "true", "yes", "on"),
    "test_mode": lambda v: v.lower() in ("1", "true", "yes", "on"),
    "test_mode_max_files": int,
    "test_mode_max_tokens": int,
    "insert_position": lambda v: v,
    "max_concurrency": int,
    "request_timeout": float,
}


def set_value(settings: Settings, key: str, raw: str) -> Settings:
    """Apply one `config set` assignment.

    Raises:
        ConfigurationError: For unknown keys, unparsable values or invalid results.
    """
    if key not in SETTABLE_KEYS:
        raise ConfigurationError(f"Unknown setting: {key}")
    try:
        value = SETTABLE_KEYS[key](raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {key}: {raw}", e) from e

    if key == "provider":
        settings.provider.type = value
    elif key == "api_key":
        settings.provider.api_key = value
    elif key == "model":
        settings.provider.model = value
    elif key == "test_mode":
        settings.test_mode.enabled = value
    elif key == "test_mode_max_files":
        settings.test_mode.max_files = value
    elif key == "test_mode_max_tokens":
        settings.test_mode.max_tokens = value
    else:
        setattr(settings, key, value)

    settings.validate()
    return settings
