"""Configuration management for Meow."""

from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from meow.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.meow/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ProviderConfig(BaseModel):
    """A configured chat-completion provider."""

    name: str = "ollama"
    base_url: str = "http://127.0.0.1:11434"
    api_type: Literal["ollama", "openai"] = "ollama"
    api_key: str = ""

    def is_https(self) -> bool:
        """Whether the provider is reached over TLS."""
        return self.base_url.strip().lower().startswith("https://")

    def host_port(self) -> tuple[str, int]:
        """Return (host, port) parsed from the base URL."""
        parts = urlsplit(self.base_url.strip())
        if parts.scheme not in {"http", "https"} or not parts.hostname:
            raise ConfigurationError(f"Invalid provider URL: {self.base_url!r}")
        default_port = 443 if parts.scheme == "https" else 80
        return parts.hostname, parts.port or default_port

    def base_path(self) -> str:
        """Path component of the base URL without trailing slash."""
        return urlsplit(self.base_url.strip()).path.rstrip("/")


class ModelConfig(BaseModel):
    """Active model selection."""

    model: str = "llama3.2"
    provider: str = "ollama"
    max_tokens: int = 16384
    context_window: int = 128000


class HistoryConfig(BaseModel):
    """Conversation history bounds."""

    max_messages: int = 40
    max_tokens: int = 96000
    compaction_warning_tokens: int = 64000


class TransportConfig(BaseModel):
    """Streaming transport retry and timeout behavior."""

    max_retries: int = 10
    backoff_base: float = 0.5
    backoff_max: float = 16.0
    stall_timeout: float = 60.0
    write_timeout: float = 30.0
    connect_timeout: float = 15.0
    read_chunk_size: int = 4096


class ToolsConfig(BaseModel):
    """Tool execution ceilings."""

    enabled: list[str] = Field(default_factory=list)
    sandbox_root: str = "."
    timeout: float = 30.0
    shell_timeout: float = 30.0
    http_timeout: float = 30.0
    max_output_bytes: int = 1024 * 1024
    preview_threshold: int = 32 * 1024
    preview_chars: int = 4096
    max_file_bytes: int = 512 * 1024
    spill_dir: str = "tmp"


class SchedulerConfig(BaseModel):
    """Cooperative scheduler timing."""

    max_iterations: int = 20
    active_poll_interval: float = 0.01
    idle_poll_interval: float = 0.05
    tick_every: int = 50


class InputQueueConfig(BaseModel):
    """Follow-up input queued while a turn is running."""

    mode: Literal["followup", "collect"] = "followup"
    cap: int = 20
    drop: Literal["old", "new", "summarize"] = "summarize"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Meow."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    providers: list[ProviderConfig] = Field(default_factory=lambda: [ProviderConfig()])
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    input_queue: InputQueueConfig = Field(default_factory=InputQueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    system_prompt: str = ""

    model_config = SettingsConfigDict(
        env_prefix="MEOW_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    def get_provider(self, name: str) -> ProviderConfig | None:
        """Look up a configured provider by name (case-insensitive)."""
        wanted = (name or "").strip().lower()
        for provider in self.providers:
            if provider.name.strip().lower() == wanted:
                return provider
        return None

    def current_provider(self) -> ProviderConfig:
        """Provider selected by `model.provider`, falling back to the first one."""
        provider = self.get_provider(self.model.provider)
        if provider is not None:
            return provider
        if not self.providers:
            raise ConfigurationError("No providers configured")
        return self.providers[0]

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must hold a mapping: {config_path}")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from the default locations (local first, then home)."""
        return cls.from_yaml(cls.resolve_default_config_path())

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_sandbox_root(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve the sandbox root, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.tools.sandbox_root).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()


# Global config instance, used by the CLI entry point only
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_yaml()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
