"""
imagegen_core - Configuration Management
========================================

Configuration using pydantic-settings for type-safe environment variable parsing.
All settings can be overridden via environment variables with the IMAGEGEN_ prefix.

Example:
    IMAGEGEN_LOCAL__URL=http://192.168.1.100:8188
    IMAGEGEN_PLATFORM__API_TOKEN=...
    IMAGEGEN_OPENAI__API_KEY=sk-...
    IMAGEGEN_GENERATION__DEFAULT_BACKEND=local
    IMAGEGEN_LOGGING__LEVEL=DEBUG

Features:
- Nested config via double underscore delimiter (__)
- .env file support
- SecretStr for credentials
- Cached settings instance via @lru_cache
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    # Sub-configs
    "LocalPipelineConfig",
    "PlatformConfig",
    "OpenAIConfig",
    "GenerationConfig",
    "StorageConfig",
    "RetryConfig",
    "LoggingConfig",
    "HttpConfig",
    "BACKEND_NAMES",
]

BACKEND_NAMES = ("platform", "openai", "local")

APP_NAME = "imagegen"


# =============================================================================
# CONFIGURATION CLASSES
# =============================================================================


class LocalPipelineConfig(BaseSettings):
    """Local node-graph pipeline (ComfyUI-style HTTP API)."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_LOCAL__",
        env_ignore_empty=True,
    )

    url: str = "http://localhost:8188"
    default_workflow: str | None = None
    probe_timeout: float = 3.0
    poll_interval: float = 2.0
    timeout_queue: float = 10.0
    timeout_image: float = 60.0
    # Rewrite the latent node's width/height from the request's aspect ratio
    apply_aspect_ratio: bool = False


class PlatformConfig(BaseSettings):
    """Hosted generation platform (submit, then poll status)."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_PLATFORM__",
        env_ignore_empty=True,
    )

    base_url: str | None = None
    api_token: SecretStr | None = None
    submit_path: str = "/api/generate"
    status_path: str = "/api/generate/status/{generation_id}"
    poll_interval: float = 3.0
    default_model: str | None = None
    default_aspect_ratio: str = "1:1"
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_token and self.api_token.get_secret_value())


class OpenAIConfig(BaseSettings):
    """OpenAI-compatible images API."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_OPENAI__",
        env_ignore_empty=True,
    )

    api_key: SecretStr | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-image-1"
    timeout: float = 120.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.get_secret_value())


class GenerationConfig(BaseSettings):
    """Orchestration defaults shared by all backends."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_GENERATION__",
        env_ignore_empty=True,
    )

    default_backend: str | None = None
    deadline: float = 300.0
    progress_interval: float = 15.0
    progress_callback_timeout: float = 5.0
    remote_concurrency: int = Field(default=4, ge=1)
    local_concurrency: int = Field(default=1, ge=1)

    @field_validator("default_backend")
    @classmethod
    def _known_backend(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in BACKEND_NAMES:
            raise ValueError(f"default_backend must be one of {', '.join(BACKEND_NAMES)}")
        return v


def _default_workflows_dir() -> Path:
    return Path.home() / ".config" / APP_NAME / "workflows"


def _default_output_dir() -> Path:
    return Path.home() / "Pictures" / APP_NAME


class StorageConfig(BaseSettings):
    """Where templates live and where generated images are saved."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_STORAGE__",
        env_ignore_empty=True,
    )

    workflows_dir: Path = Field(default_factory=_default_workflows_dir)
    output_dir: Path = Field(default_factory=_default_output_dir)
    save_outputs: bool = True

    @field_validator("workflows_dir", "output_dir")
    @classmethod
    def _expand_user(cls, v: Path) -> Path:
        return Path(v).expanduser()


class RetryConfig(BaseSettings):
    """Retry settings for idempotent downloads."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_RETRY__",
        env_ignore_empty=True,
    )

    max_retries: int = 3
    backoff_base: float = 1.5
    backoff_max: float = 30.0
    backoff_jitter: bool = True


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_LOGGING__",
        env_ignore_empty=True,
    )

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file: str | None = None
    json_output: bool = False


class HttpConfig(BaseSettings):
    """HTTP client configuration (httpx)."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_HTTP__",
        env_ignore_empty=True,
    )

    max_connections: int = 100
    max_keepalive_connections: int = 20
    keepalive_expiry: float = 5.0
    http2: bool = True
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    write_timeout: float = 30.0
    pool_timeout: float = 10.0


class Settings(BaseSettings):
    """
    Main settings container.

    Usage:
        from imagegen_core.config import get_settings

        settings = get_settings()
        print(settings.local.url)
        print(settings.generation.deadline)
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGEGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        env_nested_delimiter="__",
        extra="ignore",
    )

    local: LocalPipelineConfig = Field(default_factory=LocalPipelineConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)

    version: str = "1.0.0"
    name: str = "imagegen_core"

    def to_dict(self) -> dict:
        """Export settings as dictionary. Credentials are reported as set/unset only."""
        return {
            "version": self.version,
            "local": {
                "url": self.local.url,
                "default_workflow": self.local.default_workflow,
                "apply_aspect_ratio": self.local.apply_aspect_ratio,
            },
            "platform": {
                "base_url": self.platform.base_url,
                "configured": self.platform.is_configured,
            },
            "openai": {
                "base_url": self.openai.base_url,
                "model": self.openai.model,
                "configured": self.openai.is_configured,
            },
            "generation": {
                "default_backend": self.generation.default_backend,
                "deadline": self.generation.deadline,
                "remote_concurrency": self.generation.remote_concurrency,
                "local_concurrency": self.generation.local_concurrency,
            },
            "storage": {
                "workflows_dir": str(self.storage.workflows_dir),
                "output_dir": str(self.storage.output_dir),
                "save_outputs": self.storage.save_outputs,
            },
            "logging": {"level": self.logging.level, "json_output": self.logging.json_output},
            "http": {"http2": self.http.http2, "max_connections": self.http.max_connections},
        }


# =============================================================================
# CACHED SETTINGS INSTANCE
# =============================================================================


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Call reload_settings() (or get_settings.cache_clear()) to re-read the environment.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload all settings from environment variables."""
    get_settings.cache_clear()
    return get_settings()
