"""Configuration management for the agent bridge."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ServerConfig(BaseModel):
    """Server configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8787


class CliConfig(BaseModel):
    """How the agent CLI is launched.

    Either a direct binary (``path``) or a node entry plus script
    (``entry`` + ``script``); the latter wins when both halves are set.
    """

    model_config = ConfigDict(extra="forbid")

    path: str = "claude"
    entry: Optional[str] = None
    script: Optional[str] = None
    timeout_ms: int = 300_000
    max_budget_usd: float = 5.0
    allowed_tools: List[str] = ["Read", "Glob", "Grep", "WebSearch", "WebFetch"]
    dangerously_skip_permissions: bool = False
    allowed_directories: Optional[List[str]] = None
    extra_path: str = ""
    stderr_limit: int = 500
    terminate_grace: float = 3.0

    @field_validator("allowed_tools", "allowed_directories", mode="before")
    @classmethod
    def _csv_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @property
    def uses_node_entry(self) -> bool:
        return bool(self.entry and self.script)


class SessionsConfig(BaseModel):
    """Session registry configuration."""

    model_config = ConfigDict(extra="forbid")

    file_path: str = "data/sessions.json"
    max_age_ms: int = 24 * 60 * 60 * 1000


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"


class Settings(BaseSettings):
    """Main settings class with YAML and environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    cli: CliConfig = Field(default_factory=CliConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_model: str = "claude-code"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment must still override them
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def _config_candidates() -> List[Path]:
    # gateway/agent_bridge/config.py -> repo root is two levels above the package
    current_file = Path(__file__).resolve()
    project_root = current_file.parent.parent.parent
    return [
        project_root / "config" / "settings.yaml",
        current_file.parent.parent / "config" / "settings.yaml",
    ]


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from the YAML file (``bridge:`` section) and the environment."""
    candidates = [Path(config_path)] if config_path else _config_candidates()

    yaml_config: Dict[str, Any] = {}
    for path in candidates:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                full_config = yaml.safe_load(f) or {}
            yaml_config = full_config.get("bridge", {}) or {}
            break

    return Settings(**yaml_config)


# Global settings instance
settings = load_settings()
