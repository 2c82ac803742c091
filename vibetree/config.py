"""Configuration management for VibeTree."""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

log = logging.getLogger("vibetree.config")

DEFAULT_AI_TOOL = "claude"
DEFAULT_PORT = 5179


def get_vibetree_home() -> Path:
    """Get the directory holding VibeTree's config and database.

    Defaults to ~/.vibetree, overridable with VIBETREE_HOME.
    """
    override = os.environ.get("VIBETREE_HOME")
    if override:
        return Path(override)
    return Path.home() / ".vibetree"


def get_config_path() -> Path:
    """Get path to the process-wide config file."""
    return get_vibetree_home() / "config.yaml"


def normalize_path(path: str) -> str:
    """Strip trailing path separators (both / and \\)."""
    return path.rstrip("/\\") if path else ""


class AppConfig(BaseModel):
    """VibeTree configuration."""

    repo_path: str = ""  # Active repository
    ai_tool: str = DEFAULT_AI_TOOL
    copy_files: str = ""  # Newline-separated files copied into each new worktree
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    terminal_buffer_size: int = Field(default=1000, ge=1)  # Output chunks kept per terminal
    ai_settle_delay: float = Field(default=0.8, ge=0)  # Seconds to wait for the shell prompt
    shell: Optional[str] = None

    @field_validator("repo_path", mode="before")
    @classmethod
    def _normalize_repo_path(cls, v: object) -> object:
        if isinstance(v, str):
            return normalize_path(v)
        return v

    @field_validator("copy_files", mode="before")
    @classmethod
    def _coerce_copy_files(cls, v: object) -> object:
        """Accept a YAML list as well as a newline-separated string."""
        if v is None:
            return ""
        if isinstance(v, list):
            return "\n".join(str(item) for item in v)
        return v


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    updates: dict[str, object] = {}
    if os.environ.get("REPO_PATH"):
        updates["repo_path"] = normalize_path(os.environ["REPO_PATH"])
    if os.environ.get("AI_TOOL"):
        updates["ai_tool"] = os.environ["AI_TOOL"]
    if os.environ.get("VIBETREE_PORT"):
        try:
            updates["port"] = int(os.environ["VIBETREE_PORT"])
        except ValueError:
            log.warning("Ignoring invalid VIBETREE_PORT=%r", os.environ["VIBETREE_PORT"])
    if not updates:
        return config
    return config.model_copy(update=updates)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from config.yaml.

    Args:
        path: Path to the config file (default: ~/.vibetree/config.yaml)

    Returns:
        Loaded configuration (or defaults if the file is missing or unreadable),
        with environment overrides applied
    """
    config_file = path or get_config_path()

    if not config_file.exists():
        return _apply_env_overrides(AppConfig())

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f)
        config = AppConfig(**(data or {}))
    except Exception as e:
        log.error("Failed to load config from %s: %s", config_file, e)
        config = AppConfig()

    return _apply_env_overrides(config)


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Save configuration to config.yaml.

    Args:
        config: Configuration to persist
        path: Path to the config file (default: ~/.vibetree/config.yaml)
    """
    config_file = path or get_config_path()
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
    log.info("Saved config to %s", config_file)
