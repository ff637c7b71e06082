from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from platformdirs import user_config_dir
from pydantic import BaseModel, ValidationError

APP_NAME = "sshman"

# Keys persisted to config.json; the paths and debug flag come from the environment
PERSISTED_KEYS = ("default_editor", "default_shell", "history_file", "log_level", "color_output", "connect_timeout")

log = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Application configuration with environment-derived defaults."""

    home: Path
    env_file: Path
    default_editor: str = "nano"
    default_shell: str = "/bin/bash"
    history_file: Path | None = None
    log_level: str = "info"
    color_output: bool = True
    connect_timeout: int = 10
    debug: bool = False

    @property
    def config_file(self) -> Path:
        return self.home / "config.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppConfig:
        env = os.environ if environ is None else environ
        home = Path(env.get("SSH_MANAGER_HOME") or user_config_dir(APP_NAME, appauthor=False)).expanduser()
        env_file = Path(env.get("SSH_MANAGER_ENV") or home / ".env").expanduser()
        return cls(
            home=home,
            env_file=env_file,
            default_editor=env.get("EDITOR") or "nano",
            default_shell=env.get("SHELL") or "/bin/bash",
            history_file=home / "history",
            debug=bool(env.get("SSH_MANAGER_DEBUG")),
        )

    def persisted(self) -> dict:
        return self.model_dump(mode="json", include=set(PERSISTED_KEYS))


def init_config(cfg: AppConfig) -> bool:
    """Create the config directory and a default config.json. Returns True if created."""
    cfg.home.mkdir(parents=True, exist_ok=True)
    if cfg.config_file.exists():
        return False
    save_settings(cfg)
    log.debug("Created default config: %s", cfg.config_file)
    return True


def load_settings(cfg: AppConfig) -> AppConfig:
    """Return cfg with values from config.json applied on top."""
    if not cfg.config_file.exists():
        return cfg
    try:
        data = json.loads(cfg.config_file.read_text(encoding="utf-8") or "{}")
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable %s: %s", cfg.config_file, e)
        return cfg
    if not isinstance(data, dict):
        return cfg
    updates = {k: v for k, v in data.items() if k in PERSISTED_KEYS}
    try:
        return AppConfig.model_validate({**cfg.model_dump(), **updates})
    except ValidationError as e:
        log.warning("Ignoring invalid values in %s: %s", cfg.config_file, e)
        return cfg


def save_settings(cfg: AppConfig) -> None:
    cfg.home.mkdir(parents=True, exist_ok=True)
    cfg.config_file.write_text(json.dumps(cfg.persisted(), ensure_ascii=False, indent=2), encoding="utf-8")


def set_setting(cfg: AppConfig, key: str, value: str) -> AppConfig:
    """Validate and persist one config.json value. Raises KeyError or ValidationError."""
    if key not in PERSISTED_KEYS:
        raise KeyError(key)
    updated = AppConfig.model_validate({**cfg.model_dump(), key: value})
    save_settings(updated)
    return updated
