"""
Configuration loading and validation.

Loads client configuration from a YAML file. The account password is read
from the environment variable the config names, never from the file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    verify_tls: bool = True
    request_timeout_seconds: int = 30
    feed_heartbeat_timeout_seconds: int = 90


class AccountConfig(BaseModel):
    email: str = ""
    password_env: str = "TODO_SYNC_PASSWORD"

    @property
    def password(self) -> str | None:
        return os.environ.get(self.password_env)


class SyncOptions(BaseModel):
    subscribe_to_changes: bool = True
    coalesce_window_seconds: float = Field(default=0.0, ge=0.0)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "text"


class MetricsConfig(BaseModel):
    """Health and metrics endpoint served while ``todo-sync watch`` runs."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9091


class SyncConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> SyncConfig:
    """Load and validate client configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return SyncConfig.model_validate(raw)
