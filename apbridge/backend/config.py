"""Configuration helpers for backend runtime and live bridge config."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CHAT_TYPES = [
    2110,  # general items
    2238,  # currency / reward notifications
]


@dataclass(frozen=True)
class BackendSettings:
    environment: str
    config_path: str | None
    host: str
    port: int
    log_level: str

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


def load_settings() -> BackendSettings:
    port_raw = os.getenv("APBRIDGE_PORT", "8000")
    return BackendSettings(
        environment=os.getenv("APBRIDGE_ENVIRONMENT", "production"),
        config_path=os.getenv("APBRIDGE_CONFIG_PATH"),
        host=os.getenv("APBRIDGE_HOST", "127.0.0.1"),
        port=int(port_raw),
        log_level=os.getenv("APBRIDGE_LOG_LEVEL", "INFO"),
    )


class RewardRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    multiplier: Decimal = Field(ge=0)


class QuestingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    chat_types: list[int] = Field(default_factory=lambda: list(DEFAULT_CHAT_TYPES))
    items: list[RewardRule] = Field(default_factory=list)


class BridgeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "archipelago.gg:12345"
    slot: str = ""
    display_chat_messages: bool = True
    display_found_hint_messages: bool = True
    display_join_leave_messages: bool = True
    display_item_sent_messages: bool = True
    display_item_received_messages: bool = True
    questing: QuestingConfig = Field(default_factory=QuestingConfig)


class ConfigSource(Protocol):
    def current(self) -> BridgeConfig:
        """Return the configuration snapshot valid at the instant of the call."""


@dataclass
class StaticConfigSource:
    config: BridgeConfig = field(default_factory=BridgeConfig)

    def current(self) -> BridgeConfig:
        return self.config

    def update(self, config: BridgeConfig) -> None:
        self.config = config


@dataclass
class JsonFileConfigSource:
    """Config backed by a JSON file, re-read whenever the file changes on disk."""

    path: Path

    def __post_init__(self) -> None:
        self._snapshot = BridgeConfig()
        self._mtime: float | None = None

    def current(self) -> BridgeConfig:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return self._snapshot
        if mtime != self._mtime:
            self._reload(mtime)
        return self._snapshot

    def _reload(self, mtime: float) -> None:
        self._mtime = mtime
        try:
            raw = self.path.read_text(encoding="utf-8")
            self._snapshot = BridgeConfig.model_validate_json(raw)
        except (OSError, ValidationError) as exc:
            logger.warning("Keeping previous bridge config", path=str(self.path), error=str(exc))
            return
        logger.info("Loaded bridge config", path=str(self.path), rules=len(self._snapshot.questing.items))


def create_config_source(config_path: str | None) -> ConfigSource:
    if config_path:
        return JsonFileConfigSource(path=Path(config_path))
    return StaticConfigSource()
