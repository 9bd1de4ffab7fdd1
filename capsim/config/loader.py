import logging
import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from capsim.core.constants import (
    BUS_ENV_VAR, DEFAULT_BUS, DEFAULT_NAME, DEFAULT_PEER_TIMEOUT, DEFAULT_QUEUE_SIZE,
    DEFAULT_READY_MESSAGE, STREAM_NAMES,
)
from capsim.core.errors import ConfigurationError
from capsim.core.packet import NodeIdentity


class StreamConfig(BaseModel):
    enabled: bool = True
    period: Optional[float] = None   # None keeps the stream's built-in period

    @field_validator("period")
    @classmethod
    def _positive_period(cls, v):
        if v is not None and v <= 0:
            raise ValueError("period must be positive")
        return v


class SimConfig(BaseModel):
    name: str = DEFAULT_NAME
    bus: str = DEFAULT_BUS
    debug: bool = False
    ready_message: Optional[str] = None
    log_level: str = "INFO"
    peer_timeout: float = DEFAULT_PEER_TIMEOUT
    queue_size: int = DEFAULT_QUEUE_SIZE
    streams: Dict[str, StreamConfig] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _single_token(cls, v):
        if not v or any(c.isspace() for c in v):
            raise ValueError("node name must be a single non-empty token")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v):
        level = str(v).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("queue_size")
    @classmethod
    def _positive_queue(cls, v):
        if v < 1:
            raise ValueError("queue_size must be >= 1")
        return v

    @field_validator("streams")
    @classmethod
    def _known_streams(cls, v):
        unknown = sorted(set(v) - set(STREAM_NAMES))
        if unknown:
            raise ValueError(f"unknown streams {unknown}; expected any of {list(STREAM_NAMES)}")
        return v

    def stream(self, name: str) -> StreamConfig:
        return self.streams.get(name) or StreamConfig()

    def effective_ready_message(self) -> str:
        return self.ready_message or DEFAULT_READY_MESSAGE

    def identity(self) -> NodeIdentity:
        return NodeIdentity(name=self.name, bus=self.bus, debug=self.debug)


def parse_debug_flag(value: Optional[str]) -> bool:
    """Only 'true' and '1' enable the local message variants."""
    return value in ("true", "1")


def load_config(path: Optional[str] = None, **overrides) -> SimConfig:
    """Read an optional YAML file, then the IVYBUS env var, then overrides (None skipped)."""
    data = {}
    if path:
        if not os.path.exists(path):
            raise ConfigurationError(f"Config not found: {path}")
        try:
            with open(path, "r") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"config {path} must be a mapping, got {type(data).__name__}")
    if not data.get("bus") and os.getenv(BUS_ENV_VAR):
        data["bus"] = os.environ[BUS_ENV_VAR]
    for key, value in overrides.items():
        if value is not None:
            data[key] = value
    try:
        return SimConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
