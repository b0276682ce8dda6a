"""Configuration — Pydantic models for ptyhub settings."""

from __future__ import annotations

import json
import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class EventConfig(BaseModel):
    """Event queue configuration."""

    capacity: int = Field(
        default=100, ge=1, description="Max pending notification events"
    )
    overflow: Literal["block", "drop"] = Field(
        default="block",
        description=(
            "What producers do when the queue is full: 'block' suspends the "
            "reader until the host drains, 'drop' discards the event and "
            "counts it (for polling hosts)."
        ),
    )


class SessionConfig(BaseModel):
    """Per-session PTY configuration."""

    read_chunk_size: int = Field(
        default=4096, ge=1, description="Max bytes per read from the PTY master"
    )
    term: str = Field(default="xterm", description="TERM value for children")
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment for children"
    )


class PtyHubConfig(BaseModel):
    """Top-level ptyhub configuration."""

    events: EventConfig = Field(default_factory=EventConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PtyHubConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYHUB_EVENT_CAPACITY    - Event queue capacity
            PTYHUB_EVENT_OVERFLOW    - 'block' or 'drop'
            PTYHUB_READ_CHUNK_SIZE   - Read size for reader pipelines
            PTYHUB_TERM              - TERM value for spawned children
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        events = config_data.get("events", {})
        session = config_data.get("session", {})

        env_capacity = os.environ.get("PTYHUB_EVENT_CAPACITY")
        if env_capacity:
            events["capacity"] = int(env_capacity)

        env_overflow = os.environ.get("PTYHUB_EVENT_OVERFLOW")
        if env_overflow:
            events["overflow"] = env_overflow.lower()

        env_chunk = os.environ.get("PTYHUB_READ_CHUNK_SIZE")
        if env_chunk:
            session["read_chunk_size"] = int(env_chunk)

        env_term = os.environ.get("PTYHUB_TERM")
        if env_term:
            session["term"] = env_term

        if events:
            config_data["events"] = events
        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)
