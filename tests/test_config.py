"""Tests for ptyhub.config.PtyHubConfig."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ptyhub.config import EventConfig, PtyHubConfig

_ENV_VARS = (
    "PTYHUB_EVENT_CAPACITY",
    "PTYHUB_EVENT_OVERFLOW",
    "PTYHUB_READ_CHUNK_SIZE",
    "PTYHUB_TERM",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        config = PtyHubConfig()
        assert config.events.capacity == 100
        assert config.events.overflow == "block"
        assert config.session.read_chunk_size == 4096
        assert config.session.term == "xterm"
        assert config.session.env == {}

    def test_load_without_file(self) -> None:
        config = PtyHubConfig.load()
        assert config.events.capacity == 100

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = PtyHubConfig.load(str(tmp_path / "nope.json"))
        assert config == PtyHubConfig()


class TestValidation:
    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            EventConfig(capacity=0)

    def test_overflow_choices(self) -> None:
        with pytest.raises(ValidationError):
            EventConfig(overflow="explode")  # type: ignore[arg-type]


class TestLoad:
    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "ptyhub.json"
        path.write_text(
            json.dumps(
                {
                    "events": {"capacity": 10, "overflow": "drop"},
                    "session": {"term": "dumb", "env": {"FOO": "bar"}},
                }
            )
        )
        config = PtyHubConfig.load(str(path))
        assert config.events.capacity == 10
        assert config.events.overflow == "drop"
        assert config.session.term == "dumb"
        assert config.session.env == {"FOO": "bar"}

    def test_env_overrides_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "ptyhub.json"
        path.write_text(json.dumps({"events": {"capacity": 10}}))
        monkeypatch.setenv("PTYHUB_EVENT_CAPACITY", "42")
        monkeypatch.setenv("PTYHUB_EVENT_OVERFLOW", "DROP")
        monkeypatch.setenv("PTYHUB_READ_CHUNK_SIZE", "1024")
        monkeypatch.setenv("PTYHUB_TERM", "vt100")
        config = PtyHubConfig.load(str(path))
        assert config.events.capacity == 42
        assert config.events.overflow == "drop"
        assert config.session.read_chunk_size == 1024
        assert config.session.term == "vt100"
