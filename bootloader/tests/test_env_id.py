"""Tests for environment id assignment."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from bootloader._env_id import EnvIDManager, validate_env_id
from bootloader._errors import ValidationError
from bootloader._models import State


@pytest.fixture
def manager() -> EnvIDManager:
    return EnvIDManager(
        clock=lambda: datetime(2018, 3, 4, 5, 6, tzinfo=UTC),
        choose=lambda words: words[0],
    )


def test_generates_word_and_timestamp(manager: EnvIDManager) -> None:
    assert manager.generate() == "bbl-env-lake-2018-03-04t05-06z"


def test_sync_assigns_once(manager: EnvIDManager) -> None:
    first = manager.sync(State())

    assert first.env_id == "bbl-env-lake-2018-03-04t05-06z"
    assert manager.sync(first) is first


def test_sync_uses_requested_name(manager: EnvIDManager) -> None:
    assert manager.sync(State(), "Prod-East").env_id == "prod-east"


def test_sync_accepts_same_name_on_rerun(manager: EnvIDManager) -> None:
    state = State(env_id="prod-east")

    assert manager.sync(state, "prod-east") is state


def test_sync_rejects_rename(manager: EnvIDManager) -> None:
    with pytest.raises(ValidationError, match="Current name is prod-east"):
        manager.sync(State(env_id="prod-east"), "prod-west")


@pytest.mark.parametrize("name", ["", "   ", "-leading", "trailing-", "under_score"])
def test_invalid_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_env_id(name)
