"""Environment identifier validation and generation."""

from __future__ import annotations

import dataclasses
import random
import re
from collections import abc as cabc
from datetime import UTC, datetime

from bootloader._errors import ValidationError
from bootloader._models import State

_ENV_ID_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")

_WORDS = (
    "lake",
    "river",
    "meadow",
    "canyon",
    "harbor",
    "summit",
    "prairie",
    "glacier",
    "forest",
    "island",
    "tundra",
    "valley",
)


def validate_env_id(name: str) -> str:
    """Validate and normalize a requested environment name.

    Parameters
    ----------
    name
        Environment name to validate.

    Returns
    -------
    str
        Normalized environment name.

    Raises
    ------
    ValidationError
        If the name is invalid.

    Examples
    --------
    >>> validate_env_id(" Lake-1 ")
    'lake-1'
    """
    name = name.strip().lower()
    if not name:
        msg = "environment name must not be blank"
        raise ValidationError(msg)
    if not _ENV_ID_PATTERN.match(name):
        msg = "environment name must contain only lowercase letters, numbers, and hyphens"
        raise ValidationError(msg)
    return name


class EnvIDManager:
    """Assign the environment identifier exactly once.

    Parameters
    ----------
    clock
        Returns the current UTC time; injected for tests.
    choose
        Picks a word from a sequence; injected for tests.
    """

    def __init__(
        self,
        clock: cabc.Callable[[], datetime] | None = None,
        choose: cabc.Callable[[cabc.Sequence[str]], str] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._choose = choose or random.choice

    def generate(self) -> str:
        """Return a fresh ``bbl-env-<word>-<timestamp>`` identifier."""

        stamp = self._clock().strftime("%Y-%m-%dt%H-%Mz")
        return f"bbl-env-{self._choose(_WORDS)}-{stamp}"

    def sync(self, state: State, name: str = "") -> State:
        """Return *state* with an environment id set.

        An existing id is kept; asking for a different one is rejected.
        """

        if state.env_id:
            if name and validate_env_id(name) != state.env_id:
                msg = (
                    f"The director name cannot be changed for an existing "
                    f"environment. Current name is {state.env_id}."
                )
                raise ValidationError(msg)
            return state
        env_id = validate_env_id(name) if name else self.generate()
        return dataclasses.replace(state, env_id=env_id)


__all__ = ["EnvIDManager", "validate_env_id"]
