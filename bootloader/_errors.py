"""Exception hierarchy for bootloader.

Every failure surfaced by the executors, managers and lifecycle commands
derives from :class:`BootloaderError` so the CLI can report any of them with a
single handler.

Examples
--------
>>> isinstance(ValidationError("--lb-type is required"), BootloaderError)
True
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bootloader._models import State

_DEBUG_HINT = "run again with --debug for additional debug output"


class BootloaderError(Exception):
    """Base error for bootloader operations.

    Parameters
    ----------
    message
        Human-readable error message describing the failure.
    """


class ValidationError(BootloaderError):
    """Raised for bad input before any external tool runs."""


class LBConflictError(ValidationError):
    """Raised when a different load balancer type is already attached.

    Examples
    --------
    >>> str(LBConflictError("concourse", "cf"))  # doctest: +ELLIPSIS
    'bbl already has a concourse load balancer attached, ... a new one'
    """

    def __init__(self, existing: str, requested: str) -> None:
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"bbl already has a {existing} load balancer attached, please "
            "remove the previous load balancer before attaching a new one"
        )


class EnvironmentNotFoundError(ValidationError):
    """Raised when a command needs an environment that does not exist."""


class VersionError(ValidationError):
    """Raised when an external tool is older than the supported minimum."""


class CommandError(BootloaderError):
    """Raised when a subprocess cannot be started."""


class ParseError(BootloaderError):
    """Raised when tool output (versions, JSON) cannot be decoded."""


class PersistenceError(BootloaderError):
    """Raised when the state directory cannot be read or written."""


class ExecutorError(BootloaderError):
    """Raised when a terraform invocation exits non-zero.

    The error keeps the path of the on-disk state file so the caller can
    recover the resources terraform already created before it failed.

    Parameters
    ----------
    message
        Description of the failed invocation.
    state_path
        Terraform state file written by the failed invocation, if any.
    debug
        Whether verbose diagnostics were streamed during the invocation.
    """

    def __init__(
        self,
        message: str,
        *,
        state_path: Path | None = None,
        debug: bool = False,
    ) -> None:
        self.state_path = state_path
        self.debug = debug
        if not debug:
            message = f"{message}\n{_DEBUG_HINT}"
        super().__init__(message)

    def read_tf_state(self) -> str:
        """Return the terraform state left on disk by the failed invocation."""

        if self.state_path is None or not self.state_path.exists():
            return ""
        return self.state_path.read_text(encoding="utf-8")


class InitError(ExecutorError):
    """Raised when ``terraform init`` or its file staging fails."""


class BoshRunError(BootloaderError):
    """Raised when a generated ``create-env``/``delete-env`` script fails."""

    def __init__(self, message: str, *, deployment: str) -> None:
        self.deployment = deployment
        super().__init__(message)


class ManagerError(BootloaderError):
    """Raised by the managers with the descriptor reflecting partial progress.

    Parameters
    ----------
    state
        Environment descriptor to persist after the failure.
    cause
        The underlying executor failure.
    """

    def __init__(self, state: State, cause: BaseException) -> None:
        self.state = state
        self.cause = cause
        super().__init__(str(cause))


class CombinedError(BootloaderError):
    """Aggregate of several failures, kept in the order they happened.

    Examples
    --------
    >>> str(CombinedError([RuntimeError("a"), RuntimeError("b")]))
    'the following errors occurred:\\na,\\nb'
    """

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: tuple[BaseException, ...] = tuple(errors)
        joined = ",\n".join(str(error) for error in self.errors)
        super().__init__(f"the following errors occurred:\n{joined}")


def combine_errors(*errors: BaseException | None) -> BaseException:
    """Combine *errors* into a single error without dropping any of them.

    ``None`` entries are skipped and nested :class:`CombinedError` values are
    flattened. A single remaining error is returned unchanged.

    Examples
    --------
    >>> combine_errors(None, ValueError("only")).args
    ('only',)
    >>> nested = CombinedError([ValueError("b"), ValueError("c")])
    >>> len(combine_errors(ValueError("a"), nested).errors)
    3
    """

    flattened: list[BaseException] = []
    for error in errors:
        if error is None:
            continue
        if isinstance(error, CombinedError):
            flattened.extend(error.errors)
        else:
            flattened.append(error)
    if not flattened:
        msg = "combine_errors requires at least one error"
        raise ValueError(msg)
    if len(flattened) == 1:
        return flattened[0]
    return CombinedError(flattened)


__all__ = [
    "BootloaderError",
    "BoshRunError",
    "CombinedError",
    "CommandError",
    "EnvironmentNotFoundError",
    "ExecutorError",
    "InitError",
    "LBConflictError",
    "ManagerError",
    "ParseError",
    "PersistenceError",
    "ValidationError",
    "VersionError",
    "combine_errors",
]
