"""Subprocess helpers shared by the terraform and bosh executors."""

from __future__ import annotations

import logging
import os
import re
from collections import abc as cabc
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound

from bootloader._errors import CommandError, ParseError
from bootloader._models import CommandResult

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+\.\d+\.\d+")


def _validate_command_args(binary: str, args: cabc.Sequence[str]) -> None:
    """Validate CLI arguments before handing them to the OS.

    Newlines are allowed because PEM certificates travel as ``-var`` values.
    """

    for arg in args:
        if not isinstance(arg, str):
            msg = f"{binary} argument must be a string, got {type(arg).__name__}"
            raise CommandError(msg)
        if "\x00" in arg:
            msg = f"{binary} argument contains a NUL character"
            raise CommandError(msg)


class CommandRunner:
    """Run a single external binary through :mod:`plumbum`.

    Parameters
    ----------
    binary
        Executable name or path, resolved on ``PATH`` at call time.

    Examples
    --------
    >>> from pathlib import Path
    >>> CommandRunner("printf").run(["hello"], Path("."), capture=True).stdout
    'hello'
    """

    def __init__(self, binary: str) -> None:
        self.binary = binary

    def which(self) -> Path:
        """Return the absolute path of the binary."""

        if os.sep in self.binary:
            return Path(self.binary).resolve()
        try:
            return Path(str(local.which(self.binary)))
        except CommandNotFound as exc:
            msg = f"{self.binary} executable not found on PATH"
            raise CommandError(msg) from exc

    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult:
        """Execute the binary with *args* inside *cwd*.

        Parameters
        ----------
        args
            Command arguments (without the binary itself).
        cwd
            Working directory for the command.
        env
            Extra environment variables layered over the current environment.
        capture
            Capture stdout and stderr instead of streaming them to the
            terminal.

        Returns
        -------
        CommandResult
            Success flag, captured output and exit status.
        """

        _validate_command_args(self.binary, args)
        try:
            command = local[self.binary]
        except CommandNotFound as exc:
            msg = f"{self.binary} executable not found on PATH"
            raise CommandError(msg) from exc

        bound = command[list(args)]
        logger.debug("running %s %s (cwd=%s)", self.binary, " ".join(args), cwd)
        with local.cwd(cwd), local.env(**dict(env or {})):
            if capture:
                return_code, stdout, stderr = bound.run(retcode=None)
            else:
                return_code, stdout, stderr = bound.run(
                    retcode=None, stdin=None, stdout=None, stderr=None
                )
        logger.debug("%s exited with status %s", self.binary, return_code)
        return CommandResult(
            success=return_code == 0,
            stdout=(stdout or "") if capture else "",
            stderr=(stderr or "") if capture else "",
            return_code=return_code,
        )


def extract_version(output: str, tool: str) -> str:
    """Return the first ``major.minor.patch`` found in *output*.

    Examples
    --------
    >>> extract_version("Terraform v0.11.7\\n", "terraform")
    '0.11.7'
    >>> extract_version("version 2.0.48-e94aeeb-2018-01-09T23:08:07Z", "bosh")
    '2.0.48'
    """

    match = _VERSION_PATTERN.search(output)
    if match is None:
        msg = f"{tool} version could not be parsed"
        raise ParseError(msg)
    return match.group(0)


def compare_versions(found: str, minimum: str) -> bool:
    """Return ``True`` when *found* is at least *minimum*.

    Examples
    --------
    >>> compare_versions("0.10.8", "0.11.0")
    False
    >>> compare_versions("2.0.48", "2.0.0")
    True
    """

    def parts(version: str) -> tuple[int, ...]:
        return tuple(int(piece) for piece in version.split("."))

    return parts(found) >= parts(minimum)


__all__ = [
    "CommandRunner",
    "compare_versions",
    "extract_version",
]
