import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from keycloak_deploy.lib.exceptions import (
    CommandFailedError,
    MissingDependencyError,
    OperatorAbort,
    PrivilegeError,
)

log = logging.getLogger(__name__)


def command_exists(binary: str) -> bool:
    return shutil.which(binary) is not None


def require_binaries(
    binaries: Sequence[str], install_hints: Mapping[str, Sequence[str]] | None = None
) -> None:
    """Ensure that every binary is available on the PATH.

    All of the binaries are checked before failing so that the operator sees the full
    list of what needs to be installed.

    :param binaries: The executable names to look up.
    :type binaries: Sequence[str]

    :param install_hints: Optional per binary lines explaining how to install it.
    :type install_hints: Mapping[str, Sequence[str]]

    :raises MissingDependencyError: If any of the binaries is missing.
    """
    install_hints = install_hints or {}
    missing = [binary for binary in binaries if not command_exists(binary)]
    if not missing:
        return
    hints: list[str] = []
    for binary in missing:
        log.error("%s is not installed. Please install it first.", binary)
        hints.extend(install_hints.get(binary, ()))
    msg = (
        f"Missing {len(missing)} dependency/dependencies: {', '.join(missing)}. "
        "Please install them before continuing."
    )
    raise MissingDependencyError(msg, hints=hints)


def run_command(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = False,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Run an external command without a shell.

    :param cmd: The command and its arguments.
    :param check: Raise CommandFailedError when the command exits non-zero.
    :param capture: Capture stdout and stderr as text instead of streaming them.
    :param timeout: Seconds to wait before giving up on the command.
    :param env: Extra environment variables layered on top of the current ones.

    :returns: The completed process.
    """
    log.debug("Running: %s", " ".join(cmd))
    full_env = {**os.environ, **env} if env else None
    try:
        result = subprocess.run(  # noqa: S603 argument list, shell disabled
            list(cmd),
            check=False,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=full_env,
            shell=False,
        )
    except FileNotFoundError as exc:
        msg = f"{cmd[0]} is not installed or not in PATH"
        raise MissingDependencyError(msg) from exc
    except subprocess.TimeoutExpired as exc:
        msg = f"Timed out after {timeout}s running: {' '.join(cmd)}"
        raise CommandFailedError(msg) from exc
    if check and result.returncode != 0:
        msg = f"Command failed with exit code {result.returncode}: {' '.join(cmd)}"
        raise CommandFailedError(msg, returncode=result.returncode)
    return result


def command_succeeds(cmd: Sequence[str], timeout: float | None = 30) -> bool:
    """Run a probe command quietly and report whether it exited zero."""
    try:
        result = run_command(cmd, check=False, capture=True, timeout=timeout)
    except (MissingDependencyError, CommandFailedError):
        return False
    return result.returncode == 0


def resolve_binary(binary: str) -> Path:
    """Return the real path of a binary on the PATH, following symlinks."""
    location = shutil.which(binary)
    if location is None:
        msg = f"{binary} is not installed or not in PATH"
        raise MissingDependencyError(msg)
    return Path(location).resolve()


def require_root() -> None:
    if os.geteuid() != 0:
        msg = "This command must be run as root (use sudo)"
        raise PrivilegeError(msg)


def confirm(question: str, *, assume_yes: bool = False, require_word: str = "") -> bool:
    """Ask the operator a yes/no question on stdin.

    :param question: The prompt shown to the operator.
    :param assume_yes: Skip the prompt and answer yes.
    :param require_word: When set, only this exact word counts as agreement, otherwise
        any answer starting with y or Y does.

    :returns: Whether the operator agreed.
    """
    if assume_yes:
        return True
    try:
        answer = input(question).strip()
    except EOFError:
        return False
    if require_word:
        return answer == require_word
    return answer[:1] in {"y", "Y"}


def pause(message: str) -> None:
    """Wait for the operator to press Enter; Ctrl+C or end of input cancels."""
    try:
        input(message)
    except (EOFError, KeyboardInterrupt) as exc:
        msg = "Cancelled by operator"
        raise OperatorAbort(msg) from exc
