"""
Command Execution Helpers
=========================

Runs VCS subprocesses with a timeout and an optional cancellation token,
and provides the small text and path helpers both backends share.

A cancellation token is any object with an ``is_set()`` method, usually a
``threading.Event``. A timed-out or cancelled child is killed and the call
raises VCSTimeoutError.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .exceptions import CommandError, VCSNotFoundError, VCSTimeoutError
from .features import is_trace_enabled
from .types import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class CommandResult:
    """Outcome of a finished subprocess."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> CommandResult:
        """Raise CommandError if the command failed, otherwise return self."""
        if self.returncode != 0:
            raise CommandError(self.args, self.returncode, self.stderr, self.stdout)
        return self


# =============================================================================
# Execution
# =============================================================================


def _kill(proc: subprocess.Popen[bytes]) -> None:
    proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        pass


def _communicate(
    argv: list[str],
    cwd: Path | str | None,
    timeout: float | None,
    cancel: CancelToken | None,
    env: dict[str, str] | None,
) -> tuple[int, bytes, bytes]:
    if cancel is not None and cancel.is_set():
        raise VCSTimeoutError(f"{argv[0]} cancelled before start")

    child_env = {**os.environ, **env} if env else None
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=child_env,
        )
    except FileNotFoundError as exc:
        raise VCSNotFoundError(f"{argv[0]} is not installed or not on PATH") from exc

    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        if cancel is not None and cancel.is_set():
            _kill(proc)
            raise VCSTimeoutError(f"{' '.join(argv)} cancelled")

        wait = _POLL_INTERVAL if cancel is not None else None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                raise VCSTimeoutError(f"{' '.join(argv)} timed out after {timeout}s")
            wait = remaining if wait is None else min(wait, remaining)

        try:
            stdout, stderr = proc.communicate(timeout=wait)
            return proc.returncode, stdout or b"", stderr or b""
        except subprocess.TimeoutExpired:
            continue


def _log_level() -> int:
    return logging.INFO if is_trace_enabled() else logging.DEBUG


def run_command(
    args: Sequence[str],
    cwd: Path | str | None = None,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    cancel: CancelToken | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """
    Run a command and capture its output.

    Non-zero exit codes are returned, not raised; call ``.check()`` on the
    result (or use run_checked) to turn them into CommandError.

    Args:
        args: Program and arguments.
        cwd: Working directory for the child.
        timeout: Seconds before the child is killed; None disables it.
        cancel: Optional token polled while the child runs.
        env: Extra environment variables merged over os.environ.

    Returns:
        CommandResult with captured stdout/stderr.

    Raises:
        VCSNotFoundError: The program is not installed.
        VCSTimeoutError: The timeout elapsed or the cancellation token fired.
    """
    argv = [str(arg) for arg in args]
    logger.log(_log_level(), "vcs exec: %s (cwd=%s)", " ".join(argv), cwd)

    returncode, stdout, stderr = _communicate(argv, cwd, timeout, cancel, env)
    result = CommandResult(
        argv,
        returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        logger.log(_log_level(), "vcs exec failed (%d): %s", returncode, result.stderr.strip())
    return result


def run_binary(
    args: Sequence[str],
    cwd: Path | str | None = None,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    cancel: CancelToken | None = None,
) -> tuple[CommandResult, bytes]:
    """
    Run a command whose stdout must be kept byte-for-byte.

    Returns the decoded CommandResult (stdout left empty) alongside the
    raw stdout bytes.
    """
    argv = [str(arg) for arg in args]
    logger.log(_log_level(), "vcs exec: %s (cwd=%s)", " ".join(argv), cwd)

    returncode, stdout, stderr = _communicate(argv, cwd, timeout, cancel, None)
    result = CommandResult(argv, returncode, "", stderr.decode("utf-8", errors="replace"))
    return result, stdout


def run_checked(
    args: Sequence[str],
    cwd: Path | str | None = None,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    cancel: CancelToken | None = None,
) -> str:
    """Run a command and return stdout, raising CommandError on failure."""
    return run_command(args, cwd, timeout=timeout, cancel=cancel).check().stdout


def run_lines(
    args: Sequence[str],
    cwd: Path | str | None = None,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    cancel: CancelToken | None = None,
) -> list[str]:
    """Run a command and return its non-empty, stripped output lines."""
    return parse_lines(run_checked(args, cwd, timeout=timeout, cancel=cancel))


# =============================================================================
# Text Helpers
# =============================================================================


def parse_lines(output: str) -> list[str]:
    """Split output into non-empty, whitespace-stripped lines."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_key_value(output: str) -> dict[str, str]:
    """Parse ``key: value`` lines; lines without a colon are skipped."""
    values: dict[str, str] = {}
    for line in parse_lines(output):
        key, sep, value = line.partition(":")
        if sep:
            values[key.strip()] = value.strip()
    return values


def split_first_line(text: str) -> tuple[str, str]:
    """Return the first line and the remainder (without the separator)."""
    first, _, rest = text.partition("\n")
    return first.rstrip("\r"), rest


def trim_output(output: str) -> str:
    return output.strip()


def first_word(text: str) -> str:
    words = text.split()
    return words[0] if words else ""


def has_prefix(text: str, prefix: str) -> bool:
    """Case-insensitive prefix check."""
    return text.lower().startswith(prefix.lower())


# =============================================================================
# Path Helpers
# =============================================================================


def sanitize_path(path: str | Path, base_dir: str | Path | None = None) -> Path:
    """
    Normalise a path into an absolute, clean form.

    Relative paths are resolved against ``base_dir``. Symlinks are not
    resolved.

    Raises:
        ValueError: The path is empty, or relative with no base directory.
    """
    raw = str(path)
    if not raw:
        raise ValueError("empty path")
    if not os.path.isabs(raw):
        if base_dir is None or not str(base_dir):
            raise ValueError(f"relative path {raw!r} requires a base directory")
        raw = os.path.join(str(base_dir), raw)
    return Path(os.path.normpath(raw))


def relative_path(base: str | Path, target: str | Path) -> str:
    """Return ``target`` relative to ``base``."""
    return os.path.relpath(os.path.normpath(str(target)), os.path.normpath(str(base)))


def is_sub_path(parent: str | Path, child: str | Path) -> bool:
    """Return True if ``child`` is ``parent`` or lies beneath it."""
    parent_path = Path(os.path.normpath(os.path.abspath(str(parent))))
    child_path = Path(os.path.normpath(os.path.abspath(str(child))))
    return child_path == parent_path or child_path.is_relative_to(parent_path)


# =============================================================================
# Exit Codes
# =============================================================================


def exit_code(err: BaseException | None) -> int:
    """Return the exit code carried by a CommandError, 0 for None, else -1."""
    if err is None:
        return 0
    if isinstance(err, CommandError):
        return err.returncode
    return -1


def is_exit_code(err: BaseException | None, code: int) -> bool:
    return exit_code(err) == code
