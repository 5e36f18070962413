from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

# Exit statuses a shell reports when a command cannot be started.
COMMAND_NOT_FOUND = 127
COMMAND_NOT_EXECUTABLE = 126
CHDIR_FAILED = 1


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int) -> None:
        self.command = list(command)
        self.returncode = returncode
        super().__init__(f"Command {' '.join(command)} failed with exit code {returncode}")


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process.

    The child shares stdout and stderr with the orchestrator so the build
    tools' own diagnostics reach the terminal unchanged. ``env`` replaces the
    child's environment when given.
    """

    if cwd and not Path(cwd).is_dir():
        logger.error("cd: %s: No such file or directory", cwd)
        result = subprocess.CompletedProcess(list(command), CHDIR_FAILED)
    else:
        result = _spawn(command, cwd, env)
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode)
    return result


def _spawn(
    command: Sequence[str],
    cwd: str | Path | None,
    env: Mapping[str, str] | None,
) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            check=False,
        )
    except FileNotFoundError:
        logger.error("%s: command not found", command[0])
        returncode = COMMAND_NOT_FOUND
    except PermissionError:
        logger.error("%s: Permission denied", command[0])
        returncode = COMMAND_NOT_EXECUTABLE
    except OSError as exc:
        logger.error("%s: %s", command[0], exc.strerror or exc)
        returncode = COMMAND_NOT_EXECUTABLE
    return subprocess.CompletedProcess(list(command), returncode)


def dry_run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Stand-in for :func:`run_command` that reports success without running anything."""

    return subprocess.CompletedProcess(list(command), 0)


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def cpu_count() -> int:
    return max(os.cpu_count() or 1, 1)


def prepend_search_path(environ: Mapping[str, str], directories: Sequence[str | Path]) -> dict[str, str]:
    """Return a copy of ``environ`` with ``directories`` placed at the front of PATH."""

    extended = dict(environ)
    entries = [str(directory) for directory in directories]
    inherited = environ.get("PATH")
    if inherited:
        entries.append(inherited)
    extended["PATH"] = os.pathsep.join(entries)
    return extended
