from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import pytest

from aero_bootstrap.config import BootstrapConfig
from aero_bootstrap.models import ProjectPaths
from aero_bootstrap.pipeline import BootstrapContext
from aero_bootstrap.utils import CommandError


class RecordingRunner:
    """Fake subprocess runner that records calls and returns scripted exit codes."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, object]] = []
        self.failures: Dict[str, int] = {}

    def fail_when(self, fragment: str, returncode: int = 1) -> None:
        self.failures[fragment] = returncode

    def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        self.calls.append({"command": list(command), "cwd": cwd, "env": dict(env or {})})
        joined = " ".join(command)
        returncode = 0
        for fragment, scripted in self.failures.items():
            if fragment in joined:
                returncode = scripted
                break
        if check and returncode != 0:
            raise CommandError(command, returncode)
        return subprocess.CompletedProcess(list(command), returncode)

    @property
    def commands(self) -> List[List[str]]:
        return [call["command"] for call in self.calls]  # type: ignore[misc]


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def paths(tmp_path: Path) -> ProjectPaths:
    return ProjectPaths.from_root(tmp_path / "aero")


@pytest.fixture
def context(paths: ProjectPaths, runner: RecordingRunner) -> BootstrapContext:
    config = BootstrapConfig(jobs=4)
    return BootstrapContext(
        paths=paths,
        config=config,
        runner=runner,
        base_environment={"PATH": "/usr/bin", "HOME": "/home/aero"},
    )
