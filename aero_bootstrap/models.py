from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

DEFAULT_TARGET_TRIPLE = "x86_64-aero"


class PathResolutionError(RuntimeError):
    """Raised when the orchestrator cannot determine its own location."""


@dataclass(frozen=True)
class ProjectPaths:
    """Absolute locations of the Aero source tree used by every stage."""

    root: Path
    userland_dir: Path
    sysroot_dir: Path
    sysroot_build_dir: Path
    bundled_dir: Path
    cross_dir: Path
    target_triple: str = DEFAULT_TARGET_TRIPLE

    @classmethod
    def from_root(cls, root: str | Path, target_triple: str = DEFAULT_TARGET_TRIPLE) -> "ProjectPaths":
        root = Path(root).absolute()
        return cls(
            root=root,
            userland_dir=root / "userland",
            sysroot_dir=root / "sysroot" / "aero",
            sysroot_build_dir=root / "sysroot" / "build",
            bundled_dir=root / "bundled",
            cross_dir=root / "sysroot" / "cross",
            target_triple=target_triple,
        )

    @classmethod
    def from_script(cls, script_path: str | Path, target_triple: str = DEFAULT_TARGET_TRIPLE) -> "ProjectPaths":
        """Derive the tree from a script living one directory below the root."""

        try:
            resolved = Path(script_path).resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            raise PathResolutionError(f"Cannot resolve orchestrator location {script_path}: {exc}") from exc
        return cls.from_root(resolved.parent.parent, target_triple)

    @property
    def cross_file(self) -> Path:
        return self.userland_dir / "cross-file.ini"

    @property
    def sysroot_bin_dir(self) -> Path:
        return self.root / "sysroot" / "bin"

    @property
    def cross_bin_dir(self) -> Path:
        return self.cross_dir / "bin"

    @property
    def search_path(self) -> Tuple[Path, ...]:
        return (self.sysroot_bin_dir, self.cross_bin_dir)

    @property
    def cross_compiler(self) -> str:
        return f"{self.target_triple}-gcc"


@dataclass(frozen=True)
class Invocation:
    """One subprocess call issued by a stage."""

    command: Tuple[str, ...]
    cwd: Optional[Path] = None
    env: Mapping[str, str] = field(default_factory=dict)

    def render(self) -> str:
        assignments = [f"{key}={shlex.quote(value)}" for key, value in sorted(self.env.items())]
        return " ".join(assignments + [shlex.quote(part) for part in self.command])


@dataclass
class StageResult:
    """Summary emitted by a bootstrap stage."""

    name: str
    status: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.name, "status": self.status, "details": self.details}
