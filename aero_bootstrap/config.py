from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import DEFAULT_TARGET_TRIPLE

# Host packages needed to compile GCC from source on a Debian-like system.
DEFAULT_HOST_PACKAGES = [
    "bison",
    "flex",
    "libgmp3-dev",
    "libmpc-dev",
    "libmpfr-dev",
    "texinfo",
    "gcc",
    "automake",
    "make",
]
DEFAULT_PACKAGE_MANAGER = ["sudo", "apt", "install"]


class ConfigError(RuntimeError):
    """Raised when the bootstrap configuration cannot be parsed."""


def _string_list(key: str, value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return list(value)


def _string(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{key}' must be a non-empty string")
    return value


@dataclass
class BootstrapConfig:
    """Overridable settings for a bootstrap run."""

    root: Optional[Path] = None
    target_triple: str = DEFAULT_TARGET_TRIPLE
    jobs: Optional[int] = None
    host_packages: List[str] = field(default_factory=lambda: list(DEFAULT_HOST_PACKAGES))
    package_manager: List[str] = field(default_factory=lambda: list(DEFAULT_PACKAGE_MANAGER))
    test_source: str = "test.c"
    test_output: str = "test.out"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, base_dir: Optional[Path] = None) -> "BootstrapConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = cls()
        if "root" in data:
            root = Path(_string("root", data["root"])).expanduser()
            if base_dir is not None and not root.is_absolute():
                root = base_dir / root
            config.root = root
        if "target_triple" in data:
            config.target_triple = _string("target_triple", data["target_triple"])
        if "jobs" in data:
            jobs = data["jobs"]
            if isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1:
                raise ConfigError("'jobs' must be a positive integer")
            config.jobs = jobs
        if "host_packages" in data:
            config.host_packages = _string_list("host_packages", data["host_packages"])
        if "package_manager" in data:
            config.package_manager = _string_list("package_manager", data["package_manager"])
            if not config.package_manager:
                raise ConfigError("'package_manager' must not be empty")
        if "test_source" in data:
            config.test_source = _string("test_source", data["test_source"])
        if "test_output" in data:
            config.test_output = _string("test_output", data["test_output"])
        return config

    @classmethod
    def from_file(cls, path: str | Path) -> "BootstrapConfig":
        """Load a JSON config, falling back to YAML for anything JSON rejects.

        Relative ``root`` values are taken relative to the file's directory.
        """

        path = Path(path)
        try:
            raw_text = path.read_text()
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

        try:
            raw_data = json.loads(raw_text)
        except json.JSONDecodeError:
            import yaml

            try:
                raw_data = yaml.safe_load(raw_text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Config file {path} is neither JSON nor YAML: {exc}") from exc

        if raw_data is None:
            raw_data = {}
        if not isinstance(raw_data, dict):
            raise ConfigError("Config must be a mapping at the top level")
        return cls.from_dict(raw_data, base_dir=path.absolute().parent)
