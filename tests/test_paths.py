from __future__ import annotations

import os
from pathlib import Path

import pytest

from aero_bootstrap.models import Invocation, PathResolutionError, ProjectPaths


def test_from_root_uses_fixed_offsets(tmp_path: Path) -> None:
    paths = ProjectPaths.from_root(tmp_path)
    assert paths.root == tmp_path
    assert paths.userland_dir == tmp_path / "userland"
    assert paths.sysroot_dir == tmp_path / "sysroot" / "aero"
    assert paths.sysroot_build_dir == tmp_path / "sysroot" / "build"
    assert paths.bundled_dir == tmp_path / "bundled"
    assert paths.cross_dir == tmp_path / "sysroot" / "cross"
    assert paths.target_triple == "x86_64-aero"
    assert paths.cross_file == tmp_path / "userland" / "cross-file.ini"
    assert paths.cross_compiler == "x86_64-aero-gcc"


def test_from_script_uses_parent_of_script_directory(tmp_path: Path) -> None:
    script = tmp_path / "tools" / "setup_userland.py"
    script.parent.mkdir()
    script.write_text("")
    paths = ProjectPaths.from_script(script)
    assert paths.root == tmp_path.resolve()
    assert paths.bundled_dir == tmp_path.resolve() / "bundled"


def test_from_script_is_deterministic(tmp_path: Path) -> None:
    script = tmp_path / "tools" / "bootstrap"
    script.parent.mkdir()
    script.write_text("")
    assert ProjectPaths.from_script(script) == ProjectPaths.from_script(script)


def test_from_script_follows_symlinks(tmp_path: Path) -> None:
    script = tmp_path / "aero" / "tools" / "bootstrap"
    script.parent.mkdir(parents=True)
    script.write_text("")
    link = tmp_path / "bin" / "bootstrap"
    link.parent.mkdir()
    os.symlink(script, link)
    assert ProjectPaths.from_script(link).root == (tmp_path / "aero").resolve()


def test_from_script_rejects_broken_symlink(tmp_path: Path) -> None:
    link = tmp_path / "tools" / "bootstrap"
    link.parent.mkdir()
    os.symlink(tmp_path / "missing", link)
    with pytest.raises(PathResolutionError):
        ProjectPaths.from_script(link)


def test_search_path_lists_sysroot_before_cross(tmp_path: Path) -> None:
    paths = ProjectPaths.from_root(tmp_path, target_triple="aarch64-aero")
    assert paths.search_path == (tmp_path / "sysroot" / "bin", tmp_path / "sysroot" / "cross" / "bin")
    assert paths.cross_compiler == "aarch64-aero-gcc"


def test_invocation_render_quotes_arguments() -> None:
    invocation = Invocation(("make", "CFLAGS=-O2 -g"), env={"CC": "x86_64-aero-gcc"})
    assert invocation.render() == "CC=x86_64-aero-gcc make 'CFLAGS=-O2 -g'"
