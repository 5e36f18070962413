from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .config import BootstrapConfig
from .models import Invocation, ProjectPaths, StageResult
from .utils import CommandError, cpu_count, ensure_directory, prepend_search_path, run_command

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., subprocess.CompletedProcess]


class UnknownStageError(RuntimeError):
    """Raised when a stage name does not match any registered stage."""

    def __init__(self, name: Optional[str]) -> None:
        self.name = name
        choices = ", ".join(stage.value for stage in Stage.ordered())
        if name:
            message = f"Unknown stage '{name}' (choose from {choices})"
        else:
            message = f"No stage given (choose from {choices})"
        super().__init__(message)


class StageFailure(RuntimeError):
    """A step of a stage failed; later steps and stages were not run."""

    def __init__(self, stage: str, index: int, command: Sequence[str], returncode: int) -> None:
        self.stage = stage
        self.index = index
        self.command = list(command)
        self.returncode = returncode
        super().__init__(
            f"Stage {stage} failed at step {index}: {' '.join(command)} exited with code {returncode}"
        )


class PrivilegeError(StageFailure):
    """Installing the host packages needed for GCC failed."""


class Stage(Enum):
    SYSROOT = "sysroot"
    MLIBC = "mlibc"
    NYANCAT = "nyancat"
    BINUTILS = "binutils"
    GCC = "gcc"
    ALL = "all"
    TEST = "test"

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (
            cls.SYSROOT,
            cls.MLIBC,
            cls.NYANCAT,
            cls.BINUTILS,
            cls.GCC,
            cls.ALL,
            cls.TEST,
        )

    @classmethod
    def from_name(cls, name: Optional[str]) -> "Stage":
        if not name:
            raise UnknownStageError(name)
        try:
            return cls(name.strip().lower())
        except ValueError as exc:
            raise UnknownStageError(name) from exc

    def expand(self) -> Tuple["Stage", ...]:
        """Return the concrete stages this stage runs, in order."""

        return _COMPOSITE_STAGES.get(self, (self,))

    @property
    def description(self) -> str:
        return _STAGE_DESCRIPTIONS[self]


# Headers before the toolchain, the toolchain before the compiler, and the
# compiler before the full libc.
_COMPOSITE_STAGES: Dict[Stage, Tuple[Stage, ...]] = {
    Stage.ALL: (Stage.SYSROOT, Stage.BINUTILS, Stage.GCC, Stage.MLIBC),
}

_STAGE_DESCRIPTIONS: Dict[Stage, str] = {
    Stage.SYSROOT: "Build and install the mlibc headers into the sysroot",
    Stage.MLIBC: "Build and install the mlibc runtime objects",
    Stage.NYANCAT: "Cross-compile the bundled nyancat sample application",
    Stage.BINUTILS: "Build and install the cross binutils",
    Stage.GCC: "Build and install the cross GCC driver and libgcc",
    Stage.ALL: "Run sysroot, binutils, gcc and mlibc in order",
    Stage.TEST: "Compile test.c with the cross compiler",
}


@dataclass
class BootstrapContext:
    """Everything a stage needs: paths, settings and the subprocess runner."""

    paths: ProjectPaths
    config: BootstrapConfig = field(default_factory=BootstrapConfig)
    runner: CommandRunner = run_command
    dry_run: bool = False
    base_environment: Optional[Mapping[str, str]] = None
    invocations: List[Invocation] = field(default_factory=list)

    def __post_init__(self) -> None:
        inherited = os.environ if self.base_environment is None else self.base_environment
        self.environment: Mapping[str, str] = MappingProxyType(
            prepend_search_path(inherited, self.paths.search_path)
        )
        self._directories: List[Path] = []
        self._stage: Optional[Stage] = None
        self._step = 0

    @property
    def jobs(self) -> int:
        return self.config.jobs or cpu_count()

    @property
    def current_directory(self) -> Optional[Path]:
        return self._directories[-1] if self._directories else None

    def begin_stage(self, stage: Stage) -> None:
        self._stage = stage
        self._step = 0

    @contextmanager
    def working_directory(self, path: str | Path) -> Iterator[Path]:
        """Run the enclosed invocations inside ``path``; restored on exit."""

        path = Path(path)
        self._directories.append(path)
        try:
            yield path
        finally:
            self._directories.pop()

    def _fail(self, command: Sequence[str], returncode: int, error: type = StageFailure) -> StageFailure:
        stage = self._stage.value if self._stage else "unknown"
        return error(stage, self._step, command, returncode)

    def run(self, *command: str, env: Optional[Mapping[str, str]] = None, error: type = StageFailure) -> None:
        invocation = Invocation(tuple(command), self.current_directory, dict(env or {}))
        logger.info("+ %s", invocation.render())
        if invocation.cwd is not None:
            logger.debug("  in %s", invocation.cwd)

        process_env = dict(self.environment)
        process_env.update(invocation.env)
        self.invocations.append(invocation)
        try:
            self.runner(invocation.command, cwd=invocation.cwd, env=process_env, check=True)
        except CommandError as exc:
            raise self._fail(exc.command, exc.returncode, error) from exc
        self._step += 1

    def make_directory(self, path: Path) -> None:
        logger.info("+ mkdir -p %s", path)
        if not self.dry_run:
            ensure_directory(path)
        self._step += 1

    def copy_file(self, source: Path, destination: Path) -> None:
        logger.info("+ cp %s %s", source, destination)
        if not self.dry_run:
            try:
                shutil.copy2(source, destination)
            except OSError as exc:
                logger.error("cp: %s", exc)
                raise self._fail(("cp", str(source), str(destination)), 1) from exc
        self._step += 1


StageHandler = Callable[[BootstrapContext], None]


def _meson_setup(context: BootstrapContext, *options: str) -> None:
    paths = context.paths
    context.run(
        "meson",
        "setup",
        "--cross-file",
        str(paths.cross_file),
        "--prefix",
        str(paths.sysroot_dir / "usr"),
        *options,
        str(paths.sysroot_build_dir / "mlibc"),
        str(paths.bundled_dir / "mlibc"),
    )


def _ninja_install(context: BootstrapContext) -> None:
    with context.working_directory(context.paths.sysroot_build_dir / "mlibc"):
        context.run("ninja")
        context.run("ninja", "install")


def _stage_sysroot(context: BootstrapContext) -> None:
    _meson_setup(context, "-Dheaders_only=true", "-Dstatic=true")
    _ninja_install(context)


def _stage_mlibc(context: BootstrapContext) -> None:
    _meson_setup(context, "-Dstatic=true", "-Dheaders_only=false", "--reconfigure")
    _ninja_install(context)


def _stage_nyancat(context: BootstrapContext) -> None:
    source_dir = context.paths.bundled_dir / "nyancat" / "src"
    with context.working_directory(source_dir):
        context.run("make", "clean")
        context.run("make", env={"CC": context.paths.cross_compiler})
        context.make_directory(context.paths.sysroot_build_dir)
        context.copy_file(source_dir / "nyancat", context.paths.sysroot_build_dir)
        context.run("make", "clean")


def _stage_binutils(context: BootstrapContext) -> None:
    paths = context.paths
    build_dir = paths.sysroot_build_dir / "binutils-gdb"
    context.make_directory(build_dir)

    with context.working_directory(build_dir):
        # binutils trips over newer compilers' warnings (implicit-fallthrough and friends).
        context.run(
            str(paths.bundled_dir / "binutils-gdb" / "configure"),
            f"--target={paths.target_triple}",
            f"--prefix={paths.cross_dir}",
            f"--with-sysroot={paths.sysroot_dir}",
            "--disable-werror",
            "--disable-gdb",
        )

    context.run("make", "-C", str(build_dir), f"-j{context.jobs}")
    context.run("make", "-C", str(build_dir), "install")


def _stage_gcc(context: BootstrapContext) -> None:
    paths = context.paths
    config = context.config
    if config.host_packages:
        context.run(*config.package_manager, *config.host_packages, error=PrivilegeError)
    else:
        logger.info("No host packages configured, skipping installation")

    build_dir = paths.sysroot_build_dir / "gcc"
    context.make_directory(build_dir)

    with context.working_directory(paths.bundled_dir / "gcc"):
        context.run("./contrib/download_prerequisites")

    with context.working_directory(build_dir):
        context.run(
            str(paths.bundled_dir / "gcc" / "configure"),
            f"--target={paths.target_triple}",
            f"--prefix={paths.cross_dir}",
            f"--with-sysroot={paths.sysroot_dir}",
            "--enable-languages=c,c++",
            "--enable-threads=posix",
        )

    # Only the driver and libgcc; the rest of the suite needs a complete libc.
    context.run("make", "-C", str(build_dir), f"-j{context.jobs}", "all-gcc", "all-target-libgcc")
    context.run("make", "-C", str(build_dir), "install-gcc", "install-target-libgcc")


def _stage_test(context: BootstrapContext) -> None:
    paths = context.paths
    context.run(
        paths.cross_compiler,
        str(paths.root / context.config.test_source),
        "-o",
        str(paths.root / context.config.test_output),
    )


_STAGE_HANDLERS: Dict[Stage, StageHandler] = {
    Stage.SYSROOT: _stage_sysroot,
    Stage.MLIBC: _stage_mlibc,
    Stage.NYANCAT: _stage_nyancat,
    Stage.BINUTILS: _stage_binutils,
    Stage.GCC: _stage_gcc,
    Stage.TEST: _stage_test,
}


class BootstrapPipeline:
    """Runs bootstrap stages in order, stopping at the first failure."""

    def __init__(self, context: BootstrapContext) -> None:
        self.context = context

    def run_name(self, name: Optional[str]) -> StageResult:
        return self.run(Stage.from_name(name))

    def run(self, stage: Stage) -> StageResult:
        steps = stage.expand()
        if steps == (stage,):
            return self.run_stage(stage)

        start = time.perf_counter()
        results = [self.run_stage(step) for step in steps]
        return StageResult(
            stage.value,
            "completed",
            {
                "stages": [result.name for result in results],
                "invocations": sum(result.details["invocations"] for result in results),
                "duration_s": round(time.perf_counter() - start, 3),
            },
        )

    def run_stage(self, stage: Stage) -> StageResult:
        handler = _STAGE_HANDLERS[stage]
        logger.info("Running stage %s", stage.value)
        self.context.begin_stage(stage)
        recorded = len(self.context.invocations)
        start = time.perf_counter()
        handler(self.context)
        duration = time.perf_counter() - start
        logger.info("Stage %s completed in %.1fs", stage.value, duration)
        return StageResult(
            stage.value,
            "completed",
            {
                "invocations": len(self.context.invocations) - recorded,
                "duration_s": round(duration, 3),
            },
        )
