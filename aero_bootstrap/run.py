from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from .config import BootstrapConfig, ConfigError
from .models import PathResolutionError, ProjectPaths
from .pipeline import BootstrapContext, BootstrapPipeline, Stage, StageFailure
from .utils import dry_run_command, run_command

logger = logging.getLogger(__name__)

# Exit status for usage, configuration and path errors, matching argparse.
USAGE_ERROR = 2


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid job count: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError("job count must be at least 1")
    return number


def _load_context(args: argparse.Namespace) -> BootstrapContext:
    config = BootstrapConfig.from_file(args.config) if args.config else BootstrapConfig()
    if args.triple:
        config.target_triple = args.triple
    if args.jobs:
        config.jobs = args.jobs

    root = args.root or config.root or os.environ.get("AERO_PATH")
    if root:
        paths = ProjectPaths.from_root(root, config.target_triple)
    else:
        paths = ProjectPaths.from_script(sys.argv[0], config.target_triple)

    runner = dry_run_command if args.dry_run else run_command
    return BootstrapContext(paths=paths, config=config, runner=runner, dry_run=args.dry_run)


def cmd_list(args: argparse.Namespace) -> int:
    for stage in Stage.ordered():
        print(f"{stage.value}\t{stage.description}")
    return 0


def _run_stage(args: argparse.Namespace, stage: Stage) -> int:
    context = _load_context(args)
    logger.debug("Project root: %s", context.paths.root)
    logger.debug("PATH=%s", context.environment.get("PATH", ""))
    result = BootstrapPipeline(context).run(stage)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aero-bootstrap",
        description="Bootstrap the Aero cross toolchain and mlibc sysroot",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Aero project root (defaults to $AERO_PATH, then the script's location).",
    )
    parser.add_argument("--config", default=None, help="JSON or YAML file with bootstrap settings.")
    parser.add_argument("--triple", default=None, help="Target triple (default: x86_64-aero).")
    parser.add_argument("-j", "--jobs", type=_positive_int, default=None, help="Parallel build jobs.")
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Log the commands each stage would run without running them.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors.")
    subparsers = parser.add_subparsers(dest="command", metavar="stage", required=True)

    list_parser = subparsers.add_parser("list", help="List the available stages")
    list_parser.set_defaults(func=cmd_list)

    for stage in Stage.ordered():
        stage_parser = subparsers.add_parser(stage.value, help=stage.description)
        stage_parser.set_defaults(func=lambda args, stage=stage: _run_stage(args, stage))

    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)
    try:
        return args.func(args)
    except StageFailure as exc:
        logger.error("%s", exc)
        # Children killed by a signal report -N; exit as a shell would.
        return exc.returncode if exc.returncode > 0 else 128 - exc.returncode
    except (ConfigError, PathResolutionError) as exc:
        logger.error("%s", exc)
        return USAGE_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
