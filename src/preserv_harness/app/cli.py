from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TextIO

from harness_kernel.config import ConfigError
from harness_kernel.runtime import RunContext, RunMode, RunOptions
from harness_kernel.runtime.controller import EXIT_ABORTED, EXIT_FAILURE
from preserv_harness.config.loader import load_config
from preserv_harness.usecases.wiring import build_runtime

# NOTE: the CLI only parses arguments and hands off to the composition root;
# run sequencing lives in RunModeController.

MODES = [mode.value for mode in RunMode]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="preserv-harness",
        description="Start the services a test mode needs, run it, and stop everything afterwards.",
    )
    # Mode is validated by hand so a missing or unknown one prints usage and exits 1.
    parser.add_argument("mode", nargs="?", help=f"One of: {', '.join(MODES)}")
    parser.add_argument("path_filter", nargs="?", help="Package path passed to the test runner (default ./...)")
    parser.add_argument(
        "--include-format-tests",
        action="store_true",
        help="Also run the slow file-format identification tests",
    )
    parser.add_argument(
        "--skip-cleanup-stage",
        action="store_true",
        help="Do not start the ingest cleanup worker, so staged files can be inspected",
    )
    parser.add_argument(
        "--rebuild-dependency",
        action="store_true",
        help="Rebuild the registry app before starting it (integration mode only)",
    )
    parser.add_argument(
        "--leave-services-running",
        action="store_true",
        help="Skip teardown and print how to stop the services by hand",
    )
    parser.add_argument("--config", help="Path to harness YAML config (default: bundled harness.yml)")
    return parser


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    # Parse CLI arguments; caller passes argv for testability.
    return build_parser().parse_args(argv)


def build_context(args: argparse.Namespace) -> RunContext:
    return RunContext(
        mode=RunMode.parse(args.mode),
        options=RunOptions(
            include_format_tests=args.include_format_tests,
            skip_cleanup_stage=args.skip_cleanup_stage,
            rebuild_dependency=args.rebuild_dependency,
            leave_services_running=args.leave_services_running,
        ),
        path_filter=args.path_filter,
    )


def run(
    argv: Sequence[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    stderr: TextIO | None = None,
) -> int:
    err = stderr if stderr is not None else sys.stderr
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.mode not in MODES:
        if args.mode is not None:
            err.write(f"Unknown mode: {args.mode}\n")
        parser.print_help(err)
        return EXIT_FAILURE

    try:
        config = load_config(Path(args.config) if args.config else None)
        runtime = build_runtime(config, build_context(args), environ if environ is not None else os.environ)
    except ConfigError as exc:
        err.write(f"{exc}\n")
        return EXIT_ABORTED

    return runtime.run()
