from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from harness_kernel.observability import EventLog
from harness_kernel.runtime.context import RunContext
from harness_kernel.runtime.controller import WorkloadFailure, block_until_interrupted
from harness_kernel.services import CommandRunner
from preserv_harness.usecases.catalog import expand


def tags_argument(tags: Sequence[str]) -> str:
    # go build tags travel as one comma-separated flag.
    return f"-tags={','.join(tags)}" if tags else ""


def resolve_tags(base_tags: Sequence[str], *, include_format_tests: bool, format_tag: str) -> list[str]:
    tags = list(base_tags)
    if include_format_tests and format_tag and format_tag not in tags:
        tags.append(format_tag)
    return tags


class GoTestWorkload:
    # Foreground test run; its exit code is the run's exit code. Output stays on the terminal.
    def __init__(
        self,
        template: str,
        *,
        tags: Sequence[str],
        runner: CommandRunner,
        cwd: Path,
        placeholders: Mapping[str, str],
        default_path_filter: str,
        format_tag: str = "formats",
    ) -> None:
        self._template = template
        self._tags = list(tags)
        self._runner = runner
        self._cwd = cwd
        self._placeholders = dict(placeholders)
        self._default_path_filter = default_path_filter
        self._format_tag = format_tag

    def command_for(self, context: RunContext) -> str:
        tags = resolve_tags(
            self._tags,
            include_format_tests=context.options.include_format_tests,
            format_tag=self._format_tag,
        )
        values = {
            **self._placeholders,
            "tags": tags_argument(tags),
            "path_filter": context.path_filter or self._default_path_filter,
        }
        # Empty {tags} leaves a double space behind; collapse it.
        return " ".join(expand(self._template, values).split())

    def __call__(self, context: RunContext) -> int:
        return self._runner.run(self.command_for(context), cwd=self._cwd, env=context.environment)


class EndToEndWorkload:
    """Seeds the pipeline, waits for it to drain, then runs the e2e tests.

    The trigger is a one-shot run of the bucket reader; the settle delay
    gives the workers time to carry every seeded item through to the end.
    """

    def __init__(
        self,
        trigger_command: str,
        tests: GoTestWorkload,
        *,
        runner: CommandRunner,
        cwd: Path,
        settle_seconds: float,
        trigger_log_path: Path | None = None,
        events: EventLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._trigger_command = trigger_command
        self._tests = tests
        self._runner = runner
        self._cwd = cwd
        self._settle_seconds = settle_seconds
        self._trigger_log_path = trigger_log_path
        self._events = events if events is not None else EventLog()
        self._sleep = sleep

    def __call__(self, context: RunContext) -> int:
        exit_code = self._runner.run(
            self._trigger_command,
            cwd=self._cwd,
            env=context.environment,
            log_path=self._trigger_log_path,
        )
        if exit_code != 0:
            raise WorkloadFailure(exit_code, "pipeline seeding trigger failed")
        self._events.emit("pipeline_settling", seconds=self._settle_seconds)
        self._sleep(self._settle_seconds)
        return self._tests(context)


class InteractiveWorkload:
    # Keeps the environment up for manual use until Ctrl-C or SIGTERM.
    def __init__(
        self,
        *,
        poll_seconds: float = 1.0,
        events: EventLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._poll_seconds = poll_seconds
        self._events = events if events is not None else EventLog()
        self._sleep = sleep

    def __call__(self, context: RunContext) -> int:
        self._events.emit("interactive_ready", message="Services are running. Press Ctrl-C to stop them.")
        return block_until_interrupted(sleep=self._sleep, interval_seconds=self._poll_seconds)
