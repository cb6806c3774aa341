from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from harness_kernel.observability import EventLog
from harness_kernel.runtime.controller import PhaseError
from harness_kernel.services import CommandRunner
from preserv_harness.usecases.catalog import expand
from preserv_harness.usecases.config_models import BuildConfig

BUILD_LOG_NAME = "build"


class BuildError(PhaseError):
    # A pipeline binary failed to compile; the run reports failure and tears down.
    def __init__(self, source: str, exit_code: int) -> None:
        super().__init__(f"Build failed for {source} (exit code {exit_code})")
        self.source = source
        self.exit_code = exit_code


class BinaryBuilder:
    """Compiles every pipeline worker into ``output_dir``.

    Each entry of ``build.sources`` is ``<dir>/<file>.go``; the compiler runs
    inside ``<apps_dir>/<dir>`` and writes ``<output_dir>/<file without .go>``.
    Compiler output goes to ``<log_dir>/build.log``.
    """

    def __init__(
        self,
        config: BuildConfig,
        *,
        project_root: Path,
        output_dir: Path,
        log_dir: Path,
        runner: CommandRunner,
        events: EventLog | None = None,
    ) -> None:
        self._config = config
        self._apps_dir = project_root / config.apps_dir
        self._output_dir = output_dir
        self._log_path = log_dir / f"{BUILD_LOG_NAME}.log"
        self._runner = runner
        self._events = events if events is not None else EventLog()

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def command_for(self, source: str) -> tuple[str, Path]:
        dir_name, file_name = source.split("/")
        exe_name = file_name.removesuffix(".go")
        command = expand(
            self._config.command,
            {"output_dir": str(self._output_dir), "exe": exe_name, "file": file_name},
        )
        return command, self._apps_dir / dir_name

    def build(self, source: str, environment: Mapping[str, str]) -> None:
        command, source_dir = self.command_for(source)
        exit_code = self._runner.run(command, cwd=source_dir, env=environment, log_path=self._log_path)
        if exit_code != 0:
            self._events.emit("build_failed", level="error", source=source, exit_code=exit_code)
            raise BuildError(source, exit_code)

    def build_all(self, environment: Mapping[str, str]) -> None:
        # Stops at the first failure; later binaries would be stale anyway.
        self._output_dir.mkdir(parents=True, exist_ok=True)
        for source in self._config.sources:
            self.build(source, environment)
        self._events.emit("build_done", output_dir=str(self._output_dir), count=len(self._config.sources))
