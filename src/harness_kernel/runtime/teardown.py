from __future__ import annotations

import atexit
import signal
from collections.abc import Callable
from types import FrameType
from typing import Any

from harness_kernel.integration.webapp import WebAppController
from harness_kernel.observability.events import EventLog
from harness_kernel.runtime.context import RunContext
from harness_kernel.services.supervisor import ProcessHandle, ProcessSupervisor, StopError, StopResult


class TeardownCoordinator:
    """Stops every tracked process at most once per run.

    ``teardown_all`` may be reached from the normal path, a failure path,
    the atexit hook and the SIGTERM handler; ``RunContext.services_stopped``
    makes every call after the first a no-op. Stopping is exhaustive: a
    failure on one service never prevents attempts on the rest.
    """

    def __init__(
        self,
        context: RunContext,
        supervisor: ProcessSupervisor,
        *,
        events: EventLog | None = None,
        exit_registrar: Callable[[Callable[[], Any]], Any] = atexit.register,
        signal_installer: Callable[[int, Any], Any] = signal.signal,
    ) -> None:
        self._context = context
        self._supervisor = supervisor
        self._events = events if events is not None else EventLog()
        self._exit_registrar = exit_registrar
        self._signal_installer = signal_installer
        self._webapp: WebAppController | None = None
        self._installed = False
        self._results: list[StopResult] = []

    @property
    def results(self) -> list[StopResult]:
        return list(self._results)

    def attach_webapp(self, webapp: WebAppController) -> None:
        self._webapp = webapp

    def install(self) -> None:
        # Registered before the first blocking phase so interrupts still tear down.
        if self._installed:
            return
        self._exit_registrar(self.teardown_all)
        try:
            self._signal_installer(signal.SIGTERM, _raise_system_exit)
        except ValueError:
            # signal handlers can only be installed from the main thread
            self._events.emit("teardown_signal_handler_unavailable", level="warning")
        self._installed = True
        self._events.emit("teardown_installed")

    def teardown_all(self) -> list[StopResult]:
        if not self._context.mark_services_stopped():
            self._events.emit("teardown_skipped", reason="already stopped")
            return []

        handles = list(reversed(self._supervisor.tracked()))
        self._events.emit("teardown_started", services=len(handles))
        # Interrupts are held until every process has been signaled, then re-raised.
        pending: BaseException | None = None
        results: list[StopResult] = []
        for handle in handles:
            result, interrupt = self._stop_shielded(handle)
            results.append(result)
            pending = pending or interrupt
        if self._webapp is not None and self._webapp.started:
            try:
                self._webapp.stop()
            except (KeyboardInterrupt, SystemExit) as exc:
                pending = pending or exc
                self._events.emit("teardown_interrupted", level="warning", service="webapp")

        self._results = results
        self._events.emit(
            "teardown_finished",
            stopped=sum(1 for result in results if result.stopped),
            failed=sum(1 for result in results if result.error is not None),
        )
        if pending is not None:
            raise pending
        return results

    def _stop_shielded(self, handle: ProcessHandle) -> tuple[StopResult, BaseException | None]:
        # One retry: the interrupt may have landed before the signal was delivered.
        interrupt: BaseException | None = None
        for _ in range(2):
            try:
                return self._supervisor.stop(handle), interrupt
            except (KeyboardInterrupt, SystemExit) as exc:
                interrupt = interrupt or exc
                self._events.emit("teardown_interrupted", level="warning", service=handle.service_name)
        pid = handle.pid or 0
        error = StopError(handle.service_name, pid, "interrupted during teardown")
        return StopResult(service_name=handle.service_name, pid=handle.pid, stopped=False, error=error), interrupt


def _raise_system_exit(signum: int, frame: FrameType | None) -> None:
    _ = frame
    raise SystemExit(128 + signum)
