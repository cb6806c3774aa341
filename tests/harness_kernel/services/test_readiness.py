from __future__ import annotations

import socket
from pathlib import Path

import pytest
import requests
from conftest import FakeSession

from harness_kernel.services import (
    HttpProbe,
    LogLineProbe,
    ProbeSpec,
    ReadinessPolicy,
    ReadinessProbe,
    TcpProbe,
    build_probe,
    wait_until_ready,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class _CountingProbe(ReadinessProbe):
    def __init__(self, ready_after: int | None) -> None:
        self.ready_after = ready_after
        self.checks = 0

    def check(self) -> bool:
        self.checks += 1
        return self.ready_after is not None and self.checks >= self.ready_after

    def describe(self) -> str:
        return "counting"


def test_wait_returns_as_soon_as_probe_passes() -> None:
    # No sleeping once the probe succeeds.
    clock = _Clock()
    slept: list[float] = []

    def sleep(seconds: float) -> None:
        slept.append(seconds)
        clock.sleep(seconds)

    probe = _CountingProbe(ready_after=4)
    policy = ReadinessPolicy(timeout_seconds=30, initial_interval=0.25, max_interval=1.0, backoff=2.0)
    assert wait_until_ready(probe, policy, sleep=sleep, clock=clock)
    assert probe.checks == 4
    assert slept == [0.25, 0.5, 1.0]


def test_wait_gives_up_at_deadline() -> None:
    # Backoff never sleeps past the deadline.
    clock = _Clock()
    probe = _CountingProbe(ready_after=None)
    policy = ReadinessPolicy(timeout_seconds=2.5, initial_interval=1.0, max_interval=2.0)
    assert not wait_until_ready(probe, policy, sleep=clock.sleep, clock=clock)
    # Second sleep is clipped from 2.0 to the remaining 1.5 seconds.
    assert clock.now == pytest.approx(2.5)


def test_policy_validation() -> None:
    # Intervals and timeout must be sane.
    with pytest.raises(ValueError):
        ReadinessPolicy(timeout_seconds=-1)
    with pytest.raises(ValueError):
        ReadinessPolicy(initial_interval=0)
    with pytest.raises(ValueError):
        ReadinessPolicy(backoff=0.5)


def test_tcp_probe_against_listening_socket() -> None:
    # A bound listener counts as ready; a closed port does not.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        assert TcpProbe("127.0.0.1", port).check()
    assert not TcpProbe("127.0.0.1", port).check()


def test_http_probe_status_handling() -> None:
    # Any status below 500 means the server is answering.
    assert HttpProbe("http://127.0.0.1:4151/ping", session=FakeSession(status_code=200)).check()  # type: ignore[arg-type]
    assert not HttpProbe("http://127.0.0.1:4151/ping", session=FakeSession(status_code=503)).check()  # type: ignore[arg-type]
    refused = FakeSession(fail_with=requests.ConnectionError("refused"))
    assert not HttpProbe("http://127.0.0.1:4151/ping", session=refused).check()  # type: ignore[arg-type]


def test_log_line_probe(tmp_path: Path) -> None:
    # The probe passes once the pattern shows up in the service log.
    log = tmp_path / "nsqd.log"
    probe = LogLineProbe(log, r"TCP: listening on")
    assert not probe.check()
    log.write_text("starting\n[nsqd] TCP: listening on 127.0.0.1:4150\n", encoding="utf-8")
    assert probe.check()


def test_build_probe_by_kind(tmp_path: Path) -> None:
    log = tmp_path / "svc.log"
    assert isinstance(build_probe(ProbeSpec(kind="tcp", port=6379), log_path=log), TcpProbe)
    assert isinstance(build_probe(ProbeSpec(kind="http", url="http://x/ping"), log_path=log), HttpProbe)
    line_probe = build_probe(ProbeSpec(kind="log_line", pattern="ready"), log_path=log)
    assert isinstance(line_probe, LogLineProbe)
    assert str(log) in line_probe.describe()
