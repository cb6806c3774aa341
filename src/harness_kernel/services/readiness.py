from __future__ import annotations

import re
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from harness_kernel.services.descriptor import ProbeSpec


class ReadinessProbe:
    # Single non-blocking liveness check against a started service.
    def check(self) -> bool:
        raise NotImplementedError("ReadinessProbe.check must be implemented")

    def describe(self) -> str:
        return type(self).__name__


class TcpProbe(ReadinessProbe):
    def __init__(self, host: str, port: int, *, timeout_seconds: float = 1.0) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout_seconds

    def check(self) -> bool:
        try:
            with socket.create_connection((self._host, self._port), timeout=self._timeout):
                return True
        except OSError:
            return False

    def describe(self) -> str:
        return f"tcp://{self._host}:{self._port}"


class HttpProbe(ReadinessProbe):
    def __init__(
        self,
        url: str,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._url = url
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout_seconds

    def check(self) -> bool:
        try:
            response = self._session.get(self._url, timeout=self._timeout)
        except requests.RequestException:
            return False
        return response.status_code < 400

    def describe(self) -> str:
        return self._url


class LogLineProbe(ReadinessProbe):
    # Ready once the service log contains a line matching the pattern.
    def __init__(self, path: Path, pattern: str) -> None:
        self._path = path
        self._pattern = re.compile(pattern)

    def check(self) -> bool:
        try:
            text = self._path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
        return any(self._pattern.search(line) for line in text.splitlines())

    def describe(self) -> str:
        return f"{self._path}~/{self._pattern.pattern}/"


@dataclass(frozen=True, slots=True)
class ReadinessPolicy:
    timeout_seconds: float = 30.0
    initial_interval: float = 0.25
    max_interval: float = 2.0
    backoff: float = 2.0

    def __post_init__(self) -> None:
        if self.timeout_seconds < 0:
            raise ValueError("readiness.timeout_seconds must be >= 0")
        if self.initial_interval <= 0 or self.max_interval <= 0:
            raise ValueError("readiness intervals must be > 0")
        if self.backoff < 1.0:
            raise ValueError("readiness.backoff must be >= 1.0")


def build_probe(spec: ProbeSpec, *, log_path: Path) -> ReadinessProbe:
    if spec.kind == "tcp":
        assert spec.port is not None
        return TcpProbe(spec.host, spec.port)
    if spec.kind == "http":
        assert spec.url is not None
        return HttpProbe(spec.url)
    assert spec.pattern is not None
    return LogLineProbe(log_path, spec.pattern)


def wait_until_ready(
    probe: ReadinessProbe,
    policy: ReadinessPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    # Bounded polling with exponential backoff; the last sleep is clipped to the deadline.
    deadline = clock() + policy.timeout_seconds
    interval = policy.initial_interval
    while True:
        if probe.check():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(interval, remaining))
        interval = min(interval * policy.backoff, policy.max_interval)
