from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import requests

from harness_kernel.observability.events import EventLog


@dataclass(frozen=True, slots=True)
class TopicSpec:
    name: str
    channels: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("TopicSpec.name must be a non-empty string")


@dataclass(slots=True)
class ProvisionReport:
    topics: list[str] = field(default_factory=list)
    channels: list[tuple[str, str]] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class TopologyProvisioner:
    """Pre-creates broker topics and consumer channels over the admin HTTP API.

    Workers otherwise create topics lazily on first publish; creating them up
    front means subscribers started before any data exists are attached from
    the beginning. The broker treats re-creation of an existing topic or
    channel as success, so provisioning can be repeated freely. Failures are
    logged and collected, never raised.
    """

    def __init__(
        self,
        admin_url: str,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 5.0,
        events: EventLog | None = None,
    ) -> None:
        self._admin_url = admin_url.rstrip("/")
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout_seconds
        self._events = events if events is not None else EventLog()

    def provision_topics(self, topics: Sequence[TopicSpec]) -> ProvisionReport:
        report = ProvisionReport()
        for topic in topics:
            if not self._post("topic/create", {"topic": topic.name}, report):
                continue
            report.topics.append(topic.name)
            for channel in topic.channels:
                if self._post("channel/create", {"topic": topic.name, "channel": channel}, report):
                    report.channels.append((topic.name, channel))
        self._events.emit(
            "topology_provisioned",
            level="info" if report.ok else "warning",
            topics=len(report.topics),
            channels=len(report.channels),
            failures=len(report.failures),
        )
        return report

    def _post(self, path: str, params: dict[str, str], report: ProvisionReport) -> bool:
        url = f"{self._admin_url}/{path}"
        target = "/".join(params.values())
        try:
            response = self._session.post(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            report.failures.append(f"{path} {target}: {exc}")
            self._events.emit("topology_request_failed", level="warning", path=path, target=target, error=str(exc))
            return False
        if response.status_code >= 300:
            report.failures.append(f"{path} {target}: HTTP {response.status_code}")
            self._events.emit(
                "topology_request_failed",
                level="warning",
                path=path,
                target=target,
                status=response.status_code,
            )
            return False
        return True
