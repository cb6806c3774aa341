from __future__ import annotations

import requests
from conftest import FakeSession

from harness_kernel.integration import TopicSpec, TopologyProvisioner
from harness_kernel.observability import EventLog

TOPICS = (
    TopicSpec("ingest01_prefetch", ("ingest01_prefetch_worker_chan",)),
    TopicSpec("ingest02_bag_validation", ("ingest02_bag_validation_worker_chan",)),
)


def test_creates_topics_then_channels(session: FakeSession) -> None:
    # A channel can only be created on an existing topic.
    provisioner = TopologyProvisioner("http://127.0.0.1:4151/", session=session)  # type: ignore[arg-type]
    report = provisioner.provision_topics(TOPICS)

    assert report.ok
    assert report.topics == ["ingest01_prefetch", "ingest02_bag_validation"]
    assert session.posts[0] == ("http://127.0.0.1:4151/topic/create", {"topic": "ingest01_prefetch"})
    assert session.posts[1] == (
        "http://127.0.0.1:4151/channel/create",
        {"topic": "ingest01_prefetch", "channel": "ingest01_prefetch_worker_chan"},
    )


def test_provisioning_twice_leaves_same_topology(session: FakeSession) -> None:
    # Topic and channel creation are idempotent on the broker side.
    provisioner = TopologyProvisioner("http://127.0.0.1:4151", session=session)  # type: ignore[arg-type]
    first = provisioner.provision_topics(TOPICS)
    snapshot = (set(session.topics), set(session.channels))
    second = provisioner.provision_topics(TOPICS)

    assert first.ok and second.ok
    assert (session.topics, session.channels) == snapshot
    assert len(session.channels) == 2


def test_unreachable_broker_is_logged_not_raised() -> None:
    # An unreachable broker degrades the run instead of ending it.
    events = EventLog()
    session = FakeSession(fail_with=requests.ConnectionError("refused"))
    report = TopologyProvisioner(
        "http://127.0.0.1:4151",
        session=session,  # type: ignore[arg-type]
        events=events,
    ).provision_topics(TOPICS)

    assert not report.ok
    assert len(report.failures) == 2
    # Channel creation is not attempted for a topic that failed.
    assert all(url.endswith("/topic/create") for url, _ in session.posts)
    assert len(events.events("topology_request_failed")) == 2


def test_http_error_status_is_a_failure() -> None:
    # Non-2xx responses are recorded against the topic.
    report = TopologyProvisioner(
        "http://127.0.0.1:4151",
        session=FakeSession(status_code=500),  # type: ignore[arg-type]
    ).provision_topics(TOPICS[:1])
    assert report.failures == ["topic/create ingest01_prefetch: HTTP 500"]
