"""
Shared fixtures for the test suite.

Centralizes reusable test infrastructure so individual test files
don't need to repeat session / socket / backend boilerplate.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator

import pytest

from core.config import ServerConfig
from core.errors import EngineError
from core.graph.engine import Graph
from graph_server.client import GraphClient
from graph_server.session import Session
from graph_server.transport import ControlLoop
from infrastructure.audio import AudioBackend, RenderHandle

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEST_CONFIG = ServerConfig(port=0, block_size=64, sample_rate=8_000)
"""Small blocks and an ephemeral port so tests stay fast and never collide."""


# ---------------------------------------------------------------------------
# Fake audio backend
# ---------------------------------------------------------------------------


class FakeRenderHandle(RenderHandle):
    """Render handle that records stop calls instead of touching a device."""

    def __init__(self, fail_on_stop: bool = False) -> None:
        self.stopped = False
        self._fail_on_stop = fail_on_stop

    @property
    def is_running(self) -> bool:
        return not self.stopped

    def stop(self) -> None:
        self.stopped = True
        if self._fail_on_stop:
            raise EngineError("device vanished")


class FakeBackend(AudioBackend):
    """Deterministic backend — no threads, no PortAudio."""

    name = "fake"

    def __init__(self, fail_on_start: bool = False, fail_on_stop: bool = False) -> None:
        self.fail_on_start = fail_on_start
        self.fail_on_stop = fail_on_stop
        self.handles: list[FakeRenderHandle] = []
        self.started_with: list[Graph] = []

    def start(self, graph: Graph, config: ServerConfig) -> RenderHandle:
        if self.fail_on_start:
            raise EngineError("no such device")
        handle = FakeRenderHandle(fail_on_stop=self.fail_on_stop)
        self.handles.append(handle)
        self.started_with.append(graph)
        return handle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def session(backend: FakeBackend) -> Iterator[Session]:
    """Session with two mixer channels on the fake backend."""
    s = Session(TEST_CONFIG, backend=backend)
    yield s
    s.close()


@pytest.fixture()
def running_server(session: Session) -> Iterator[ControlLoop]:
    """ControlLoop bound to an ephemeral loopback port, serving on a thread."""
    loop = ControlLoop(session, host="127.0.0.1", port=0, poll_interval=0.05)
    loop.bind()
    thread = threading.Thread(target=loop.serve_forever, daemon=True)
    thread.start()
    yield loop
    loop.shutdown()
    thread.join(timeout=2.0)
    loop.close()


@pytest.fixture()
def client(running_server: ControlLoop) -> Iterator[GraphClient]:
    host, port = running_server.address
    with GraphClient(host=host, port=port, timeout=2.0) as c:
        yield c
