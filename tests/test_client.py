"""Tests for graph_server/client.py — request/response helper over loopback UDP."""

from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest

from core.errors import DecodeError
from core.protocol.codec import Message, encode
from core.protocol.types import (
    AddConstantF32,
    AddProcessor,
    AddToMix,
    Connect,
    EmptyResult,
    NodeResult,
    PortName,
    ReplaceNode,
)
from graph_server.client import GraphClient
from graph_server.session import Session


@pytest.fixture()
def silent_peer() -> Iterator[socket.socket]:
    """A bound UDP socket that never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


class TestRequests:
    def test_request_returns_node_result(self, client: GraphClient) -> None:
        assert client.request(AddProcessor("SineOscillator")) == NodeResult(4)

    def test_request_failure_returns_empty(self, client: GraphClient) -> None:
        assert client.request(AddProcessor("sine")) == EmptyResult()

    def test_build_and_route_a_voice(self, client: GraphClient, session: Session) -> None:
        freq = client.request(AddConstantF32(330.0))
        osc = client.request(AddProcessor("SineOscillator"))
        assert isinstance(freq, NodeResult) and isinstance(osc, NodeResult)
        assert (
            client.request(
                Connect(
                    source=freq.handle,
                    source_output=PortName("out"),
                    target=osc.handle,
                    target_input=PortName("frequency"),
                )
            )
            == EmptyResult()
        )
        assert client.request(AddToMix(channel=3, source=osc.handle, source_output=PortName("out"))) == EmptyResult()
        assert session.num_mixer_channels == 4

    def test_replace_node_returns_replacement(self, client: GraphClient) -> None:
        a = client.request(AddProcessor("Neg"))
        b = client.request(AddProcessor("Neg"))
        assert isinstance(a, NodeResult) and isinstance(b, NodeResult)
        assert client.request(ReplaceNode(replaced=a.handle, replacement=b.handle)) == b

    def test_request_many_empty(self, client: GraphClient) -> None:
        assert client.request_many([]) == []


class TestFailures:
    def test_timeout(self, silent_peer: socket.socket) -> None:
        host, port = silent_peer.getsockname()
        with GraphClient(host=host, port=port, timeout=0.1) as c:
            with pytest.raises(TimeoutError):
                c.request(AddConstantF32(1.0))

    def test_request_many_stops_when_server_goes_quiet(self, silent_peer: socket.socket) -> None:
        host, port = silent_peer.getsockname()
        with GraphClient(host=host, port=port, timeout=0.1) as c:
            assert c.request_many([AddConstantF32(1.0), AddConstantF32(2.0)]) == []

    def test_garbage_reply_is_decode_error(self, silent_peer: socket.socket) -> None:
        host, port = silent_peer.getsockname()
        with GraphClient(host=host, port=port, timeout=1.0) as c:
            c.send_raw(encode(Message("/hello")))
            _, client_address = silent_peer.recvfrom(1024)
            silent_peer.sendto(b"\x00junk", client_address)
            with pytest.raises(DecodeError):
                c.receive()
