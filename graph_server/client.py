"""
graph_server/client.py — Request/response helper for a running graph server.

Sends operations as OSC datagrams and reads back the per-operation response
datagrams.  A packet of N operations yields at most N responses: fewer when
one of them fails and the rest of the packet is skipped (the failing one is
answered with ``EmptyResult``), none when the server could not decode it.

Usage:
    with GraphClient(port=5050) as client:
        osc = client.request(AddProcessor("SineOscillator"))
        client.request(AddToMix(channel=0, source=osc.handle, source_output=PortIndex(0)))
        client.request(Play())
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Sequence

from core.protocol.codec import MTU, Bundle, decode, encode
from core.protocol.commands import encode_operation, operation_to_message, parse_results
from core.protocol.types import Operation, OperationResult

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "127.0.0.1"
_DEFAULT_PORT = 5050
_SOCKET_TIMEOUT = 2.0


class GraphClient:
    """
    UDP client for one server endpoint.

    Args:
        host: Server address (default localhost)
        port: Server UDP port (default 5050)
        timeout: Seconds to wait for each response datagram
    """

    def __init__(
        self,
        host: str = _DEFAULT_HOST,
        port: int = _DEFAULT_PORT,
        timeout: float = _SOCKET_TIMEOUT,
    ) -> None:
        self._address = (host, port)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.settimeout(timeout)

    def __enter__(self) -> GraphClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        self._sock.close()

    def send_raw(self, data: bytes) -> None:
        """Send arbitrary bytes (used to probe the server with malformed input)."""
        self._sock.sendto(data, self._address)

    def receive(self) -> OperationResult:
        """Wait for one response datagram.

        Raises:
            TimeoutError: If nothing arrives within the timeout.
            DecodeError: If the datagram is not OSC.
            OpError: If it is not a response message.
        """
        try:
            data, _ = self._sock.recvfrom(MTU)
        except socket.timeout as exc:
            raise TimeoutError(f"No response from {self._address[0]}:{self._address[1]}") from exc
        results = parse_results(decode(data))
        if len(results) != 1:
            raise ValueError(f"Expected one response per datagram, got {len(results)}")
        return results[0]

    def request(self, op: Operation) -> OperationResult:
        """Send one operation and return its result."""
        self.send_raw(encode_operation(op))
        return self.receive()

    def request_many(self, ops: Sequence[Operation]) -> list[OperationResult]:
        """Send ``ops`` as one bundle and collect the results, in order.

        Stops collecting when the server goes quiet, so a bundle cut short by
        a failing operation returns only what was answered.
        """
        if not ops:
            return []
        self.send_raw(encode(Bundle(contents=tuple(operation_to_message(op) for op in ops))))
        results: list[OperationResult] = []
        for _ in ops:
            try:
                results.append(self.receive())
            except TimeoutError:
                logger.debug("Received %d of %d responses", len(results), len(ops))
                break
        return results
