"""
graph_server/transport.py — UDP control loop and logging setup.

Responsibilities:
    - Configure structured logging to stderr
    - Own the UDP endpoint: receive a datagram, decode it, drive the Session
      one operation at a time, send one response datagram per attempted
      operation back to the sender

Loop states:
    ┌────────────┬──────────────────────────────────────────────┐
    │ State      │ Meaning                                      │
    ├────────────┼──────────────────────────────────────────────┤
    │ IDLE       │ waiting in recvfrom                          │
    │ PROCESSING │ decoding / applying / replying to one packet │
    └────────────┴──────────────────────────────────────────────┘

Failure handling per datagram:
    decode failure      → logged, counted, no reply, back to IDLE
    operation failure   → logged, answered with /response/none, rest of the
                          packet skipped; earlier results stand
    receive failure     → logged; ``recv_error_policy`` decides whether the
                          loop continues (default) or re-raises
    send failure        → logged, loop continues
"""

from __future__ import annotations

import enum
import logging
import socket
import sys
import threading

from core.config import VALID_RECV_ERROR_POLICIES
from core.errors import DecodeError, OpError
from core.protocol.codec import MTU, decode, flatten
from core.protocol.commands import encode_result, parse_operation
from core.protocol.types import EmptyResult
from graph_server.session import Session
from infrastructure import metrics
from infrastructure.metrics import LatencyTimer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s.%(msecs)03d " "[%(name)s] %(levelname)s " "%(message)s"
_LOG_DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: int | str = logging.INFO) -> None:
    """
    Configure root logger to write structured output to stderr.

    Args:
        level: Python logging level or level name (default: INFO)
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Control loop
# ---------------------------------------------------------------------------

_POLL_INTERVAL = 0.2


class LoopState(enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class ControlLoop:
    """
    Serves one Session over one UDP socket.

    Usage:
        loop = ControlLoop(session, host="127.0.0.1", port=5050)
        loop.bind()
        loop.serve_forever()   # until loop.shutdown() from another thread
        loop.close()
    """

    def __init__(
        self,
        session: Session,
        host: str = "127.0.0.1",
        port: int = 5050,
        recv_error_policy: str = "continue",
        poll_interval: float = _POLL_INTERVAL,
    ) -> None:
        if recv_error_policy not in VALID_RECV_ERROR_POLICIES:
            raise ValueError(
                f"Unknown recv_error_policy {recv_error_policy!r}, "
                f"valid options: {sorted(VALID_RECV_ERROR_POLICIES)}"
            )
        self._session = session
        self._host = host
        self._port = port
        self._recv_error_policy = recv_error_policy
        self._poll_interval = poll_interval
        self._sock: socket.socket | None = None
        self._state = LoopState.IDLE
        self._shutdown = threading.Event()

    def __enter__(self) -> ControlLoop:
        self.bind()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); the real port when constructed with port 0."""
        if self._sock is None:
            raise RuntimeError("Control loop is not bound")
        host, port = self._sock.getsockname()[:2]
        return host, port

    def bind(self) -> tuple[str, int]:
        """Open and bind the UDP socket.

        Raises:
            OSError: If the address is unavailable.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self._host, self._port))
        except OSError:
            sock.close()
            raise
        # the timeout only lets serve_forever notice shutdown()
        sock.settimeout(self._poll_interval)
        self._sock = sock
        logger.info("Control socket bound on %s:%d", *self.address)
        return self.address

    def handle_packet(self, data: bytes) -> list[bytes]:
        """Run one datagram through decode → parse → apply → encode.

        Returns:
            Encoded response datagrams, one per attempted operation, in
            order.  Empty when ``data`` did not decode.
        """
        metrics.record_datagram()
        try:
            packet = decode(data)
        except DecodeError as exc:
            metrics.record_decode_error()
            logger.warning("Dropping %d-byte datagram: %s", len(data), exc)
            return []

        messages = flatten(packet)
        logger.debug("Packet with %d operation(s)", len(messages))

        responses: list[bytes] = []
        for position, message in enumerate(messages):
            kind = "unparsed"
            timer = LatencyTimer()
            try:
                with timer:
                    op = parse_operation(message)
                    kind = op.kind
                    result = self._session.apply(op)
            except OpError as exc:
                metrics.record_operation(kind=kind, status=type(exc).__name__, latency_seconds=timer.elapsed)
                skipped = len(messages) - position - 1
                logger.warning(
                    "%s failed (%s): %s%s",
                    message.address,
                    type(exc).__name__,
                    exc,
                    f"; skipping {skipped} remaining operation(s)" if skipped else "",
                )
                responses.append(encode_result(EmptyResult()))
                break
            metrics.record_operation(kind=kind, status="ok", latency_seconds=timer.elapsed)
            logger.debug("%s → %s", message.address, result)
            responses.append(encode_result(result))
        return responses

    def serve_forever(self) -> None:
        """Receive and answer datagrams until ``shutdown()``.

        Raises:
            OSError: On a receive failure when ``recv_error_policy`` is
                ``"exit"``.
        """
        if self._sock is None:
            self.bind()
        sock = self._sock
        assert sock is not None
        logger.info("Serving on %s:%d (recv_error_policy=%s)", *self.address, self._recv_error_policy)

        while not self._shutdown.is_set():
            try:
                data, peer = sock.recvfrom(MTU)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._shutdown.is_set():
                    break
                metrics.record_socket_error("recv")
                if self._recv_error_policy == "exit":
                    logger.error("Receive failed, stopping control loop: %s", exc)
                    raise
                logger.error("Receive failed: %s", exc)
                continue

            self._state = LoopState.PROCESSING
            try:
                for response in self.handle_packet(data):
                    try:
                        sock.sendto(response, peer)
                    except OSError as exc:
                        metrics.record_socket_error("send")
                        logger.error("Send to %s:%d failed: %s", peer[0], peer[1], exc)
            finally:
                self._state = LoopState.IDLE

        logger.info("Control loop stopped")

    def shutdown(self) -> None:
        """Ask ``serve_forever`` to return; takes effect within one poll interval."""
        self._shutdown.set()

    def close(self) -> None:
        self.shutdown()
        if self._sock is not None:
            self._sock.close()
            self._sock = None
