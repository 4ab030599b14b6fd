"""core/errors.py — Error taxonomy for the graph control protocol.

Two families:

    DecodeError   — the datagram itself is malformed.  The whole packet is
                    dropped and nothing is answered.
    OpError       — one operation inside a well-formed packet failed.  The
                    remaining operations of that packet are skipped; results
                    already produced for earlier operations stand.

All of these are recoverable.  The transport loop catches them, logs them and
keeps serving.
"""

from __future__ import annotations


class DecodeError(Exception):
    """Raised when a datagram cannot be parsed as an OSC message or bundle.

    Args:
        cause: The underlying parser exception.
    """

    def __init__(self, cause: BaseException) -> None:
        """Initialize with the parser exception that triggered the failure."""
        self.cause = cause
        super().__init__(f"Malformed packet: {cause}")


class OpError(Exception):
    """Base class for per-operation failures."""


class UnknownOperation(OpError):
    """The message address is not part of the operation vocabulary."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Unknown operation address {address!r}")


class ArgumentShapeError(OpError):
    """A recognised address arrived with the wrong arity or argument types."""

    def __init__(self, address: str, detail: str) -> None:
        self.address = address
        self.detail = detail
        super().__init__(f"Bad arguments for {address}: {detail}")


class UnknownProcessor(OpError):
    """The requested processor name is not in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown processor {name!r}")


class InvalidPort(OpError):
    """A port name or index does not exist on the referenced node.

    Args:
        node: Handle of the node the port was resolved against.
        port: The port reference as received (``PortName`` / ``PortIndex``).
        direction: ``"input"`` or ``"output"``.
    """

    def __init__(self, node: int, port: object, direction: str) -> None:
        self.node = node
        self.port = port
        self.direction = direction
        super().__init__(f"Node {node} has no {direction} {port}")


class UnknownNode(OpError):
    """The handle does not name a node in this graph (never issued, or removed)."""

    def __init__(self, handle: int) -> None:
        self.handle = handle
        super().__init__(f"No node with handle {handle}")


class EngineError(OpError):
    """Opaque failure from the graph engine or the audio backend."""
