"""core/protocol/types.py — Operation and result value objects.

One frozen dataclass per wire address.  ``address`` is a class attribute, so
the address table lives next to the type it produces:

    Play                 /play
    Stop                 /stop
    AddConstantF32       /add_constant_f32      float
    AddConstantBool      /add_constant_bool     bool
    AddConstantString    /add_constant_string   string
    AddProcessor         /add_processor         string
    AddToMix             /add_to_mix            int, int, port
    Connect              /connect               int, port, int, port
    ReplaceNode          /replace_node          int, int

Results are ``NodeResult(handle)`` (``/response/node_index``) or
``EmptyResult()`` (``/response/none``).
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar, Union

from core.graph.types import PortIndex, PortName, PortRef

__all__ = [
    "AddConstantBool",
    "AddConstantF32",
    "AddConstantString",
    "AddProcessor",
    "AddToMix",
    "Connect",
    "EmptyResult",
    "NodeResult",
    "Operation",
    "OperationResult",
    "Play",
    "PortIndex",
    "PortName",
    "PortRef",
    "ReplaceNode",
    "Stop",
    "to_f32",
]


def to_f32(value: float) -> float:
    """Round a Python float to the nearest IEEE 754 single-precision value."""
    return struct.unpack(">f", struct.pack(">f", value))[0]


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Operation:
    """Base class for every request the server understands."""

    address: ClassVar[str] = ""

    def args(self) -> tuple[object, ...]:
        """Wire arguments in order."""
        return ()

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class Play(Operation):
    address: ClassVar[str] = "/play"


@dataclass(frozen=True)
class Stop(Operation):
    address: ClassVar[str] = "/stop"


@dataclass(frozen=True)
class AddConstantF32(Operation):
    """Constant float source.  ``value`` is stored as float32."""

    address: ClassVar[str] = "/add_constant_f32"
    value: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_f32(float(self.value)))

    def args(self) -> tuple[object, ...]:
        return (self.value,)


@dataclass(frozen=True)
class AddConstantBool(Operation):
    address: ClassVar[str] = "/add_constant_bool"
    value: bool = False

    def args(self) -> tuple[object, ...]:
        return (self.value,)


@dataclass(frozen=True)
class AddConstantString(Operation):
    address: ClassVar[str] = "/add_constant_string"
    value: str = ""

    def args(self) -> tuple[object, ...]:
        return (self.value,)


@dataclass(frozen=True)
class AddProcessor(Operation):
    """Instantiate a processor from the registry by (case-sensitive) name."""

    address: ClassVar[str] = "/add_processor"
    name: str = ""

    def args(self) -> tuple[object, ...]:
        return (self.name,)


@dataclass(frozen=True)
class AddToMix(Operation):
    """Route ``source``'s output into mixer channel ``channel``."""

    address: ClassVar[str] = "/add_to_mix"
    channel: int = 0
    source: int = 0
    source_output: PortRef = field(default_factory=lambda: PortIndex(0))

    def args(self) -> tuple[object, ...]:
        return (self.channel, self.source, _port_arg(self.source_output))


@dataclass(frozen=True)
class Connect(Operation):
    address: ClassVar[str] = "/connect"
    source: int = 0
    source_output: PortRef = field(default_factory=lambda: PortIndex(0))
    target: int = 0
    target_input: PortRef = field(default_factory=lambda: PortIndex(0))

    def args(self) -> tuple[object, ...]:
        return (
            self.source,
            _port_arg(self.source_output),
            self.target,
            _port_arg(self.target_input),
        )


@dataclass(frozen=True)
class ReplaceNode(Operation):
    """Move every edge of ``replaced`` onto ``replacement``.

    ``replaced`` is removed from the graph; its handle is invalid afterwards.
    """

    address: ClassVar[str] = "/replace_node"
    replaced: int = 0
    replacement: int = 0

    def args(self) -> tuple[object, ...]:
        return (self.replaced, self.replacement)


def _port_arg(port: PortRef) -> object:
    if isinstance(port, PortName):
        return port.name
    return port.index


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeResult:
    address: ClassVar[str] = "/response/node_index"
    handle: int

    def args(self) -> tuple[object, ...]:
        return (self.handle,)


@dataclass(frozen=True)
class EmptyResult:
    address: ClassVar[str] = "/response/none"

    def args(self) -> tuple[object, ...]:
        return ()


OperationResult = Union[NodeResult, EmptyResult]
