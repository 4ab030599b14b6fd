"""
core/protocol/commands.py — Message ↔ Operation translation.

Parsing is validated end to end: every argument is checked for arity and
type before an ``Operation`` is built, and any mismatch becomes an
``ArgumentShapeError``.  A well-formed network peer is never assumed.

The address table is a registry (``OPERATIONS``).  Unknown addresses fall
through to ``UnknownOperation``; new operations are added by registering a
parser, not by editing a match.

Client-side helpers (``parse_result`` / ``parse_results``) turn response
messages back into ``OperationResult`` values.
"""

from __future__ import annotations

from collections.abc import Callable

from core.errors import ArgumentShapeError, UnknownOperation
from core.protocol.codec import Message, Packet, encode, flatten
from core.protocol.types import (
    AddConstantBool,
    AddConstantF32,
    AddConstantString,
    AddProcessor,
    AddToMix,
    Connect,
    EmptyResult,
    NodeResult,
    Operation,
    OperationResult,
    Play,
    PortIndex,
    PortName,
    PortRef,
    ReplaceNode,
    Stop,
)

Parser = Callable[[Message], Operation]


# ---------------------------------------------------------------------------
# Argument validation
# ---------------------------------------------------------------------------


def _expect_arity(message: Message, *names: str) -> tuple[object, ...]:
    if len(message.args) != len(names):
        expected = ", ".join(names) if names else "no arguments"
        raise ArgumentShapeError(
            message.address,
            f"expected {len(names)} argument(s) ({expected}), got {len(message.args)}",
        )
    return message.args


def _type_name(value: object) -> str:
    return type(value).__name__


def _int(address: str, name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArgumentShapeError(address, f"{name} must be int, got {_type_name(value)}")
    return value


def _handle(address: str, name: str, value: object) -> int:
    handle = _int(address, name, value)
    if handle < 0:
        raise ArgumentShapeError(address, f"{name} must be non-negative, got {handle}")
    return handle


def _float(address: str, name: str, value: object) -> float:
    if not isinstance(value, float):
        raise ArgumentShapeError(address, f"{name} must be float, got {_type_name(value)}")
    return value


def _bool(address: str, name: str, value: object) -> bool:
    if not isinstance(value, bool):
        raise ArgumentShapeError(address, f"{name} must be bool, got {_type_name(value)}")
    return value


def _str(address: str, name: str, value: object) -> str:
    if not isinstance(value, str):
        raise ArgumentShapeError(address, f"{name} must be string, got {_type_name(value)}")
    return value


def _port(address: str, name: str, value: object) -> PortRef:
    """Wire string → ``PortName``; wire int → ``PortIndex``; else shape error."""
    if isinstance(value, str):
        return PortName(value)
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise ArgumentShapeError(address, f"{name} index must be non-negative, got {value}")
        return PortIndex(value)
    raise ArgumentShapeError(address, f"{name} must be string or int, got {_type_name(value)}")


# ---------------------------------------------------------------------------
# Per-address parsers
# ---------------------------------------------------------------------------


def _parse_play(message: Message) -> Operation:
    _expect_arity(message)
    return Play()


def _parse_stop(message: Message) -> Operation:
    _expect_arity(message)
    return Stop()


def _parse_constant_f32(message: Message) -> Operation:
    (value,) = _expect_arity(message, "value")
    return AddConstantF32(_float(message.address, "value", value))


def _parse_constant_bool(message: Message) -> Operation:
    (value,) = _expect_arity(message, "value")
    return AddConstantBool(_bool(message.address, "value", value))


def _parse_constant_string(message: Message) -> Operation:
    (value,) = _expect_arity(message, "value")
    return AddConstantString(_str(message.address, "value", value))


def _parse_add_processor(message: Message) -> Operation:
    (name,) = _expect_arity(message, "name")
    return AddProcessor(_str(message.address, "name", name))


def _parse_add_to_mix(message: Message) -> Operation:
    channel, source, source_output = _expect_arity(message, "channel", "source", "source_output")
    addr = message.address
    return AddToMix(
        channel=_handle(addr, "channel", channel),
        source=_handle(addr, "source", source),
        source_output=_port(addr, "source_output", source_output),
    )


def _parse_connect(message: Message) -> Operation:
    source, source_output, target, target_input = _expect_arity(
        message, "source", "source_output", "target", "target_input"
    )
    addr = message.address
    return Connect(
        source=_handle(addr, "source", source),
        source_output=_port(addr, "source_output", source_output),
        target=_handle(addr, "target", target),
        target_input=_port(addr, "target_input", target_input),
    )


def _parse_replace_node(message: Message) -> Operation:
    replaced, replacement = _expect_arity(message, "replaced", "replacement")
    addr = message.address
    return ReplaceNode(
        replaced=_handle(addr, "replaced", replaced),
        replacement=_handle(addr, "replacement", replacement),
    )


OPERATIONS: dict[str, Parser] = {
    Play.address: _parse_play,
    Stop.address: _parse_stop,
    AddConstantF32.address: _parse_constant_f32,
    AddConstantBool.address: _parse_constant_bool,
    AddConstantString.address: _parse_constant_string,
    AddProcessor.address: _parse_add_processor,
    AddToMix.address: _parse_add_to_mix,
    Connect.address: _parse_connect,
    ReplaceNode.address: _parse_replace_node,
}
"""Address → parser.  The full request vocabulary."""


def parse_operation(message: Message) -> Operation:
    """Translate one decoded message into an ``Operation``.

    Raises:
        UnknownOperation: If the address is not in :data:`OPERATIONS`.
        ArgumentShapeError: If the arguments do not match the address.
    """
    parser = OPERATIONS.get(message.address)
    if parser is None:
        raise UnknownOperation(message.address)
    return parser(message)


def operation_to_message(op: Operation) -> Message:
    return Message(address=op.address, args=op.args())


def encode_operation(op: Operation) -> bytes:
    """Exactly one OSC message for ``op``."""
    return encode(operation_to_message(op))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def result_to_message(result: OperationResult) -> Message:
    return Message(address=result.address, args=result.args())


def encode_result(result: OperationResult) -> bytes:
    """Exactly one OSC message for ``result``."""
    return encode(result_to_message(result))


def parse_result(message: Message) -> OperationResult:
    """Translate a response message back into an ``OperationResult``.

    Raises:
        UnknownOperation: If the address is not a response address.
        ArgumentShapeError: If the arguments do not match the address.
    """
    if message.address == NodeResult.address:
        (handle,) = _expect_arity(message, "node_index")
        return NodeResult(_handle(message.address, "node_index", handle))
    if message.address == EmptyResult.address:
        _expect_arity(message)
        return EmptyResult()
    raise UnknownOperation(message.address)


def parse_results(packet: Packet) -> list[OperationResult]:
    """All results in ``packet``, bundles flattened in order."""
    return [parse_result(m) for m in flatten(packet)]
