"""
core/protocol/codec.py — OSC wire codec built on python-osc.

Wire format (OSC 1.0):
    message   address string, type-tag string, arguments
    bundle    "#bundle", 64-bit time tag, size-prefixed elements

Supported argument tags:
    i  32-bit int       → int
    f  32-bit float     → float
    T/F  boolean        → bool
    s  string           → str

Design:
    - ``decode`` returns a tree (``Message`` or ``Bundle``) and never raises
      anything but ``DecodeError`` for bad bytes.
    - ``flatten`` walks that tree depth-first.  Time tags are ignored and the
      encoded order is preserved exactly (python-osc's ``OscPacket`` sorts by
      time tag, so it is not used here).
    - ``encode`` is the structural inverse, always with an immediate time tag
      on bundles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from pythonosc import osc_bundle, osc_bundle_builder, osc_message, osc_message_builder
from pythonosc.parsing import osc_types

from core.errors import DecodeError

OscArg = Union[int, float, bool, str]

MTU = 1536
"""Receive buffer size for one datagram."""


@dataclass(frozen=True)
class Message:
    """One OSC message: address plus ordered arguments."""

    address: str
    args: tuple[OscArg, ...] = ()


@dataclass(frozen=True)
class Bundle:
    """Ordered container of messages and nested bundles."""

    contents: tuple[Union[Message, "Bundle"], ...] = ()


Packet = Union[Message, Bundle]

_PARSE_ERRORS = (
    osc_message.ParseError,
    osc_bundle.ParseError,
    osc_types.ParseError,
    ValueError,
    IndexError,
)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode(data: bytes) -> Packet:
    """Parse one datagram.

    Raises:
        DecodeError: If ``data`` is not a well-formed OSC message or bundle.
            The parser exception is available as ``.cause``.
    """
    try:
        if osc_bundle.OscBundle.dgram_is_bundle(data):
            return _from_bundle(osc_bundle.OscBundle(data))
        if osc_message.OscMessage.dgram_is_message(data):
            return _from_message(osc_message.OscMessage(data))
        raise osc_message.ParseError("datagram is neither an OSC message nor a bundle")
    except _PARSE_ERRORS as exc:
        raise DecodeError(exc) from exc


def _from_message(msg: osc_message.OscMessage) -> Message:
    return Message(address=msg.address, args=tuple(msg.params))


def _from_bundle(bundle: osc_bundle.OscBundle) -> Bundle:
    contents: list[Packet] = []
    for content in bundle:
        if isinstance(content, osc_bundle.OscBundle):
            contents.append(_from_bundle(content))
        else:
            contents.append(_from_message(content))
    return Bundle(contents=tuple(contents))


def flatten(packet: Packet) -> list[Message]:
    """Leaf messages of ``packet`` in encoded order (depth-first)."""
    if isinstance(packet, Message):
        return [packet]
    messages: list[Message] = []
    for content in packet.contents:
        messages.extend(flatten(content))
    return messages


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _arg_type(arg: object) -> str:
    # bool first: bool is a subclass of int
    if isinstance(arg, bool):
        return (
            osc_message_builder.OscMessageBuilder.ARG_TYPE_TRUE
            if arg
            else osc_message_builder.OscMessageBuilder.ARG_TYPE_FALSE
        )
    if isinstance(arg, int):
        return osc_message_builder.OscMessageBuilder.ARG_TYPE_INT
    if isinstance(arg, float):
        return osc_message_builder.OscMessageBuilder.ARG_TYPE_FLOAT
    if isinstance(arg, str):
        return osc_message_builder.OscMessageBuilder.ARG_TYPE_STRING
    raise TypeError(f"Unsupported OSC arg type {type(arg)}: {arg!r}")


def _build_message(message: Message) -> osc_message.OscMessage:
    builder = osc_message_builder.OscMessageBuilder(address=message.address)
    for arg in message.args:
        builder.add_arg(arg, _arg_type(arg))
    return builder.build()


def _build_bundle(bundle: Bundle) -> osc_bundle.OscBundle:
    builder = osc_bundle_builder.OscBundleBuilder(osc_bundle_builder.IMMEDIATELY)
    for content in bundle.contents:
        if isinstance(content, Bundle):
            builder.add_content(_build_bundle(content))
        else:
            builder.add_content(_build_message(content))
    return builder.build()


def encode(packet: Packet) -> bytes:
    """Serialize a message or bundle to datagram bytes.

    Raises:
        TypeError: If an argument is not bool, int, float or str.
    """
    if isinstance(packet, Bundle):
        return _build_bundle(packet).dgram
    return _build_message(packet).dgram
