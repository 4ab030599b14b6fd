"""
core/graph/processors.py — Node processors for the signal graph.

Every node in the graph wraps one ``Processor``.  A processor declares its
port tables (``inputs`` / ``outputs`` name tuples) and renders one block at a
time:

    process(inputs, frames, sample_rate) → list of output blocks

Design:
    - Blocks are 1-D numpy arrays of length ``frames``.  Audio-rate blocks are
      float32; constant nodes may emit bool or object (string) blocks.
    - Unconnected inputs receive a block filled with that input's default.
    - Oscillators keep their phase on the instance.  Only the render thread
      calls ``process``; the control thread only constructs processors.
    - The wire-visible registry is closed: exactly the names listed in
      ``PROCESSOR_REGISTRY``.  ``Constant``, ``Passthrough``, ``Sum`` and
      ``AudioOutput`` are created by the session, never by name.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from core.errors import UnknownProcessor
from core.graph.types import PortIndex, PortName, PortRef

_TWO_PI = 2.0 * np.pi


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class Processor:
    """Base class for graph nodes.

    Subclasses set ``inputs``, ``outputs`` and ``defaults`` (one default per
    input) and implement :meth:`process`.
    """

    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    defaults: tuple[object, ...] = ()

    @property
    def name(self) -> str:
        return type(self).__name__

    def default_for(self, index: int) -> object:
        """Default value for an unconnected input."""
        if index < len(self.defaults):
            return self.defaults[index]
        return 0.0

    def resolve_input(self, port: PortRef) -> int | None:
        """Resolve an input reference to its index, or None if absent."""
        return _resolve(self.inputs, port)

    def resolve_output(self, port: PortRef) -> int | None:
        """Resolve an output reference to its index, or None if absent."""
        return _resolve(self.outputs, port)

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.name}()"


def _resolve(table: tuple[str, ...], port: PortRef) -> int | None:
    if isinstance(port, PortName):
        try:
            return table.index(port.name)
        except ValueError:
            return None
    if isinstance(port, PortIndex):
        return port.index if 0 <= port.index < len(table) else None
    return None


# ---------------------------------------------------------------------------
# Structural nodes (session-internal)
# ---------------------------------------------------------------------------


class Constant(Processor):
    """Emits the same value on every frame.

    The block dtype follows the value: float32 for numbers, bool for
    booleans, object for strings.
    """

    outputs = ("out",)

    def __init__(self, value: float | bool | str) -> None:
        self.value = value
        if isinstance(value, bool):
            self._dtype: type | str = np.bool_
        elif isinstance(value, str):
            self._dtype = object
        else:
            self._dtype = np.float32

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [np.full(frames, self.value, dtype=self._dtype)]

    def __repr__(self) -> str:
        return f"Constant({self.value!r})"


class Passthrough(Processor):
    """Copies its single input to its single output (unity gain)."""

    inputs = ("in",)
    outputs = ("out",)
    defaults = (0.0,)

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [inputs[0]]


class Sum(Processor):
    """Sums ``channels`` inputs named ``in0`` … ``in{n-1}``.

    Used as the master bus: the session swaps in a wider ``Sum`` each time the
    mixer grows.
    """

    outputs = ("out",)

    def __init__(self, channels: int) -> None:
        if channels < 0:
            raise ValueError(f"channels must be non-negative, got {channels}")
        self.channels = channels
        self.inputs = tuple(f"in{i}" for i in range(channels))
        self.defaults = (0.0,) * channels

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        out = np.zeros(frames, dtype=np.float32)
        for block in inputs:
            out += block
        return [out]

    def __repr__(self) -> str:
        return f"Sum({self.channels})"


class AudioOutput(Processor):
    """Sink whose inputs are the playback channels.  Has no outputs."""

    def __init__(self, channels: int) -> None:
        if channels <= 0:
            raise ValueError(f"channels must be positive, got {channels}")
        self.channels = channels
        self.inputs = tuple(f"out{i}" for i in range(channels))
        self.defaults = (0.0,) * channels

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return []

    def __repr__(self) -> str:
        return f"AudioOutput({self.channels})"


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


class _Binary(Processor):
    inputs = ("a", "b")
    outputs = ("out",)
    defaults = (0.0, 0.0)


class Add(_Binary):
    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [np.add(inputs[0], inputs[1])]


class Sub(_Binary):
    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [np.subtract(inputs[0], inputs[1])]


class Mul(_Binary):
    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [np.multiply(inputs[0], inputs[1])]


class Div(_Binary):
    """``a / b``; frames where ``b == 0`` output 0."""

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        a = np.asarray(inputs[0], dtype=np.float32)
        b = np.asarray(inputs[1], dtype=np.float32)
        out = np.zeros(frames, dtype=np.float32)
        np.divide(a, b, out=out, where=b != 0)
        return [out]


class Neg(Processor):
    inputs = ("in",)
    outputs = ("out",)
    defaults = (0.0,)

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        return [np.negative(inputs[0])]


# ---------------------------------------------------------------------------
# Oscillators
# ---------------------------------------------------------------------------


class SineOscillator(Processor):
    """Sine wave.  ``phase`` is an offset in cycles added to the running phase."""

    inputs = ("frequency", "phase")
    outputs = ("out",)
    defaults = (440.0, 0.0)

    def __init__(self) -> None:
        self._phase = 0.0

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        freq = np.asarray(inputs[0], dtype=np.float64)
        offset = np.asarray(inputs[1], dtype=np.float64)
        increments = freq / sample_rate
        phase = self._phase + np.cumsum(increments) - increments
        self._phase = float((phase[-1] + increments[-1]) % 1.0) if frames else self._phase
        return [np.sin(_TWO_PI * (phase + offset)).astype(np.float32)]


class BlSawOscillator(Processor):
    """Band-limited sawtooth using a PolyBLEP correction at each wrap."""

    inputs = ("frequency",)
    outputs = ("out",)
    defaults = (440.0,)

    def __init__(self) -> None:
        self._phase = 0.0

    def process(self, inputs: list[np.ndarray], frames: int, sample_rate: float) -> list[np.ndarray]:
        freq = np.asarray(inputs[0], dtype=np.float64)
        dt = np.abs(freq) / sample_rate
        out = np.empty(frames, dtype=np.float32)
        phase = self._phase
        for i in range(frames):
            step = dt[i]
            value = 2.0 * phase - 1.0
            value -= _poly_blep(phase, step)
            out[i] = value
            phase += step
            if phase >= 1.0:
                phase -= np.floor(phase)
        self._phase = phase
        return [out]


def _poly_blep(t: float, dt: float) -> float:
    """Two-sample polynomial residual removed around a discontinuity."""
    if dt <= 0.0:
        return 0.0
    if t < dt:
        t /= dt
        return t + t - t * t - 1.0
    if t > 1.0 - dt:
        t = (t - 1.0) / dt
        return t * t + t + t + 1.0
    return 0.0


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PROCESSOR_REGISTRY: dict[str, Callable[[], Processor]] = {
    "Add": Add,
    "Sub": Sub,
    "Mul": Mul,
    "Div": Div,
    "Neg": Neg,
    "SineOscillator": SineOscillator,
    "BlSawOscillator": BlSawOscillator,
}
"""Processors creatable by name over the wire.  Names are case-sensitive."""


def create_processor(name: str) -> Processor:
    """Instantiate a registered processor by name.

    Raises:
        UnknownProcessor: If ``name`` is not in :data:`PROCESSOR_REGISTRY`.
    """
    factory = PROCESSOR_REGISTRY.get(name)
    if factory is None:
        raise UnknownProcessor(name)
    return factory()
