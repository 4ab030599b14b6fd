"""Audio backends — start and stop the real-time render of a Graph.

A backend's ``start(graph, config)`` returns a ``RenderHandle``; calling
``stop()`` on the handle ends rendering.  The control thread is the only
caller of either method.  The render side (a paced thread for ``null``, the
PortAudio callback for ``sounddevice``) only ever calls ``graph.render``.

Backends:

    null         No device.  A daemon thread renders one block per block
                 period and discards it.  Used headless and in tests.
    sounddevice  PortAudio output stream via the ``sounddevice`` package.
                 Imported on first use so the rest of the server works on
                 hosts without PortAudio.

Every backend failure surfaces as ``EngineError``.  ``start`` has no timeout:
a device that hangs while opening blocks the caller.

Usage::

    backend = get_backend("null")
    handle = backend.start(graph, config)
    ...
    handle.stop()
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from core.config import ServerConfig
from core.errors import EngineError
from core.graph.engine import Graph

logger = logging.getLogger(__name__)


class RenderHandle(ABC):
    """An active render session."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """True until ``stop()`` completes."""

    @abstractmethod
    def stop(self) -> None:
        """Stop rendering and release the device.

        Raises:
            EngineError: If the backend fails while stopping.
        """


class AudioBackend(ABC):
    """Factory for render handles."""

    name: str = ""

    @abstractmethod
    def start(self, graph: Graph, config: ServerConfig) -> RenderHandle:
        """Begin rendering ``graph``.

        Raises:
            EngineError: If the device cannot be opened or started.
        """


# ---------------------------------------------------------------------------
# null backend
# ---------------------------------------------------------------------------


class ThreadRenderHandle(RenderHandle):
    """Render loop on a daemon thread, paced to the block period."""

    def __init__(self, graph: Graph, block_size: int, sample_rate: float) -> None:
        self._graph = graph
        self._block_size = block_size
        self._period = block_size / sample_rate
        self._stop_event = threading.Event()
        self.blocks_rendered = 0
        self._thread = threading.Thread(target=self._run, name="graph-render", daemon=True)

    def start(self) -> None:
        self._thread.start()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        deadline = time.monotonic()
        while not self._stop_event.is_set():
            self._graph.render(self._block_size)
            self.blocks_rendered += 1
            deadline += self._period
            delay = deadline - time.monotonic()
            if delay > 0:
                self._stop_event.wait(delay)
            else:
                # fell behind; restart pacing from now
                deadline = time.monotonic()

    def stop(self) -> None:
        self._stop_event.set()
        self._thread.join()
        logger.debug("Render thread stopped after %d blocks", self.blocks_rendered)


class NullBackend(AudioBackend):
    """Renders without a device."""

    name = "null"

    def start(self, graph: Graph, config: ServerConfig) -> RenderHandle:
        handle = ThreadRenderHandle(graph, config.block_size, float(config.sample_rate))
        try:
            handle.start()
        except RuntimeError as exc:
            raise EngineError(f"Cannot start render thread: {exc}") from exc
        logger.info(
            "Render started (backend=null, sr=%d, block=%d)",
            config.sample_rate,
            config.block_size,
        )
        return handle


# ---------------------------------------------------------------------------
# sounddevice backend
# ---------------------------------------------------------------------------


def _import_sounddevice() -> Any:
    """Import ``sounddevice`` on demand.

    Raises:
        EngineError: If the package or the PortAudio library is missing.
    """
    try:
        import sounddevice  # type: ignore[import]
    except (ImportError, OSError) as exc:
        raise EngineError(
            "sounddevice backend unavailable. "
            f"Install with: pip install sounddevice (and PortAudio) ({exc})"
        ) from exc
    return sounddevice


def _parse_device(device: str | None) -> int | str | None:
    if device is None:
        return None
    return int(device) if device.isdigit() else device


class StreamRenderHandle(RenderHandle):
    """Wraps a started ``sounddevice.OutputStream``."""

    def __init__(self, stream: Any, sd: Any) -> None:
        self._stream = stream
        self._sd = sd
        self._running = True

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False
        try:
            self._stream.stop()
            self._stream.close()
        except self._sd.PortAudioError as exc:
            raise EngineError(f"Failed to stop output stream: {exc}") from exc


class SoundDeviceBackend(AudioBackend):
    """PortAudio output through ``sounddevice``."""

    name = "sounddevice"

    def start(self, graph: Graph, config: ServerConfig) -> RenderHandle:
        sd = _import_sounddevice()

        def callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            if status:
                logger.warning("Output stream status: %s", status)
            outdata[:] = graph.render(frames)

        try:
            stream = sd.OutputStream(
                samplerate=config.sample_rate,
                blocksize=config.block_size,
                channels=config.output_channels,
                dtype="float32",
                device=_parse_device(config.device),
                callback=callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise EngineError(f"Cannot open output device {config.device!r}: {exc}") from exc

        logger.info(
            "Render started (backend=sounddevice, device=%s, sr=%d, block=%d, channels=%d)",
            config.device or "default",
            config.sample_rate,
            config.block_size,
            config.output_channels,
        )
        return StreamRenderHandle(stream, sd)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BACKENDS: dict[str, type[AudioBackend]] = {
    NullBackend.name: NullBackend,
    SoundDeviceBackend.name: SoundDeviceBackend,
}


def get_backend(name: str) -> AudioBackend:
    """Instantiate the backend registered under ``name``.

    Raises:
        ValueError: If no backend has that name.
    """
    try:
        return BACKENDS[name]()
    except KeyError:
        raise ValueError(f"Unknown audio backend {name!r}, valid options: {sorted(BACKENDS)}") from None
