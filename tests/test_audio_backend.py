"""Tests for infrastructure/audio.py — null and sounddevice backends.

The sounddevice backend is tested against a fake module patched in place of
the real import, so no PortAudio library or device is needed.
"""

from __future__ import annotations

import sys
import time
from typing import Any

import numpy as np
import pytest

from core.config import ServerConfig
from core.errors import EngineError
from core.graph.engine import Graph
from core.graph.processors import Constant
from core.graph.types import PortIndex
from graph_server.session import Session
from infrastructure import audio
from infrastructure.audio import (
    BACKENDS,
    NullBackend,
    SoundDeviceBackend,
    ThreadRenderHandle,
    get_backend,
)


def _graph_with_constant(value: float, channels: int = 2) -> Graph:
    graph = Graph(output_channels=channels)
    with graph.transaction() as tx:
        c = tx.add_node(Constant(value))
        for ch in range(channels):
            tx.connect(c, PortIndex(0), graph.output_node, PortIndex(ch))
    return graph


# ---------------------------------------------------------------------------
# Fake sounddevice
# ---------------------------------------------------------------------------


class _FakePortAudioError(Exception):
    pass


class _FakeStream:
    def __init__(self, fail_start: bool = False, fail_stop: bool = False, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False
        self._fail_start = fail_start
        self._fail_stop = fail_stop

    def start(self) -> None:
        if self._fail_start:
            raise _FakePortAudioError("Device unavailable")
        self.started = True

    def stop(self) -> None:
        if self._fail_stop:
            raise _FakePortAudioError("Stream already gone")
        self.started = False

    def close(self) -> None:
        self.closed = True


class _FakeSoundDevice:
    PortAudioError = _FakePortAudioError

    def __init__(self, fail_start: bool = False, fail_stop: bool = False) -> None:
        self.streams: list[_FakeStream] = []
        self._fail_start = fail_start
        self._fail_stop = fail_stop

    def OutputStream(self, **kwargs: Any) -> _FakeStream:  # noqa: N802
        stream = _FakeStream(fail_start=self._fail_start, fail_stop=self._fail_stop, **kwargs)
        self.streams.append(stream)
        return stream


@pytest.fixture()
def fake_sd(monkeypatch: pytest.MonkeyPatch) -> _FakeSoundDevice:
    sd = _FakeSoundDevice()
    monkeypatch.setattr(audio, "_import_sounddevice", lambda: sd)
    return sd


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_backend_names(self) -> None:
        assert set(BACKENDS) == {"null", "sounddevice"}

    def test_get_backend(self) -> None:
        assert isinstance(get_backend("null"), NullBackend)
        assert isinstance(get_backend("sounddevice"), SoundDeviceBackend)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown audio backend"):
            get_backend("jack")


# ---------------------------------------------------------------------------
# Null backend
# ---------------------------------------------------------------------------


class TestNullBackend:
    def test_renders_until_stopped(self) -> None:
        config = ServerConfig(block_size=32, sample_rate=32_000)
        handle = NullBackend().start(_graph_with_constant(0.5), config)
        assert isinstance(handle, ThreadRenderHandle)
        try:
            deadline = time.monotonic() + 2.0
            while handle.blocks_rendered < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert handle.is_running
        finally:
            handle.stop()
        assert handle.blocks_rendered >= 3
        assert not handle.is_running

    def test_session_play_stop_with_null_backend(self) -> None:
        session = Session(ServerConfig(port=0, block_size=32, sample_rate=32_000))
        session.play()
        assert session.is_playing
        session.stop()
        assert not session.is_playing


# ---------------------------------------------------------------------------
# sounddevice backend
# ---------------------------------------------------------------------------


class TestSoundDeviceBackend:
    def test_opens_stream_with_config(self, fake_sd: _FakeSoundDevice) -> None:
        config = ServerConfig(backend="sounddevice", device="3", sample_rate=44_100, block_size=128)
        handle = SoundDeviceBackend().start(_graph_with_constant(0.25), config)
        (stream,) = fake_sd.streams
        assert stream.started
        assert stream.kwargs["samplerate"] == 44_100
        assert stream.kwargs["blocksize"] == 128
        assert stream.kwargs["channels"] == 2
        assert stream.kwargs["dtype"] == "float32"
        assert stream.kwargs["device"] == 3
        assert handle.is_running

    def test_named_device_passed_through(self, fake_sd: _FakeSoundDevice) -> None:
        config = ServerConfig(backend="sounddevice", device="Built-in Output")
        SoundDeviceBackend().start(_graph_with_constant(0.25), config)
        assert fake_sd.streams[0].kwargs["device"] == "Built-in Output"

    def test_callback_renders_graph(self, fake_sd: _FakeSoundDevice) -> None:
        SoundDeviceBackend().start(_graph_with_constant(0.25), ServerConfig(backend="sounddevice"))
        outdata = np.zeros((64, 2), dtype=np.float32)
        fake_sd.streams[0].callback(outdata, 64, None, None)
        assert np.allclose(outdata, 0.25)

    def test_stop_closes_stream(self, fake_sd: _FakeSoundDevice) -> None:
        handle = SoundDeviceBackend().start(_graph_with_constant(0.0), ServerConfig(backend="sounddevice"))
        handle.stop()
        assert fake_sd.streams[0].closed
        assert not handle.is_running

    def test_start_failure_is_engine_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sd = _FakeSoundDevice(fail_start=True)
        monkeypatch.setattr(audio, "_import_sounddevice", lambda: sd)
        with pytest.raises(EngineError, match="Device unavailable"):
            SoundDeviceBackend().start(_graph_with_constant(0.0), ServerConfig(backend="sounddevice"))

    def test_stop_failure_is_engine_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sd = _FakeSoundDevice(fail_stop=True)
        monkeypatch.setattr(audio, "_import_sounddevice", lambda: sd)
        handle = SoundDeviceBackend().start(_graph_with_constant(0.0), ServerConfig(backend="sounddevice"))
        with pytest.raises(EngineError, match="Failed to stop"):
            handle.stop()
        assert not handle.is_running

    def test_missing_package_is_engine_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setitem(sys.modules, "sounddevice", None)
        with pytest.raises(EngineError, match="sounddevice backend unavailable"):
            SoundDeviceBackend().start(_graph_with_constant(0.0), ServerConfig(backend="sounddevice"))
