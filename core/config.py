"""
Configuration dataclasses for the graph control server.

These immutable config objects are the values a Session and its transport
loop are constructed with.  ``from_env`` reads ``GRAPH_SERVER_*`` variables
(the entrypoint loads ``.env`` first via python-dotenv); CLI flags are applied
on top with ``dataclasses.replace``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

# Allowlists kept as module constants so callers can validate CLI choices
# without importing the audio layer.
VALID_BACKENDS: frozenset[str] = frozenset({"null", "sounddevice"})
VALID_RECV_ERROR_POLICIES: frozenset[str] = frozenset({"continue", "exit"})
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_PREFIX = "GRAPH_SERVER_"


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for one server process (one Session, one UDP endpoint).

    Attributes:
        host: Address the UDP socket binds to. Defaults to loopback.
        port: UDP port. Defaults to 5050.
        output_channels: Playback channels on the audio output node.
            Defaults to 2 (stereo); the master bus feeds every channel.
        sample_rate: Render sample rate in Hz. Defaults to 48000.
        block_size: Frames rendered per block. Defaults to 512.
        backend: Audio backend name, ``"null"`` (no device, real-time paced
            render thread) or ``"sounddevice"`` (PortAudio).
        device: Backend-specific output device (name or index as a string).
            None selects the backend default.
        mixer_channels: Mixer channels allocated when the Session starts.
        max_mixer_channels: Upper bound on mixer growth; AddToMix beyond it
            fails instead of allocating.
        recv_error_policy: What the transport loop does after a socket
            receive error: ``"continue"`` logs and keeps serving, ``"exit"``
            logs and stops the loop.
        metrics_port: Port for the Prometheus exposition endpoint. None
            disables it.
        log_level: Root logging level name.

    Example:
        >>> config = ServerConfig(port=5051, backend="sounddevice")
    """

    host: str = "127.0.0.1"
    port: int = 5050
    output_channels: int = 2
    sample_rate: int = 48_000
    block_size: int = 512
    backend: str = "null"
    device: str | None = None
    mixer_channels: int = 2
    max_mixer_channels: int = 256
    recv_error_policy: str = "continue"
    metrics_port: int | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be in 0..65535, got {self.port}")
        if self.output_channels <= 0:
            raise ValueError(f"output_channels must be positive, got {self.output_channels}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.block_size <= 0:
            raise ValueError(f"block_size must be positive, got {self.block_size}")
        if self.mixer_channels < 0:
            raise ValueError(f"mixer_channels must be non-negative, got {self.mixer_channels}")
        if self.max_mixer_channels < self.mixer_channels:
            raise ValueError(
                f"max_mixer_channels ({self.max_mixer_channels}) must be at least "
                f"mixer_channels ({self.mixer_channels})"
            )
        if self.backend not in VALID_BACKENDS:
            raise ValueError(
                f"Unknown backend {self.backend!r}, valid options: {sorted(VALID_BACKENDS)}"
            )
        if self.recv_error_policy not in VALID_RECV_ERROR_POLICIES:
            raise ValueError(
                f"Unknown recv_error_policy {self.recv_error_policy!r}, "
                f"valid options: {sorted(VALID_RECV_ERROR_POLICIES)}"
            )
        if self.metrics_port is not None and not 0 < self.metrics_port <= 65535:
            raise ValueError(f"metrics_port must be in 1..65535, got {self.metrics_port}")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Unknown log_level {self.log_level!r}, valid options: {list(VALID_LOG_LEVELS)}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Build a config from ``GRAPH_SERVER_*`` variables.

        Unset or empty variables keep the field default.

        Args:
            environ: Mapping to read instead of ``os.environ`` (tests).

        Raises:
            ValueError: If a variable does not parse or fails validation.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(_ENV_PREFIX + name, "").strip()
            return value or None

        kwargs: dict[str, object] = {}
        for field_name, convert in (
            ("host", str),
            ("port", int),
            ("output_channels", int),
            ("sample_rate", int),
            ("block_size", int),
            ("backend", str.lower),
            ("device", str),
            ("mixer_channels", int),
            ("max_mixer_channels", int),
            ("recv_error_policy", str.lower),
            ("metrics_port", int),
            ("log_level", str.upper),
        ):
            raw = get(field_name.upper())
            if raw is None:
                continue
            try:
                kwargs[field_name] = convert(raw)
            except ValueError as exc:
                raise ValueError(f"{_ENV_PREFIX}{field_name.upper()}={raw!r}: {exc}") from exc
        return cls(**kwargs)  # type: ignore[arg-type]


DEFAULT_CONFIG = ServerConfig()
"""Loopback on port 5050, null backend, stereo, 48 kHz, 512-frame blocks."""
