"""
Audio graph control server — entrypoint.

Startup:
    1. Load ``.env`` (python-dotenv), read ``GRAPH_SERVER_*`` variables
    2. Apply CLI flags on top (flags override env, env overrides defaults)
    3. Configure logging to stderr
    4. Start the Prometheus endpoint when ``--metrics-port`` is set
    5. Build the Session, bind the UDP socket, serve until interrupted

Running:
    python -m graph_server.server
    graph-server --port 5051 --backend sounddevice --device 3
    GRAPH_SERVER_PORT=5051 graph-server --log-level DEBUG

Exit codes:
    0 — clean shutdown (Ctrl-C)
    1 — socket or audio failure while starting or serving
    2 — invalid configuration
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from collections.abc import Mapping, Sequence

from dotenv import load_dotenv

from core.config import VALID_BACKENDS, VALID_LOG_LEVELS, VALID_RECV_ERROR_POLICIES, ServerConfig
from graph_server.session import Session
from graph_server.transport import ControlLoop, configure_logging
from infrastructure.metrics import start_metrics_server

logger = logging.getLogger(__name__)

# CLI dest → ServerConfig field; flags left at None keep the env/default value
_OVERRIDABLE = (
    "host",
    "port",
    "output_channels",
    "sample_rate",
    "block_size",
    "backend",
    "device",
    "mixer_channels",
    "max_mixer_channels",
    "recv_error_policy",
    "metrics_port",
    "log_level",
)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="OSC control server for a live audio graph")
    p.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=None, help="UDP port (default: 5050)")
    p.add_argument(
        "--output-channels",
        type=int,
        default=None,
        help="Audio output channels; the master bus feeds all of them (default: 2)",
    )
    p.add_argument("--sample-rate", type=int, default=None, help="Sample rate in Hz (default: 48000)")
    p.add_argument("--block-size", type=int, default=None, help="Frames per render block (default: 512)")
    p.add_argument(
        "--backend",
        choices=sorted(VALID_BACKENDS),
        default=None,
        help="Audio backend (default: null)",
    )
    p.add_argument("--device", default=None, help="Output device name or index for the sounddevice backend")
    p.add_argument(
        "--mixer-channels",
        type=int,
        default=None,
        help="Mixer channels allocated at startup (default: 2)",
    )
    p.add_argument(
        "--max-mixer-channels",
        type=int,
        default=None,
        help="Upper bound for /add_to_mix channel growth (default: 256)",
    )
    p.add_argument(
        "--recv-error-policy",
        choices=sorted(VALID_RECV_ERROR_POLICIES),
        default=None,
        help="Keep serving or exit after a socket receive error (default: continue)",
    )
    p.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (default: disabled)",
    )
    p.add_argument(
        "--log-level",
        type=str.upper,
        choices=list(VALID_LOG_LEVELS),
        default=None,
        help="Logging level (default: INFO)",
    )
    return p.parse_args(argv)


def build_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Environment config with every CLI flag that was given applied on top.

    Raises:
        ValueError: If the merged configuration is invalid.
    """
    config = ServerConfig.from_env(environ)
    overrides = {name: getattr(args, name) for name in _OVERRIDABLE if getattr(args, name) is not None}
    return dataclasses.replace(config, **overrides) if overrides else config


def run(config: ServerConfig) -> None:
    """Serve ``config`` until KeyboardInterrupt; always releases socket and device."""
    if config.metrics_port is not None:
        start_metrics_server(config.metrics_port, host=config.host)

    session = Session(config)
    loop = ControlLoop(
        session,
        host=config.host,
        port=config.port,
        recv_error_policy=config.recv_error_policy,
    )
    try:
        loop.bind()
        loop.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        loop.close()
        session.close()


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValueError as exc:
        print(f"graph-server: invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(config.log_level)
    logger.info(
        "Starting graph server on %s:%d (backend=%s, sr=%d, block=%d, outputs=%d)",
        config.host,
        config.port,
        config.backend,
        config.sample_rate,
        config.block_size,
        config.output_channels,
    )
    try:
        run(config)
    except OSError as exc:
        logger.error("Server failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
