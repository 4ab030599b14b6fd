"""Prometheus metrics for the graph control server.

Metrics:
    graph_datagrams_total            Datagrams received on the control socket
    graph_decode_errors_total        Datagrams dropped because they did not decode
    graph_operations_total           Operations attempted, by kind and status
    graph_operation_latency_seconds  Histogram of per-operation apply latency
    graph_socket_errors_total        Socket receive/send failures, by direction
    graph_mixer_channels             Current number of mixer channels
    graph_render_active              1 while a render handle is installed

Usage::

    from infrastructure.metrics import record_datagram, record_operation

    record_datagram()
    record_operation(kind="Connect", status="ok", latency_seconds=t.elapsed)
"""

from __future__ import annotations

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

logger = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

datagrams_total = Counter(
    "graph_datagrams_total",
    "Datagrams received on the control socket",
    registry=_REGISTRY,
)

decode_errors_total = Counter(
    "graph_decode_errors_total",
    "Datagrams dropped because they were not valid OSC",
    registry=_REGISTRY,
)

operations_total = Counter(
    "graph_operations_total",
    "Operations attempted, by kind and status",
    ["kind", "status"],
    registry=_REGISTRY,
)

operation_latency_seconds = Histogram(
    "graph_operation_latency_seconds",
    "Time spent applying one operation",
    ["kind"],
    buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
    registry=_REGISTRY,
)

socket_errors_total = Counter(
    "graph_socket_errors_total",
    "Control socket failures",
    ["direction"],
    registry=_REGISTRY,
)

mixer_channels = Gauge(
    "graph_mixer_channels",
    "Mixer channels currently allocated",
    registry=_REGISTRY,
)

render_active = Gauge(
    "graph_render_active",
    "1 while a render handle is installed",
    registry=_REGISTRY,
)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def record_datagram() -> None:
    """Increment received-datagram counter."""
    datagrams_total.inc()


def record_decode_error() -> None:
    """Increment dropped-datagram counter."""
    decode_errors_total.inc()


def record_operation(*, kind: str, status: str, latency_seconds: float) -> None:
    """Record one attempted operation.

    Args:
        kind: Operation class name (``"Connect"``) or ``"unparsed"`` when the
            message never became an operation.
        status: ``"ok"`` or the error class name (``"InvalidPort"``).
        latency_seconds: Wall-clock apply time.
    """
    operations_total.labels(kind=kind, status=status).inc()
    operation_latency_seconds.labels(kind=kind).observe(latency_seconds)


def record_socket_error(direction: str) -> None:
    """Increment socket failure counter.

    Args:
        direction: ``"recv"`` or ``"send"``.
    """
    socket_errors_total.labels(direction=direction).inc()


def set_mixer_channels(count: int) -> None:
    mixer_channels.set(count)


def set_render_active(active: bool) -> None:
    render_active.set(1 if active else 0)


def get_metrics_response() -> tuple[bytes, str]:
    """Generate Prometheus text exposition format.

    Returns:
        Tuple of (body_bytes, content_type_string).
    """
    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


def start_metrics_server(port: int, host: str = "127.0.0.1") -> None:
    """Serve ``/metrics`` for this registry on a background thread."""
    start_http_server(port, addr=host, registry=_REGISTRY)
    logger.info("Prometheus metrics on http://%s:%d/metrics", host, port)


class LatencyTimer:
    """Context manager for measuring latency.

    Usage::

        with LatencyTimer() as t:
            result = session.apply(op)
        record_operation(kind=op.kind, status="ok", latency_seconds=t.elapsed)
    """

    def __init__(self) -> None:
        """Initialize timer."""
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> LatencyTimer:
        """Start timing."""
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: object) -> None:
        """Stop timing and record elapsed."""
        self.elapsed = time.perf_counter() - self._start
