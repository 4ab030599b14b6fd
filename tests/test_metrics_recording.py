"""Tests for infrastructure/metrics.py — Prometheus counter recording.

Verifies that:
- All public record_*() helpers increment the correct counter
- record_operation() increments both total and latency histogram
- Gauges follow the mixer size and render state
- LatencyTimer measures elapsed time correctly
- The exposition body contains every metric family

Design notes
------------
Counters are cumulative within the module registry and cannot be reset,
so every assertion compares a before/after delta instead of an absolute
value.
"""

from __future__ import annotations

import time

from infrastructure import metrics as metrics_module

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _value(name: str, **labels: str) -> float:
    """Read a sample from the metrics registry (0.0 when never observed)."""
    return metrics_module._REGISTRY.get_sample_value(name, labels or None) or 0.0


# ---------------------------------------------------------------------------
# LatencyTimer
# ---------------------------------------------------------------------------


class TestLatencyTimer:
    def test_elapsed_measured_correctly(self) -> None:
        with metrics_module.LatencyTimer() as t:
            time.sleep(0.02)
        assert t.elapsed >= 0.02
        assert t.elapsed < 1.0

    def test_elapsed_zero_before_exit(self) -> None:
        timer = metrics_module.LatencyTimer()
        timer.__enter__()
        # elapsed is 0.0 before __exit__
        assert timer.elapsed == 0.0
        timer.__exit__(None, None, None)
        assert timer.elapsed > 0

    def test_elapsed_set_when_block_raises(self) -> None:
        timer = metrics_module.LatencyTimer()
        try:
            with timer:
                raise RuntimeError("op failed")
        except RuntimeError:
            pass
        assert timer.elapsed > 0

    def test_timer_usable_as_context_manager(self) -> None:
        """Verify __enter__ returns the timer itself."""
        timer = metrics_module.LatencyTimer()
        result = timer.__enter__()
        timer.__exit__(None, None, None)
        assert result is timer


# ---------------------------------------------------------------------------
# Counter increments
# ---------------------------------------------------------------------------


class TestCounterIncrements:
    def test_record_datagram(self) -> None:
        before = _value("graph_datagrams_total")
        metrics_module.record_datagram()
        assert _value("graph_datagrams_total") - before == 1.0

    def test_record_decode_error(self) -> None:
        before = _value("graph_decode_errors_total")
        metrics_module.record_decode_error()
        metrics_module.record_decode_error()
        assert _value("graph_decode_errors_total") - before == 2.0

    def test_record_operation_increments_total_counter(self) -> None:
        before = _value("graph_operations_total", kind="Connect", status="ok")
        metrics_module.record_operation(kind="Connect", status="ok", latency_seconds=0.001)
        assert _value("graph_operations_total", kind="Connect", status="ok") - before == 1.0

    def test_record_operation_increments_latency_histogram(self) -> None:
        before = _value("graph_operation_latency_seconds_count", kind="ReplaceNode")
        metrics_module.record_operation(kind="ReplaceNode", status="ok", latency_seconds=0.002)
        assert _value("graph_operation_latency_seconds_count", kind="ReplaceNode") - before == 1.0

    def test_record_operation_uses_correct_labels(self) -> None:
        """Different kind/status labels must be tracked separately."""
        before_ok = _value("graph_operations_total", kind="AddToMix", status="ok")
        before_err = _value("graph_operations_total", kind="AddToMix", status="InvalidPort")

        metrics_module.record_operation(kind="AddToMix", status="InvalidPort", latency_seconds=0.0)

        assert _value("graph_operations_total", kind="AddToMix", status="ok") == before_ok
        assert _value("graph_operations_total", kind="AddToMix", status="InvalidPort") - before_err == 1.0

    def test_record_socket_error_by_direction(self) -> None:
        before_recv = _value("graph_socket_errors_total", direction="recv")
        before_send = _value("graph_socket_errors_total", direction="send")
        metrics_module.record_socket_error("send")
        assert _value("graph_socket_errors_total", direction="recv") == before_recv
        assert _value("graph_socket_errors_total", direction="send") - before_send == 1.0

    def test_burst_accumulates(self) -> None:
        before = _value("graph_datagrams_total")
        for _ in range(50):
            metrics_module.record_datagram()
        assert _value("graph_datagrams_total") - before == 50.0


# ---------------------------------------------------------------------------
# Gauges
# ---------------------------------------------------------------------------


class TestGauges:
    def test_mixer_channels(self) -> None:
        metrics_module.set_mixer_channels(7)
        assert _value("graph_mixer_channels") == 7.0

    def test_render_active(self) -> None:
        metrics_module.set_render_active(True)
        assert _value("graph_render_active") == 1.0
        metrics_module.set_render_active(False)
        assert _value("graph_render_active") == 0.0


# ---------------------------------------------------------------------------
# Exposition
# ---------------------------------------------------------------------------


class TestExposition:
    def test_body_contains_every_family(self) -> None:
        metrics_module.record_operation(kind="Play", status="ok", latency_seconds=0.0)
        body, content_type = metrics_module.get_metrics_response()
        text = body.decode()
        for family in (
            "graph_datagrams_total",
            "graph_decode_errors_total",
            "graph_operations_total",
            "graph_operation_latency_seconds",
            "graph_socket_errors_total",
            "graph_mixer_channels",
            "graph_render_active",
        ):
            assert family in text
        assert content_type.startswith("text/plain")
