#!/usr/bin/env python3
"""
Graph server smoke test.

Drives a real server process over UDP the way a controller would:
    1. Launches graph_server.server as a subprocess (null backend)
    2. Sends a malformed datagram, expects no reply
    3. Builds a sine oscillator and routes it into mixer channel 0
    4. Sends the bundle [Play, AddConstantF32(1.0), Stop]
    5. Sends an unknown processor name, expects /response/none

Usage:
    python3 scripts/smoke_test_server.py [--port 5077]

Expected output:
    ✓  malformed datagram — ignored
    ✓  add_processor SineOscillator — node 4
    ✓  add_to_mix — routed into channel 0
    ✓  bundle play/constant/stop — 3 ordered responses
    ✓  unknown processor — answered with /response/none
    All smoke tests passed.

Exit codes:
    0 — all tests passed
    1 — one or more tests failed
"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from pathlib import Path

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.protocol.types import (  # noqa: E402
    AddConstantF32,
    AddProcessor,
    AddToMix,
    EmptyResult,
    NodeResult,
    Play,
    PortName,
    Stop,
)
from graph_server.client import GraphClient  # noqa: E402

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent
MODULE = "graph_server.server"
BOOT_SECS = 2.0


def run_smoke_tests(port: int) -> int:
    """
    Launch server, run all checks, return exit code (0=pass, 1=fail).
    """
    failures: list[str] = []

    print(f"Launching server: {sys.executable} -m {MODULE} --port {port}")
    proc = subprocess.Popen(
        [sys.executable, "-m", MODULE, "--port", str(port), "--backend", "null"],
        stderr=subprocess.PIPE,
        cwd=str(PROJECT_ROOT),
        env={**os.environ, "PYTHONPATH": str(PROJECT_ROOT)},
    )

    try:
        time.sleep(BOOT_SECS)

        with GraphClient(port=port, timeout=1.0) as client:
            # ----------------------------------------------------------------
            # 1. malformed datagram
            # ----------------------------------------------------------------
            client.send_raw(b"\x00not-osc")
            try:
                client.receive()
                failures.append("malformed datagram: server replied")
            except TimeoutError:
                print("✓  malformed datagram — ignored")

            # ----------------------------------------------------------------
            # 2. add_processor
            # ----------------------------------------------------------------
            result = client.request(AddProcessor("SineOscillator"))
            if not isinstance(result, NodeResult):
                failures.append(f"add_processor: expected a node, got {result}")
                osc = None
            else:
                osc = result.handle
                print(f"✓  add_processor SineOscillator — node {osc}")

            # ----------------------------------------------------------------
            # 3. add_to_mix
            # ----------------------------------------------------------------
            if osc is not None:
                result = client.request(AddToMix(channel=0, source=osc, source_output=PortName("out")))
                if isinstance(result, EmptyResult):
                    print("✓  add_to_mix — routed into channel 0")
                else:
                    failures.append(f"add_to_mix: expected /response/none, got {result}")

            # ----------------------------------------------------------------
            # 4. bundle
            # ----------------------------------------------------------------
            results = client.request_many([Play(), AddConstantF32(1.0), Stop()])
            kinds = [type(r).__name__ for r in results]
            if kinds != ["EmptyResult", "NodeResult", "EmptyResult"]:
                failures.append(f"bundle: unexpected responses {kinds}")
            else:
                print("✓  bundle play/constant/stop — 3 ordered responses")

            # ----------------------------------------------------------------
            # 5. unknown processor
            # ----------------------------------------------------------------
            result = client.request(AddProcessor("sine"))
            if isinstance(result, EmptyResult):
                print("✓  unknown processor — answered with /response/none")
            else:
                failures.append(f"unknown processor: expected /response/none, got {result}")

    except (OSError, TimeoutError, ValueError) as exc:
        failures.append(f"Unexpected error: {exc}")
    finally:
        proc.terminate()
        try:
            proc.wait(timeout=3)
        except subprocess.TimeoutExpired:
            proc.kill()

    # ----------------------------------------------------------------
    # Summary
    # ----------------------------------------------------------------
    print()
    if failures:
        print(f"❌  {len(failures)} smoke test(s) FAILED:")
        for f in failures:
            print(f"   • {f}")
        if proc.stderr is not None:
            print(proc.stderr.read().decode(errors="replace")[-2000:])
        return 1
    print("✅  All smoke tests passed.")
    return 0


if __name__ == "__main__":
    p = argparse.ArgumentParser(description="Smoke-test a graph server subprocess")
    p.add_argument("--port", type=int, default=5077)
    sys.exit(run_smoke_tests(p.parse_args().port))
