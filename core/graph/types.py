"""core/graph/types.py — Immutable value objects for the signal graph.

    Topology (one published snapshot)
    ├── nodes   handle → Processor
    ├── edges   Edge(source, source_output, target, target_input)
    └── output_node   handle of the AudioOutput sink

Port references arrive from the wire either by name or by index and are
resolved against a node's declared port table before an ``Edge`` is built,
so every ``Edge`` carries plain integer port indices.
"""

from __future__ import annotations

import heapq
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from core.graph.processors import Processor


# ---------------------------------------------------------------------------
# Port references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortName:
    """Port addressed by its declared name, e.g. ``PortName("frequency")``."""

    name: str

    def __str__(self) -> str:
        return f"port {self.name!r}"


@dataclass(frozen=True)
class PortIndex:
    """Port addressed by its 0-based position in the node's port table."""

    index: int

    def __str__(self) -> str:
        return f"port #{self.index}"


PortRef = Union[PortName, PortIndex]


# ---------------------------------------------------------------------------
# Edges and snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Edge:
    """One connection from an output slot to an input slot."""

    source: int
    source_output: int
    target: int
    target_input: int

    def touches(self, handle: int) -> bool:
        """True if either endpoint is ``handle``."""
        return self.source == handle or self.target == handle


@dataclass(frozen=True, eq=False)
class Topology:
    """Immutable graph snapshot read by the render thread.

    A new ``Topology`` is built for every committed transaction and swapped
    in with a single reference assignment.  Nothing here is mutated after
    construction; the derived views below are computed lazily and cached on
    the instance.
    """

    nodes: Mapping[int, Processor]
    edges: frozenset[Edge]
    output_node: int
    version: int = 0

    @cached_property
    def incoming(self) -> dict[int, dict[int, Edge]]:
        """``target → {input index → Edge}``."""
        index: dict[int, dict[int, Edge]] = {}
        for edge in self.edges:
            index.setdefault(edge.target, {})[edge.target_input] = edge
        return index

    @cached_property
    def render_order(self) -> tuple[int, ...]:
        """Handles upstream of the audio output, sources first.

        Nodes that cannot reach the output are never rendered.
        """
        incoming = self.incoming
        upstream: set[int] = set()
        stack = [self.output_node]
        while stack:
            handle = stack.pop()
            if handle in upstream:
                continue
            upstream.add(handle)
            stack.extend(e.source for e in incoming.get(handle, {}).values())

        pending = {h: len(incoming.get(h, {})) for h in upstream}
        downstream: dict[int, list[int]] = {}
        for edge in self.edges:
            if edge.target in upstream:
                downstream.setdefault(edge.source, []).append(edge.target)

        ready = [h for h, n in pending.items() if n == 0]
        heapq.heapify(ready)
        order: list[int] = []
        while ready:
            handle = heapq.heappop(ready)
            order.append(handle)
            for target in downstream.get(handle, ()):
                pending[target] -= 1
                if pending[target] == 0:
                    heapq.heappush(ready, target)
        return tuple(order)

    def edges_of(self, handle: int) -> frozenset[Edge]:
        """Every edge with ``handle`` at either end."""
        return frozenset(e for e in self.edges if e.touches(handle))
