"""
core/graph/engine.py — Mutable signal graph with snapshot publication.

Concurrency model
─────────────────
::

    control thread                         render thread
    ──────────────                         ─────────────
    with graph.transaction() as tx:        topo = graph.snapshot()
        tx.add_node(...)                   render every node in topo
        tx.connect(...)                    (never sees a half-built topo)
    # commit: build Topology, swap ref

The render thread never takes the lock.  It reads ``_topology`` once per
block; a reference read is atomic, and every published ``Topology`` is
immutable.  Writers serialize on ``_write_lock`` and hold it only while
building and publishing the next snapshot (pure in-memory work, no I/O).

A transaction that raises is discarded as a whole, so a failing operation
never leaves a partial edge set behind.

Handles
───────
Node handles are keys into the graph's arena, issued from a counter that
only grows.  A handle is meaningful only for the ``Graph`` that issued it;
passing a handle from another graph is an unchecked precondition.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

import numpy as np

from core.errors import EngineError, InvalidPort, UnknownNode
from core.graph.processors import AudioOutput, Processor
from core.graph.types import Edge, PortIndex, PortRef, Topology

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


class GraphTransaction:
    """Working copy of the topology.  Obtain one via :meth:`Graph.transaction`."""

    def __init__(self, base: Topology, next_handle: int) -> None:
        self._nodes: dict[int, Processor] = dict(base.nodes)
        self._inputs: dict[tuple[int, int], Edge] = {
            (e.target, e.target_input): e for e in base.edges
        }
        self._output_node = base.output_node
        self.next_handle = next_handle
        self.changed = False

    # ── queries ────────────────────────────────────────────────────────────

    def processor(self, handle: int) -> Processor:
        """Processor at ``handle``.

        Raises:
            UnknownNode: If the handle is not in the graph.
        """
        try:
            return self._nodes[handle]
        except KeyError:
            raise UnknownNode(handle) from None

    def edges(self) -> frozenset[Edge]:
        return frozenset(self._inputs.values())

    def resolve_output(self, handle: int, port: PortRef) -> int:
        index = self.processor(handle).resolve_output(port)
        if index is None:
            raise InvalidPort(handle, port, "output")
        return index

    def resolve_input(self, handle: int, port: PortRef) -> int:
        index = self.processor(handle).resolve_input(port)
        if index is None:
            raise InvalidPort(handle, port, "input")
        return index

    # ── mutations ──────────────────────────────────────────────────────────

    def add_node(self, processor: Processor) -> int:
        """Insert ``processor`` and return its freshly issued handle."""
        handle = self.next_handle
        self.next_handle += 1
        self._nodes[handle] = processor
        self.changed = True
        return handle

    def set_processor(self, handle: int, processor: Processor) -> None:
        """Swap the processor at ``handle`` keeping every edge that still fits.

        Raises:
            UnknownNode: If the handle is not in the graph.
            EngineError: If an existing edge would fall outside the new port
                tables.
        """
        self.processor(handle)
        for edge in self._inputs.values():
            if edge.target == handle and edge.target_input >= len(processor.inputs):
                raise EngineError(f"{processor!r} has no input #{edge.target_input}")
            if edge.source == handle and edge.source_output >= len(processor.outputs):
                raise EngineError(f"{processor!r} has no output #{edge.source_output}")
        self._nodes[handle] = processor
        self.changed = True

    def connect(self, source: int, source_output: PortRef, target: int, target_input: PortRef) -> Edge:
        """Connect an output to an input, replacing any edge on that input.

        Both ports are resolved before anything changes.

        Raises:
            UnknownNode: If either handle is not in the graph.
            InvalidPort: If either port does not resolve.
            EngineError: If the edge would close a cycle.
        """
        out_idx = self.resolve_output(source, source_output)
        in_idx = self.resolve_input(target, target_input)
        edge = Edge(source, out_idx, target, in_idx)
        if self._reaches(target, source):
            raise EngineError(f"Connecting node {source} to node {target} would create a cycle")
        self._inputs[(target, in_idx)] = edge
        self.changed = True
        return edge

    def replace_node(self, replaced: int, replacement: int) -> int:
        """Move every edge touching ``replaced`` onto ``replacement``.

        Port indices are preserved.  ``replaced`` is removed from the graph
        and its handle is not reissued.  Replacing a node with itself is a
        no-op.

        Raises:
            UnknownNode: If either handle is not in the graph.
            InvalidPort: If ``replacement`` lacks a port index in use on
                ``replaced``.
            EngineError: If the rewired graph would contain a cycle, if an
                input of ``replacement`` would receive a second edge, or if
                the audio output is involved.
        """
        old = self.processor(replaced)
        new = self.processor(replacement)
        if replaced == replacement:
            return replacement
        if self._output_node in (replaced, replacement):
            raise EngineError("The audio output node cannot be replaced")

        rewired: dict[tuple[int, int], Edge] = {}
        for key, edge in self._inputs.items():
            if not edge.touches(replaced):
                rewired[key] = edge
        for edge in self._inputs.values():
            if not edge.touches(replaced):
                continue
            source, target = edge.source, edge.target
            if source == replaced:
                if edge.source_output >= len(new.outputs):
                    raise InvalidPort(replacement, PortIndex(edge.source_output), "output")
                source = replacement
            if target == replaced:
                if edge.target_input >= len(new.inputs):
                    raise InvalidPort(replacement, PortIndex(edge.target_input), "input")
                target = replacement
            moved = Edge(source, edge.source_output, target, edge.target_input)
            key = (moved.target, moved.target_input)
            if key in rewired:
                raise EngineError(
                    f"Input {moved.target_input} of node {replacement} is already connected "
                    f"from node {rewired[key].source}"
                )
            rewired[key] = moved

        if _has_cycle(rewired.values()):
            raise EngineError(
                f"Replacing node {replaced} ({old!r}) with node {replacement} ({new!r}) "
                "would create a cycle"
            )

        self._inputs = rewired
        del self._nodes[replaced]
        self.changed = True
        return replacement

    # ── internals ──────────────────────────────────────────────────────────

    def _reaches(self, start: int, goal: int) -> bool:
        """True if ``goal`` is reachable from ``start`` following edges downstream."""
        if start == goal:
            return True
        downstream: dict[int, list[int]] = {}
        for edge in self._inputs.values():
            downstream.setdefault(edge.source, []).append(edge.target)
        seen = {start}
        stack = [start]
        while stack:
            for nxt in downstream.get(stack.pop(), ()):
                if nxt == goal:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return False

    def build(self, version: int) -> Topology:
        return Topology(
            nodes=dict(self._nodes),
            edges=frozenset(self._inputs.values()),
            output_node=self._output_node,
            version=version,
        )


def _has_cycle(edges: Iterable[Edge]) -> bool:
    """Kahn's algorithm over an edge collection."""
    pending: dict[int, int] = {}
    downstream: dict[int, list[int]] = {}
    for edge in edges:
        pending.setdefault(edge.source, 0)
        pending[edge.target] = pending.get(edge.target, 0) + 1
        downstream.setdefault(edge.source, []).append(edge.target)
    ready = [h for h, n in pending.items() if n == 0]
    visited = 0
    while ready:
        handle = ready.pop()
        visited += 1
        for target in downstream.get(handle, ()):
            pending[target] -= 1
            if pending[target] == 0:
                ready.append(target)
    return visited != len(pending)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Graph:
    """Signal graph owned by one session.

    Args:
        output_channels: Number of playback channels on the audio output node.
        sample_rate: Rate passed to every processor while rendering.
    """

    def __init__(self, output_channels: int = 2, sample_rate: float = 48_000.0) -> None:
        self.output_channels = output_channels
        self.sample_rate = float(sample_rate)
        self._write_lock = threading.Lock()
        self._next_handle = 1
        self._topology = Topology(
            nodes={0: AudioOutput(output_channels)},
            edges=frozenset(),
            output_node=0,
        )
        self._failed_nodes: set[int] = set()

    # ── reads ──────────────────────────────────────────────────────────────

    def snapshot(self) -> Topology:
        """The currently published topology."""
        return self._topology

    @property
    def output_node(self) -> int:
        return self._topology.output_node

    @property
    def version(self) -> int:
        return self._topology.version

    def __len__(self) -> int:
        return len(self._topology.nodes)

    def __contains__(self, handle: object) -> bool:
        return handle in self._topology.nodes

    def processor(self, handle: int) -> Processor:
        try:
            return self._topology.nodes[handle]
        except KeyError:
            raise UnknownNode(handle) from None

    # ── writes ─────────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[GraphTransaction]:
        """Stage mutations and publish them as one snapshot.

        If the block raises, nothing is published and no handles are consumed.
        """
        with self._write_lock:
            tx = GraphTransaction(self._topology, self._next_handle)
            yield tx
            if not tx.changed:
                return
            topology = tx.build(self._topology.version + 1)
            self._next_handle = tx.next_handle
            self._topology = topology
        logger.debug(
            "Published topology v%d (%d nodes, %d edges)",
            topology.version,
            len(topology.nodes),
            len(topology.edges),
        )

    def add_node(self, processor: Processor) -> int:
        with self.transaction() as tx:
            return tx.add_node(processor)

    def connect(self, source: int, source_output: PortRef, target: int, target_input: PortRef) -> Edge:
        with self.transaction() as tx:
            return tx.connect(source, source_output, target, target_input)

    def replace_node(self, replaced: int, replacement: int) -> int:
        with self.transaction() as tx:
            return tx.replace_node(replaced, replacement)

    # ── rendering ──────────────────────────────────────────────────────────

    def render(self, frames: int) -> np.ndarray:
        """Render one block from the current snapshot.

        Returns:
            float32 array of shape ``(frames, output_channels)``.
        """
        topo = self._topology
        buffers: dict[tuple[int, int], np.ndarray] = {}
        out = np.zeros((frames, self.output_channels), dtype=np.float32)

        for handle in topo.render_order:
            processor = topo.nodes[handle]
            blocks = self._gather_inputs(topo, handle, processor, buffers, frames)
            if handle == topo.output_node:
                for channel, block in enumerate(blocks[: self.output_channels]):
                    out[:, channel] = self._as_audio(handle, block)
                continue
            try:
                results = processor.process(blocks, frames, self.sample_rate)
            except Exception:
                if handle not in self._failed_nodes:
                    self._failed_nodes.add(handle)
                    logger.exception("Node %d (%r) failed to render; emitting silence", handle, processor)
                results = [np.zeros(frames, dtype=np.float32) for _ in processor.outputs]
            for index, block in enumerate(results):
                buffers[(handle, index)] = block
        return out

    def _gather_inputs(
        self,
        topo: Topology,
        handle: int,
        processor: Processor,
        buffers: dict[tuple[int, int], np.ndarray],
        frames: int,
    ) -> list[np.ndarray]:
        connected = topo.incoming.get(handle, {})
        blocks: list[np.ndarray] = []
        for index in range(len(processor.inputs)):
            edge = connected.get(index)
            block = buffers.get((edge.source, edge.source_output)) if edge else None
            if block is None:
                block = np.full(frames, processor.default_for(index), dtype=np.float32)
            blocks.append(block)
        return blocks

    def _as_audio(self, handle: int, block: np.ndarray) -> np.ndarray:
        try:
            return np.asarray(block, dtype=np.float32)
        except (TypeError, ValueError):
            if handle not in self._failed_nodes:
                self._failed_nodes.add(handle)
                logger.error("Non-numeric signal reached output node %d; emitting silence", handle)
            return np.zeros(len(block), dtype=np.float32)
