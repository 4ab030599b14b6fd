"""
graph_server/session.py — Session state machine: graph, mixer, play/stop.

A Session owns:

    graph        the signal graph (node arena + published topology)
    mixer        ordered passthrough nodes, one per mixer channel
    master bus   a Sum node with one input per mixer channel
    render       zero or one active RenderHandle

Topology built at construction::

    channel 0 ─┐
    channel 1 ─┼─→ master bus (Sum) ─→ audio output (every channel)
    …         ─┘

Every structural mutation runs inside ``graph.transaction()``, whether or not
a render is active, so the render thread only ever sees complete snapshots.
A failing operation publishes nothing.

Handles returned by a Session are valid only for that Session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Union, cast

from core.config import DEFAULT_CONFIG, ServerConfig
from core.errors import EngineError, UnknownOperation
from core.graph.engine import Graph, GraphTransaction
from core.graph.processors import Constant, Passthrough, Sum, create_processor
from core.graph.types import PortIndex
from core.protocol.types import (
    AddConstantBool,
    AddConstantF32,
    AddConstantString,
    AddProcessor,
    AddToMix,
    Connect,
    EmptyResult,
    NodeResult,
    Operation,
    OperationResult,
    Play,
    ReplaceNode,
    Stop,
)
from infrastructure import metrics
from infrastructure.audio import AudioBackend, RenderHandle, get_backend

logger = logging.getLogger(__name__)


class Session:
    """Single-owner control state for one graph.

    Args:
        config: Channel counts, audio settings and mixer limits.
        backend: Audio backend; defaults to the one named by ``config.backend``.

    Example::

        session = Session(ServerConfig())
        osc = session.apply(AddProcessor("SineOscillator"))
        session.apply(AddToMix(channel=0, source=osc.handle, source_output=PortIndex(0)))
        session.apply(Play())
    """

    def __init__(self, config: ServerConfig = DEFAULT_CONFIG, backend: AudioBackend | None = None) -> None:
        self._config = config
        self._backend = backend if backend is not None else get_backend(config.backend)
        self._graph = Graph(output_channels=config.output_channels, sample_rate=config.sample_rate)
        self._render: RenderHandle | None = None
        self._mixer: list[int] = []

        mixer: list[int] = []
        with self._graph.transaction() as tx:
            self._master = tx.add_node(Sum(0))
            output = self._graph.output_node
            for channel in range(config.output_channels):
                tx.connect(self._master, PortIndex(0), output, PortIndex(channel))
            if config.mixer_channels:
                self._channel_in(tx, mixer, config.mixer_channels - 1)
        self._mixer = mixer

        self._handlers: dict[type[Operation], Callable[[Operation], OperationResult]] = {
            Play: self._apply_play,
            Stop: self._apply_stop,
            AddConstantF32: self._apply_constant,
            AddConstantBool: self._apply_constant,
            AddConstantString: self._apply_constant,
            AddProcessor: self._apply_add_processor,
            AddToMix: self._apply_add_to_mix,
            Connect: self._apply_connect,
            ReplaceNode: self._apply_replace_node,
        }
        metrics.set_mixer_channels(len(self._mixer))
        logger.info(
            "Session ready: %d mixer channel(s), master bus node %d, %d output channel(s)",
            len(self._mixer),
            self._master,
            config.output_channels,
        )

    # ── introspection ──────────────────────────────────────────────────────

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def master_bus(self) -> int:
        """Handle of the Sum node feeding the audio output."""
        return self._master

    @property
    def num_mixer_channels(self) -> int:
        return len(self._mixer)

    @property
    def mixer(self) -> tuple[int, ...]:
        """Mixer channel node handles, in channel order."""
        return tuple(self._mixer)

    @property
    def is_playing(self) -> bool:
        return self._render is not None

    # ── dispatch ───────────────────────────────────────────────────────────

    def apply(self, op: Operation) -> OperationResult:
        """Apply one operation.

        Returns:
            ``NodeResult`` for node-creating operations and ReplaceNode,
            ``EmptyResult`` otherwise.

        Raises:
            OpError: Any subclass; the session is unchanged when raised.
        """
        handler = self._handlers.get(type(op))
        if handler is None:
            raise UnknownOperation(op.address or type(op).__name__)
        return handler(op)

    def _apply_play(self, op: Operation) -> OperationResult:
        self.play()
        return EmptyResult()

    def _apply_stop(self, op: Operation) -> OperationResult:
        self.stop()
        return EmptyResult()

    def _apply_constant(self, op: Operation) -> OperationResult:
        constant = cast(Union[AddConstantF32, AddConstantBool, AddConstantString], op)
        return NodeResult(self._graph.add_node(Constant(constant.value)))

    def _apply_add_processor(self, op: Operation) -> OperationResult:
        # resolve before touching the graph so an unknown name allocates nothing
        processor = create_processor(cast(AddProcessor, op).name)
        return NodeResult(self._graph.add_node(processor))

    def _apply_add_to_mix(self, op: Operation) -> OperationResult:
        mix = cast(AddToMix, op)
        mixer = list(self._mixer)
        with self._graph.transaction() as tx:
            channel = self._channel_in(tx, mixer, mix.channel)
            tx.connect(mix.source, mix.source_output, channel, PortIndex(0))
        self._commit_mixer(mixer)
        return EmptyResult()

    def _apply_connect(self, op: Operation) -> OperationResult:
        connect = cast(Connect, op)
        # master bus and audio output inputs are wired only by the session
        if connect.target in (self._master, self._graph.output_node):
            raise EngineError(
                f"Node {connect.target} is wired by the session and cannot be a Connect target"
            )
        self._graph.connect(connect.source, connect.source_output, connect.target, connect.target_input)
        return EmptyResult()

    def _apply_replace_node(self, op: Operation) -> OperationResult:
        replace = cast(ReplaceNode, op)
        if self._master in (replace.replaced, replace.replacement) and replace.replaced != replace.replacement:
            raise EngineError("The master bus cannot take part in ReplaceNode")
        handle = self._graph.replace_node(replace.replaced, replace.replacement)
        self._mixer = [handle if h == replace.replaced else h for h in self._mixer]
        return NodeResult(handle)

    # ── mixer ──────────────────────────────────────────────────────────────

    def mixer_channel(self, index: int) -> int:
        """Handle of mixer channel ``index``, allocating up to it if needed.

        Intervening channels are created in index order, each a unity-gain
        passthrough wired into the next master bus input, all in one
        published snapshot.

        Raises:
            EngineError: If ``index`` is at or beyond ``max_mixer_channels``.
        """
        mixer = list(self._mixer)
        with self._graph.transaction() as tx:
            handle = self._channel_in(tx, mixer, index)
        self._commit_mixer(mixer)
        return handle

    def _channel_in(self, tx: GraphTransaction, mixer: list[int], index: int) -> int:
        """Channel ``index`` inside ``tx``, growing ``mixer`` (a working copy)."""
        if index >= self._config.max_mixer_channels:
            raise EngineError(
                f"Mixer channel {index} exceeds the limit of {self._config.max_mixer_channels}"
            )
        while len(mixer) <= index:
            position = len(mixer)
            channel = tx.add_node(Passthrough())
            tx.set_processor(self._master, Sum(position + 1))
            tx.connect(channel, PortIndex(0), self._master, PortIndex(position))
            mixer.append(channel)
        return mixer[index]

    def _commit_mixer(self, mixer: list[int]) -> None:
        # only called once the transaction that built ``mixer`` has published
        if len(mixer) != len(self._mixer):
            logger.debug("Mixer grew from %d to %d channel(s)", len(self._mixer), len(mixer))
            metrics.set_mixer_channels(len(mixer))
        self._mixer = mixer

    # ── transport ──────────────────────────────────────────────────────────

    def play(self) -> None:
        """Start rendering the current graph.

        Raises:
            EngineError: If a render is already active, or the backend fails.
                The session keeps its previous state in both cases.
        """
        if self._render is not None:
            raise EngineError("Graph is already playing")
        self._render = self._backend.start(self._graph, self._config)
        metrics.set_render_active(True)

    def stop(self) -> None:
        """Stop and discard the active render.  No-op when idle.

        Raises:
            EngineError: If the backend fails while stopping.  The handle is
                discarded regardless.
        """
        render, self._render = self._render, None
        if render is None:
            return
        metrics.set_render_active(False)
        render.stop()
        logger.info("Render stopped")

    def close(self) -> None:
        """Release the audio device, if any."""
        self.stop()
