from __future__ import annotations

import asyncio
import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from flowsynth.schemas.records import FlowEdge, FlowNode
from flowsynth.services.backends import FlowBackend
from flowsynth.services.flows import OperationResult

logger = logging.getLogger(__name__)

# Target this many px above its source => route as a back edge.
BACK_EDGE_THRESHOLD = 30.0


def _debounce_seconds() -> float:
    try:
        return int(os.getenv("FLOWSYNTH_POSITION_DEBOUNCE_MS", "500")) / 1000.0
    except Exception:
        return 0.5


@dataclass(frozen=True)
class EdgeRouting:
    edge_id: str
    is_back_edge: bool
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


def classify_edge(edge: FlowEdge, nodes: dict[str, FlowNode]) -> EdgeRouting:
    """Pick connection anchors for rendering. Has no effect on persistence or layout."""
    source = nodes.get(edge.source_node_id)
    target = nodes.get(edge.target_node_id)
    source_y = source.position_y if source else 0.0
    target_y = target.position_y if target else 0.0
    if target_y < source_y - BACK_EDGE_THRESHOLD:
        out_handle = "right" if source is not None and source.type == "decision" else "right-out"
        return EdgeRouting(edge_id=edge.id, is_back_edge=True, source_handle=out_handle, target_handle="left-in")
    return EdgeRouting(edge_id=edge.id, is_back_edge=False)


SaveFn = Callable[[str, float, float], Awaitable[OperationResult]]


class PositionSaveQueue:
    """Per-node debounced writes, latest wins.

    Every `schedule` for a node restarts that node's quiet-period timer; only
    the coordinates in hand when the timer fires are written. Writes for the
    same node run one at a time in scheduling order.
    """

    def __init__(self, save: SaveFn, delay: Optional[float] = None) -> None:
        self._save = save
        self.delay = _debounce_seconds() if delay is None else delay
        self._timers: dict[str, asyncio.Task] = {}
        self._latest: dict[str, tuple[float, float]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> set[str]:
        return set(self._timers)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule(self, node_id: str, x: float, y: float) -> None:
        self._latest[node_id] = (x, y)
        timer = self._timers.pop(node_id, None)
        if timer is not None:
            timer.cancel()
        self._timers[node_id] = self._track(asyncio.create_task(self._debounced(node_id)))

    async def _debounced(self, node_id: str) -> None:
        await asyncio.sleep(self.delay)
        if self._timers.get(node_id) is asyncio.current_task():
            del self._timers[node_id]
        await self._write(node_id)

    async def _write(self, node_id: str) -> None:
        async with self._locks[node_id]:
            coords = self._latest.pop(node_id, None)
            if coords is None:
                return
            result = await self._save(node_id, *coords)
            if not result.ok:
                logger.warning("Position save for node %s failed: %s", node_id, result.error)

    def cancel(self) -> None:
        """Drop every pending write without persisting it."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._latest.clear()

    async def flush(self) -> None:
        """Write every pending position now instead of waiting out the timers."""
        timers, self._timers = self._timers, {}
        for timer in timers.values():
            timer.cancel()
        await asyncio.gather(*(self._write(node_id) for node_id in timers))
        await self.drain()

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class GraphEditSession:
    """Client-side mirror of one flow's diagram, mediating user edits."""

    def __init__(
        self,
        flow_id: str,
        backend: FlowBackend,
        *,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        self.flow_id = flow_id
        self.backend = backend
        self.nodes: dict[str, FlowNode] = {}
        self.edges: dict[str, FlowEdge] = {}
        self.loaded = False
        self.positions = PositionSaveQueue(backend.save_position, delay=debounce_seconds)
        self._deletes: set[asyncio.Task] = set()

    async def load(self) -> OperationResult:
        result = await self.backend.load_graph(self.flow_id)
        if not result.ok:
            logger.warning("Loading flow %s failed: %s", self.flow_id, result.error)
            return result
        graph = result.value
        self.nodes = {n.id: n for n in graph.nodes}
        self.edges = {e.id: e for e in graph.edges}
        self.loaded = True
        return result

    def drag_node(self, node_id: str, x: float, y: float) -> bool:
        node = self.nodes.get(node_id)
        if node is None:
            logger.warning("Ignoring drag for unknown node %s in flow %s", node_id, self.flow_id)
            return False
        self.nodes[node_id] = node.model_copy(update={"position_x": x, "position_y": y})
        self.positions.schedule(node_id, x, y)
        return True

    async def connect(self, source_id: str, target_id: str) -> Optional[FlowEdge]:
        if not source_id or not target_id:
            return None
        result = await self.backend.create_edge(self.flow_id, source_id, target_id)
        if not result.ok:
            logger.warning("Creating edge %s->%s failed: %s", source_id, target_id, result.error)
            return None
        edge = result.value
        self.edges[edge.id] = edge
        return edge

    def delete_edges(self, edge_ids: Iterable[str]) -> list[asyncio.Task]:
        tasks = []
        for edge_id in edge_ids:
            self.edges.pop(edge_id, None)
            task = asyncio.create_task(self._delete(edge_id))
            self._deletes.add(task)
            task.add_done_callback(self._deletes.discard)
            tasks.append(task)
        return tasks

    async def _delete(self, edge_id: str) -> None:
        result = await self.backend.delete_edge(edge_id)
        if not result.ok:
            # No rollback: the edge stays hidden until the next load.
            logger.warning("Deleting edge %s failed: %s", edge_id, result.error)

    async def regenerate(self) -> OperationResult:
        result = await self.backend.generate_flow(self.flow_id)
        if not result.ok:
            return result
        self.positions.cancel()
        self.nodes, self.edges, self.loaded = {}, {}, False
        reloaded = await self.load()
        return result if reloaded.ok else reloaded

    def routing(self) -> dict[str, EdgeRouting]:
        return {edge_id: classify_edge(edge, self.nodes) for edge_id, edge in self.edges.items()}

    async def aclose(self) -> None:
        await self.positions.flush()
        if self._deletes:
            await asyncio.gather(*list(self._deletes), return_exceptions=True)
