"""Layered (top-to-bottom) layout for flow diagrams.

The pipeline is the classic Sugiyama sequence: break cycles, assign ranks,
split long edges with dummy nodes, reduce crossings with barycenter sweeps,
then assign coordinates. Every step iterates nodes and edges in input order
so identical input always yields identical positions.

Coordinates are computed for node centers. Callers render from the top-left
corner, so `layout()` converts using the same per-kind size that spaced the
node in the first place.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, Iterable, Mapping, Optional

import networkx as nx

NODE_WIDTH = 220.0
STEP_HEIGHT = 64.0
DECISION_HEIGHT = 120.0
RANK_SEP = 80.0
NODE_SEP = 60.0
SWEEPS = 4


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class NodeBox:
    cx: float
    cy: float
    width: float
    height: float

    @property
    def top_left(self) -> Position:
        return Position(x=self.cx - self.width / 2, y=self.cy - self.height / 2)


def node_size(node_type: Optional[str]) -> tuple[float, float]:
    if node_type == "decision":
        return NODE_WIDTH, DECISION_HEIGHT
    return NODE_WIDTH, STEP_HEIGHT


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return None


def _build_graph(nodes: Iterable[Any], edges: Iterable[Any]) -> nx.DiGraph:
    g = nx.DiGraph()
    for n in nodes:
        node_id = str(_field(n, "id"))
        if node_id in g:
            continue
        width, height = node_size(_field(n, "type"))
        g.add_node(node_id, width=width, height=height, dummy=False)
    for e in edges:
        source = _field(e, "source", "source_node_id")
        target = _field(e, "target", "target_node_id")
        source, target = str(source), str(target)
        if source == target or source not in g or target not in g:
            continue
        g.add_edge(source, target)
    return g


def _back_edges(g: nx.DiGraph) -> set[tuple[Hashable, Hashable]]:
    """Edges closing a cycle during a DFS that visits roots in input order."""
    state: dict[Hashable, int] = {}
    back: set[tuple[Hashable, Hashable]] = set()
    for root in g.nodes:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(g.successors(root)))]
        while stack:
            node, successors = stack[-1]
            for nxt in successors:
                if state.get(nxt) == 1:
                    back.add((node, nxt))
                elif nxt not in state:
                    state[nxt] = 1
                    stack.append((nxt, iter(g.successors(nxt))))
                    break
            else:
                state[node] = 2
                stack.pop()
    return back


def _acyclic(g: nx.DiGraph) -> nx.DiGraph:
    back = _back_edges(g)
    dag = nx.DiGraph()
    dag.add_nodes_from(g.nodes(data=True))
    for u, v in g.edges:
        if (u, v) in back:
            dag.add_edge(v, u)
        else:
            dag.add_edge(u, v)
    return dag


def _ranks(dag: nx.DiGraph, order: dict[Hashable, int]) -> dict[Hashable, int]:
    topo = list(nx.lexicographical_topological_sort(dag, key=order.__getitem__))
    rank: dict[Hashable, int] = {}
    for n in topo:
        rank[n] = max((rank[p] + 1 for p in dag.predecessors(n)), default=0)
    # Pull sources down next to their first consumer instead of leaving them at the top.
    for n in reversed(topo):
        if dag.in_degree(n) == 0 and dag.out_degree(n) > 0:
            rank[n] = min(rank[s] for s in dag.successors(n)) - 1
    return rank


def _split_long_edges(dag: nx.DiGraph, rank: dict[Hashable, int]) -> nx.DiGraph:
    lg = nx.DiGraph()
    lg.add_nodes_from(dag.nodes(data=True))
    counter = 0
    for u, v in dag.edges:
        prev = u
        for r in range(rank[u] + 1, rank[v]):
            dummy = ("__dummy__", counter)
            counter += 1
            lg.add_node(dummy, width=0.0, height=0.0, dummy=True)
            rank[dummy] = r
            lg.add_edge(prev, dummy)
            prev = dummy
        lg.add_edge(prev, v)
    return lg


def _crossings(upper: list[Hashable], lower: list[Hashable], lg: nx.DiGraph) -> int:
    upos = {n: i for i, n in enumerate(upper)}
    lpos = {n: i for i, n in enumerate(lower)}
    segs = [(upos[u], lpos[v]) for u in upper for v in lg.successors(u) if v in lpos]
    count = 0
    for i, (a1, b1) in enumerate(segs):
        for a2, b2 in segs[i + 1:]:
            if (a1 - a2) * (b1 - b2) < 0:
                count += 1
    return count


def _total_crossings(layers: list[list[Hashable]], lg: nx.DiGraph) -> int:
    return sum(_crossings(layers[i], layers[i + 1], lg) for i in range(len(layers) - 1))


def _reorder(layer: list[Hashable], fixed: list[Hashable], neighbours) -> list[Hashable]:
    fixed_pos = {n: i for i, n in enumerate(fixed)}
    keyed = []
    for idx, n in enumerate(layer):
        ns = [fixed_pos[m] for m in neighbours(n) if m in fixed_pos]
        bary = sum(ns) / len(ns) if ns else float(idx)
        keyed.append((bary, idx, n))
    keyed.sort(key=lambda t: (t[0], t[1]))
    return [n for _, _, n in keyed]


def _order_layers(lg: nx.DiGraph, rank: dict[Hashable, int]) -> list[list[Hashable]]:
    depth = max(rank.values(), default=-1) + 1
    layers: list[list[Hashable]] = [[] for _ in range(depth)]
    for n in lg.nodes:
        layers[rank[n]].append(n)

    best = [list(layer) for layer in layers]
    best_cross = _total_crossings(best, lg)
    for sweep in range(SWEEPS):
        if sweep % 2 == 0:
            for r in range(1, depth):
                layers[r] = _reorder(layers[r], layers[r - 1], lg.predecessors)
        else:
            for r in range(depth - 2, -1, -1):
                layers[r] = _reorder(layers[r], layers[r + 1], lg.successors)
        cross = _total_crossings(layers, lg)
        if cross < best_cross:
            best, best_cross = [list(layer) for layer in layers], cross
    return best


def _min_gap(lg: nx.DiGraph, a: Hashable, b: Hashable) -> float:
    return (lg.nodes[a]["width"] + lg.nodes[b]["width"]) / 2 + NODE_SEP


def _assign_x(lg: nx.DiGraph, layers: list[list[Hashable]]) -> dict[Hashable, float]:
    x: dict[Hashable, float] = {}
    for r, layer in enumerate(layers):
        desired: dict[Hashable, float] = {}
        if r > 0:
            for n in layer:
                preds = [x[p] for p in lg.predecessors(n) if p in x]
                if preds:
                    desired[n] = sum(preds) / len(preds)

        placed: list[float] = []
        for i, n in enumerate(layer):
            if i == 0:
                pos = desired.get(n, 0.0)
            else:
                floor = placed[-1] + _min_gap(lg, layer[i - 1], n)
                pos = max(desired.get(n, floor), floor)
            placed.append(pos)

        if desired:
            shift = sum(desired[n] - placed[i] for i, n in enumerate(layer) if n in desired) / len(desired)
        else:
            shift = -(placed[0] + placed[-1]) / 2 if placed else 0.0
        for i, n in enumerate(layer):
            x[n] = placed[i] + shift
    return x


def _assign_y(lg: nx.DiGraph, layers: list[list[Hashable]]) -> dict[Hashable, float]:
    y: dict[Hashable, float] = {}
    top = 0.0
    for layer in layers:
        height = max((lg.nodes[n]["height"] for n in layer), default=0.0)
        for n in layer:
            y[n] = top + height / 2
        top += height + RANK_SEP
    return y


def compute_boxes(nodes: Iterable[Any], edges: Iterable[Any]) -> dict[str, NodeBox]:
    """Center-anchored boxes for every node, in input order."""
    g = _build_graph(nodes, edges)
    if g.number_of_nodes() == 0:
        return {}
    order = {n: i for i, n in enumerate(g.nodes)}
    dag = _acyclic(g)
    rank = _ranks(dag, order)
    lg = _split_long_edges(dag, rank)
    layers = _order_layers(lg, rank)
    xs = _assign_x(lg, layers)
    ys = _assign_y(lg, layers)

    left = min(xs[n] - g.nodes[n]["width"] / 2 for n in g.nodes)
    return {
        n: NodeBox(
            cx=round(xs[n] - left, 3),
            cy=round(ys[n], 3),
            width=g.nodes[n]["width"],
            height=g.nodes[n]["height"],
        )
        for n in g.nodes
    }


def layout(nodes: Iterable[Any], edges: Iterable[Any]) -> dict[str, Position]:
    """Top-left-anchored positions keyed by node id.

    Nodes and edges may be mappings or objects exposing `id`/`type` and
    `source`/`target` (or `source_node_id`/`target_node_id`). Edges whose
    endpoints are unknown are ignored; disconnected nodes are still placed.
    """
    return {node_id: box.top_left for node_id, box in compute_boxes(nodes, edges).items()}
