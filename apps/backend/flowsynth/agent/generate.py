from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from flowsynth.agent.layout import layout
from flowsynth.agent.llm import TextGenerator, call_generator
from flowsynth.agent.schema import GeneratedEdge, GeneratedGraph
from flowsynth.agent.validate import validate_flow_graph
from flowsynth.schemas.records import FLOW_EDGE, FLOW_NODE, REQUIREMENT, Requirement
from flowsynth.services.errors import InputError, PersistenceError, ServiceError
from flowsynth.storage.base import RowStore

logger = logging.getLogger(__name__)

MIN_NODES = 5
MAX_NODES = 15


@dataclass(frozen=True)
class ResolvedEdge:
    source_node_id: str
    target_node_id: str
    label: Optional[str] = None


@dataclass(frozen=True)
class RemappedGraph:
    edges: list[ResolvedEdge] = field(default_factory=list)
    dropped: list[GeneratedEdge] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationReport:
    requested_nodes: int
    inserted_nodes: int
    inserted_edges: int
    dropped_edges: int

    @property
    def partial(self) -> bool:
        return self.inserted_nodes < self.requested_nodes or self.dropped_edges > 0


def remap(graph: GeneratedGraph, inserted: Mapping[str, Optional[str]]) -> RemappedGraph:
    """Resolve temporary edge endpoints to persisted node ids.

    `inserted` maps every attempted temporary node id to its persisted id, or
    to None when that insert failed. Edges touching an unmapped id are dropped.
    """
    edges: list[ResolvedEdge] = []
    dropped: list[GeneratedEdge] = []
    for e in graph.edges:
        source = inserted.get(e.source)
        target = inserted.get(e.target)
        if source is None or target is None:
            dropped.append(e)
            continue
        edges.append(ResolvedEdge(source_node_id=source, target_node_id=target, label=e.label))
    return RemappedGraph(edges=edges, dropped=dropped)


def summarize_requirement(req: Requirement) -> str:
    criteria = "; ".join(req.acceptance_criteria) or "none"
    return (
        f"Opportunity: {req.business_opportunity or 'n/a'} | "
        f"Story: {req.user_story} | "
        f"Criteria: {criteria} | "
        f"DFV: {req.dfv_tag or 'unclassified'}"
    )


def build_flow_prompt(requirements: list[Requirement]) -> str:
    listing = "\n".join(f"{i}. {summarize_requirement(r)}" for i, r in enumerate(requirements, start=1))
    return (
        "You design user flow diagrams for product teams.\n"
        "From the requirements below, produce the steps a user takes through the product. "
        "Model the user's traversal, not the requirements verbatim.\n"
        "Rules:\n"
        f"- Produce between {MIN_NODES} and {MAX_NODES} nodes.\n"
        '- Node "type" is "step" (a linear user action) or "decision" (a branching choice).\n'
        "- A decision node's label MUST end with a question mark.\n"
        "- Every edge leaving a decision node MUST have a short non-null label (e.g. \"Yes\", \"No\").\n"
        "- Every edge leaving a step node MUST have label null.\n"
        '- Give each node a short temporary string id ("n1", "n2", ...), unique in this response.\n'
        "- Do not include coordinates.\n"
        "- Return ONLY a JSON object, no prose, no markdown, shaped as:\n"
        '  {"nodes": [{"id": str, "type": "step"|"decision", "label": str}], '
        '"edges": [{"source": str, "target": str, "label": str|null}]}\n\n'
        "Requirements:\n"
        f"{listing}\n"
    )


def edge_label_warnings(graph: GeneratedGraph) -> list[str]:
    kinds = {n.id: n.type for n in graph.nodes}
    warnings: list[str] = []
    for e in graph.edges:
        kind = kinds.get(e.source)
        if kind == "decision" and not e.label:
            warnings.append(f"edge {e.source}->{e.target} leaves a decision node without a label")
        elif kind == "step" and e.label:
            warnings.append(f"edge {e.source}->{e.target} leaves a step node with label '{e.label}'")
    return warnings


class FlowGenerator:
    """Regenerates a flow's whole diagram from its requirements."""

    def __init__(self, store: RowStore, generator: TextGenerator) -> None:
        self.store = store
        self.generator = generator

    def _load_requirements(self, flow_id: str) -> list[Requirement]:
        try:
            rows = self.store.select(REQUIREMENT, filters={"flow_id": flow_id}, order_by="created_at")
        except ServiceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"failed to load requirements: {exc}") from exc
        return [Requirement.model_validate(r) for r in rows]

    def _clear(self, flow_id: str) -> None:
        try:
            self.store.delete(FLOW_EDGE, filters={"flow_id": flow_id})
            self.store.delete(FLOW_NODE, filters={"flow_id": flow_id})
        except ServiceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"failed to clear flow graph: {exc}") from exc

    def generate(self, flow_id: str) -> GenerationReport:
        flow_id = (flow_id or "").strip()
        if not flow_id:
            raise InputError("flow id is required")

        requirements = self._load_requirements(flow_id)
        if not requirements:
            raise InputError("No requirements found for this flow. Synthesise requirements first.")

        logger.info("Generating flow", extra={"flow_id": flow_id, "requirements": len(requirements)})
        raw = call_generator(self.generator, build_flow_prompt(requirements))
        graph = validate_flow_graph(raw).unwrap()
        for warning in edge_label_warnings(graph):
            logger.warning("Generated flow label rule violated: %s", warning)

        positions = layout(graph.nodes, graph.edges)

        # Stored state is only touched once the new graph is fully known.
        self._clear(flow_id)

        inserted: dict[str, Optional[str]] = {}
        for node in graph.nodes:
            pos = positions[node.id]
            try:
                row = self.store.insert(
                    FLOW_NODE,
                    {
                        "flow_id": flow_id,
                        "type": node.type,
                        "label": node.label,
                        "position_x": pos.x,
                        "position_y": pos.y,
                    },
                )
                inserted[node.id] = str(row["id"])
            except Exception as exc:
                logger.warning("Dropping node %s after failed insert: %s", node.id, exc)
                inserted[node.id] = None

        resolved = remap(graph, inserted)
        for e in resolved.dropped:
            logger.warning("Dropping edge %s->%s: endpoint not persisted", e.source, e.target)

        inserted_edges = 0
        failed_edges = 0
        for e in resolved.edges:
            try:
                self.store.insert(
                    FLOW_EDGE,
                    {
                        "flow_id": flow_id,
                        "source_node_id": e.source_node_id,
                        "target_node_id": e.target_node_id,
                        "label": e.label,
                    },
                )
                inserted_edges += 1
            except Exception as exc:
                logger.warning("Dropping edge %s->%s after failed insert: %s", e.source_node_id, e.target_node_id, exc)
                failed_edges += 1

        report = GenerationReport(
            requested_nodes=len(graph.nodes),
            inserted_nodes=sum(1 for v in inserted.values() if v is not None),
            inserted_edges=inserted_edges,
            dropped_edges=len(resolved.dropped) + failed_edges,
        )
        logger.info("Flow generated", extra={"flow_id": flow_id, **report.__dict__})
        return report
