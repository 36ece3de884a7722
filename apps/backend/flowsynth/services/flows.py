from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from flowsynth.agent.generate import FlowGenerator, GenerationReport
from flowsynth.agent.llm import TextGenerator
from flowsynth.agent.synthesize import RequirementSynthesizer, SynthesisMode, SynthesisResult
from flowsynth.schemas.flows import (
    InputSynthesisStatus,
    RequirementUpdate,
    RequirementView,
    ResearchInputUpdate,
)
from flowsynth.schemas.records import (
    FLOW_EDGE,
    FLOW_NODE,
    REQUIREMENT,
    RESEARCH_INPUT,
    FlowEdge,
    FlowNode,
    Requirement,
    ResearchInput,
    ResearchInputType,
)
from flowsynth.services.errors import InputError, NotFoundError, PersistenceError, ServiceError
from flowsynth.services.status import input_statuses, requirement_views
from flowsynth.storage.base import RowStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: ServiceError) -> "OperationResult[T]":
        return cls(error=exc.message, error_kind=exc.kind, status_code=exc.status_code)


@dataclass(frozen=True)
class FlowGraph:
    flow_id: str
    nodes: list[FlowNode]
    edges: list[FlowEdge]


def _operation(fn: Callable[..., T]) -> Callable[..., OperationResult[T]]:
    """Run a service call and fold every failure into an OperationResult."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> OperationResult[T]:
        try:
            return OperationResult.success(fn(*args, **kwargs))
        except ServiceError as exc:
            logger.info("%s failed: %s (%s)", fn.__name__, exc.message, exc.kind)
            return OperationResult.failure(exc)
        except Exception as exc:
            logger.exception("%s failed unexpectedly", fn.__name__)
            return OperationResult(error=f"internal error: {exc}", error_kind="internal", status_code=500)

    return wrapper


def _required(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InputError(f"{name} is required")
    return value


class FlowService:
    """Caller-facing operations. Each returns an OperationResult and never raises."""

    def __init__(self, store: RowStore, generator: TextGenerator) -> None:
        self.store = store
        self.generator = generator
        self.synthesizer = RequirementSynthesizer(store, generator)
        self.flow_generator = FlowGenerator(store, generator)

    def _store_call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Store call failed")
            raise PersistenceError(f"store operation failed: {exc}") from exc

    def _get(self, table: str, row_id: str) -> dict:
        row = self._store_call(self.store.get, table, row_id)
        if not row:
            raise NotFoundError(f"{table} '{row_id}' not found")
        return row

    # ---- synthesis -------------------------------------------------------

    @_operation
    def synthesize(self, input_id: str, mode: SynthesisMode = "append") -> SynthesisResult:
        input_id = _required(input_id, "input id")
        research_input = ResearchInput.model_validate(self._get(RESEARCH_INPUT, input_id))
        return self.synthesizer.synthesize(research_input, mode)

    @_operation
    def update_requirement(self, requirement_id: str, update: RequirementUpdate) -> Requirement:
        requirement_id = _required(requirement_id, "requirement id")
        self._get(REQUIREMENT, requirement_id)
        values: dict[str, Any] = {}
        if update.user_story is not None:
            values["user_story"] = _required(update.user_story, "user story")
        if update.business_opportunity is not None:
            values["business_opportunity"] = update.business_opportunity.strip()
        if update.acceptance_criteria is not None:
            criteria = [c.strip() for c in update.acceptance_criteria if c and c.strip()]
            if not criteria:
                raise InputError("at least one acceptance criterion is required")
            values["acceptance_criteria"] = criteria
        if update.clear_dfv_tag:
            values["dfv_tag"] = None
        elif update.dfv_tag is not None:
            values["dfv_tag"] = update.dfv_tag
        if update.status is not None:
            values["status"] = update.status
        row = self._store_call(self.store.update, REQUIREMENT, requirement_id, values)
        if not row:
            raise NotFoundError(f"requirement '{requirement_id}' not found")
        return Requirement.model_validate(row)

    @_operation
    def update_research_input(self, input_id: str, update: ResearchInputUpdate) -> ResearchInput:
        input_id = _required(input_id, "input id")
        self._get(RESEARCH_INPUT, input_id)
        values: dict[str, Any] = {}
        if update.content is not None:
            values["content"] = _required(update.content, "content")
        if update.type is not None:
            values["type"] = update.type
        if update.source_label is not None:
            values["source_label"] = update.source_label.strip() or None
        row = self._store_call(self.store.update, RESEARCH_INPUT, input_id, values)
        if not row:
            raise NotFoundError(f"research input '{input_id}' not found")
        return ResearchInput.model_validate(row)

    @_operation
    def create_research_input(
        self,
        flow_id: str,
        type: ResearchInputType,
        content: str,
        source_label: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ResearchInput:
        row = self._store_call(
            self.store.insert,
            RESEARCH_INPUT,
            {
                "flow_id": _required(flow_id, "flow id"),
                "project_id": project_id,
                "type": type,
                "content": _required(content, "content"),
                "source_label": (source_label or "").strip() or None,
            },
        )
        return ResearchInput.model_validate(row)

    @_operation
    def delete_research_input(self, input_id: str) -> bool:
        """Delete one input. Requirements citing it are kept and surface as orphaned."""
        input_id = _required(input_id, "input id")
        if not self._store_call(self.store.delete, RESEARCH_INPUT, row_id=input_id):
            raise NotFoundError(f"research input '{input_id}' not found")
        return True

    @_operation
    def delete_requirement(self, requirement_id: str) -> bool:
        requirement_id = _required(requirement_id, "requirement id")
        if not self._store_call(self.store.delete, REQUIREMENT, row_id=requirement_id):
            raise NotFoundError(f"requirement '{requirement_id}' not found")
        return True

    def _flow_inputs_and_requirements(self, flow_id: str) -> tuple[list[ResearchInput], list[Requirement]]:
        inputs = self._store_call(self.store.select, RESEARCH_INPUT, filters={"flow_id": flow_id}, order_by="created_at")
        reqs = self._store_call(self.store.select, REQUIREMENT, filters={"flow_id": flow_id}, order_by="created_at")
        return (
            [ResearchInput.model_validate(r) for r in inputs],
            [Requirement.model_validate(r) for r in reqs],
        )

    @_operation
    def list_input_statuses(self, flow_id: str) -> list[InputSynthesisStatus]:
        inputs, reqs = self._flow_inputs_and_requirements(_required(flow_id, "flow id"))
        return input_statuses(inputs, reqs)

    @_operation
    def list_requirements(self, flow_id: str) -> list[RequirementView]:
        inputs, reqs = self._flow_inputs_and_requirements(_required(flow_id, "flow id"))
        return requirement_views(reqs, inputs)

    # ---- diagram ---------------------------------------------------------

    @_operation
    def generate_flow(self, flow_id: str) -> GenerationReport:
        return self.flow_generator.generate(flow_id)

    @_operation
    def load_graph(self, flow_id: str) -> FlowGraph:
        flow_id = _required(flow_id, "flow id")
        nodes = self._store_call(self.store.select, FLOW_NODE, filters={"flow_id": flow_id}, order_by="created_at")
        edges = self._store_call(self.store.select, FLOW_EDGE, filters={"flow_id": flow_id}, order_by="created_at")
        return FlowGraph(
            flow_id=flow_id,
            nodes=[FlowNode.model_validate(n) for n in nodes],
            edges=[FlowEdge.model_validate(e) for e in edges],
        )

    @_operation
    def save_position(self, node_id: str, x: float, y: float) -> FlowNode:
        node_id = _required(node_id, "node id")
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in (x, y)):
            raise InputError("position must be finite numbers")
        row = self._store_call(self.store.update, FLOW_NODE, node_id, {"position_x": float(x), "position_y": float(y)})
        if not row:
            raise NotFoundError(f"node '{node_id}' not found")
        return FlowNode.model_validate(row)

    @_operation
    def create_edge(
        self,
        flow_id: str,
        source_id: str,
        target_id: str,
        label: Optional[str] = None,
    ) -> FlowEdge:
        flow_id = _required(flow_id, "flow id")
        source_id = _required(source_id, "source node id")
        target_id = _required(target_id, "target node id")
        for node_id in (source_id, target_id):
            node = self._get(FLOW_NODE, node_id)
            if str(node.get("flow_id")) != flow_id:
                raise InputError(f"node '{node_id}' does not belong to flow '{flow_id}'")
        row = self._store_call(
            self.store.insert,
            FLOW_EDGE,
            {
                "flow_id": flow_id,
                "source_node_id": source_id,
                "target_node_id": target_id,
                "label": (label or "").strip() or None,
            },
        )
        return FlowEdge.model_validate(row)

    @_operation
    def delete_edge(self, edge_id: str) -> bool:
        edge_id = _required(edge_id, "edge id")
        deleted = self._store_call(self.store.delete, FLOW_EDGE, row_id=edge_id)
        if not deleted:
            raise NotFoundError(f"edge '{edge_id}' not found")
        return True
