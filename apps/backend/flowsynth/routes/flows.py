from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, status

from flowsynth.agent.llm import get_text_generator
from flowsynth.schemas.flows import (
    DeleteResponse,
    EdgeCreate,
    GenerateResponse,
    GraphResponse,
    InputSynthesisStatus,
    PositionUpdate,
    RequirementUpdate,
    RequirementView,
    ResearchInputCreate,
    ResearchInputUpdate,
    SynthesizeRequest,
    SynthesizeResponse,
)
from flowsynth.schemas.records import FlowEdge, FlowNode, Requirement, ResearchInput
from flowsynth.services.flows import FlowService, OperationResult
from flowsynth.storage.factory import get_store

logger = logging.getLogger(__name__)

flows_router = APIRouter(tags=["flows"])


@lru_cache(maxsize=1)
def get_flow_service() -> FlowService:
    return FlowService(get_store(), get_text_generator())


def _unwrap(result: OperationResult):
    if not result.ok:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    return result.value


@flows_router.post("/flows/{flow_id}/inputs", status_code=status.HTTP_201_CREATED, response_model=ResearchInput)
def create_input(
    flow_id: str,
    payload: ResearchInputCreate,
    service: FlowService = Depends(get_flow_service),
):
    return _unwrap(
        service.create_research_input(
            flow_id,
            payload.type,
            payload.content,
            source_label=payload.source_label,
            project_id=payload.project_id,
        )
    )


@flows_router.delete("/inputs/{input_id}", response_model=DeleteResponse)
def delete_input(input_id: str, service: FlowService = Depends(get_flow_service)):
    return DeleteResponse(deleted=_unwrap(service.delete_research_input(input_id)))


@flows_router.post("/inputs/{input_id}/synthesize", status_code=status.HTTP_201_CREATED, response_model=SynthesizeResponse)
def synthesize_input(
    input_id: str,
    payload: SynthesizeRequest,
    service: FlowService = Depends(get_flow_service),
):
    out = _unwrap(service.synthesize(input_id, payload.mode))
    return SynthesizeResponse(created=out.created, replaced=out.replaced)


@flows_router.patch("/inputs/{input_id}", response_model=ResearchInput)
def update_input(
    input_id: str,
    payload: ResearchInputUpdate,
    service: FlowService = Depends(get_flow_service),
):
    return _unwrap(service.update_research_input(input_id, payload))


@flows_router.get("/flows/{flow_id}/inputs", response_model=list[InputSynthesisStatus])
def list_inputs(flow_id: str, service: FlowService = Depends(get_flow_service)):
    return _unwrap(service.list_input_statuses(flow_id))


@flows_router.get("/flows/{flow_id}/requirements", response_model=list[RequirementView])
def list_requirements(flow_id: str, service: FlowService = Depends(get_flow_service)):
    return _unwrap(service.list_requirements(flow_id))


@flows_router.patch("/requirements/{requirement_id}", response_model=Requirement)
def update_requirement(
    requirement_id: str,
    payload: RequirementUpdate,
    service: FlowService = Depends(get_flow_service),
):
    return _unwrap(service.update_requirement(requirement_id, payload))


@flows_router.delete("/requirements/{requirement_id}", response_model=DeleteResponse)
def delete_requirement(requirement_id: str, service: FlowService = Depends(get_flow_service)):
    return DeleteResponse(deleted=_unwrap(service.delete_requirement(requirement_id)))


@flows_router.post("/flows/{flow_id}/generate", response_model=GenerateResponse)
def generate_flow(flow_id: str, service: FlowService = Depends(get_flow_service)):
    report = _unwrap(service.generate_flow(flow_id))
    if report.partial:
        logger.warning("Flow %s generated with partial results: %s", flow_id, report)
    return GenerateResponse(
        requested_nodes=report.requested_nodes,
        inserted_nodes=report.inserted_nodes,
        inserted_edges=report.inserted_edges,
        dropped_edges=report.dropped_edges,
    )


@flows_router.get("/flows/{flow_id}/graph", response_model=GraphResponse)
def get_graph(flow_id: str, service: FlowService = Depends(get_flow_service)):
    graph = _unwrap(service.load_graph(flow_id))
    return GraphResponse(flow_id=graph.flow_id, nodes=graph.nodes, edges=graph.edges)


@flows_router.patch("/nodes/{node_id}/position", response_model=FlowNode)
def save_position(
    node_id: str,
    payload: PositionUpdate,
    service: FlowService = Depends(get_flow_service),
):
    return _unwrap(service.save_position(node_id, payload.x, payload.y))


@flows_router.post("/flows/{flow_id}/edges", status_code=status.HTTP_201_CREATED, response_model=FlowEdge)
def create_edge(
    flow_id: str,
    payload: EdgeCreate,
    service: FlowService = Depends(get_flow_service),
):
    return _unwrap(service.create_edge(flow_id, payload.source_node_id, payload.target_node_id, payload.label))


@flows_router.delete("/edges/{edge_id}", response_model=DeleteResponse)
def delete_edge(edge_id: str, service: FlowService = Depends(get_flow_service)):
    return DeleteResponse(deleted=_unwrap(service.delete_edge(edge_id)))
