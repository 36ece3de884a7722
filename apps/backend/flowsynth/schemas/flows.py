from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from flowsynth.schemas.records import (
    DFVTag,
    FlowEdge,
    FlowNode,
    Requirement,
    RequirementStatus,
    ResearchInputType,
)


class SynthesizeRequest(BaseModel):
    mode: Literal["append", "replace"] = "append"


class SynthesizeResponse(BaseModel):
    created: list[Requirement]
    replaced: int = 0


class GenerateResponse(BaseModel):
    success: bool = True
    requested_nodes: int
    inserted_nodes: int
    inserted_edges: int
    dropped_edges: int


class GraphResponse(BaseModel):
    flow_id: str
    nodes: list[FlowNode]
    edges: list[FlowEdge]


class PositionUpdate(BaseModel):
    x: float
    y: float


class EdgeCreate(BaseModel):
    source_node_id: str = Field(..., min_length=1)
    target_node_id: str = Field(..., min_length=1)
    label: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: bool


class RequirementUpdate(BaseModel):
    user_story: Optional[str] = None
    business_opportunity: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    dfv_tag: Optional[DFVTag] = None
    status: Optional[RequirementStatus] = None
    clear_dfv_tag: bool = False


class ResearchInputCreate(BaseModel):
    type: ResearchInputType = "other"
    content: str
    source_label: Optional[str] = None
    project_id: Optional[str] = None


class ResearchInputUpdate(BaseModel):
    content: Optional[str] = None
    type: Optional[ResearchInputType] = None
    source_label: Optional[str] = None


class InputSynthesisStatus(BaseModel):
    input_id: str
    label: str
    last_synthesized_at: Optional[datetime] = None
    is_synthesized: bool = False
    is_modified: bool = False


class RequirementView(Requirement):
    source_labels: list[str] = Field(default_factory=list)
    modified_source: bool = False
    orphaned: bool = False
