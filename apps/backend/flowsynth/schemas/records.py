from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

ResearchInputType = Literal[
    "interview_notes",
    "transcript",
    "screenshot",
    "business_requirements",
    "other",
]
DFVTag = Literal["desirability", "feasibility", "viability"]
RequirementStatus = Literal["active", "draft", "stale", "unanchored"]
NodeType = Literal["step", "decision"]

INPUT_TYPE_LABELS: dict[str, str] = {
    "interview_notes": "Interview Notes",
    "transcript": "Transcript",
    "screenshot": "Screenshot",
    "business_requirements": "Business Requirements",
    "other": "Other",
}

# Table names in the row store.
RESEARCH_INPUT = "research_input"
REQUIREMENT = "requirement"
FLOW_NODE = "flow_node"
FLOW_EDGE = "flow_edge"


class ResearchInput(BaseModel):
    id: str
    flow_id: str
    project_id: Optional[str] = None
    type: ResearchInputType = "other"
    content: str = ""
    source_label: Optional[str] = None
    attachment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_label(self) -> str:
        return self.source_label or INPUT_TYPE_LABELS.get(self.type, self.type)


class Requirement(BaseModel):
    id: str
    flow_id: str
    project_id: Optional[str] = None
    source_input_ids: list[str] = Field(default_factory=list)
    business_opportunity: str = ""
    user_story: str = Field(..., min_length=1)
    acceptance_criteria: list[str] = Field(default_factory=list)
    dfv_tag: Optional[DFVTag] = None
    status: RequirementStatus = "draft"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FlowNode(BaseModel):
    id: str
    flow_id: str
    type: NodeType = "step"
    label: str = ""
    position_x: float = 0.0
    position_y: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FlowEdge(BaseModel):
    id: str
    flow_id: str
    source_node_id: str
    target_node_id: str
    label: Optional[str] = None
    created_at: Optional[datetime] = None
