from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from flowsynth.schemas.records import DFVTag


class ExtractedRequirement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    business_opportunity: str = ""
    user_story: str = Field(..., min_length=1)
    acceptance_criteria: list[str] = Field(..., min_length=1)
    dfv_tag: Optional[DFVTag] = None

    @field_validator("business_opportunity", mode="before")
    @classmethod
    def _opportunity_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("user_story", mode="before")
    @classmethod
    def _strip_story(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("acceptance_criteria", mode="before")
    @classmethod
    def _criteria_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return [c.strip() for c in v if isinstance(c, str) and c.strip()]
        return v

    @field_validator("dfv_tag", mode="before")
    @classmethod
    def _normalize_tag(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        tag = v.strip().lower()
        if tag in ("desirability", "feasibility", "viability"):
            return tag
        # "none", "unclassified", "" and other non-tags mean untagged.
        return None


class GeneratedNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    type: Literal["step", "decision"] = "step"
    label: str = Field(..., min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("type", mode="before")
    @classmethod
    def _type_lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class GeneratedEdge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    label: Optional[str] = None

    @field_validator("source", "target", mode="before")
    @classmethod
    def _ref_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("label", mode="before")
    @classmethod
    def _blank_label(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class GeneratedGraph(BaseModel):
    """Abstract flow graph as returned by the generation service.

    Coordinates the service may add are ignored; layout is always recomputed.
    """

    model_config = ConfigDict(extra="ignore")

    nodes: list[GeneratedNode]
    edges: list[GeneratedEdge]

    @model_validator(mode="after")
    def _unique_node_ids(self) -> "GeneratedGraph":
        ids = [n.id for n in self.nodes]
        if len(set(ids)) != len(ids):
            raise ValueError("nodes[].id must be unique")
        return self
