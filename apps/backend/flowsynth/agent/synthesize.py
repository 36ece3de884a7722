from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from flowsynth.agent.llm import TextGenerator, call_generator
from flowsynth.agent.schema import ExtractedRequirement
from flowsynth.agent.validate import validate_requirements
from flowsynth.schemas.records import INPUT_TYPE_LABELS, REQUIREMENT, Requirement, ResearchInput
from flowsynth.services.errors import InputError, PersistenceError, ServiceError
from flowsynth.storage.base import RowStore

logger = logging.getLogger(__name__)

SynthesisMode = Literal["append", "replace"]


@dataclass(frozen=True)
class SynthesisResult:
    created: list[Requirement] = field(default_factory=list)
    replaced: int = 0


def build_synthesis_prompt(research_input: ResearchInput) -> str:
    type_label = INPUT_TYPE_LABELS.get(research_input.type, research_input.type)
    source = (research_input.source_label or "").strip()
    source_line = f"Source: {source}\n" if source else ""
    return (
        "You are a product analyst turning raw research into structured requirements.\n"
        "Extract all DISTINCT requirements implied by the research below. "
        "Never invent requirements the research does not support.\n"
        "Rules:\n"
        "- Return ONLY a JSON array. No prose, no markdown.\n"
        "- Each element is an object with exactly these keys:\n"
        '  "business_opportunity": string, why solving this matters to the business\n'
        '  "user_story": string, "As a <user>, I want <action> so that <outcome>"\n'
        '  "acceptance_criteria": array of short, testable strings (at least one)\n'
        '  "dfv_tag": one of "desirability", "feasibility", "viability", or null\n'
        "- If the research implies no requirements, return [].\n\n"
        f"Research type: {type_label}\n"
        f"{source_line}"
        "Research content:\n"
        f"{research_input.content}\n"
    )


def _to_row(item: ExtractedRequirement, research_input: ResearchInput) -> dict:
    return {
        "flow_id": research_input.flow_id,
        "project_id": research_input.project_id,
        "source_input_ids": [research_input.id],
        "business_opportunity": item.business_opportunity,
        "user_story": item.user_story,
        "acceptance_criteria": list(item.acceptance_criteria),
        "dfv_tag": item.dfv_tag,
        "status": "draft",
    }


class RequirementSynthesizer:
    """Turns one research input into draft requirements via a single generation call."""

    def __init__(self, store: RowStore, generator: TextGenerator) -> None:
        self.store = store
        self.generator = generator

    def synthesize(self, research_input: ResearchInput, mode: SynthesisMode = "append") -> SynthesisResult:
        if research_input is None or not (research_input.id or "").strip():
            raise InputError("research input id is required")
        if not (research_input.content or "").strip():
            raise InputError("research input content is empty")
        if mode not in ("append", "replace"):
            raise InputError(f"unknown synthesis mode '{mode}'")

        logger.info("Synthesising requirements", extra={"input_id": research_input.id, "mode": mode})
        raw = call_generator(self.generator, build_synthesis_prompt(research_input))
        extracted = validate_requirements(raw).unwrap()

        # Nothing is written until the output has passed validation.
        replaced = 0
        try:
            if mode == "replace":
                replaced = self.store.delete(REQUIREMENT, contains={"source_input_ids": research_input.id})
            rows = self.store.insert_many(REQUIREMENT, [_to_row(item, research_input) for item in extracted])
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Persisting synthesised requirements failed")
            raise PersistenceError(f"failed to store requirements: {exc}") from exc

        created = [Requirement.model_validate(r) for r in rows]
        logger.info(
            "Synthesis complete",
            extra={"input_id": research_input.id, "created_count": len(created), "replaced_count": replaced},
        )
        return SynthesisResult(created=created, replaced=replaced)
