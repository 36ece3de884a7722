from __future__ import annotations

from datetime import datetime
from typing import Optional

from flowsynth.schemas.flows import InputSynthesisStatus, RequirementView
from flowsynth.schemas.records import Requirement, ResearchInput


def _later(a: Optional[datetime], b: Optional[datetime]) -> bool:
    return a is not None and b is not None and a > b


def last_synthesized_at(requirements: list[Requirement]) -> dict[str, datetime]:
    """Latest requirement `created_at` per source input id."""
    out: dict[str, datetime] = {}
    for req in requirements:
        if req.created_at is None:
            continue
        for src in req.source_input_ids:
            current = out.get(src)
            if current is None or req.created_at > current:
                out[src] = req.created_at
    return out


def input_statuses(inputs: list[ResearchInput], requirements: list[Requirement]) -> list[InputSynthesisStatus]:
    synth_at = last_synthesized_at(requirements)
    statuses = []
    for inp in inputs:
        at = synth_at.get(inp.id)
        statuses.append(
            InputSynthesisStatus(
                input_id=inp.id,
                label=inp.display_label,
                last_synthesized_at=at,
                is_synthesized=at is not None,
                is_modified=_later(inp.updated_at, at),
            )
        )
    return statuses


def requirement_views(requirements: list[Requirement], inputs: list[ResearchInput]) -> list[RequirementView]:
    """Attach derived staleness signals. Nothing here is persisted."""
    by_id = {inp.id: inp for inp in inputs}
    views = []
    for req in requirements:
        sources = [by_id[s] for s in req.source_input_ids if s in by_id]
        views.append(
            RequirementView(
                **req.model_dump(),
                source_labels=[s.display_label for s in sources],
                modified_source=any(_later(s.updated_at, req.created_at) for s in sources),
                orphaned=bool(req.source_input_ids) and not sources,
            )
        )
    return views
