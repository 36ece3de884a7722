from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from flowsynth.agent.schema import ExtractedRequirement, GeneratedGraph
from flowsynth.services.errors import ShapeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE = "```"
_LEADING_FENCE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n?")
_MAX_LOGGED_CHARS = 2_000
_REQUIREMENTS = TypeAdapter(list[ExtractedRequirement])


@dataclass(frozen=True)
class ShapeResult(Generic[T]):
    """Tagged parse outcome: exactly one of `value` / `error` is meaningful."""

    value: Optional[T] = None
    error: Optional[ShapeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def _truncate(s: str, max_chars: int = _MAX_LOGGED_CHARS) -> str:
    s = s or ""
    if len(s) <= max_chars:
        return s
    return s[: max_chars - 20] + "\n…[truncated]"


def strip_fences(raw: str) -> str:
    """Remove a single leading and trailing markdown fence (```json ... ```)."""
    text = _LEADING_FENCE.sub("", (raw or "").strip(), count=1)
    if text.rstrip().endswith(_FENCE):
        text = text.rstrip()[: -len(_FENCE)]
    return text.strip()


def _reject(message: str, raw: str) -> ShapeResult[Any]:
    logger.warning("Rejected generation output: %s\nraw=%s", message, _truncate(raw))
    return ShapeResult(error=ShapeError(message))


def _parse_json(raw: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(strip_fences(raw))
    except (TypeError, ValueError):
        return False, None


def validate_requirements(raw: str) -> ShapeResult[list[ExtractedRequirement]]:
    ok, data = _parse_json(raw)
    if not ok:
        return _reject("requirements output is not valid JSON", raw)
    if not isinstance(data, list):
        return _reject("requirements output must be a JSON array", raw)
    try:
        return ShapeResult(value=_REQUIREMENTS.validate_python(data))
    except ValidationError as exc:
        return _reject(f"requirements output failed validation: {exc.error_count()} error(s): {exc}", raw)


def validate_flow_graph(raw: str) -> ShapeResult[GeneratedGraph]:
    ok, data = _parse_json(raw)
    if not ok:
        return _reject("flow output is not valid JSON", raw)
    if not isinstance(data, dict):
        return _reject("flow output must be a JSON object", raw)
    missing = [k for k in ("nodes", "edges") if k not in data]
    if missing:
        return _reject(f"flow output missing {', '.join(missing)}", raw)
    try:
        return ShapeResult(value=GeneratedGraph.model_validate(data))
    except ValidationError as exc:
        return _reject(f"flow output failed validation: {exc.error_count()} error(s): {exc}", raw)
