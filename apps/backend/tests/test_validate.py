from __future__ import annotations

import json
import logging

import pytest

from flowsynth.agent.validate import strip_fences, validate_flow_graph, validate_requirements
from flowsynth.services.errors import ShapeError


def test_requirements_rejects_bare_object(caplog) -> None:
    raw = json.dumps({"user_story": "As a user, I want X", "acceptance_criteria": ["a"]})
    with caplog.at_level(logging.WARNING, logger="flowsynth.agent.validate"):
        result = validate_requirements(raw)
    assert not result.ok
    assert isinstance(result.error, ShapeError)
    assert "array" in result.error.message
    # Raw text is logged for diagnosis.
    assert "As a user, I want X" in caplog.text


def test_requirements_rejects_element_without_user_story() -> None:
    raw = json.dumps([{"business_opportunity": "b", "acceptance_criteria": ["a"], "dfv_tag": None}])
    result = validate_requirements(raw)
    assert not result.ok
    with pytest.raises(ShapeError):
        result.unwrap()


def test_requirements_rejects_empty_criteria() -> None:
    raw = json.dumps([{"user_story": "s", "acceptance_criteria": ["  "], "dfv_tag": None}])
    assert not validate_requirements(raw).ok


def test_requirements_rejects_invalid_json() -> None:
    assert not validate_requirements("Here are your requirements: [").ok


def test_requirements_accepts_fenced_array_and_coerces() -> None:
    raw = (
        "```json\n"
        '[{"business_opportunity": null, "user_story": " As a buyer, I want totals ", '
        '"acceptance_criteria": "Total shown upfront", "dfv_tag": "Desirability"},'
        '{"user_story": "As ops, I want logs", "acceptance_criteria": ["a", ""], "dfv_tag": "unclassified"}]\n'
        "```"
    )
    result = validate_requirements(raw)
    assert result.ok
    first, second = result.unwrap()
    assert first.business_opportunity == ""
    assert first.user_story == "As a buyer, I want totals"
    assert first.acceptance_criteria == ["Total shown upfront"]
    assert first.dfv_tag == "desirability"
    assert second.acceptance_criteria == ["a"]
    assert second.dfv_tag is None


def test_requirements_empty_array_is_valid() -> None:
    result = validate_requirements("[]")
    assert result.ok
    assert result.value == []


def test_flow_rejects_missing_edges() -> None:
    raw = json.dumps({"nodes": [{"id": "n1", "type": "step", "label": "Open app"}]})
    result = validate_flow_graph(raw)
    assert not result.ok
    assert "edges" in result.error.message


def test_flow_rejects_missing_nodes() -> None:
    assert not validate_flow_graph(json.dumps({"edges": []})).ok


def test_flow_rejects_array() -> None:
    assert not validate_flow_graph("[]").ok


def test_flow_rejects_duplicate_ids() -> None:
    raw = json.dumps(
        {
            "nodes": [
                {"id": "n1", "type": "step", "label": "A"},
                {"id": "n1", "type": "step", "label": "B"},
            ],
            "edges": [],
        }
    )
    assert not validate_flow_graph(raw).ok


def test_flow_rejects_unknown_node_type() -> None:
    raw = json.dumps({"nodes": [{"id": "n1", "type": "loop", "label": "A"}], "edges": []})
    assert not validate_flow_graph(raw).ok


def test_flow_ignores_coordinates_and_normalises() -> None:
    raw = "```\n" + json.dumps(
        {
            "nodes": [
                {"id": 1, "type": "STEP", "label": "Open cart", "x": 10, "y": 20},
                {"id": "n2", "type": "decision", "label": "Logged in?", "position": {"x": 1}},
            ],
            "edges": [{"source": 1, "target": "n2", "label": ""}],
        }
    ) + "\n```"
    graph = validate_flow_graph(raw).unwrap()
    assert [n.id for n in graph.nodes] == ["1", "n2"]
    assert graph.nodes[0].type == "step"
    assert not hasattr(graph.nodes[0], "x")
    assert graph.edges[0].source == "1"
    assert graph.edges[0].label is None


def test_strip_fences_only_strips_outer_markers() -> None:
    assert strip_fences("```json\n[1]\n```") == "[1]"
    assert strip_fences("```[1]```") == "[1]"
    assert strip_fences("  [1]  ") == "[1]"
    assert strip_fences('```\n{"a": "```"}\n```') == '{"a": "```"}'


def test_single_line_fence_with_language_tag() -> None:
    assert strip_fences("```json [1] ```") == "[1]"
    result = validate_requirements('```json [{"user_story": "s", "acceptance_criteria": ["a"]}] ```')
    assert result.ok
    assert result.unwrap()[0].user_story == "s"
