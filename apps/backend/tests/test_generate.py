from __future__ import annotations

import pytest

from flowsynth.agent.generate import FlowGenerator, build_flow_prompt, edge_label_warnings, remap
from flowsynth.agent.layout import layout
from flowsynth.agent.schema import GeneratedGraph
from flowsynth.schemas.records import FLOW_EDGE, FLOW_NODE, Requirement
from flowsynth.services.errors import InputError, ShapeError, UpstreamError

THREE_NODE_FLOW = {
    "nodes": [
        {"id": "n1", "type": "step", "label": "Open cart"},
        {"id": "n2", "type": "decision", "label": "Shipping known?"},
        {"id": "n3", "type": "step", "label": "Pay"},
    ],
    "edges": [
        {"source": "n1", "target": "n2", "label": None},
        {"source": "n2", "target": "n3", "label": "Yes"},
    ],
}


def _seed_requirements(add_requirement) -> None:
    add_requirement("As a shopper, I want totals upfront", dfv_tag="desirability")
    add_requirement("As a shopper, I want saved cards", acceptance_criteria=["card saved", "cvv asked"])


def test_generation_replaces_graph_with_laid_out_nodes(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    gen = FlowGenerator(store, scripted(THREE_NODE_FLOW))

    report = gen.generate("flow-1")

    nodes = store.select(FLOW_NODE, filters={"flow_id": "flow-1"}, order_by="created_at")
    edges = store.select(FLOW_EDGE, filters={"flow_id": "flow-1"})
    assert len(nodes) == 3
    assert len(edges) == 2
    assert (report.requested_nodes, report.inserted_nodes, report.inserted_edges, report.dropped_edges) == (3, 3, 2, 0)
    assert not report.partial

    by_id = {n["id"]: n for n in nodes}
    decision = next(n for n in nodes if n["type"] == "decision")
    outgoing = [e for e in edges if e["source_node_id"] == decision["id"]]
    assert outgoing and all(e["label"] for e in outgoing)

    # Layout is reproducible for the same shape.
    again = layout(
        [{"id": t["id"], "type": t["type"]} for t in THREE_NODE_FLOW["nodes"]],
        THREE_NODE_FLOW["edges"],
    )
    stored_positions = [(n["position_x"], n["position_y"]) for n in nodes]
    assert stored_positions == [(p.x, p.y) for p in again.values()]
    assert {e["source_node_id"] for e in edges} | {e["target_node_id"] for e in edges} <= set(by_id)


def test_prompt_summarises_requirements(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    generator = scripted(THREE_NODE_FLOW)
    FlowGenerator(store, generator).generate("flow-1")

    prompt = generator.prompts[0]
    assert "1. Opportunity: More conversions" in prompt
    assert "DFV: desirability" in prompt
    assert "DFV: unclassified" in prompt
    assert "Criteria: card saved; cvv asked" in prompt
    assert "between 5 and 15 nodes" in prompt


def test_second_generation_discards_previous_graph(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    other_flow_node = store.insert(FLOW_NODE, {"flow_id": "flow-2", "type": "step", "label": "keep"})
    gen = FlowGenerator(store, scripted(THREE_NODE_FLOW, THREE_NODE_FLOW))
    gen.generate("flow-1")
    first_ids = {n["id"] for n in store.select(FLOW_NODE, filters={"flow_id": "flow-1"})}

    gen.generate("flow-1")

    second_ids = {n["id"] for n in store.select(FLOW_NODE, filters={"flow_id": "flow-1"})}
    assert len(second_ids) == 3
    assert first_ids.isdisjoint(second_ids)
    assert len(store.select(FLOW_EDGE, filters={"flow_id": "flow-1"})) == 2
    assert store.get(FLOW_NODE, other_flow_node["id"]) is not None


def test_zero_requirements_is_an_error(store, scripted) -> None:
    generator = scripted()
    with pytest.raises(InputError):
        FlowGenerator(store, generator).generate("flow-1")
    assert generator.prompts == []


def test_shape_failure_leaves_stored_graph_untouched(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    existing = store.insert(FLOW_NODE, {"flow_id": "flow-1", "type": "step", "label": "hand placed"})
    gen = FlowGenerator(store, scripted({"nodes": THREE_NODE_FLOW["nodes"]}))

    with pytest.raises(ShapeError):
        gen.generate("flow-1")

    assert [n["id"] for n in store.select(FLOW_NODE)] == [existing["id"]]


def test_upstream_failure_leaves_stored_graph_untouched(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    store.insert(FLOW_NODE, {"flow_id": "flow-1", "type": "step", "label": "hand placed"})
    with pytest.raises(UpstreamError):
        FlowGenerator(store, scripted(TimeoutError("slow"))).generate("flow-1")
    assert len(store.select(FLOW_NODE)) == 1


def test_typo_edges_are_dropped_not_fatal(store, scripted, add_requirement) -> None:
    _seed_requirements(add_requirement)
    payload = {
        "nodes": THREE_NODE_FLOW["nodes"],
        "edges": THREE_NODE_FLOW["edges"] + [{"source": "n3", "target": "n9", "label": None}],
    }
    report = FlowGenerator(store, scripted(payload)).generate("flow-1")
    assert report.inserted_edges == 2
    assert report.dropped_edges == 1
    assert report.partial


def test_failed_node_insert_drops_its_edges(store, scripted, add_requirement, monkeypatch) -> None:
    _seed_requirements(add_requirement)
    real_insert = store.insert

    def flaky_insert(table, row):
        if table == FLOW_NODE and row.get("label") == "Shipping known?":
            raise RuntimeError("constraint violation")
        return real_insert(table, row)

    monkeypatch.setattr(store, "insert", flaky_insert)
    report = FlowGenerator(store, scripted(THREE_NODE_FLOW)).generate("flow-1")

    node_ids = {n["id"] for n in store.select(FLOW_NODE, filters={"flow_id": "flow-1"})}
    edges = store.select(FLOW_EDGE, filters={"flow_id": "flow-1"})
    assert len(node_ids) == 2
    assert edges == []
    assert (report.requested_nodes, report.inserted_nodes, report.dropped_edges) == (3, 2, 2)


def test_remap_is_pure_and_drops_unresolved() -> None:
    graph = GeneratedGraph.model_validate(THREE_NODE_FLOW)
    out = remap(graph, {"n1": "db-1", "n2": None, "n3": "db-3"})
    assert out.edges == []
    assert [(e.source, e.target) for e in out.dropped] == [("n1", "n2"), ("n2", "n3")]

    out = remap(graph, {"n1": "db-1", "n2": "db-2", "n3": "db-3"})
    assert [(e.source_node_id, e.target_node_id, e.label) for e in out.edges] == [
        ("db-1", "db-2", None),
        ("db-2", "db-3", "Yes"),
    ]


def test_label_warnings_flag_rule_violations() -> None:
    graph = GeneratedGraph.model_validate(
        {
            "nodes": THREE_NODE_FLOW["nodes"],
            "edges": [
                {"source": "n1", "target": "n2", "label": "oops"},
                {"source": "n2", "target": "n3", "label": None},
            ],
        }
    )
    warnings = edge_label_warnings(graph)
    assert len(warnings) == 2
    assert edge_label_warnings(GeneratedGraph.model_validate(THREE_NODE_FLOW)) == []


def test_build_flow_prompt_numbers_requirements() -> None:
    reqs = [
        Requirement(id="r1", flow_id="f", user_story="s1", acceptance_criteria=["a"]),
        Requirement(id="r2", flow_id="f", user_story="s2"),
    ]
    prompt = build_flow_prompt(reqs)
    assert "1. Opportunity: n/a | Story: s1 | Criteria: a | DFV: unclassified" in prompt
    assert "2. Opportunity: n/a | Story: s2 | Criteria: none" in prompt
