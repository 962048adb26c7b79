"""
Tests for StateGraph construction and compile-time validation.

compile() must reject every dangling reference and every ambiguous routing
declaration, reporting all of them at once, and must accept declarations
made in any order.
"""

import pytest

from flowstate.config import ExecutionConfig
from flowstate.graph import END, CompiledGraph, GraphValidationError, StateGraph, WorkflowState


async def noop(state):
    return {}


def route_forward(state):
    return "forward"


def linear_graph(**kwargs) -> StateGraph:
    graph = StateGraph(WorkflowState, graph_id="linear", **kwargs)
    graph.add_stage("a", noop).add_stage("b", noop)
    graph.set_entry("a").add_edge("a", "b").add_edge("b", END)
    return graph


class TestCompileSuccess:
    def test_valid_graph_compiles(self):
        compiled = linear_graph().compile(max_iterations=10)
        assert isinstance(compiled, CompiledGraph)
        assert compiled.entry == "a"
        assert compiled.stage_names == ["a", "b"]
        assert compiled.max_iterations == 10

    def test_declaration_order_does_not_matter(self):
        graph = StateGraph()
        graph.add_edge("a", "b")
        graph.set_entry("a")
        graph.add_edge("b", END)
        graph.add_stage("b", noop)
        graph.add_stage("a", noop)
        compiled = graph.compile()
        assert compiled.entry == "a"

    def test_config_supplies_limits(self):
        compiled = linear_graph().compile(ExecutionConfig(max_iterations=7, audit_routing=False))
        assert compiled.max_iterations == 7
        assert compiled.audit_routing is False

    def test_explicit_max_iterations_overrides_config(self):
        compiled = linear_graph().compile(ExecutionConfig(max_iterations=7), max_iterations=3)
        assert compiled.max_iterations == 3

    def test_stage_map_is_read_only(self):
        compiled = linear_graph().compile()
        with pytest.raises(TypeError):
            compiled.stages["c"] = noop

    def test_parallel_edges_add_fan_in_edges(self):
        graph = StateGraph()
        for name in ("src", "w1", "w2", "join"):
            graph.add_stage(name, noop)
        graph.set_entry("src")
        graph.add_parallel_edges("src", ["w1", "w2"], join="join")
        graph.add_edge("join", END)
        compiled = graph.compile()

        edge_ids = [e.id for e in compiled.edges.edges]
        assert edge_ids == ["src->w1", "src->w2", "w1->join", "w2->join", "join->__end__"]
        group = compiled.edges.parallel_group("src-fanout")
        assert group.members == ["w1", "w2"]
        assert group.join == "join"

    def test_duplicate_identical_edges_are_merged(self):
        graph = linear_graph()
        graph.add_edge("a", "b")
        compiled = graph.compile()
        assert [e.id for e in compiled.edges.outgoing("a")] == ["a->b"]

    def test_unreachable_stage_only_warns(self, caplog):
        graph = linear_graph()
        graph.add_stage("orphan", noop)
        with caplog.at_level("WARNING"):
            compiled = graph.compile()
        assert "orphan" in compiled.stage_names
        assert "unreachable" in caplog.text

    def test_describe(self):
        info = linear_graph().compile(max_iterations=5).describe()
        assert info["id"] == "linear"
        assert info["stages"] == ["a", "b"]
        assert info["edges"] == ["a->b", "b->__end__"]
        assert info["max_iterations"] == 5


class TestCompileFailure:
    def test_missing_edge_target(self):
        graph = linear_graph()
        graph.add_edge("b", "ghost")
        with pytest.raises(GraphValidationError, match="missing target 'ghost'"):
            graph.compile()

    def test_missing_edge_source(self):
        graph = linear_graph()
        graph.add_edge("ghost", "a")
        with pytest.raises(GraphValidationError, match="missing source 'ghost'"):
            graph.compile()

    def test_missing_entry(self):
        graph = StateGraph()
        graph.add_stage("a", noop)
        with pytest.raises(GraphValidationError, match="Entry stage is not set"):
            graph.compile()

    def test_unregistered_entry(self):
        graph = StateGraph()
        graph.add_stage("a", noop).set_entry("z")
        with pytest.raises(GraphValidationError, match="Entry stage 'z' is not registered"):
            graph.compile()

    def test_conditional_target_missing(self):
        graph = StateGraph()
        graph.add_stage("a", noop).set_entry("a")
        graph.add_conditional_edges("a", route_forward, {"forward": "nowhere"})
        with pytest.raises(GraphValidationError, match="missing target 'nowhere'"):
            graph.compile()

    def test_conditional_mixed_with_unconditional(self):
        graph = linear_graph()
        graph.add_conditional_edges("a", route_forward, {"forward": "b"})
        with pytest.raises(GraphValidationError, match="mixes conditional and unconditional"):
            graph.compile()

    def test_two_conditional_sets_from_one_stage(self):
        graph = StateGraph()
        graph.add_stage("a", noop).add_stage("b", noop).set_entry("a")
        graph.add_conditional_edges("a", route_forward, {"forward": "b"})
        graph.add_conditional_edges("a", route_forward, {"forward": END})
        with pytest.raises(GraphValidationError, match="2 conditional edge sets"):
            graph.compile()

    def test_empty_route_map(self):
        graph = StateGraph()
        graph.add_stage("a", noop).set_entry("a")
        graph.add_conditional_edges("a", route_forward, {})
        with pytest.raises(GraphValidationError, match="empty route map"):
            graph.compile()

    def test_duplicate_stage_name(self):
        graph = linear_graph()
        graph.add_stage("a", noop)
        with pytest.raises(GraphValidationError, match="registered more than once"):
            graph.compile()

    def test_parallel_group_with_missing_member(self):
        graph = StateGraph()
        graph.add_stage("src", noop).add_stage("w1", noop).add_stage("join", noop)
        graph.set_entry("src")
        graph.add_parallel_edges("src", ["w1", "w2"], join="join")
        with pytest.raises(GraphValidationError) as exc_info:
            graph.compile()
        assert any("missing member 'w2'" in e for e in exc_info.value.errors)

    def test_parallel_group_needs_two_members(self):
        graph = StateGraph()
        graph.add_stage("src", noop).add_stage("w1", noop).add_stage("join", noop)
        graph.set_entry("src")
        graph.add_parallel_edges("src", ["w1"], join="join")
        with pytest.raises(GraphValidationError, match="at least two members"):
            graph.compile()

    def test_all_problems_are_reported_together(self):
        graph = StateGraph()
        graph.add_stage("a", noop)
        graph.add_edge("a", "x")
        graph.add_edge("y", "a")
        with pytest.raises(GraphValidationError) as exc_info:
            graph.compile()
        assert len(exc_info.value.errors) == 3
        assert str(exc_info.value).startswith("Invalid graph: ")


class TestBuilderLifecycle:
    def test_compile_twice_raises(self):
        graph = linear_graph()
        graph.compile()
        with pytest.raises(GraphValidationError, match="already compiled"):
            graph.compile()

    def test_mutation_after_compile_raises(self):
        graph = linear_graph()
        graph.compile()
        with pytest.raises(GraphValidationError):
            graph.add_stage("c", noop)
        with pytest.raises(GraphValidationError):
            graph.add_edge("a", END)

    def test_failed_compile_leaves_builder_open(self):
        graph = StateGraph()
        graph.add_stage("a", noop)
        with pytest.raises(GraphValidationError):
            graph.compile()
        graph.set_entry("a").add_edge("a", END)
        assert graph.compile().entry == "a"

    def test_non_callable_stage_rejected(self):
        graph = StateGraph()
        with pytest.raises(TypeError):
            graph.add_stage("a", "not a function")
