"""
Tests for flattening analyses into numbered steps.

Analyses are built by hand so each test shows exactly the tree it flattens.

Run with: pytest tests/test_flow_analyst/test_linear_flow.py -v
"""

from src.agents.flow_analyst.linear_flow import (
    LinearExecutionFlow,
    LinearFlowAssembler,
    summarize_return,
)
from src.agents.flow_analyst.models import ExecutionBlock, MethodAnalysis, MethodCall, MethodKey


def _call(target, method, classification="stepInto", inner_status="complete", **extra):
    return MethodCall(
        target_type=target,
        target_method=method,
        classification=classification,
        inner_status=inner_status if classification == "stepInto" else None,
        **extra,
    )


def _method(type_name, method_name, calls=(), status="complete", **extra):
    block = ExecutionBlock(
        block_id="block-0",
        description=f"{method_name} body",
        execution_flow=f"{method_name} runs",
        method_calls=tuple(calls),
    )
    return MethodAnalysis(
        type_name=type_name, method_name=method_name, status=status, blocks=(block,), **extra,
    )


def _assemble(*analyses):
    flow = LinearExecutionFlow()
    for analysis in analyses:
        flow.register(analysis)
    return flow.assemble(analyses[0])


class TestLinearFlowAssembler:

    def test_single_method(self):
        steps = _assemble(_method("A", "f"))

        assert [s.step_type for s in steps] == ["methodStart", "execution", "methodEnd"]
        assert steps[0].description == "Enter A.f()"
        assert steps[1].description == "f body: f runs"
        assert steps[1].block_id == "block-0"

    def test_step_numbers_strictly_increase(self):
        root = _method("A", "f", [_call("B", "g"), _call("C", "h")])
        steps = _assemble(root, _method("B", "g"), _method("C", "h"))

        assert [s.step_number for s in steps] == list(range(1, len(steps) + 1))

    def test_inner_method_nested_between_call_and_return(self):
        root = _method("A", "f", [_call("B", "g")])
        steps = _assemble(root, _method("B", "g"))

        types = [(s.step_type, s.depth) for s in steps]
        assert types == [
            ("methodStart", 0),
            ("execution", 0),
            ("methodCall", 0),
            ("methodStart", 1),
            ("execution", 1),
            ("methodEnd", 1),
            ("methodReturn", 0),
            ("methodEnd", 0),
        ]
        assert steps[6].description == "Return from B.g(): g body"

    def test_starts_and_ends_balance(self):
        root = _method("A", "f", [_call("B", "g"), _call("C", "h", inner_status="partial", inner_note="depth")])
        steps = _assemble(root, _method("B", "g", [_call("D", "k")]), _method("D", "k"))

        open_methods = 0
        for step in steps:
            if step.step_type == "methodStart":
                open_methods += 1
            elif step.step_type == "methodEnd":
                open_methods -= 1
            assert open_methods >= 0
        assert open_methods == 0

    def test_repeated_callee_is_referenced(self):
        root = _method("A", "f", [_call("B", "g"), _call("B", "g")])
        steps = _assemble(root, _method("B", "g"))

        starts = [s for s in steps if s.description == "Enter B.g()"]
        assert len(starts) == 1
        returns = [s for s in steps if s.step_type == "methodReturn"]
        assert returns[1].description.endswith(f"(already traced at step {starts[0].step_number})")

    def test_unexpanded_leaf(self):
        root = _method("A", "f", [_call("B", "g", inner_status="partial", inner_note="maximum recursion depth reached")])
        steps = _assemble(root)

        leaf = [s for s in steps if s.depth == 1]
        assert [s.step_type for s in leaf] == ["methodStart", "execution", "methodEnd"]
        assert leaf[1].description == "Not expanded (partial): maximum recursion depth reached"
        assert steps[-2].step_type == "methodReturn"

    def test_conditional_call(self):
        call = _call("B", "g", conditional_execution="user is valid")
        steps = _assemble(_method("A", "f", [call]), _method("B", "g"))

        condition = next(s for s in steps if s.step_type == "conditional")
        method_call = next(s for s in steps if s.step_type == "methodCall")
        assert condition.description == "Condition: user is valid"
        assert method_call.depends_on_step == condition.step_number
        assert method_call.step_number == condition.step_number + 1

    def test_non_step_into_calls_are_single_steps(self):
        root = _method("A", "f", [
            _call("repo", "getName", classification="objectLookup"),
            _call("Logger", "info", classification="external", expected_behavior="writes a log line"),
        ])
        steps = _assemble(root)

        calls = [s for s in steps if s.step_type == "methodCall"]
        assert [c.classification for c in calls] == ["objectLookup", "external"]
        assert calls[0].description == "Call repo.getName()"
        assert calls[1].description == "Call Logger.info(): writes a log line"
        assert all(s.depth == 0 for s in steps)

    def test_root_annotations(self):
        root = _method("Child", "run", inherited_from="Base")
        steps = LinearFlowAssembler({MethodKey("Child", "run"): root}).assemble(root)

        assert steps[0].description == "Enter Child.run() (inherited from Base)"

    def test_reassembly_restarts_numbering(self):
        root = _method("A", "f")
        flow = LinearExecutionFlow()
        flow.register(root)
        flow.assemble(root)

        assert [s.step_number for s in flow.assemble(root)] == [1, 2, 3]


class TestSummarizeReturn:

    def test_prefers_return_block(self):
        analysis = MethodAnalysis(
            type_name="A",
            method_name="f",
            status="complete",
            blocks=(
                ExecutionBlock(block_id="b0", block_type="assignment", description="Load user"),
                ExecutionBlock(block_id="b1", block_type="return", description="Returns the saved user"),
            ),
        )
        assert summarize_return(analysis) == "Returns the saved user"

    def test_joins_first_descriptions(self):
        blocks = tuple(
            ExecutionBlock(block_id=f"b{i}", block_type="assignment", description=f"step {i}")
            for i in range(5)
        )
        analysis = MethodAnalysis(type_name="A", method_name="f", status="complete", blocks=blocks)

        assert summarize_return(analysis) == "step 0; step 1; step 2"

    def test_truncates_long_text(self):
        block = ExecutionBlock(block_id="b0", block_type="return", description="x" * 300)
        analysis = MethodAnalysis(type_name="A", method_name="f", status="complete", blocks=(block,))

        summary = summarize_return(analysis)
        assert len(summary) == 100
        assert summary.endswith("...")
