"""
Tests for the recursion controller.

The oracle is a scripted fake and sources live in memory, so every test
controls exactly which methods exist and what they call.

Run with: pytest tests/test_flow_analyst/test_analyzer.py -v
"""

import asyncio

import pytest

from src.agents.flow_analyst.analyzer import (
    BUDGET_REASON,
    CANCELLED_REASON,
    CYCLE_REASON,
    DEPTH_LIMIT_REASON,
    FlowAnalyzer,
    is_plausible_identifier,
)
from src.agents.flow_analyst.cache import MethodAnalysisCache, SessionAnalysisCache
from src.agents.flow_analyst.models import FlowAnalysisConfig, MethodKey
from src.agents.flow_analyst.resolver import MethodResolver
from src.shared.exceptions import MethodNotFoundError, OracleError, TypeNotFoundError


def _config(**overrides) -> FlowAnalysisConfig:
    return FlowAnalysisConfig(**{"max_depth": 5, "max_total_methods": 15, "per_call_timeout_s": 5, **overrides})


def _inner_status(analysis, method_name):
    call = next(c for c in analysis.calls if c.target_method == method_name)
    return call.inner_status, call.inner_note


# ──────────────────────────────────────────────────
# Basic expansion
# ──────────────────────────────────────────────────


class TestExpansion:

    @pytest.fixture
    def scenario(self, provider, make_oracle, java_class, flow_reply):
        provider.sources.update({
            "UserService": java_class("UserService", ["createUser"]),
            "UserValidator": java_class("UserValidator", ["validate"]),
            "UserRepository": java_class("UserRepository", ["save"]),
        })
        oracle = make_oracle({
            ("UserService", "createUser"): flow_reply("UserService", "createUser", [
                ("UserValidator.validate(user)", "stepInto"),
                ("user.getName()", "objectLookup"),
                ("UserRepository.save(user)", "stepInto", "only if validate() returns true"),
                ("Logger.info(msg)", "external"),
            ]),
            ("UserValidator", "validate"): flow_reply("UserValidator", "validate"),
            ("UserRepository", "save"): flow_reply("UserRepository", "save"),
        })
        return oracle

    async def test_expands_step_into_calls_in_order(self, analyzer, scenario):
        session = analyzer.create_session("UserService", "createUser", scenario, _config())
        root = await analyzer.run(session)

        assert root.status == "complete"
        assert session.total_analyzed == 3
        assert [(p.type_name, p.method_name) for p in scenario.requests] == [
            ("UserService", "createUser"),
            ("UserValidator", "validate"),
            ("UserRepository", "save"),
        ]

    async def test_enriched_copy_records_inner_results(self, analyzer, scenario):
        session = analyzer.create_session("UserService", "createUser", scenario, _config())
        root = await analyzer.run(session)

        validate = next(c for c in root.calls if c.target_method == "validate")
        assert validate.inner_status == "complete"
        assert validate.expected_behavior != "runs UserValidator.validate(user)"
        assert "Inner Execution for UserValidator.validate()" in root.blocks[0].execution_flow

    async def test_non_step_into_calls_untouched(self, analyzer, scenario):
        session = analyzer.create_session("UserService", "createUser", scenario, _config())
        root = await analyzer.run(session)

        lookup = next(c for c in root.calls if c.target_method == "getName")
        assert lookup.inner_status is None
        assert scenario.calls_for("Logger", "info") == 0
        assert root.call_summary.total == 4

    async def test_cached_base_analysis_is_not_enriched(self, analyzer, scenario, cache):
        session = analyzer.create_session("UserService", "createUser", scenario, _config())
        await analyzer.run(session)

        cached = cache.peek(MethodKey("UserService", "createUser"))
        assert all(c.inner_status is None for c in cached.calls)

    async def test_progress_events(self, analyzer, scenario):
        events = []
        session = analyzer.create_session(
            "UserService", "createUser", scenario, _config(), progress=events.append,
        )
        await analyzer.run(session)

        kinds = {e.kind for e in events}
        assert kinds == {"method_start", "fragment", "method_complete"}
        completed = [e.method for e in events if e.kind == "method_complete"]
        assert completed == [
            "UserValidator.validate()",
            "UserRepository.save()",
            "UserService.createUser()",
        ]
        text = "".join(e.text for e in events if e.kind == "fragment" and e.method == "UserService.createUser()")
        assert "UserRepository.save(user)" in text

    async def test_async_progress_callback(self, analyzer, scenario):
        seen = []

        async def progress(event):
            seen.append(event.kind)

        session = analyzer.create_session("UserService", "createUser", scenario, _config(), progress=progress)
        await analyzer.run(session)

        assert "method_complete" in seen

    async def test_failing_progress_callback_is_ignored(self, analyzer, scenario):
        def progress(event):
            raise RuntimeError("ui went away")

        session = analyzer.create_session("UserService", "createUser", scenario, _config(), progress=progress)
        root = await analyzer.run(session)

        assert root.status == "complete"


# ──────────────────────────────────────────────────
# Memoization and invalidation
# ──────────────────────────────────────────────────


class TestMemoization:

    @pytest.fixture
    def shared_callee(self, provider, make_oracle, java_class, flow_reply):
        provider.sources.update({
            "A": java_class("A", ["f"]),
            "B": java_class("B", ["g"]),
            "C": java_class("C", ["h"]),
        })
        return make_oracle({
            ("A", "f"): flow_reply("A", "f", [("B.g()", "stepInto"), ("C.h()", "stepInto"), ("B.g()", "stepInto")]),
            ("C", "h"): flow_reply("C", "h", [("B.g()", "stepInto")]),
            ("B", "g"): flow_reply("B", "g"),
        })

    async def test_shared_callee_analyzed_once_per_session(self, analyzer, shared_callee):
        session = analyzer.create_session("A", "f", shared_callee, _config())
        root = await analyzer.run(session)

        assert shared_callee.calls_for("B", "g") == 1
        assert session.total_analyzed == 3
        assert [c.inner_status for c in root.calls] == ["complete", "complete", "complete"]

    async def test_repeated_key_returns_identical_object(self, analyzer, shared_callee):
        session = analyzer.create_session("A", "f", shared_callee, _config())
        first = await analyzer.analyze("B", "g", session, depth=1)
        second = await analyzer.analyze("B", "g", session, depth=1)

        assert second is first

    async def test_second_session_served_from_cache(self, analyzer, shared_callee):
        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config()))
        calls_after_first = len(shared_callee.requests)

        session = analyzer.create_session("A", "f", shared_callee, _config())
        root = await analyzer.run(session)

        assert len(shared_callee.requests) == calls_after_first
        assert session.cache_hits == 3
        assert session.cache_hit_rate == 1.0
        assert root.status == "complete"

    async def test_cache_disabled_per_request(self, analyzer, shared_callee):
        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config()))
        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config(enable_cache=False)))

        assert shared_callee.calls_for("A", "f") == 2

    async def test_changed_source_invalidates(self, analyzer, provider, shared_callee, java_class):
        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config()))
        provider.sources["B"] = java_class("B", ["g", "extra"])

        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config()))

        assert shared_callee.calls_for("B", "g") == 2
        assert shared_callee.calls_for("A", "f") == 1

    async def test_different_oracle_identity_misses(self, analyzer, shared_callee, make_oracle):
        await analyzer.run(analyzer.create_session("A", "f", shared_callee, _config()))
        other = make_oracle(shared_callee.replies, identity="other-model")

        await analyzer.run(analyzer.create_session("A", "f", other, _config()))

        assert other.calls_for("A", "f") == 1


# ──────────────────────────────────────────────────
# Policy limits
# ──────────────────────────────────────────────────


class TestLimits:

    async def test_direct_recursion_is_one_cycle_leaf(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources["A"] = java_class("A", ["f"])
        oracle = make_oracle({("A", "f"): flow_reply("A", "f", [("A.f()", "stepInto")])})

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        assert session.total_analyzed == 1
        assert oracle.calls_for("A", "f") == 1
        assert _inner_status(root, "f") == ("partial", CYCLE_REASON)
        cycle_steps = [s for s in session.flow.steps if CYCLE_REASON in s.description]
        assert len(cycle_steps) == 1

    async def test_indirect_cycle(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources.update({"A": java_class("A", ["f"]), "B": java_class("B", ["g"])})
        oracle = make_oracle({
            ("A", "f"): flow_reply("A", "f", [("B.g()", "stepInto")]),
            ("B", "g"): flow_reply("B", "g", [("A.f()", "stepInto")]),
        })

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        b = session.flow.get(MethodKey("B", "g"))
        assert _inner_status(b, "f") == ("partial", CYCLE_REASON)
        assert root.status == "complete"
        assert len(oracle.requests) == 2

    async def test_depth_bound(self, analyzer, provider, make_oracle, java_class, flow_reply):
        chain = ["A", "B", "C", "D"]
        for name in chain:
            provider.sources[name] = java_class(name, ["run"])
        replies = {
            (a, "run"): flow_reply(a, "run", [(f"{b}.run()", "stepInto")])
            for a, b in zip(chain, chain[1:])
        }
        replies[("D", "run")] = flow_reply("D", "run")
        oracle = make_oracle(replies)

        session = analyzer.create_session("A", "run", oracle, _config(max_depth=2))
        await analyzer.run(session)

        assert [p.type_name for p in oracle.requests] == ["A", "B", "C"]
        assert oracle.calls_for("D", "run") == 0
        c = session.flow.get(MethodKey("C", "run"))
        assert _inner_status(c, "run") == ("partial", DEPTH_LIMIT_REASON)
        assert session.max_depth_reached == 2

    async def test_max_depth_zero_analyzes_root_only(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources.update({"A": java_class("A", ["f"]), "B": java_class("B", ["g"])})
        oracle = make_oracle({("A", "f"): flow_reply("A", "f", [("B.g()", "stepInto")])})

        session = analyzer.create_session("A", "f", oracle, _config(max_depth=0))
        root = await analyzer.run(session)

        assert session.total_analyzed == 1
        assert _inner_status(root, "g") == ("partial", DEPTH_LIMIT_REASON)

    async def test_budget_bound(self, analyzer, provider, make_oracle, java_class, flow_reply):
        callees = [f"S{i}" for i in range(1, 6)]
        provider.sources["Root"] = java_class("Root", ["main"])
        replies = {("Root", "main"): flow_reply("Root", "main", [(f"{c}.run()", "stepInto") for c in callees])}
        for c in callees:
            provider.sources[c] = java_class(c, ["run"])
            replies[(c, "run")] = flow_reply(c, "run")
        oracle = make_oracle(replies)

        session = analyzer.create_session("Root", "main", oracle, _config(max_total_methods=3))
        root = await analyzer.run(session)

        assert session.total_analyzed == 3
        assert len(oracle.requests) == 3
        statuses = [c.inner_status for c in root.calls]
        assert statuses == ["complete", "complete", "partial", "partial", "partial"]
        assert all(c.inner_note == BUDGET_REASON for c in root.calls[2:])

    async def test_implausible_identifier_is_error_leaf(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources["A"] = java_class("A", ["f"])
        oracle = make_oracle({("A", "f"): flow_reply("A", "f", [("A.f()", "stepInto")])})
        session = analyzer.create_session("A", "f", oracle, _config())

        leaf = await analyzer.analyze("Bad Type", "f", session, depth=1)

        assert leaf.status == "error"
        assert session.total_analyzed == 0
        assert oracle.requests == []

    @pytest.mark.parametrize("type_name,method_name,ok", [
        ("UserService", "createUser", True),
        ("com.acme.UserService", "createUser", True),
        ("ns::Repo", "save", True),
        ("", "f", False),
        ("A", "f()", False),
        ("A B", "f", False),
        ("A", "1f", False),
    ])
    def test_identifier_check(self, type_name, method_name, ok):
        assert is_plausible_identifier(type_name, method_name) is ok


# ──────────────────────────────────────────────────
# Inheritance and oracle-guided fallback
# ──────────────────────────────────────────────────


class TestInheritance:

    async def test_method_inherited_from_base(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources.update({
            "Child": java_class("Child", ["other"], extends="Base"),
            "Base": java_class("Base", ["run"]),
        })
        oracle = make_oracle({("Base", "run"): flow_reply("Base", "run")})

        session = analyzer.create_session("Child", "run", oracle, _config())
        root = await analyzer.run(session)

        assert root.status == "complete"
        assert root.type_name == "Child"
        assert root.inherited_from == "Base"
        assert oracle.requests[0].type_name == "Base"

    async def test_oracle_suggestion_fallback(
        self, analyzer, provider, make_oracle, java_class, flow_reply, not_found_reply,
    ):
        provider.sources.update({
            "Child": "public class Child {\n    // run() comes from a mixin\n}\n",
            "Helper": java_class("Helper", ["run"]),
        })
        oracle = make_oracle({
            ("Child", "run"): not_found_reply("Child", "run", alternatives=["Ghost", "Helper"]),
            ("Helper", "run"): flow_reply("Helper", "run"),
        })

        session = analyzer.create_session("Child", "run", oracle, _config())
        root = await analyzer.run(session)

        assert root.status == "complete"
        assert root.type_name == "Child"
        assert root.inherited_from == "Helper"
        assert [p.type_name for p in oracle.requests] == ["Child", "Helper"]

    async def test_fallback_result_is_cached_under_requested_key(
        self, analyzer, provider, make_oracle, java_class, flow_reply, not_found_reply,
    ):
        provider.sources.update({
            "Child": "public class Child {\n}\n",
            "Helper": java_class("Helper", ["run"]),
        })
        oracle = make_oracle({
            ("Child", "run"): not_found_reply("Child", "run", alternatives=["Helper"]),
            ("Helper", "run"): flow_reply("Helper", "run"),
        })

        await analyzer.run(analyzer.create_session("Child", "run", oracle, _config()))
        await analyzer.run(analyzer.create_session("Child", "run", oracle, _config()))

        assert len(oracle.requests) == 2

    async def test_failed_suggestion_falls_through_to_next(
        self, analyzer, provider, make_oracle, java_class, flow_reply, not_found_reply,
    ):
        provider.sources.update({
            "Child": "public class Child {\n}\n",
            "Slow": java_class("Slow", ["run"]),
            "Helper": java_class("Helper", ["run"]),
        })
        oracle = make_oracle(
            {
                ("Child", "run"): not_found_reply("Child", "run", alternatives=["Slow", "Helper"]),
                ("Slow", "run"): flow_reply("Slow", "run"),
                ("Helper", "run"): flow_reply("Helper", "run"),
            },
            delays={("Slow", "run"): 1.0},
        )

        session = analyzer.create_session("Child", "run", oracle, _config(per_call_timeout_s=0.1))
        root = await analyzer.run(session)

        assert root.status == "complete"
        assert root.inherited_from == "Helper"
        assert [p.type_name for p in oracle.requests] == ["Child", "Slow", "Helper"]

    async def test_root_not_found_anywhere_raises(self, analyzer, provider, make_oracle, not_found_reply):
        provider.sources["Child"] = "public class Child {\n}\n"
        oracle = make_oracle({("Child", "run"): not_found_reply("Child", "run", extends=["Missing"])})

        session = analyzer.create_session("Child", "run", oracle, _config())
        with pytest.raises(MethodNotFoundError) as exc_info:
            await analyzer.run(session)

        assert "Missing" in exc_info.value.chain
        assert session.call_stack == []

    async def test_root_type_missing_raises(self, analyzer, make_oracle):
        session = analyzer.create_session("Ghost", "run", make_oracle(), _config())

        with pytest.raises(TypeNotFoundError):
            await analyzer.run(session)

    async def test_inner_not_found_is_error_leaf(self, analyzer, provider, make_oracle, java_class, flow_reply):
        provider.sources["A"] = java_class("A", ["f"])
        oracle = make_oracle({
            ("A", "f"): flow_reply("A", "f", [("Unknown.g()", "stepInto"), ("A.helper()", "objectLookup")]),
        })

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        status, note = _inner_status(root, "g")
        assert status == "error"
        assert "Unknown" in note
        assert root.status == "complete"

    async def test_repeated_unresolved_callee_is_same_error(
        self, analyzer, provider, make_oracle, java_class, flow_reply,
    ):
        provider.sources["A"] = java_class("A", ["f"])
        oracle = make_oracle({
            ("A", "f"): flow_reply("A", "f", [("Missing.g(a)", "stepInto"), ("Missing.g(b)", "stepInto")]),
        })

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        statuses = [(c.inner_status, c.inner_note) for c in root.calls]
        assert statuses[0][0] == "error"
        assert statuses[1] == statuses[0]
        assert CYCLE_REASON not in statuses[1][1]


# ──────────────────────────────────────────────────
# Failures, timeouts and cancellation
# ──────────────────────────────────────────────────


class TestFailures:

    @pytest.fixture
    def siblings(self, provider, java_class, flow_reply):
        provider.sources.update({
            "A": java_class("A", ["f"]),
            "B": java_class("B", ["g"]),
            "C": java_class("C", ["h"]),
        })
        return {
            ("A", "f"): flow_reply("A", "f", [("B.g()", "stepInto"), ("C.h()", "stepInto")]),
            ("B", "g"): flow_reply("B", "g"),
            ("C", "h"): flow_reply("C", "h"),
        }

    async def test_timeout_is_localized(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, delays={("B", "g"): 1.0})

        session = analyzer.create_session("A", "f", oracle, _config(per_call_timeout_s=0.05))
        root = await analyzer.run(session)

        status, note = _inner_status(root, "g")
        assert status == "error"
        assert "timed out" in note
        assert _inner_status(root, "h") == ("complete", None)
        assert root.status == "complete"

    async def test_oracle_error_is_localized(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, errors={("B", "g"): OracleError("rate limited")})

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        assert _inner_status(root, "g")[0] == "error"
        assert _inner_status(root, "h")[0] == "complete"

    async def test_unexpected_exception_is_localized(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, errors={("B", "g"): ValueError("boom")})

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        assert _inner_status(root, "g") == ("error", "boom")
        assert _inner_status(root, "h")[0] == "complete"
        assert session.call_stack == []

    async def test_unparsable_reply_is_error_leaf(self, analyzer, make_oracle, siblings):
        replies = dict(siblings)
        replies[("B", "g")] = "Sorry, I cannot help with that."
        oracle = make_oracle(replies)

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        status, note = _inner_status(root, "g")
        assert status == "error"
        assert "No execution blocks" in note

    async def test_errors_are_not_cached(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, errors={("B", "g"): OracleError("rate limited")})
        await analyzer.run(analyzer.create_session("A", "f", oracle, _config()))

        del oracle.errors[("B", "g")]
        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        assert _inner_status(root, "g")[0] == "complete"
        assert oracle.calls_for("B", "g") == 2

    async def test_root_timeout_is_error_leaf(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, delays={("A", "f"): 1.0})

        session = analyzer.create_session("A", "f", oracle, _config(per_call_timeout_s=0.05))
        root = await analyzer.run(session)

        assert root.status == "error"
        assert session.total_analyzed == 1

    async def test_root_unexpected_exception_is_error_leaf(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings, errors={("A", "f"): RuntimeError("boom")})

        session = analyzer.create_session("A", "f", oracle, _config())
        root = await analyzer.run(session)

        assert root.status == "error"
        assert root.error_message == "boom"
        assert session.call_stack == []

    async def test_cancel_before_start(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings)
        cancel = asyncio.Event()
        cancel.set()

        session = analyzer.create_session("A", "f", oracle, _config(), cancel_event=cancel)
        root = await analyzer.run(session)

        assert root.status == "partial"
        assert root.error_message == CANCELLED_REASON
        assert oracle.requests == []

    async def test_cancel_mid_session_keeps_work_done(self, analyzer, make_oracle, siblings):
        oracle = make_oracle(siblings)
        cancel = asyncio.Event()

        def progress(event):
            if event.kind == "method_complete" and event.method == "B.g()":
                cancel.set()

        session = analyzer.create_session("A", "f", oracle, _config(), progress=progress, cancel_event=cancel)
        root = await analyzer.run(session)

        assert session.cancelled
        assert _inner_status(root, "g")[0] == "complete"
        assert _inner_status(root, "h") == (None, None)
        assert oracle.calls_for("C", "h") == 0


class TestSharedCacheAcrossAnalyzers:

    async def test_two_analyzers_share_one_cache(self, provider, make_oracle, java_class, flow_reply):
        provider.sources["A"] = java_class("A", ["f"])
        oracle = make_oracle({("A", "f"): flow_reply("A", "f")})
        cache = MethodAnalysisCache(SessionAnalysisCache())

        first = FlowAnalyzer(MethodResolver(provider), cache)
        second = FlowAnalyzer(MethodResolver(provider), cache)
        await first.run(first.create_session("A", "f", oracle, _config()))
        await second.run(second.create_session("A", "f", oracle, _config()))

        assert oracle.calls_for("A", "f") == 1
