"""
Flow Analyzer: the recursion controller.

Expands a root method depth-first: resolve the defining source, reuse a
cached analysis or ask the oracle, then recurse into every call the
oracle classified ``stepInto``, in the order it reported them.

Limits never raise.  Depth, budget and cycles produce ``partial``
placeholder leaves; timeouts, oracle failures and unparsable replies
produce ``error`` leaves.  Only a root method that cannot be resolved at
all escapes as ``MethodNotFoundError``.

Analyses are never mutated: after the children of a method are known an
enriched copy of the parent is built, and only the un-enriched base
analysis is cached.
"""

import asyncio
import logging
import re
import time

from src.agents.flow_analyst.cache import MethodAnalysisCache
from src.agents.flow_analyst.fingerprint import compute_fingerprint
from src.agents.flow_analyst.linear_flow import summarize_return
from src.agents.flow_analyst.models import (
    CallSummary,
    ExecutionBlock,
    FlowAnalysisConfig,
    MethodAnalysis,
    MethodCall,
    MethodKey,
    make_placeholder,
)
from src.agents.flow_analyst.oracle import Oracle, OraclePrompt
from src.agents.flow_analyst.resolver import MethodResolver, ResolvedMethod
from src.agents.flow_analyst.response_parser import parse_oracle_response
from src.agents.flow_analyst.session import AnalysisSession, ProgressCallback, ProgressEvent
from src.shared.exceptions import (
    FlowAnalysisError,
    MethodNotFoundError,
    OracleTimeoutError,
    ResponseParseError,
)

logger = logging.getLogger("flow-analyst.analyzer")

DEPTH_LIMIT_REASON = "maximum recursion depth reached"
CYCLE_REASON = "circular dependency detected"
BUDGET_REASON = "maximum method count reached"
CANCELLED_REASON = "analysis cancelled"

_METHOD_NAME_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
_TYPE_NAME_RE = re.compile(r"^[A-Za-z_$][\w$]*(?:(?:\.|::)[A-Za-z_$][\w$]*)*$")
_MAX_IDENTIFIER_LENGTH = 200


def is_plausible_identifier(type_name: str, method_name: str) -> bool:
    """Cheap sanity check before spending an oracle call."""
    return (
        0 < len(type_name) <= _MAX_IDENTIFIER_LENGTH
        and 0 < len(method_name) <= _MAX_IDENTIFIER_LENGTH
        and bool(_TYPE_NAME_RE.match(type_name))
        and bool(_METHOD_NAME_RE.match(method_name))
    )


class FlowAnalyzer:
    """Drives recursive expansion for one or more sessions."""

    def __init__(
        self,
        resolver: MethodResolver,
        cache: MethodAnalysisCache | None = None,
        max_suggestions: int = 5,
    ):
        self.resolver = resolver
        self.cache = cache
        self.max_suggestions = max_suggestions

    def create_session(
        self,
        type_name: str,
        method_name: str,
        oracle: Oracle,
        config: FlowAnalysisConfig | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AnalysisSession:
        session = AnalysisSession(
            root_key=MethodKey(type_name, method_name),
            config=config or FlowAnalysisConfig(),
            oracle=oracle,
            progress=progress,
        )
        if cancel_event is not None:
            session.cancel_event = cancel_event
        return session

    async def run(self, session: AnalysisSession) -> MethodAnalysis:
        """
        Analyze the session's root method and assemble its linear flow.

        Raises:
            MethodNotFoundError: The root type or method cannot be resolved.
        """
        root_key = session.root_key
        logger.info(
            "Session %s: analyzing %s with %s (max_depth=%d, max_total=%d)",
            session.session_id, root_key.display, session.oracle_identity,
            session.config.max_depth, session.config.max_total_methods,
        )
        try:
            root = await self.analyze(root_key.type_name, root_key.method_name, session)
        finally:
            session.is_complete = True

        session.flow.assemble(root)
        logger.info(
            "Session %s finished: %d methods, %d oracle calls, %d steps in %dms",
            session.session_id, session.total_analyzed, session.oracle_calls,
            len(session.flow.steps), session.elapsed_ms,
        )
        return root

    # ─── Recursion ─────────────────────────────────────────────

    async def analyze(
        self,
        type_name: str,
        method_name: str,
        session: AnalysisSession,
        depth: int = 0,
        is_conditional: bool = False,
    ) -> MethodAnalysis:
        key = MethodKey(type_name, method_name)
        config = session.config

        if depth > config.max_depth:
            logger.debug("Depth limit at %s (depth %d)", key, depth)
            return make_placeholder(key, "partial", DEPTH_LIMIT_REASON)

        if key in session.visited:
            if session.on_stack(key):
                logger.debug("Cycle at %s", key)
                return make_placeholder(key, "partial", CYCLE_REASON)
            existing = session.flow.get(key)
            if existing is not None:
                return existing
            return make_placeholder(key, "partial", CYCLE_REASON)

        if session.total_analyzed >= config.max_total_methods:
            logger.debug("Method budget exhausted at %s", key)
            return make_placeholder(key, "partial", BUDGET_REASON)

        if not is_plausible_identifier(type_name, method_name):
            logger.warning("Rejecting implausible method reference %r.%r", type_name, method_name)
            return make_placeholder(key, "error", f"invalid method reference {type_name}.{method_name}")

        session.visited.add(key)
        session.total_analyzed += 1
        session.push(key, depth, is_conditional)
        await session.notify(ProgressEvent(kind="method_start", method=key.display, depth=depth))

        try:
            try:
                analysis = await self._analyze_base(key, session)
            except MethodNotFoundError as e:
                session.flow.register(make_placeholder(key, "error", e.message))
                raise
            except FlowAnalysisError as e:
                logger.warning("Analysis of %s failed [%s]: %s", key.display, e.code, e.message)
                analysis = make_placeholder(key, "error", e.message)
            except Exception as e:
                logger.exception("Unexpected failure analyzing %s", key.display)
                analysis = make_placeholder(key, "error", str(e) or type(e).__name__)

            if analysis.status == "complete":
                analysis = await self._expand(analysis, session, depth)

            session.flow.register(analysis)
            await session.notify(
                ProgressEvent(
                    kind="method_complete",
                    method=key.display,
                    depth=depth,
                    status=analysis.status,
                )
            )
            return analysis
        finally:
            session.pop()

    async def _expand(
        self,
        analysis: MethodAnalysis,
        session: AnalysisSession,
        depth: int,
    ) -> MethodAnalysis:
        """Recurse into stepInto calls and return the enriched copy."""
        blocks: list[ExecutionBlock] = []
        all_calls: list[MethodCall] = []

        for block in analysis.blocks:
            calls: list[MethodCall] = []
            inner_notes: list[str] = []

            for call in block.method_calls:
                if call.classification != "stepInto" or session.cancelled:
                    calls.append(call)
                    continue

                inner = await self._analyze_inner(call, session, depth + 1)
                calls.append(self._enrich_call(call, inner))
                if inner.status == "complete":
                    inner_notes.append(self._inner_summary(inner))

            if inner_notes:
                flow = "\n\n".join([block.execution_flow, *inner_notes]).strip()
                block = block.model_copy(update={"method_calls": tuple(calls), "execution_flow": flow})
            else:
                block = block.model_copy(update={"method_calls": tuple(calls)})
            blocks.append(block)
            all_calls.extend(calls)

        return analysis.model_copy(
            update={
                "blocks": tuple(blocks),
                "call_summary": CallSummary.from_calls(all_calls),
            }
        )

    async def _analyze_inner(
        self,
        call: MethodCall,
        session: AnalysisSession,
        depth: int,
    ) -> MethodAnalysis:
        try:
            return await self.analyze(
                call.target_type,
                call.target_method,
                session,
                depth=depth,
                is_conditional=call.conditional_execution is not None,
            )
        except MethodNotFoundError as e:
            logger.info("Inner call %s unresolved: %s", call.display, e.message)
            return make_placeholder(call.key, "error", e.message)
        except Exception as e:
            logger.exception("Unexpected failure analyzing %s", call.display)
            return make_placeholder(call.key, "error", str(e))

    @staticmethod
    def _enrich_call(call: MethodCall, inner: MethodAnalysis) -> MethodCall:
        update: dict = {"inner_status": inner.status}
        if inner.status == "complete":
            update["expected_behavior"] = summarize_return(inner)
            if inner.inherited_from:
                update["inner_note"] = f"defined in {inner.inherited_from}"
        else:
            update["inner_note"] = inner.error_message
        return call.model_copy(update=update)

    @staticmethod
    def _inner_summary(inner: MethodAnalysis) -> str:
        lines = [f"Inner Execution for {inner.display}:"]
        for i, block in enumerate(inner.blocks, 1):
            lines.append(f"  {i}. {block.description}")
        return "\n".join(lines)

    # ─── Resolution, cache and oracle ──────────────────────────

    async def _analyze_base(self, key: MethodKey, session: AnalysisSession) -> MethodAnalysis:
        """Un-enriched analysis of ``key``, following oracle suggestions if needed."""
        if session.cancelled:
            return make_placeholder(key, "partial", CANCELLED_REASON)

        resolved = await self.resolver.resolve(key.type_name, key.method_name)
        analysis, suggestions = await self._analyze_resolved(key, resolved, session)
        if analysis is not None:
            return analysis

        tried = set(resolved.chain)
        searched = list(resolved.chain)
        for suggestion in suggestions[: self.max_suggestions]:
            if suggestion in tried:
                continue
            tried.add(suggestion)
            if session.cancelled:
                return make_placeholder(key, "partial", CANCELLED_REASON)

            try:
                alternate = await self.resolver.resolve(suggestion, key.method_name)
            except MethodNotFoundError:
                logger.debug("Suggested type %s has no source", suggestion)
                searched.append(suggestion)
                continue
            searched.extend(t for t in alternate.chain if t not in searched)

            alt_key = MethodKey(alternate.defining_type, key.method_name)
            try:
                alt_analysis, _ = await self._analyze_resolved(alt_key, alternate, session)
            except MethodNotFoundError:
                raise
            except FlowAnalysisError as e:
                logger.warning(
                    "Suggested type %s failed for %s [%s]: %s",
                    alternate.defining_type, key.display, e.code, e.message,
                )
                continue
            if alt_analysis is None or alt_analysis.status != "complete":
                continue

            logger.info("Resolved %s via suggested type %s", key.display, alternate.defining_type)
            result = alt_analysis.model_copy(
                update={
                    "type_name": key.type_name,
                    "method_name": key.method_name,
                    "inherited_from": alt_analysis.inherited_from or alternate.defining_type,
                }
            )
            await self._store(key, result, resolved, session)
            return result

        raise MethodNotFoundError(key.type_name, key.method_name, searched)

    async def _analyze_resolved(
        self,
        key: MethodKey,
        resolved: ResolvedMethod,
        session: AnalysisSession,
    ) -> tuple[MethodAnalysis | None, list[str]]:
        """
        Cached or fresh analysis of ``key`` from ``resolved.source``.

        Returns ``(None, suggestions)`` when the oracle says the method is
        not in that source.
        """
        fingerprint = compute_fingerprint(resolved.source.content)

        if session.config.enable_cache and self.cache is not None:
            cached = await self.cache.get(key, fingerprint, session.oracle_identity)
            if cached is not None:
                session.cache_hits += 1
                logger.debug("Cache hit for %s", key)
                return cached, []
            session.cache_misses += 1

        if session.cancelled:
            return make_placeholder(key, "partial", CANCELLED_REASON), []

        prompt = OraclePrompt(
            type_name=resolved.defining_type,
            method_name=key.method_name,
            source=resolved.source.content,
            language=resolved.source.language,
        )
        started = time.monotonic()
        raw = await self._run_oracle(prompt, key, session)
        elapsed_ms = (time.monotonic() - started) * 1000

        parsed = parse_oracle_response(raw, owner_type=resolved.defining_type)
        if parsed.not_found:
            logger.info(
                "Oracle reports %s absent from %s, suggestions: %s",
                key.method_name, resolved.defining_type, parsed.suggestions or "none",
            )
            return None, parsed.suggestions
        if parsed.status != "complete":
            raise ResponseParseError(
                f"Could not parse analysis of {key.display}: {parsed.error_message}",
                context={"method": key.display, "preview": raw[:200]},
            )

        analysis = MethodAnalysis(
            type_name=key.type_name,
            method_name=key.method_name,
            language=resolved.source.language,
            status="complete",
            blocks=tuple(parsed.blocks),
            call_summary=parsed.call_summary,
            fingerprint=fingerprint,
            inherited_from=resolved.defining_type if resolved.inherited else None,
        )
        if self.cache is not None:
            self.cache.record_analysis_time(elapsed_ms)
        await self._store(key, analysis, resolved, session)
        return analysis, []

    async def _store(
        self,
        key: MethodKey,
        analysis: MethodAnalysis,
        resolved: ResolvedMethod,
        session: AnalysisSession,
    ) -> None:
        if not session.config.enable_cache or self.cache is None:
            return
        await self.cache.set(
            key,
            analysis,
            compute_fingerprint(resolved.source.content),
            session.oracle_identity,
            source_path=resolved.source.path,
        )

    async def _run_oracle(self, prompt: OraclePrompt, key: MethodKey, session: AnalysisSession) -> str:
        session.oracle_calls += 1
        timeout_s = session.config.per_call_timeout_s
        try:
            return await asyncio.wait_for(self._collect(prompt, key, session), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise OracleTimeoutError(key.display, timeout_s) from e

    async def _collect(self, prompt: OraclePrompt, key: MethodKey, session: AnalysisSession) -> str:
        parts: list[str] = []
        async for fragment in session.oracle.request(prompt):
            parts.append(fragment)
            await session.notify(
                ProgressEvent(
                    kind="fragment",
                    method=key.display,
                    depth=session.current_depth,
                    text=fragment,
                )
            )
        raw = "".join(parts)
        logger.debug("Oracle reply for %s (%d chars): %.200s", key.display, len(raw), raw)
        return raw
