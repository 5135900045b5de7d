"""
Flow Analyst Agent: front-end facade over the recursion controller.

Owns the long-lived pieces (settings, two-tier cache, resolver, one
oracle per model name) and turns each request into a fresh
``AnalysisSession``.  The model answering a session is an explicit field
of its config; switching the default model never affects a session that
is already running.

Usage::

    agent = await FlowAnalystAgent.create()
    result = await agent.run_flow_analysis("UserService", "createUser")
    print(result.formatted_steps)
"""

import asyncio
from pathlib import Path
from typing import Callable

from src.agents.flow_analyst.analyzer import FlowAnalyzer
from src.agents.flow_analyst.cache import MethodAnalysisCache, SessionAnalysisCache
from src.agents.flow_analyst.config import FlowAnalystSettings
from src.agents.flow_analyst.formatter import format_error_markdown, format_flow_markdown
from src.agents.flow_analyst.models import (
    FlowAnalysisConfig,
    FlowAnalysisResult,
    FlowStats,
    MethodAnalysis,
    MethodKey,
)
from src.agents.flow_analyst.oracle import LLMOracle, Oracle
from src.agents.flow_analyst.persistent_cache import PersistentAnalysisCache
from src.agents.flow_analyst.request_parser import HELP_TEXT, parse_flow_request
from src.agents.flow_analyst.resolver import MethodResolver
from src.agents.flow_analyst.session import AnalysisSession, ProgressCallback
from src.agents.flow_analyst.source_provider import SourceProvider, WorkspaceSourceProvider
from src.shared.exceptions import MethodNotFoundError
from src.shared.logging import setup_logging
from src.shared.observability import create_trace_score, trace_function

logger = setup_logging("flow_analyst.agent")

OracleFactory = Callable[[str], Oracle]


def _default_oracle_factory(model_name: str) -> Oracle:
    return LLMOracle(model_name=model_name)


def _count_leaves(analyses: list[MethodAnalysis], root: MethodAnalysis) -> tuple[int, int]:
    partial = error = 0
    for analysis in analyses:
        for call in analysis.calls:
            if call.inner_status == "partial":
                partial += 1
            elif call.inner_status == "error":
                error += 1
    if root.status == "partial":
        partial += 1
    elif root.status == "error":
        error += 1
    return partial, error


class FlowAnalystAgent:
    """Runs flow analyses and exposes cache / model management."""

    def __init__(
        self,
        settings: FlowAnalystSettings,
        analyzer: FlowAnalyzer,
        cache: MethodAnalysisCache,
        oracle_factory: OracleFactory = _default_oracle_factory,
    ) -> None:
        self.settings = settings
        self._analyzer = analyzer
        self._cache = cache
        self._oracle_factory = oracle_factory
        self._oracles: dict[str, Oracle] = {}
        self._model = settings.analysis_model

    # ─── Factory ──────────────────────────────────────────

    @classmethod
    async def create(
        cls,
        settings: FlowAnalystSettings | None = None,
        source_provider: SourceProvider | None = None,
        oracle_factory: OracleFactory | None = None,
    ) -> "FlowAnalystAgent":
        """Build the resolver, caches and analyzer.

        Args:
            settings: Optional settings override.  Falls back to env vars.
            source_provider: Defaults to scanning ``settings.workspace_root``.
            oracle_factory: Builds an oracle for a model name.  Defaults to
                a streaming ``ChatOpenAI`` oracle.
        """
        settings = settings or FlowAnalystSettings()
        workspace = Path(settings.workspace_root).resolve()
        source_provider = source_provider or WorkspaceSourceProvider(workspace)

        durable = None
        if settings.enable_persistent_cache:
            cache_path = Path(settings.persistent_cache_path)
            if not cache_path.is_absolute():
                cache_path = workspace / cache_path
            durable = PersistentAnalysisCache(
                cache_path,
                retention_days=settings.persistent_retention_days,
                max_entries=settings.persistent_max_entries,
            )

        cache = MethodAnalysisCache(
            SessionAnalysisCache(
                max_entries=settings.cache_max_entries,
                ttl_s=settings.cache_ttl_s,
            ),
            durable,
        )
        analyzer = FlowAnalyzer(
            MethodResolver(source_provider),
            cache,
            max_suggestions=settings.max_suggestions,
        )
        logger.info(
            "Flow analyst ready: workspace=%s, model=%s, durable_cache=%s",
            workspace, settings.analysis_model, durable.path if durable else "disabled",
        )
        return cls(settings, analyzer, cache, oracle_factory or _default_oracle_factory)

    # ─── Model selection ──────────────────────────────────

    @property
    def current_model(self) -> str:
        return self._model

    def select_model(self, model_name: str) -> str:
        """Change the default model for sessions started from now on."""
        previous, self._model = self._model, model_name
        logger.info("Default analysis model changed: %s -> %s", previous, model_name)
        return previous

    def _oracle_for(self, model_name: str) -> Oracle:
        if model_name not in self._oracles:
            self._oracles[model_name] = self._oracle_factory(model_name)
        return self._oracles[model_name]

    def default_config(self) -> FlowAnalysisConfig:
        return FlowAnalysisConfig(
            max_depth=self.settings.max_depth,
            max_total_methods=self.settings.max_total_methods,
            per_call_timeout_s=self.settings.per_call_timeout_s,
            enable_cache=self.settings.enable_cache,
            model=self._model,
        )

    # ─── Analysis ─────────────────────────────────────────

    @trace_function(name="flow_analysis", capture_output=False)
    async def run_flow_analysis(
        self,
        type_name: str,
        method_name: str,
        config: FlowAnalysisConfig | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> FlowAnalysisResult:
        """Trace ``type_name.method_name()`` and render the walkthrough.

        Never raises for analysis problems: an unresolvable root comes back
        with ``status="error"``, truncated or cancelled runs with
        ``status="partial"``.
        """
        config = config or self.default_config()
        if config.model is None:
            config = config.model_copy(update={"model": self._model})

        session = self._analyzer.create_session(
            type_name,
            method_name,
            self._oracle_for(config.model),
            config=config,
            progress=progress,
            cancel_event=cancel_event,
        )

        try:
            root = await self._analyzer.run(session)
        except MethodNotFoundError as e:
            logger.warning("Flow analysis of %s failed: %s", session.root_key.display, e.message)
            return self._error_result(session, e)

        analyses = list(session.flow.analyses.values())
        partial_leaves, error_leaves = _count_leaves(analyses, root)
        stats = FlowStats(
            total_methods_analyzed=session.total_analyzed,
            max_depth_reached=session.max_depth_reached,
            analysis_time_ms=session.elapsed_ms,
            cache_hit_rate=session.cache_hit_rate,
            oracle_calls=session.oracle_calls,
            partial_leaves=partial_leaves,
            error_leaves=error_leaves,
            total_steps=len(session.flow.steps),
            model=session.oracle_identity,
        )
        status = "partial" if session.cancelled or root.status != "complete" else "complete"
        create_trace_score("flow_cache_hit_rate", stats.cache_hit_rate)

        return FlowAnalysisResult(
            session_id=session.session_id,
            root_method=session.root_key.display,
            status=status,
            formatted_steps=format_flow_markdown(root, session.flow.steps, analyses, stats),
            stats=stats,
            steps=list(session.flow.steps),
            method_analyses=analyses,
            error_message=root.error_message if status != "complete" else None,
        )

    def _error_result(self, session: AnalysisSession, error: MethodNotFoundError) -> FlowAnalysisResult:
        key: MethodKey = session.root_key
        return FlowAnalysisResult(
            session_id=session.session_id,
            root_method=key.display,
            status="error",
            formatted_steps=format_error_markdown(key.type_name, key.method_name, error.message, error.chain),
            stats=FlowStats(
                total_methods_analyzed=session.total_analyzed,
                analysis_time_ms=session.elapsed_ms,
                oracle_calls=session.oracle_calls,
                model=session.oracle_identity,
            ),
            error_message=error.message,
        )

    # ─── Cache management ─────────────────────────────────

    async def clear_cache(self, type_name: str | None = None, method_name: str | None = None) -> int:
        """Drop cached analyses: everything, one type, or one method.

        Returns the number of entries removed (0 for a full clear).
        """
        if type_name is None:
            await self._cache.clear()
            logger.info("Flow analysis cache cleared")
            return 0
        removed = await self._cache.invalidate(type_name, method_name)
        logger.info("Invalidated %d cache entries for %s", removed, type_name)
        return removed

    def cache_stats(self) -> dict:
        return self._cache.get_stats()

    # ─── Chat front end ───────────────────────────────────

    async def handle_request(self, text: str, progress: ProgressCallback | None = None) -> str:
        """Answer one chat message with markdown."""
        request = parse_flow_request(text)

        if request.command == "analyze":
            result = await self.run_flow_analysis(request.type_name, request.method_name, progress=progress)
            return result.formatted_steps
        if request.command == "clear_cache":
            await self.clear_cache()
            return "Flow analysis cache cleared."
        if request.command == "cache_stats":
            return self._format_cache_stats(self.cache_stats())
        if request.command == "change_model":
            previous = self.select_model(request.model)
            return f"Analysis model changed from `{previous}` to `{request.model}`."
        if request.command == "model_info":
            return f"Current analysis model: `{self.current_model}`"
        if request.command == "invalid":
            return request.error
        return HELP_TEXT

    @staticmethod
    def _format_cache_stats(stats: dict) -> str:
        lines = [
            "**Flow analysis cache**",
            "",
            f"- Entries: {stats['total_entries']} / {stats['size']['max_entries']}",
            f"- Hits: {stats['hit_count']}, misses: {stats['miss_count']} "
            f"(hit rate {stats['hit_rate']:.0%})",
            f"- Evictions: {stats['eviction_count']}",
            f"- Average analysis time: {stats['average_analysis_ms']:.0f}ms",
        ]
        if "durable" in stats:
            durable = stats["durable"]
            lines.append(
                f"- Durable: {durable['entries']} entries in `{durable['file_path']}` ({durable['size_kb']} KB)"
            )
        for method in stats.get("top_methods", []):
            lines.append(f"  - `{method['key']}` used {method['access_count']}x")
        return "\n".join(lines)
