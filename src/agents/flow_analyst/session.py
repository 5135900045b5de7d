"""
Analysis Session

Mutable bookkeeping for one root-method request: call stack, visited set,
counters, cancellation and the session's linear flow.  Only the recursion
controller mutates a session; it is discarded when the request finishes.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal

from src.agents.flow_analyst.linear_flow import LinearExecutionFlow
from src.agents.flow_analyst.models import AnalysisStatus, FlowAnalysisConfig, MethodKey
from src.agents.flow_analyst.oracle import Oracle
from src.shared.logging import generate_correlation_id

logger = logging.getLogger("flow-analyst.session")

ProgressKind = Literal["method_start", "fragment", "method_complete"]


@dataclass(frozen=True)
class ProgressEvent:
    """Streamed to the front end while a session runs."""

    kind: ProgressKind
    method: str
    depth: int
    text: str = ""
    status: AnalysisStatus | None = None


ProgressCallback = Callable[[ProgressEvent], Awaitable[Any] | Any]


@dataclass
class CallStackFrame:
    type_name: str
    method_name: str
    depth: int
    is_conditional: bool = False

    @property
    def key(self) -> MethodKey:
        return MethodKey(self.type_name, self.method_name)


@dataclass
class AnalysisSession:
    """State for one ``run_flow_analysis`` call."""

    root_key: MethodKey
    config: FlowAnalysisConfig
    oracle: Oracle
    session_id: str = field(default_factory=generate_correlation_id)
    started_at: float = field(default_factory=time.monotonic)

    call_stack: list[CallStackFrame] = field(default_factory=list)
    visited: set[MethodKey] = field(default_factory=set)
    flow: LinearExecutionFlow = field(default_factory=LinearExecutionFlow)

    total_analyzed: int = 0
    oracle_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    max_depth_reached: int = 0
    is_complete: bool = False

    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    progress: ProgressCallback | None = None

    def __post_init__(self):
        self.flow.root_key = self.root_key

    @property
    def oracle_identity(self) -> str:
        return self.oracle.identity

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def current_depth(self) -> int:
        return self.call_stack[-1].depth if self.call_stack else 0

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    def cancel(self) -> None:
        logger.info("Session %s cancelled", self.session_id)
        self.cancel_event.set()

    def on_stack(self, key: MethodKey) -> bool:
        return any(frame.key == key for frame in self.call_stack)

    def push(self, key: MethodKey, depth: int, is_conditional: bool = False) -> None:
        self.call_stack.append(
            CallStackFrame(key.type_name, key.method_name, depth, is_conditional)
        )
        self.max_depth_reached = max(self.max_depth_reached, depth)

    def pop(self) -> CallStackFrame:
        return self.call_stack.pop()

    async def notify(self, event: ProgressEvent) -> None:
        """Forward a progress event; callback failures never stop analysis."""
        if self.progress is None:
            return
        try:
            result = self.progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)
