"""
Flow Analysis Models

Typed records passed between the method resolver, the oracle response
parser, the recursion controller and the linear flow assembler.

``MethodAnalysis`` and everything it contains is frozen: once an analysis
has been produced (and possibly cached) nobody mutates it.  Enrichment
after recursion builds copies with ``model_copy(update=...)``.
"""

import time
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

AnalysisStatus = Literal["complete", "partial", "error"]

ExecutionBlockType = Literal[
    "assignment",
    "methodCall",
    "conditional",
    "loop",
    "shortCircuit",
    "return",
    "exception",
]

StepInDecision = Literal["stepInto", "objectLookup", "external", "notFound"]

LinearStepType = Literal[
    "methodStart",
    "execution",
    "methodCall",
    "methodReturn",
    "conditional",
    "methodEnd",
]

BLOCK_TYPES: tuple[str, ...] = (
    "assignment",
    "methodCall",
    "conditional",
    "loop",
    "shortCircuit",
    "return",
    "exception",
)

STEP_IN_DECISIONS: tuple[str, ...] = ("stepInto", "objectLookup", "external", "notFound")


class MethodKey(NamedTuple):
    """(type, method) pair used for caching, cycle detection and dedup."""

    type_name: str
    method_name: str

    def __str__(self) -> str:
        return f"{self.type_name}#{self.method_name}"

    @property
    def display(self) -> str:
        return f"{self.type_name}.{self.method_name}()"

    @classmethod
    def parse(cls, raw: str) -> "MethodKey":
        """Inverse of ``str(key)``: ``'UserService#create'`` -> key."""
        type_name, _, method_name = raw.partition("#")
        return cls(type_name, method_name)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class MethodCall(_Frozen):
    """One call site inside an execution block."""

    target_type: str
    target_method: str
    parameters: str = ""
    classification: StepInDecision = "external"
    reasoning: str = ""
    expected_behavior: str = "To be analyzed"
    execution_order: int = 0
    conditional_execution: str | None = None
    # Filled in on the enriched copy once the call has been expanded
    inner_status: AnalysisStatus | None = None
    inner_note: str | None = None

    @property
    def key(self) -> MethodKey:
        return MethodKey(self.target_type, self.target_method)

    @property
    def display(self) -> str:
        return f"{self.target_type}.{self.target_method}()"


class ExecutionBlock(_Frozen):
    """A semantic unit of a method (assignment, loop, conditional, ...)."""

    block_id: str
    block_type: ExecutionBlockType = "methodCall"
    description: str
    execution_flow: str = ""
    method_calls: tuple[MethodCall, ...] = ()
    next_blocks: tuple[str, ...] = ()


class CallSummary(_Frozen):
    """Every call of a method, partitioned into exactly one bucket each."""

    step_into: tuple[MethodCall, ...] = ()
    object_lookup: tuple[MethodCall, ...] = ()
    external: tuple[MethodCall, ...] = ()
    not_found: tuple[MethodCall, ...] = ()

    @classmethod
    def from_calls(cls, calls: list[MethodCall] | tuple[MethodCall, ...]) -> "CallSummary":
        buckets: dict[str, list[MethodCall]] = {d: [] for d in STEP_IN_DECISIONS}
        for call in calls:
            buckets[call.classification].append(call)
        return cls(
            step_into=tuple(buckets["stepInto"]),
            object_lookup=tuple(buckets["objectLookup"]),
            external=tuple(buckets["external"]),
            not_found=tuple(buckets["notFound"]),
        )

    @property
    def total(self) -> int:
        return (
            len(self.step_into)
            + len(self.object_lookup)
            + len(self.external)
            + len(self.not_found)
        )

    def counts(self) -> dict[str, int]:
        return {
            "stepInto": len(self.step_into),
            "objectLookup": len(self.object_lookup),
            "external": len(self.external),
            "notFound": len(self.not_found),
        }


class MethodAnalysis(_Frozen):
    """The unit of memoization: everything known about one method."""

    type_name: str
    method_name: str
    language: str = "unknown"
    status: AnalysisStatus
    blocks: tuple[ExecutionBlock, ...] = ()
    call_summary: CallSummary = Field(default_factory=CallSummary)
    fingerprint: str = ""
    created_at: float = Field(default_factory=time.time)
    inherited_from: str | None = None
    error_message: str | None = None

    @property
    def key(self) -> MethodKey:
        return MethodKey(self.type_name, self.method_name)

    @property
    def display(self) -> str:
        return f"{self.type_name}.{self.method_name}()"

    @property
    def calls(self) -> list[MethodCall]:
        """All calls across blocks, in the order the oracle reported them."""
        return [call for block in self.blocks for call in block.method_calls]


def make_placeholder(
    key: MethodKey,
    status: AnalysisStatus,
    reason: str,
) -> MethodAnalysis:
    """Synthetic leaf for a method that was not (or could not be) expanded."""
    return MethodAnalysis(
        type_name=key.type_name,
        method_name=key.method_name,
        status=status,
        blocks=(
            ExecutionBlock(
                block_id="placeholder-1",
                block_type="methodCall",
                description=f"Method analysis skipped: {reason}",
                execution_flow=f"This method was not analyzed due to: {reason}",
            ),
        ),
        error_message=reason,
    )


# ─── Request / result models ────────────────────────────────


class FlowAnalysisConfig(BaseModel):
    """Per-request limits. Unset fields fall back to FlowAnalystSettings."""

    max_depth: int = Field(default=5, ge=0)
    max_total_methods: int = Field(default=15, ge=1)
    per_call_timeout_s: float = Field(default=60.0, gt=0)
    enable_cache: bool = True
    model: str | None = None


class LinearStep(_Frozen):
    """One line of the flattened debugger-style walkthrough."""

    step_number: int
    depth: int
    source_method: str
    description: str
    step_type: LinearStepType
    block_id: str | None = None
    classification: StepInDecision | None = None
    depends_on_step: int | None = None


class FlowStats(BaseModel):
    """Numbers reported alongside a finished walkthrough."""

    total_methods_analyzed: int = 0
    max_depth_reached: int = 0
    analysis_time_ms: int = 0
    cache_hit_rate: float = 0.0
    oracle_calls: int = 0
    partial_leaves: int = 0
    error_leaves: int = 0
    total_steps: int = 0
    model: str = ""


class FlowAnalysisResult(BaseModel):
    """What the front end gets back from ``run_flow_analysis``."""

    session_id: str
    root_method: str
    status: AnalysisStatus
    formatted_steps: str
    stats: FlowStats
    steps: list[LinearStep] = Field(default_factory=list)
    method_analyses: list[MethodAnalysis] = Field(default_factory=list)
    error_message: str | None = None
