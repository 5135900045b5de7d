"""
Linear Flow Assembler

Flattens the recursive analysis tree into one debugger-style walkthrough.
Each method contributes::

    methodStart
      execution            (one per block)
        [conditional]      (when the call only runs conditionally)
        methodCall         (one per call)
          ...inner method's steps at depth + 1...
        methodReturn       (after a stepInto call that was expanded)
    methodEnd

Step numbers are assigned once, globally, in emission order.  A method
that was already emitted is referenced from later call sites instead of
being emitted again.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping

from src.agents.flow_analyst.models import (
    ExecutionBlock,
    LinearStep,
    MethodAnalysis,
    MethodCall,
    MethodKey,
)

logger = logging.getLogger("flow-analyst.linear-flow")

EXPECTED_BEHAVIOR_MAX_CHARS = 100


@dataclass
class LinearExecutionFlow:
    """Session-scoped output: every analysis touched plus the final steps."""

    root_key: MethodKey | None = None
    analyses: dict[MethodKey, MethodAnalysis] = field(default_factory=dict)
    steps: list[LinearStep] = field(default_factory=list)

    def register(self, analysis: MethodAnalysis) -> None:
        self.analyses[analysis.key] = analysis

    def get(self, key: MethodKey) -> MethodAnalysis | None:
        return self.analyses.get(key)

    def __contains__(self, key: MethodKey) -> bool:
        return key in self.analyses

    def assemble(self, root: MethodAnalysis) -> list[LinearStep]:
        """Build (or rebuild) ``steps`` starting from ``root``."""
        self.steps = LinearFlowAssembler(self.analyses).assemble(root)
        return self.steps


def summarize_return(analysis: MethodAnalysis) -> str:
    """Short statement of what a method hands back to its caller."""
    for block in reversed(analysis.blocks):
        if block.block_type == "return" and block.description:
            return _truncate(block.description)
    descriptions = [b.description for b in analysis.blocks[:3] if b.description]
    if descriptions:
        return _truncate("; ".join(descriptions))
    return "Completes without a documented return value"


def _truncate(text: str, limit: int = EXPECTED_BEHAVIOR_MAX_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


class LinearFlowAssembler:
    """Walks analyses depth-first and emits numbered steps."""

    def __init__(self, analyses: Mapping[MethodKey, MethodAnalysis]):
        self._analyses = analyses
        self._steps: list[LinearStep] = []
        self._started: dict[MethodKey, int] = {}

    def assemble(self, root: MethodAnalysis) -> list[LinearStep]:
        self._steps = []
        self._started = {}
        self._emit_method(root, depth=0)
        logger.debug("Assembled %d steps for %s", len(self._steps), root.display)
        return self._steps

    # ─── Emission ──────────────────────────────────────────────

    def _emit(self, depth: int, source_method: str, description: str, step_type: str, **extra) -> int:
        number = len(self._steps) + 1
        self._steps.append(
            LinearStep(
                step_number=number,
                depth=depth,
                source_method=source_method,
                description=description,
                step_type=step_type,
                **extra,
            )
        )
        return number

    def _emit_method(self, analysis: MethodAnalysis, depth: int) -> None:
        owner = analysis.display
        start = f"Enter {owner}"
        if analysis.inherited_from:
            start += f" (inherited from {analysis.inherited_from})"
        if analysis.status != "complete" and analysis.error_message:
            start += f" [{analysis.status}: {analysis.error_message}]"
        self._started[analysis.key] = self._emit(depth, owner, start, "methodStart")

        for block in analysis.blocks:
            self._emit_block(block, owner, depth)

        self._emit(depth, owner, f"Exit {owner}", "methodEnd")

    def _emit_block(self, block: ExecutionBlock, owner: str, depth: int) -> None:
        description = block.description
        if block.execution_flow:
            description = f"{description}: {block.execution_flow}" if description else block.execution_flow
        self._emit(depth, owner, description, "execution", block_id=block.block_id)

        for call in block.method_calls:
            depends_on = None
            if call.conditional_execution:
                depends_on = self._emit(
                    depth,
                    owner,
                    f"Condition: {call.conditional_execution}",
                    "conditional",
                    block_id=block.block_id,
                )
            self._emit(
                depth,
                owner,
                self._call_description(call),
                "methodCall",
                block_id=block.block_id,
                classification=call.classification,
                depends_on_step=depends_on,
            )
            if call.classification == "stepInto" and call.inner_status is not None:
                self._emit_inner(call, owner, depth)

    def _emit_inner(self, call: MethodCall, owner: str, depth: int) -> None:
        inner = self._analyses.get(call.key)

        if call.inner_status != "complete" or inner is None:
            # Depth, budget, cycle, timeout and error leaves
            note = call.inner_note or "not analyzed"
            self._emit(depth + 1, call.display, f"Enter {call.display}", "methodStart")
            self._emit(
                depth + 1,
                call.display,
                f"Not expanded ({call.inner_status}): {note}",
                "execution",
            )
            self._emit(depth + 1, call.display, f"Exit {call.display}", "methodEnd")
            self._emit(depth, owner, f"Return from {call.display}", "methodReturn")
            return

        if inner.key in self._started:
            self._emit(
                depth,
                owner,
                f"Return from {inner.display}: {summarize_return(inner)} "
                f"(already traced at step {self._started[inner.key]})",
                "methodReturn",
            )
            return

        self._emit_method(inner, depth + 1)
        self._emit(
            depth,
            owner,
            f"Return from {inner.display}: {summarize_return(inner)}",
            "methodReturn",
        )

    @staticmethod
    def _call_description(call: MethodCall) -> str:
        text = f"Call {call.target_type}.{call.target_method}({call.parameters})"
        if call.expected_behavior and call.expected_behavior != "To be analyzed":
            text += f": {call.expected_behavior}"
        return text
