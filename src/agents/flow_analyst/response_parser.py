"""
Oracle Response Parser

Turns the oracle's semi-structured markdown into typed execution blocks
and classified method calls, or recognises a "method not found" answer
together with the parent / alternative types it suggests.

The grammar is deliberately tolerant: labels may be bold or plain,
colons may sit inside or outside the bold markers, call citations may be
``Type.method(args)``, ``obj.method()``, ``Type::method()`` or a bare
``method(args)``.  A citation that cannot be parsed is dropped; it never
aborts its block.  Every parsed call lands in exactly one of the four
classification buckets.
"""

import logging
import re
from dataclasses import dataclass, field

from src.agents.flow_analyst.models import (
    AnalysisStatus,
    CallSummary,
    ExecutionBlock,
    MethodCall,
    StepInDecision,
)

logger = logging.getLogger("flow-analyst.parser")

NO_FLOW_TEXT = "No execution flow documented"

# ─── Patterns ───────────────────────────────────────────────

_HEADING_RE = re.compile(r"^\s*#{1,6}\s+(?P<title>.*?)\s*#*\s*$")
_BLOCK_TITLE_RE = re.compile(
    r"^\**\s*Block\s+(?P<num>\d+)\s*\**\s*(?:[:.\-–—)]\s*(?P<desc>.*))?$",
    re.IGNORECASE,
)
_LABEL_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?\*\*(?P<label>[^*]+?)\s*:?\s*\*\*\s*:?\s*(?P<value>.*)$"
)
_PLAIN_LABEL_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?(?P<label>Type|Description|Execution Flow|Method Calls|Call|"
    r"Classification|Step Into|Expected Behavior|Condition|Reasoning)\s*:\s*(?P<value>.*)$",
    re.IGNORECASE,
)
_BULLET_CALL_RE = re.compile(r"^\s*[-*+]\s+`(?P<citation>[^`]+)`\s*(?:[-:–—]\s*(?P<rest>.*))?$")
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_IDENT = r"[A-Za-z_$][\w$]*"
_QUALIFIER_RE = re.compile(rf"^{_IDENT}(?:(?:\.|::|->){_IDENT})*$")
_TYPE_NAME_RE = re.compile(r"^[A-Z][\w$]*$")

NOT_FOUND_MARKERS = (
    re.compile(r"#+\s*method\s+not\s+found", re.IGNORECASE),
    re.compile(r"\bnot\s+found\s+in\s+(?:the\s+)?(?:class|type|interface|file)\b", re.IGNORECASE),
    re.compile(r"\bdoes\s+not\s+exist\s+in\b", re.IGNORECASE),
    re.compile(r"\bno\s+(?:such\s+)?method\s+(?:named|called)\b", re.IGNORECASE),
    re.compile(r"method\s+detection\s+result\**\s*:?\**\s*\n?\s*\**\s*not\s+found", re.IGNORECASE),
)

_SELF_RECEIVERS = {"this", "self", "super", "me", "base"}

# Block type tags the oracle tends to produce, mapped onto the closed set
_BLOCK_TYPE_ALIASES = {
    "assignment": "assignment",
    "assign": "assignment",
    "declaration": "assignment",
    "variable": "assignment",
    "methodcall": "methodCall",
    "call": "methodCall",
    "invocation": "methodCall",
    "conditional": "conditional",
    "condition": "conditional",
    "if": "conditional",
    "branch": "conditional",
    "switch": "conditional",
    "loop": "loop",
    "for": "loop",
    "while": "loop",
    "iteration": "loop",
    "shortcircuit": "shortCircuit",
    "return": "return",
    "exception": "exception",
    "throw": "exception",
    "trycatch": "exception",
    "errorhandling": "exception",
}

# Order matters: the first matching rule wins
_CLASSIFICATION_RULES: tuple[tuple[re.Pattern[str], StepInDecision], ...] = (
    (re.compile(r"not\s*[-_]?\s*found|unknown|unresolved|undetermined|unclear|cannot\s+determine", re.I), "notFound"),
    (re.compile(r"^\s*(?:no\b|don'?t|do\s+not|never|skip)", re.I), "external"),
    (re.compile(r"object\s*[-_]?\s*lookup|\blookup\b|getter|accessor|data\s+access|field\s+access|property\s+access", re.I), "objectLookup"),
    (re.compile(r"step\s*[-_]?\s*into|^\s*yes\b|own\s+code|application\s+code", re.I), "stepInto"),
    (re.compile(r"external|framework|library|third[-\s]?party|standard|builtin|built-in|sdk", re.I), "external"),
)


@dataclass
class ParsedCitation:
    target_type: str
    target_method: str
    parameters: str


@dataclass
class ParsedResponse:
    """Result of parsing one oracle reply."""

    blocks: list[ExecutionBlock] = field(default_factory=list)
    calls: list[MethodCall] = field(default_factory=list)
    status: AnalysisStatus = "error"
    error_message: str | None = None
    not_found: bool = False
    suggestions: list[str] = field(default_factory=list)

    @property
    def call_summary(self) -> CallSummary:
        return CallSummary.from_calls(self.calls)


# ─── Small helpers ──────────────────────────────────────────


def classify_step_in(phrase: str) -> StepInDecision:
    """Map a free-form classification phrase onto one of the four buckets.

    Anything unrecognised is ``external``.
    """
    text = (phrase or "").strip().strip("*[]`").strip()
    for pattern, decision in _CLASSIFICATION_RULES:
        if pattern.search(text):
            return decision
    return "external"


def normalize_block_type(tag: str, has_calls: bool = False) -> str:
    """Map an oracle block type tag onto the closed block type set."""
    cleaned = re.sub(r"[^a-z]", "", (tag or "").split("|")[0].lower())
    if cleaned in _BLOCK_TYPE_ALIASES:
        return _BLOCK_TYPE_ALIASES[cleaned]
    for alias, block_type in _BLOCK_TYPE_ALIASES.items():
        if len(alias) > 3 and alias in cleaned:
            return block_type
    return "methodCall" if has_calls else "assignment"


def _split_trailing_call(text: str) -> tuple[str, str, str] | None:
    """Split ``qualifier.method(params)`` into its parts, balancing parens."""
    text = text.strip().rstrip(";").strip()
    if not text:
        return None

    params = ""
    if text.endswith(")"):
        depth = 0
        for i in range(len(text) - 1, -1, -1):
            if text[i] == ")":
                depth += 1
            elif text[i] == "(":
                depth -= 1
                if depth == 0:
                    params = text[i + 1 : -1].strip()
                    text = text[:i].rstrip()
                    break
        else:
            return None
        if depth != 0:
            return None

    match = re.search(rf"(?:(?P<sep>\.|::|->))?(?P<method>{_IDENT})$", text)
    if not match:
        return None
    method = match.group("method")
    qualifier = text[: match.start()] if match.group("sep") else ""
    if not match.group("sep") and match.start() != 0:
        return None
    return qualifier, method, params


def parse_call_citation(citation: str, owner_type: str) -> ParsedCitation | None:
    """Parse one call citation, or None when it is unparsable.

    ``owner_type`` is used for bare ``method()`` calls and for calls on
    ``this`` / ``self``.
    """
    raw = citation.strip().strip("`").strip()
    raw = re.sub(r"^(?:new|await|return)\s+", "", raw)
    parts = _split_trailing_call(raw)
    if parts is None:
        return None
    qualifier, method, params = parts

    if not qualifier:
        target_type = owner_type
    else:
        if not _QUALIFIER_RE.match(qualifier):
            # Chained or computed receivers (a.b().c()) cannot be attributed
            return None
        last = re.split(r"\.|::|->", qualifier)[-1]
        target_type = owner_type if last in _SELF_RECEIVERS else last

    return ParsedCitation(target_type=target_type, target_method=method, parameters=params)


def _split_reasoning(value: str) -> tuple[str, str]:
    """``stepInto (own service)`` -> (``stepInto``, ``own service``)."""
    value = value.strip()
    match = re.match(r"^(?P<phrase>[^(–—-]*?)\s*\((?P<reason>.*)\)\s*$", value)
    if match:
        return match.group("phrase").strip(), match.group("reason").strip()
    for sep in (" - ", " – ", " — ", ": "):
        if sep in value:
            phrase, reason = value.split(sep, 1)
            return phrase.strip(), reason.strip()
    return value, ""


def _label_of(line: str) -> tuple[str, str] | None:
    match = _LABEL_RE.match(line) or _PLAIN_LABEL_RE.match(line)
    if not match:
        return None
    label = re.sub(r"\s+", " ", match.group("label").strip().rstrip(":").lower())
    return label, match.group("value").strip()


# ─── Not-found detection ────────────────────────────────────


def detect_not_found(text: str) -> bool:
    return any(marker.search(text) for marker in NOT_FOUND_MARKERS)


def extract_suggestions(text: str) -> list[str]:
    """
    Parent and alternative type names named in a not-found answer.

    Extends clauses come first, then implemented interfaces, then any
    other backticked type names in order of appearance.
    """
    extends: list[str] = []
    implements: list[str] = []
    others: list[str] = []

    for line in text.splitlines():
        labelled = _label_of(line)
        names = [
            re.split(r"\.|::", name.strip())[-1]
            for name in _BACKTICK_RE.findall(line)
        ]
        names = [n for n in names if _TYPE_NAME_RE.match(n)]
        if not names:
            continue
        if labelled and labelled[0] in ("extends", "parent", "parent class", "superclass", "base class"):
            extends.extend(names)
        elif labelled and labelled[0] in ("implements", "interface", "interfaces"):
            implements.extend(names)
        elif re.match(r"^\s*(?:[-*+]|\d+\.)\s+", line):
            others.extend(names)

    suggestions: list[str] = []
    for name in extends + implements + others:
        if name not in suggestions:
            suggestions.append(name)
    return suggestions


# ─── Block parsing ──────────────────────────────────────────


class _BlockBuilder:
    """Accumulates the lines of one ``Block N`` section."""

    def __init__(self, index: int, description: str, owner_type: str):
        self.index = index
        self.description = description
        self.owner_type = owner_type
        self.type_tag = ""
        self.plain_description = ""
        self.flow_lines: list[str] = []
        self.calls: list[dict] = []
        self.section: str | None = None
        self.dropped = 0

    def _current_call(self) -> dict | None:
        return self.calls[-1] if self.calls else None

    def _start_call(self, citation: str, rest: str = "") -> None:
        parsed = parse_call_citation(citation, self.owner_type)
        if parsed is None:
            logger.debug("Dropping unparsable call citation: %r", citation)
            self.dropped += 1
            # Following sub-fields belong to the dropped citation
            self.calls.append({"dropped": True})
            return
        self.calls.append(
            {
                "citation": parsed,
                "phrase": "",
                "reasoning": "",
                "expected": rest.strip(),
                "condition": None,
            }
        )

    def feed(self, line: str) -> None:
        labelled = _label_of(line)
        if labelled:
            label, value = labelled
            if label == "type":
                self.type_tag = value
                return
            if label == "description":
                self.plain_description = value
                return
            if label in ("execution flow", "flow"):
                self.section = "flow"
                if value:
                    self.flow_lines.append(value)
                return
            if label in ("method calls", "calls"):
                self.section = "calls"
                return
            if label in ("call", "method call", "method"):
                self.section = "calls"
                citations = _BACKTICK_RE.findall(value) or [value]
                self._start_call(citations[0])
                return

            call = self._current_call()
            if call is not None and self.section == "calls":
                if call.get("dropped"):
                    return
                if label in ("classification", "step into", "step-into", "decision", "step in"):
                    call["phrase"], reasoning = _split_reasoning(value)
                    if reasoning:
                        call["reasoning"] = reasoning
                    return
                if label in ("reasoning", "reason"):
                    call["reasoning"] = value
                    return
                if label in ("expected behavior", "expected behaviour", "behavior", "returns"):
                    call["expected"] = value
                    return
                if label in ("condition", "conditional execution", "executes only if", "conditional"):
                    call["condition"] = value
                    return
                if label == "parameters":
                    call["citation"].parameters = value.strip("`")
                    return

        if self.section == "calls":
            bullet = _BULLET_CALL_RE.match(line)
            if bullet:
                self._start_call(bullet.group("citation"), bullet.group("rest") or "")
                return
        if self.section == "flow" or self.section is None:
            if line.strip():
                self.flow_lines.append(line.rstrip())

    def build(self, order_start: int) -> tuple[ExecutionBlock, list[MethodCall]]:
        calls: list[MethodCall] = []
        order = order_start
        for raw in self.calls:
            if raw.get("dropped"):
                continue
            citation: ParsedCitation = raw["citation"]
            decision = classify_step_in(raw["phrase"]) if raw["phrase"] else "external"
            calls.append(
                MethodCall(
                    target_type=citation.target_type,
                    target_method=citation.target_method,
                    parameters=citation.parameters,
                    classification=decision,
                    reasoning=raw["reasoning"],
                    expected_behavior=raw["expected"] or "To be analyzed",
                    execution_order=order,
                    conditional_execution=raw["condition"] or None,
                )
            )
            order += 1

        narrative = "\n".join(self.flow_lines).strip()
        description = self.description or self.plain_description or f"Block {self.index + 1}"
        block = ExecutionBlock(
            block_id=f"block-{self.index}",
            block_type=normalize_block_type(self.type_tag, has_calls=bool(calls)),
            description=description,
            execution_flow=narrative or self.plain_description or NO_FLOW_TEXT,
            method_calls=tuple(calls),
        )
        return block, calls


def parse_oracle_response(raw_text: str, owner_type: str = "Unknown") -> ParsedResponse:
    """
    Parse an oracle reply.

    Args:
        raw_text: The full (possibly partial or malformed) oracle text.
        owner_type: Type the method belongs to; bare calls are attributed to it.

    Returns:
        ParsedResponse with status ``complete`` only when at least one
        execution block was extracted.
    """
    text = (raw_text or "").replace("\r\n", "\n")
    lines = text.split("\n")

    # Locate block sections: a block runs until the next heading of any kind
    builders: list[_BlockBuilder] = []
    preamble: list[str] = []
    current: _BlockBuilder | None = None

    for line in lines:
        heading = _HEADING_RE.match(line)
        if heading:
            block_title = _BLOCK_TITLE_RE.match(heading.group("title"))
            if block_title:
                current = _BlockBuilder(
                    index=len(builders),
                    description=(block_title.group("desc") or "").strip().strip("*").strip(),
                    owner_type=owner_type,
                )
                builders.append(current)
                continue
            current = None
            if not builders:
                preamble.append(line)
            continue
        if current is not None:
            current.feed(line)
        elif not builders:
            preamble.append(line)

    preamble_text = "\n".join(preamble)
    if detect_not_found(preamble_text) or (not builders and detect_not_found(text)):
        suggestions = extract_suggestions(text)
        logger.info(
            "Oracle reported method not found in %s (suggestions: %s)",
            owner_type, suggestions or "none",
        )
        return ParsedResponse(
            status="error",
            not_found=True,
            error_message=f"Method not found in {owner_type}",
            suggestions=suggestions,
        )

    result = ParsedResponse()
    order = 0
    for builder in builders:
        block, calls = builder.build(order)
        order += len(calls)
        result.blocks.append(block)
        result.calls.extend(calls)

    # Forward links: each block flows into the next one
    for i, block in enumerate(result.blocks[:-1]):
        result.blocks[i] = block.model_copy(update={"next_blocks": (result.blocks[i + 1].block_id,)})

    if result.blocks:
        result.status = "complete"
    else:
        result.status = "error"
        result.error_message = "No execution blocks found in oracle response"
        logger.warning(
            "Could not parse oracle response for %s (%d chars)", owner_type, len(text)
        )
    return result
