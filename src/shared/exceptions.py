"""
Custom exception hierarchy for the flow analysis system.

All errors inherit from AgentError so they can be caught
uniformly at the front-end (CLI or MCP server) level.
"""


class AgentError(Exception):
    """Base exception for all agent errors."""

    def __init__(self, message: str, agent_name: str = "unknown"):
        self.agent_name = agent_name
        super().__init__(f"[{agent_name}] {message}")


class FlowAnalysisError(AgentError):
    """Errors raised by the Flow Analyst.

    ``code`` is one of METHOD_NOT_FOUND, ANALYSIS_TIMEOUT, CACHE_ERROR,
    LLM_ERROR or PARSE_ERROR.  ``context`` carries whatever the raiser
    knew at the time (type names, resolution chain, timeout).
    """

    code = "FLOW_ERROR"

    def __init__(self, message: str, context: dict | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message, agent_name="flow_analyst")


class MethodNotFoundError(FlowAnalysisError):
    """Type or method could not be resolved anywhere in the hierarchy."""

    code = "METHOD_NOT_FOUND"

    def __init__(
        self,
        type_name: str,
        method_name: str,
        chain: list[str] | None = None,
        reason: str = "",
    ):
        self.type_name = type_name
        self.method_name = method_name
        self.chain = list(chain or [])
        message = reason or f"Method {method_name} not found in {type_name} or its super types"
        if self.chain:
            message += f" (searched: {' -> '.join(self.chain)})"
        super().__init__(
            message,
            context={"type_name": type_name, "method_name": method_name, "chain": self.chain},
        )


class TypeNotFoundError(MethodNotFoundError):
    """The requested type has no source anywhere in the workspace."""

    def __init__(self, type_name: str, method_name: str, chain: list[str] | None = None):
        super().__init__(
            type_name,
            method_name,
            chain,
            reason=f"Type {type_name} not found in workspace",
        )


class OracleTimeoutError(FlowAnalysisError):
    """The oracle did not finish within its per-call budget."""

    code = "ANALYSIS_TIMEOUT"

    def __init__(self, method: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(
            f"Analysis of {method} timed out after {timeout_s:g}s",
            context={"method": method, "timeout_s": timeout_s},
        )


class OracleError(FlowAnalysisError):
    """The oracle call itself failed (network, auth, model error)."""

    code = "LLM_ERROR"


class ResponseParseError(FlowAnalysisError):
    """Oracle text could not be turned into execution blocks."""

    code = "PARSE_ERROR"


class CacheError(FlowAnalysisError):
    """Durable cache I/O failed; always recovered by the caller."""

    code = "CACHE_ERROR"
