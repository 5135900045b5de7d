"""
Flow Analyst — MCP Server

Exposes flow analysis as MCP tools.  Each tool's docstring is written for
a calling LLM so it knows *when* and *how* to use it.

Run as:  python -m src.agents.flow_analyst.server        (SSE transport)
"""

import json

from mcp.server.fastmcp import FastMCP

from src.agents.flow_analyst.agent import FlowAnalystAgent
from src.agents.flow_analyst.config import FlowAnalystSettings
from src.agents.flow_analyst.models import FlowAnalysisConfig
from src.shared.logging import setup_logging
from src.shared.observability import init_langfuse

logger = setup_logging("flow_analyst")

# ─── Shared resources (lazy init) ─────────────────────────

mcp = FastMCP("FlowAnalyst")

_settings: FlowAnalystSettings | None = None
_agent: FlowAnalystAgent | None = None


def _get_settings() -> FlowAnalystSettings:
    """Lazy-initialise settings from environment variables."""
    global _settings
    if _settings is None:
        _settings = FlowAnalystSettings()
    return _settings


async def _get_agent() -> FlowAnalystAgent:
    """Lazy-initialise the agent on first tool call."""
    global _agent
    if _agent is None:
        init_langfuse()
        _agent = await FlowAnalystAgent.create(_get_settings())
    return _agent


# ─── Tool 1 ──────────────────────────────────────────────


@mcp.tool()
async def analyze_flow(
    type_name: str,
    method_name: str,
    max_depth: int | None = None,
    max_total_methods: int | None = None,
    per_call_timeout_s: float | None = None,
    use_cache: bool = True,
    model: str | None = None,
) -> str:
    """Trace what happens, step by step, when a method is called.

    Use when asked "what does X.y() do", "walk me through the execution of
    ...", or to explain a call chain.  Recursively expands calls into the
    application's own code (never into libraries), bounded by depth and a
    total method budget, and returns a numbered, depth-indented walkthrough
    in markdown plus run statistics.

    Args:
        type_name: Class / interface / struct name (e.g. "UserService").
        method_name: Method name without parentheses (e.g. "createUser").
        max_depth: How many call levels below the root to expand.
        max_total_methods: Upper bound on distinct methods analyzed.
        per_call_timeout_s: Time limit for analyzing a single method.
        use_cache: Reuse earlier analyses of unchanged source files.
        model: Analyze with this model instead of the current default.
    """
    logger.info("[analyze_flow] INPUT  type_name=%r, method_name=%r, max_depth=%r", type_name, method_name, max_depth)
    agent = await _get_agent()

    overrides = {
        "max_depth": max_depth,
        "max_total_methods": max_total_methods,
        "per_call_timeout_s": per_call_timeout_s,
        "model": model,
    }
    config = FlowAnalysisConfig(
        **{
            **agent.default_config().model_dump(),
            **{k: v for k, v in overrides.items() if v is not None},
            "enable_cache": use_cache,
        }
    )

    result = await agent.run_flow_analysis(type_name, method_name, config)
    output = json.dumps(
        {
            "status": result.status,
            "root_method": result.root_method,
            "formatted_steps": result.formatted_steps,
            "stats": result.stats.model_dump(),
            "error_message": result.error_message,
        },
        default=str,
    )
    logger.info("[analyze_flow] OUTPUT status=%s, steps=%d", result.status, result.stats.total_steps)
    return output


# ─── Tool 2 ──────────────────────────────────────────────


@mcp.tool()
async def flow_request(message: str) -> str:
    """Handle a chat-style flow command and return markdown.

    Accepts "flow UserService createUser", "UserService.createUser",
    "cache stats", "cache clear", "change-model <name>", "model-info" and
    "help".
    """
    logger.info("[flow_request] INPUT  message=%r", message)
    agent = await _get_agent()
    return await agent.handle_request(message)


# ─── Tool 3 ──────────────────────────────────────────────


@mcp.tool()
async def get_cache_stats() -> str:
    """Statistics for the flow analysis cache (hits, misses, size, top methods)."""
    agent = await _get_agent()
    return json.dumps(agent.cache_stats(), default=str)


# ─── Tool 4 ──────────────────────────────────────────────


@mcp.tool()
async def clear_cache(type_name: str | None = None, method_name: str | None = None) -> str:
    """Drop cached analyses.

    With no arguments everything is cleared.  Pass ``type_name`` (and
    optionally ``method_name``) after editing a file to force a fresh
    analysis of just that code.
    """
    logger.info("[clear_cache] INPUT  type_name=%r, method_name=%r", type_name, method_name)
    agent = await _get_agent()
    removed = await agent.clear_cache(type_name, method_name)
    return json.dumps({"cleared": type_name or "all", "removed": removed})


# ─── Entry point ──────────────────────────────────────────

# Create the ASGI app for uvicorn
app = mcp.sse_app

if __name__ == "__main__":
    import uvicorn

    settings = _get_settings()

    logger.info(f"Starting Flow Analyst MCP server (SSE transport on {settings.host}:{settings.port})")

    uvicorn.run(
        "src.agents.flow_analyst.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        factory=True,
    )
