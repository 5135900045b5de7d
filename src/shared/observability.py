"""
Optional Langfuse tracing for flow analysis.

Nothing is reported unless ``init_langfuse()`` finds LANGFUSE_PUBLIC_KEY
and LANGFUSE_SECRET_KEY.  While disabled every helper here is a no-op, so
tests and offline CLI runs never talk to Langfuse.

What gets traced:
    - one span per ``run_flow_analysis`` call (``trace_function``)
    - every oracle request, through LangChain callbacks
    - the session's cache hit rate as a score on that span
"""

import functools
import logging
import os
from typing import Any, Callable, Optional

from langfuse import Langfuse, get_client, observe

logger = logging.getLogger("flow-analyst.observability")

DEFAULT_LANGFUSE_HOST = "https://cloud.langfuse.com"

_client: Optional[Langfuse] = None


def init_langfuse() -> Optional[Langfuse]:
    """Create the Langfuse client from the environment, or stay disabled.

    Safe to call more than once; the first successful client is reused.
    """
    global _client
    if _client is not None:
        return _client

    public_key = os.getenv("LANGFUSE_PUBLIC_KEY")
    secret_key = os.getenv("LANGFUSE_SECRET_KEY")
    if not (public_key and secret_key):
        logger.info("Langfuse keys not set; flow analysis tracing disabled")
        return None

    host = os.getenv("LANGFUSE_HOST", DEFAULT_LANGFUSE_HOST)
    try:
        _client = Langfuse(public_key=public_key, secret_key=secret_key, host=host)
    except Exception as e:
        logger.error("Could not initialise Langfuse at %s: %s", host, e)
        return None

    logger.info("Langfuse tracing enabled (%s)", host)
    return _client


def is_langfuse_enabled() -> bool:
    return _client is not None


def shutdown_langfuse() -> None:
    """Flush pending spans before the process exits."""
    global _client
    if _client is None:
        return
    try:
        _client.flush()
    except Exception as e:
        logger.error("Flushing Langfuse failed: %s", e)
    finally:
        _client = None


def trace_function(
    name: Optional[str] = None,
    capture_input: bool = True,
    capture_output: bool = False,
    as_type: str = "span",
):
    """Wrap an async function in a Langfuse span when tracing is enabled.

    The check happens per call, so methods decorated at import time are
    traced once ``init_langfuse()`` has run.
    """

    def decorator(func: Callable) -> Callable:
        observed = observe(
            name=name or func.__name__,
            capture_input=capture_input,
            capture_output=capture_output,
            as_type=as_type,
        )(func)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            target = observed if is_langfuse_enabled() else func
            return await target(*args, **kwargs)

        return wrapper

    return decorator


def get_langchain_callbacks() -> list[Any]:
    """Callback handlers for ``astream(config={"callbacks": ...})``."""
    if not is_langfuse_enabled():
        return []
    try:
        from langfuse.langchain import CallbackHandler
    except ImportError as e:
        logger.warning("Langfuse LangChain integration unavailable: %s", e)
        return []
    return [CallbackHandler()]


def create_trace_score(name: str, value: float, comment: Optional[str] = None) -> None:
    """Attach a numeric score to the span that is currently open."""
    if not is_langfuse_enabled():
        return
    try:
        get_client().score_current_span(name=name, value=value, comment=comment)
    except Exception as e:
        logger.error("Could not record score %s: %s", name, e)
