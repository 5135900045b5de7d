"""
Logging setup for the flow analyst entry points.

The CLI and the MCP server call ``setup_logging`` once; core modules just
use ``logging.getLogger("flow-analyst.<part>")`` and inherit the handler.
"""

import logging
import os
import uuid

LOG_FORMAT = "%(asctime)s  %(name)-30s  %(levelname)-7s  %(message)s"

# Client libraries that log every HTTP request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(component: str, level: str | None = None) -> logging.Logger:
    """
    Configure root logging and return the component's logger.

    Args:
        component: Logger name, e.g. ``"flow_analyst.agent"``.
        level: Log level string.  Falls back to ``LOG_LEVEL``, then INFO.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger(component)


def generate_correlation_id() -> str:
    """Short random id that tags one analysis session in the logs."""
    return uuid.uuid4().hex[:12]
