"""
Chat-style request parsing.

Accepts the short commands users type into a chat box::

    flow UserService createUser
    UserService.createUser
    clear-cache | cache clear | cache stats
    change-model gpt-4o | model-info
    help
"""

import re
from typing import Literal

from pydantic import BaseModel

CommandName = Literal[
    "analyze",
    "clear_cache",
    "cache_stats",
    "change_model",
    "model_info",
    "help",
    "invalid",
]

HELP_TEXT = """\
**Flow analysis commands**

- `flow <TypeName> <methodName>` trace a method step by step
- `flow <TypeName>.<methodName>` same, dotted form
- `cache stats` show cache statistics
- `cache clear` / `clear-cache` drop all cached analyses
- `change-model <name>` analyze with a different model
- `model-info` show the model in use
- `help` this message
"""

_COMMANDS: dict[str, CommandName] = {
    "clear-cache": "clear_cache",
    "cache clear": "clear_cache",
    "cache stats": "cache_stats",
    "model-info": "model_info",
    "model info": "model_info",
    "help": "help",
}

_DOTTED_RE = re.compile(r"^(?P<type>[\w$.:]+?)(?:\.|::|#)(?P<method>[A-Za-z_$][\w$]*)(?:\(\))?$")


class FlowRequest(BaseModel):
    command: CommandName
    type_name: str | None = None
    method_name: str | None = None
    model: str | None = None
    error: str | None = None


def parse_flow_request(text: str) -> FlowRequest:
    """Turn a chat message into a FlowRequest; never raises."""
    clean = re.sub(r"^\s*(?:@\w+\s+)?@?flow\b", "", text.strip(), flags=re.I).strip()
    lowered = " ".join(clean.lower().split())

    if not lowered:
        return FlowRequest(command="help")
    if lowered in _COMMANDS:
        return FlowRequest(command=_COMMANDS[lowered])

    parts = clean.split()
    if parts[0].lower() in ("change-model", "model"):
        if len(parts) < 2:
            return FlowRequest(command="invalid", error="Usage: change-model <model-name>")
        return FlowRequest(command="change_model", model=parts[1])

    if len(parts) >= 2:
        type_name, method_name = parts[0], parts[1].removesuffix("()")
        return FlowRequest(command="analyze", type_name=type_name, method_name=method_name)

    match = _DOTTED_RE.match(parts[0])
    if match:
        return FlowRequest(
            command="analyze",
            type_name=match.group("type"),
            method_name=match.group("method"),
        )

    return FlowRequest(
        command="invalid",
        error=f"Expected '<TypeName> <methodName>', got {clean!r}. Type 'help' for usage.",
    )
