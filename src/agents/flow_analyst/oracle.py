"""
Oracle: the LLM that describes a method's execution.

The core treats the oracle as an untrusted text source: it gets a prompt
and streams back free text.  Everything structural is recovered later by
``response_parser``.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.agents.flow_analyst.prompts import FLOW_SYSTEM_PROMPT, build_method_analysis_prompt
from src.shared.exceptions import OracleError
from src.shared.llms import get_openai_model
from src.shared.observability import get_langchain_callbacks

logger = logging.getLogger("flow-analyst.oracle")


@dataclass(frozen=True)
class OraclePrompt:
    """What the oracle needs to describe one method."""

    type_name: str
    method_name: str
    source: str
    language: str


class Oracle(Protocol):
    """Anything that can stream a method description.

    ``identity`` names the model behind the oracle; durable cache entries
    produced by one identity are never served to another.
    """

    identity: str

    def request(self, prompt: OraclePrompt) -> AsyncIterator[str]:
        ...


def _chunk_text(content) -> str:
    """Flatten a streamed message chunk's content into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


class LLMOracle:
    """Oracle backed by a LangChain chat model, streamed with ``astream``."""

    def __init__(self, model: ChatOpenAI | None = None, model_name: str | None = None):
        self._model = model or get_openai_model(model_name)
        self.identity = getattr(self._model, "model_name", None) or model_name or "unknown"

    async def request(self, prompt: OraclePrompt) -> AsyncIterator[str]:
        messages = [
            SystemMessage(content=FLOW_SYSTEM_PROMPT),
            HumanMessage(
                content=build_method_analysis_prompt(
                    prompt.type_name,
                    prompt.method_name,
                    prompt.source,
                    prompt.language,
                )
            ),
        ]
        logger.debug(
            "Requesting analysis of %s.%s() from %s",
            prompt.type_name, prompt.method_name, self.identity,
        )

        try:
            async for chunk in self._model.astream(
                messages,
                config={"callbacks": get_langchain_callbacks()},
            ):
                text = _chunk_text(chunk.content)
                if text:
                    yield text
        except Exception as e:
            raise OracleError(
                f"Oracle {self.identity} failed for {prompt.type_name}.{prompt.method_name}(): {e}",
                context={"model": self.identity},
            ) from e
