"""
Shared fixtures for Flow Analyst tests.

The oracle and the source provider are replaced by in-memory fakes; no
LLM or file system is touched unless a test asks for ``tmp_path``.
"""

import asyncio

import pytest

from src.agents.flow_analyst.analyzer import FlowAnalyzer
from src.agents.flow_analyst.cache import MethodAnalysisCache, SessionAnalysisCache
from src.agents.flow_analyst.oracle import OraclePrompt
from src.agents.flow_analyst.resolver import MethodResolver
from src.agents.flow_analyst.source_provider import SourceFile


class FakeOracle:
    """Scripted oracle keyed by (type_name, method_name) of the prompt."""

    def __init__(self, replies=None, identity="fake-model", delays=None, errors=None, chunk_size=64):
        self.identity = identity
        self.replies = dict(replies or {})
        self.delays = dict(delays or {})
        self.errors = dict(errors or {})
        self.chunk_size = chunk_size
        self.requests: list[OraclePrompt] = []

    def calls_for(self, type_name: str, method_name: str) -> int:
        return sum(
            1 for p in self.requests
            if p.type_name == type_name and p.method_name == method_name
        )

    async def request(self, prompt: OraclePrompt):
        self.requests.append(prompt)
        key = (prompt.type_name, prompt.method_name)
        if key in self.delays:
            await asyncio.sleep(self.delays[key])
        if key in self.errors:
            raise self.errors[key]
        reply = self.replies.get(key, "")
        for i in range(0, len(reply), self.chunk_size):
            yield reply[i : i + self.chunk_size]


class InMemorySourceProvider:
    """Type name -> source text."""

    def __init__(self, sources=None, language="java"):
        self.sources = dict(sources or {})
        self.language = language
        self.lookups: list[str] = []

    async def resolve_source(self, type_name: str):
        self.lookups.append(type_name)
        content = self.sources.get(type_name)
        if content is None:
            return None
        return SourceFile(
            type_name=type_name,
            path=f"/workspace/{type_name}.java",
            content=content,
            language=self.language,
        )


def build_java_class(name, methods=(), extends=None, implements=()):
    header = f"public class {name}"
    if extends:
        header += f" extends {extends}"
    if implements:
        header += " implements " + ", ".join(implements)
    lines = [header + " {"]
    for method in methods:
        lines += [f"    public void {method}() {{", "    }", ""]
    lines.append("}")
    return "\n".join(lines)


def build_flow_reply(type_name, method_name, calls=(), blocks=1):
    """Oracle reply in the prompt layout.

    ``calls`` items are ``(citation, classification)`` or
    ``(citation, classification, condition)``; they go into the last block.
    """
    lines = [
        f"## Method Analysis: {type_name}.{method_name}()",
        "",
        "### Method Detection Result:",
        "Found",
        "",
    ]
    for i in range(1, blocks + 1):
        lines += [
            f"#### Block {i}: Step {i} of {method_name}",
            "**Type**: methodCall" if i == blocks and calls else "**Type**: assignment",
            f"**Description**: {method_name} part {i}",
            "",
            "**Execution Flow**:",
            f"{method_name} executes part {i}",
            "",
        ]
    if calls:
        lines.append("**Method Calls**:")
        for call in calls:
            citation, classification, *rest = call
            lines += [
                f"- **Call**: `{citation}`",
                f"  - **Classification**: {classification} (test)",
                f"  - **Expected Behavior**: runs {citation}",
            ]
            if rest:
                lines.append(f"  - **Condition**: {rest[0]}")
    return "\n".join(lines) + "\n"


def build_not_found_reply(type_name, method_name, extends=(), alternatives=()):
    lines = [
        "### Method Not Found",
        "",
        f"Method `{method_name}` not found in type `{type_name}`",
        "",
        "#### Check Parent Types:",
    ]
    lines += [f"- **Extends**: `{name}`" for name in extends]
    if alternatives:
        lines += ["", "#### Alternative Classes:"]
        lines += [f"- `{name}` - may define {method_name}" for name in alternatives]
    return "\n".join(lines) + "\n"


@pytest.fixture
def java_class():
    return build_java_class


@pytest.fixture
def flow_reply():
    return build_flow_reply


@pytest.fixture
def not_found_reply():
    return build_not_found_reply


@pytest.fixture
def provider():
    return InMemorySourceProvider()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def cache():
    return MethodAnalysisCache(SessionAnalysisCache())


@pytest.fixture
def analyzer(provider, cache):
    return FlowAnalyzer(MethodResolver(provider), cache)


@pytest.fixture
def make_oracle():
    return FakeOracle
