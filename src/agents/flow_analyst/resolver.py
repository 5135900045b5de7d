"""
Method Resolver

Finds the type that actually declares a method.  The requested type is
tried first; when its source does not visibly declare the method the
supertypes named in its declaration are searched depth-first, in the
order they are written (``extends`` before ``implements``).

Declaration matching is a text heuristic, not a parser.  When the walk
finds nothing but the requested type's own source exists, that source is
returned with ``declared=False`` and the oracle gets the final say (its
not-found answer then drives the suggestion fallback in the analyzer).
"""

import logging
import re
from dataclasses import dataclass

from src.agents.flow_analyst.source_provider import SourceFile, SourceProvider
from src.shared.exceptions import TypeNotFoundError

logger = logging.getLogger("flow-analyst.resolver")

MAX_HIERARCHY_DEPTH = 10

_MODIFIERS = (
    r"public|private|protected|internal|static|final|abstract|synchronized|native|"
    r"virtual|override|async|default|open|suspend|inline|export|readonly|get|set|"
    r"sealed|partial|extern|unsafe|const|constexpr|pub|pub\(crate\)"
)

_NOT_A_TYPE = r"(?!(?:return|new|throw|await|else|yield|case|in|of|typeof|delete)\b)"

_IGNORED_SUPERTYPES = {"object", "Object", "ABC", "Generic", "Protocol", "Any"}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")


def _declaration_patterns(method_name: str) -> list[re.Pattern[str]]:
    name = re.escape(method_name)
    return [
        # def / function / fun / func / fn (incl. Go receivers)
        re.compile(rf"\b(?:def|function|fun|func|fn|sub)\s+(?:\([^)]*\)\s*)?{name}\s*[<(\[]"),
        # Typed declarations: Java, C#, C++, Kotlin, TS with modifiers
        re.compile(
            rf"^[ \t]*(?:@[\w.]+(?:\([^)]*\))?\s+)*(?:(?:{_MODIFIERS})\s+)*"
            rf"{_NOT_A_TYPE}[\w<>\[\],.?*&:]+[ \t]+{name}\s*(?:<[^>()]*>)?\s*\(",
            re.MULTILINE,
        ),
        # Class-body methods without a return type: `name(args) {`
        re.compile(
            rf"^[ \t]*(?:(?:{_MODIFIERS})\s+)*{name}\s*(?:<[^>()]*>)?\s*\([^)]*\)\s*"
            rf"(?::\s*[^{{;=]+)?\{{",
            re.MULTILINE,
        ),
    ]


def declares_method(content: str, method_name: str) -> bool:
    """Whether ``content`` visibly declares ``method_name``."""
    return any(p.search(content) for p in _declaration_patterns(method_name))


def _strip_generics(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = re.sub(r"<[^<>]*>", "", text)
    return text


def _simple_name(raw: str) -> str:
    raw = re.sub(r"\(.*?\)", "", raw).strip()
    raw = re.sub(r"^(?:public|private|protected|virtual)\s+", "", raw)
    return re.split(r"\.|::", raw)[-1].strip()


def _split_names(text: str) -> list[str]:
    names = []
    for part in text.split(","):
        part = part.strip()
        if not part or "=" in part:
            continue
        name = _simple_name(part)
        if _IDENTIFIER_RE.match(name):
            names.append(name)
    return names


def extract_supertypes(content: str, type_name: str) -> list[str]:
    """
    Ordered supertypes named in ``type_name``'s declaration.

    Handles ``extends`` / ``implements`` (Java, TypeScript), Python base
    lists and ``:`` base clauses (C#, C++, Kotlin).  Falls back to the
    first ``class X extends Y`` in the file when ``type_name`` itself has
    no recognisable declaration.
    """
    decl = re.search(
        r"\b(?:class|interface|struct|record|object|trait|enum)\s+"
        + re.escape(type_name)
        + r"\b",
        content,
    )
    if decl is None:
        fallback = re.search(r"\bclass\s+\w+\s+extends\s+([\w.]+)", content)
        return [_simple_name(fallback.group(1))] if fallback else []

    rest = content[decl.end():]
    header_end = re.search(r"\{|:\s*\n|\n\s*\n", rest)
    header = rest[: header_end.start() if header_end else 200]
    header = _strip_generics(header).strip()

    names: list[str] = []
    if header.startswith("("):
        # Python base list, or Kotlin/Scala primary constructor followed by ':'
        close = header.find(")")
        inside, after = header[1:close], header[close + 1:]
        if after.strip().startswith(":"):
            names.extend(_split_names(after.strip()[1:].split(" where ")[0]))
        else:
            names.extend(_split_names(inside))
    else:
        extends = re.search(r"\bextends\s+(.+?)(?=\bimplements\b|\bwith\b|$)", header, re.S)
        implements = re.search(r"\bimplements\s+(.+?)(?=\bextends\b|$)", header, re.S)
        colon = re.match(r"\s*:\s*(.+)$", header, re.S)
        if extends:
            names.extend(_split_names(extends.group(1)))
        if implements:
            names.extend(_split_names(implements.group(1)))
        if colon and not extends:
            names.extend(_split_names(colon.group(1).split(" where ")[0]))

    ordered: list[str] = []
    for name in names:
        if name != type_name and name not in _IGNORED_SUPERTYPES and name not in ordered:
            ordered.append(name)
    return ordered


@dataclass(frozen=True)
class ResolvedMethod:
    """Where a method's analysis source comes from."""

    requested_type: str
    defining_type: str
    source: SourceFile
    chain: tuple[str, ...]
    declared: bool = True

    @property
    def inherited(self) -> bool:
        return self.defining_type != self.requested_type


class MethodResolver:
    """Resolves (type, method) to the declaring type's source."""

    def __init__(self, source_provider: SourceProvider, max_hierarchy_depth: int = MAX_HIERARCHY_DEPTH):
        self.source_provider = source_provider
        self.max_hierarchy_depth = max_hierarchy_depth

    async def resolve(self, type_name: str, method_name: str) -> ResolvedMethod:
        """
        Locate the definer of ``type_name.method_name``.

        Raises:
            TypeNotFoundError: ``type_name`` has no source at all.
        """
        root = await self.source_provider.resolve_source(type_name)
        if root is None:
            raise TypeNotFoundError(type_name, method_name, [type_name])

        chain: list[str] = []
        found = await self._walk(root, method_name, chain, set(), depth=0)
        if found is not None:
            defining_type, source = found
            if defining_type != root.type_name:
                logger.info(
                    "Resolved %s.%s() to ancestor %s (searched: %s)",
                    type_name, method_name, defining_type, " -> ".join(chain),
                )
            return ResolvedMethod(
                requested_type=root.type_name,
                defining_type=defining_type,
                source=source,
                chain=tuple(chain),
            )

        logger.debug(
            "No visible declaration of %s in %s hierarchy (searched: %s), deferring to oracle",
            method_name, type_name, " -> ".join(chain),
        )
        return ResolvedMethod(
            requested_type=root.type_name,
            defining_type=root.type_name,
            source=root,
            chain=tuple(chain),
            declared=False,
        )

    async def _walk(
        self,
        source: SourceFile,
        method_name: str,
        chain: list[str],
        seen: set[str],
        depth: int,
    ) -> tuple[str, SourceFile] | None:
        type_name = source.type_name
        seen.add(type_name)
        chain.append(type_name)

        if declares_method(source.content, method_name):
            return type_name, source

        if depth >= self.max_hierarchy_depth:
            logger.warning("Hierarchy walk for %s stopped at depth %d", method_name, depth)
            return None

        for supertype in extract_supertypes(source.content, type_name):
            if supertype in seen:
                continue
            parent = await self.source_provider.resolve_source(supertype)
            if parent is None:
                logger.debug("Supertype %s of %s has no source", supertype, type_name)
                seen.add(supertype)
                continue
            if parent.type_name in seen:
                continue
            found = await self._walk(parent, method_name, chain, seen, depth + 1)
            if found is not None:
                return found
        return None
