"""
Workspace Source Provider

Locates the source file that defines a type inside a project tree and
reads it.  Build output, VCS metadata, dependency folders and binary
artifacts are never returned.

File system work runs in a thread so the analysis event loop keeps
streaming oracle output while a large workspace is being scanned.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("flow-analyst.source")

# Directories to skip during discovery
SKIP_DIRS = {
    "__pycache__", ".git", ".hg", ".svn", ".tox", ".mypy_cache", ".pytest_cache",
    "node_modules", ".eggs", "venv", ".venv", "env",
    "target", "build", "bin", "out", "dist", ".gradle", ".idea", ".vscode",
    ".flow-analysis",
}

LANGUAGE_BY_EXTENSION = {
    ".java": "java",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".h": "c",
    ".c": "c",
    ".go": "go",
    ".rs": "rust",
    ".kt": "kotlin",
    ".scala": "scala",
}

SOURCE_EXTENSIONS = tuple(LANGUAGE_BY_EXTENSION)

BINARY_EXTENSIONS = {
    ".class", ".jar", ".war", ".dll", ".exe", ".so", ".dylib", ".pyc", ".o",
}

MAX_SOURCE_BYTES = 1_000_000


def detect_language(file_path: str) -> str:
    """Language name for a file, based on its extension."""
    return LANGUAGE_BY_EXTENSION.get(Path(file_path).suffix.lower(), "unknown")


def candidate_type_names(type_name: str) -> list[str]:
    """
    Names to look for when resolving a type.

    Qualified names are reduced to their last segment and receiver-style
    names are capitalised, e.g. ``userRepository`` -> ``UserRepository``.
    """
    simple = re.split(r"\.|::", type_name)[-1]
    names = [simple]
    if simple and simple[0].islower():
        names.append(simple[0].upper() + simple[1:])
    return names


def _declaration_pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        r"\b(?:class|interface|struct|trait|enum|record|object|type|impl)\s+"
        + re.escape(name)
        + r"\b"
    )


@dataclass(frozen=True)
class SourceFile:
    """A type's defining source file."""

    type_name: str
    path: str
    content: str
    language: str


class SourceProvider(Protocol):
    async def resolve_source(self, type_name: str) -> SourceFile | None:
        """Return the source defining ``type_name`` or None when absent."""
        ...


class WorkspaceSourceProvider:
    """Resolves type names to source files under a workspace root."""

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()
        self._files: list[Path] | None = None

    @property
    def root(self) -> Path:
        return self._root

    def refresh(self) -> None:
        """Forget the discovered file list (e.g. after files were added)."""
        self._files = None

    async def resolve_source(self, type_name: str) -> SourceFile | None:
        return await asyncio.to_thread(self._resolve_sync, type_name)

    # ─── Internals ─────────────────────────────────────────────

    def _discover(self) -> list[Path]:
        if self._files is not None:
            return self._files

        files: list[Path] = []
        for root, dirs, filenames in os.walk(self._root):
            dirs[:] = sorted(
                d for d in dirs
                if d not in SKIP_DIRS and not d.endswith(".egg-info")
            )
            for filename in sorted(filenames):
                suffix = Path(filename).suffix.lower()
                if suffix in BINARY_EXTENSIONS or suffix not in LANGUAGE_BY_EXTENSION:
                    continue
                files.append(Path(root) / filename)

        logger.info("Discovered %d source files under %s", len(files), self._root)
        self._files = files
        return files

    def _read(self, path: Path) -> str | None:
        try:
            if path.stat().st_size > MAX_SOURCE_BYTES:
                logger.warning("Skipping oversized source file %s", path)
                return None
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return None

    def _to_source(self, type_name: str, path: Path, content: str) -> SourceFile:
        return SourceFile(
            type_name=type_name,
            path=str(path),
            content=content,
            language=detect_language(str(path)),
        )

    def _resolve_sync(self, type_name: str) -> SourceFile | None:
        files = self._discover()
        names = candidate_type_names(type_name)

        # First pass: file named after the type (Java/C#/Kotlin convention)
        for name in names:
            for path in files:
                if path.stem != name:
                    continue
                content = self._read(path)
                if content is not None:
                    logger.debug("Resolved %s by file name: %s", type_name, path)
                    return self._to_source(name, path, content)

        # Second pass: any source file declaring the type
        for name in names:
            pattern = _declaration_pattern(name)
            for path in files:
                content = self._read(path)
                if content is not None and pattern.search(content):
                    logger.debug("Resolved %s by declaration scan: %s", type_name, path)
                    return self._to_source(name, path, content)

        logger.info("No source found for type %s", type_name)
        return None
