"""Structural metadata for a snapshot: imports, exports and the graphs built from them.

Parsing is line-oriented and regex based, which is enough for the import/export
shapes JavaScript and TypeScript code actually uses. Only relative imports that
resolve to a file inside the snapshot become graph edges; package imports stay
as unresolved edges.

Each statement must fit on one line. Imports whose `{ ... }` list spans
several lines and mixed default + named imports
(`import React, { useState } from "react"`) are not recognized.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

# Tried in order; first candidate present in the snapshot wins.
RESOLUTION_SUFFIXES = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    "",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.jsx",
)


@dataclass
class ImportEdge:
    source: str
    target: str
    resolved: Optional[str] = None
    symbols: List[str] = field(default_factory=list)
    is_default: bool = False
    is_type: bool = False
    is_dynamic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExportRecord:
    file: str
    symbol: str
    kind: str
    line: int
    signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileMetadata:
    path: str
    imports: List[ImportEdge]
    exports: List[ExportRecord]
    size: int
    lines: int


@dataclass
class SnapshotMetadata:
    imports: List[ImportEdge] = field(default_factory=list)
    exports: List[ExportRecord] = field(default_factory=list)
    files: Dict[str, FileMetadata] = field(default_factory=dict)
    import_graph: Dict[str, List[str]] = field(default_factory=dict)
    reverse_graph: Dict[str, List[str]] = field(default_factory=dict)
    symbol_index: Dict[str, List[str]] = field(default_factory=dict)


# ------------------------- Import parsing -------------------------

_NAMED_IMPORT = re.compile(r"""import\s+(type\s+)?\{([^}]+)\}\s+from\s+['"]([^'"]+)['"]""")
_NAMESPACE_IMPORT = re.compile(r"""import\s+\*\s+as\s+(\w+)\s+from\s+['"]([^'"]+)['"]""")
_DEFAULT_IMPORT = re.compile(r"""import\s+(type\s+)?(\w+)\s+from\s+['"]([^'"]+)['"]""")
_SIDE_EFFECT_IMPORT = re.compile(r"""^import\s+['"]([^'"]+)['"]""")
_DYNAMIC_IMPORT = re.compile(r"""(?:\bimport|\brequire)\s*\(\s*['"]([^'"]+)['"]\s*\)""")


def parse_imports(content: str, file_path: str) -> List[ImportEdge]:
    """Extract unresolved import edges from one source file."""

    imports: List[ImportEdge] = []

    for line in content.split("\n"):
        trimmed = line.strip()
        if not trimmed.startswith("import") and "require(" not in trimmed and "import(" not in trimmed:
            continue

        m = _NAMED_IMPORT.search(trimmed)
        if m:
            symbols = [s.strip().split(" as ")[0].strip() for s in m.group(2).split(",")]
            imports.append(
                ImportEdge(
                    source=file_path,
                    target=m.group(3),
                    symbols=[s for s in symbols if s],
                    is_type=bool(m.group(1)),
                )
            )
            continue

        m = _NAMESPACE_IMPORT.search(trimmed)
        if m:
            imports.append(ImportEdge(source=file_path, target=m.group(2), symbols=["*"]))
            continue

        m = _DEFAULT_IMPORT.search(trimmed)
        if m and "{" not in trimmed:
            imports.append(
                ImportEdge(
                    source=file_path,
                    target=m.group(3),
                    symbols=[m.group(2)],
                    is_default=True,
                    is_type=bool(m.group(1)),
                )
            )
            continue

        m = _SIDE_EFFECT_IMPORT.search(trimmed)
        if m:
            imports.append(ImportEdge(source=file_path, target=m.group(1)))
            continue

        for target in _DYNAMIC_IMPORT.findall(trimmed):
            imports.append(ImportEdge(source=file_path, target=target, is_dynamic=True))

    return imports


# ------------------------- Export parsing -------------------------

_EXPORT_FUNCTION = re.compile(r"export\s+(?:async\s+)?function\*?\s+(\w+)\s*(\([^)]*\))")
_EXPORT_CLASS = re.compile(r"export\s+(?:abstract\s+)?class\s+(\w+)")
_EXPORT_VARIABLE = re.compile(r"export\s+(const|let|var)\s+(\w+)")
_EXPORT_TYPE = re.compile(r"export\s+(type|interface)\s+(\w+)")
_EXPORT_ENUM = re.compile(r"export\s+(?:const\s+)?enum\s+(\w+)")
_EXPORT_DEFAULT = re.compile(r"export\s+default\s+(?:async\s+)?(?:function\*?\s+|class\s+)?(\w+)?")


def parse_exports(content: str, file_path: str) -> List[ExportRecord]:
    """Extract export declarations (1-based line numbers) from one source file."""

    exports: List[ExportRecord] = []

    for i, line in enumerate(content.split("\n"), start=1):
        trimmed = line.strip()
        if "export" not in trimmed:
            continue

        m = _EXPORT_FUNCTION.search(trimmed)
        if m:
            exports.append(
                ExportRecord(
                    file=file_path,
                    symbol=m.group(1),
                    kind="function",
                    line=i,
                    signature=f"function {m.group(1)}{m.group(2)}",
                )
            )
            continue

        m = _EXPORT_CLASS.search(trimmed)
        if m:
            exports.append(ExportRecord(file=file_path, symbol=m.group(1), kind="class", line=i))
            continue

        # `export const enum X` is an enum, not a const.
        m = _EXPORT_ENUM.search(trimmed)
        if m:
            exports.append(ExportRecord(file=file_path, symbol=m.group(1), kind="enum", line=i))
            continue

        m = _EXPORT_VARIABLE.search(trimmed)
        if m:
            exports.append(ExportRecord(file=file_path, symbol=m.group(2), kind=m.group(1), line=i))
            continue

        m = _EXPORT_TYPE.search(trimmed)
        if m:
            exports.append(ExportRecord(file=file_path, symbol=m.group(2), kind=m.group(1), line=i))
            continue

        m = _EXPORT_DEFAULT.search(trimmed)
        if m:
            exports.append(
                ExportRecord(file=file_path, symbol=m.group(1) or "default", kind="default", line=i)
            )

    return exports


# ------------------------- Resolution & graphs -------------------------


def resolve_import(target: str, from_file: str, known_files: Set[str]) -> Optional[str]:
    """Resolve a relative import against the snapshot's file set.

    Package imports (anything not starting with `.`) are external and never
    resolve.
    """

    if not target.startswith("."):
        return None

    base = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), target))
    if base.startswith("../") or base == "..":
        return None

    for suffix in RESOLUTION_SUFFIXES:
        candidate = base + suffix
        if candidate in known_files:
            return candidate
    return None


def is_supported(path: str) -> bool:
    return posixpath.splitext(path)[1].lower() in SUPPORTED_EXTENSIONS


def _append_unique(mapping: Dict[str, List[str]], key: str, value: str) -> None:
    values = mapping.setdefault(key, [])
    if value not in values:
        values.append(value)


def extract_metadata(files: Iterable[Tuple[str, str]]) -> SnapshotMetadata:
    """Build imports, exports and the derived graphs for a set of files.

    `files` yields `(relative path, source text)`; the whole set is used for
    resolution, while only supported extensions are parsed.
    """

    sources = list(files)
    known_files = {path for path, _ in sources}
    meta = SnapshotMetadata()

    for path, text in sources:
        if not is_supported(path):
            continue

        imports = parse_imports(text, path)
        for edge in imports:
            edge.resolved = resolve_import(edge.target, path, known_files)
        exports = parse_exports(text, path)

        meta.imports.extend(imports)
        meta.exports.extend(exports)
        meta.files[path] = FileMetadata(
            path=path,
            imports=imports,
            exports=exports,
            size=len(text),
            lines=text.count("\n") + 1,
        )

    for edge in meta.imports:
        if edge.resolved is None:
            continue
        _append_unique(meta.import_graph, edge.source, edge.resolved)
        _append_unique(meta.reverse_graph, edge.resolved, edge.source)

    for record in meta.exports:
        _append_unique(meta.symbol_index, record.symbol, record.file)

    logger.debug(
        "Extracted metadata: %d files, %d imports, %d exports",
        len(meta.files),
        len(meta.imports),
        len(meta.exports),
    )
    return meta
