"""Zero-cost structural queries over a snapshot.

None of these call an AI provider: they only consult the snapshot cache and the
import/export metadata extracted from it. Lookups for files or symbols the
snapshot doesn't contain return empty results instead of raising, so callers
(CLI, tool servers) can pass them straight through.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .cache import NotFoundError, SnapshotCache, default_cache
from .snapshot import normalize_path


def search_snapshot(
    path: str,
    pattern: str,
    *,
    case_insensitive: bool = False,
    max_results: int = 50,
    offset: int = 0,
    cache: Optional[SnapshotCache] = None,
) -> Dict[str, Any]:
    cache = cache if cache is not None else default_cache()
    return cache.search(
        path,
        pattern,
        case_insensitive=case_insensitive,
        max_results=max_results,
        offset=offset,
    )


def get_context(
    path: str,
    file: str,
    line: int,
    *,
    before: int = 10,
    after: int = 10,
    cache: Optional[SnapshotCache] = None,
) -> Dict[str, Any]:
    cache = cache if cache is not None else default_cache()
    try:
        return cache.get_context(path, file, line, before=before, after=after)
    except NotFoundError as e:
        return {"content": "", "range": None, "error": str(e)}


def find_imports(path: str, file: str, *, cache: Optional[SnapshotCache] = None) -> Dict[str, Any]:
    """What `file` imports: resolved in-snapshot dependencies plus raw edges."""

    cache = cache if cache is not None else default_cache()
    meta = cache.metadata(path)
    rel = normalize_path(file)
    file_meta = meta.files.get(rel)

    return {
        "file": rel,
        "found": file_meta is not None,
        "dependencies": list(meta.import_graph.get(rel, [])),
        "imports": [edge.to_dict() for edge in file_meta.imports] if file_meta else [],
    }


def find_importers(path: str, file: str, *, cache: Optional[SnapshotCache] = None) -> Dict[str, Any]:
    """Which files import `file`."""

    cache = cache if cache is not None else default_cache()
    meta = cache.metadata(path)
    rel = normalize_path(file)
    importers = list(meta.reverse_graph.get(rel, []))

    return {"file": rel, "importers": importers, "count": len(importers)}


def find_symbol(path: str, symbol: str, *, cache: Optional[SnapshotCache] = None) -> Dict[str, Any]:
    """Which files export `symbol`, with the export records. All exporters are kept."""

    cache = cache if cache is not None else default_cache()
    meta = cache.metadata(path)
    files = list(meta.symbol_index.get(symbol, []))
    exports = [record.to_dict() for record in meta.exports if record.symbol == symbol]

    return {"symbol": symbol, "files": files, "exports": exports, "count": len(files)}
