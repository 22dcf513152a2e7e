"""Thread-safe, mtime-aware LRU cache of parsed snapshot documents.

Usage:
    cache = SnapshotCache(max_size=10)
    doc = cache.load(path)            # parsed once per modification time
    cache.search(path, "class \\w+")  # paginated regex scan of the line index
    cache.invalidate(path)            # drop after an external change notification

Documents are immutable, so a handle returned by `load()` keeps working after
the entry is invalidated or replaced by a concurrent reload.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .metadata import SnapshotMetadata, extract_metadata
from .snapshot import SnapshotDocument, normalize_path, parse_snapshot

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 10


class NotFoundError(KeyError):
    """A file or symbol is not present in the snapshot."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


@dataclass
class _CacheEntry:
    document: SnapshotDocument
    metadata: Optional[SnapshotMetadata] = None


class SnapshotCache:
    """LRU cache of `SnapshotDocument`s keyed by path and file mtime."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return isinstance(path, str) and _key(path) in self._entries

    def load(self, path: str) -> SnapshotDocument:
        """Return the parsed document, re-parsing only when the file mtime changed."""

        key = _key(path)
        mtime = os.stat(key).st_mtime

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.document.mtime == mtime:
                self._entries.move_to_end(key)
                logger.debug("Snapshot cache hit: %s", key)
                return entry.document

        # Parse outside the lock; large snapshots take a while.
        with open(key, "r", encoding="utf-8", errors="replace", newline="") as f:
            text = f.read()
        document = parse_snapshot(text, path=key, mtime=mtime)

        with self._lock:
            current = self._entries.get(key)
            if current is not None and current.document.mtime == mtime:
                # A concurrent load won the race; keep its entry.
                self._entries.move_to_end(key)
                return current.document

            self._entries[key] = _CacheEntry(document=document)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted snapshot from cache: %s", evicted)

        logger.info(
            "Loaded snapshot %s (%d files, %d lines)",
            key,
            document.file_count,
            document.line_count,
        )
        return document

    def invalidate(self, path: str) -> None:
        with self._lock:
            if self._entries.pop(_key(path), None) is not None:
                logger.debug("Invalidated snapshot cache entry: %s", path)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def metadata(self, path: str) -> SnapshotMetadata:
        """Import/export metadata for the snapshot, extracted once per cached entry."""

        document = self.load(path)
        key = _key(path)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.document is document and entry.metadata is not None:
                return entry.metadata

        meta = extract_metadata(document.iter_files())

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.document is document:
                entry.metadata = meta
        return meta

    def search(
        self,
        path: str,
        pattern: str,
        *,
        case_insensitive: bool = False,
        max_results: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Regex scan of the line index; one match per line, paginated by `offset`."""

        document = self.load(path)
        rx = re.compile(pattern, re.IGNORECASE if case_insensitive else 0)

        matches = []
        found = 0
        for i, line in enumerate(document.lines):
            m = rx.search(line)
            if m is None:
                continue
            if found >= offset:
                matches.append({"lineNum": i + 1, "line": line.strip(), "match": m.group(0)})
                if len(matches) >= max_results:
                    break
            found += 1

        return {"matches": matches, "count": len(matches)}

    def get_context(
        self,
        path: str,
        file: str,
        line: int,
        before: int = 10,
        after: int = 10,
    ) -> Dict[str, Any]:
        """Window of lines around `line` (1-based, relative to `file`), clipped to the file.

        Raises:
            NotFoundError: `file` has no section in the snapshot.
        """

        document = self.load(path)
        rel = normalize_path(file)
        if rel not in document.file_index:
            raise NotFoundError(f"File not found: {file}")

        file_lines = document.file_lines(rel)
        start = max(0, line - before - 1)
        end = min(len(file_lines), line + after)

        rendered = []
        for idx, text in enumerate(file_lines[start:end]):
            n = start + idx + 1
            marker = ">>>" if n == line else "   "
            rendered.append(f"{marker} {n:>4}: {text}")

        return {"content": "\n".join(rendered), "range": {"start": start + 1, "end": end}}


def _key(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


_default_cache: SnapshotCache | None = None
_default_lock = threading.Lock()


def default_cache() -> SnapshotCache:
    """Process-wide cache shared by sessions and tools that don't bring their own."""

    global _default_cache
    with _default_lock:
        if _default_cache is None:
            size = int(os.environ.get("ARGUS_CACHE_SIZE", str(DEFAULT_CACHE_SIZE)))
            _default_cache = SnapshotCache(max_size=size)
        return _default_cache
