from __future__ import annotations

import datetime as _dt
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .metadata import SnapshotMetadata


SEPARATOR = "=" * 80
FILE_PREFIX = "FILE: ./"
METADATA_PREFIX = "METADATA: "

_SEPARATOR_RE = re.compile(r"^={3,}\s*$")


def is_separator(line: str) -> bool:
    return bool(_SEPARATOR_RE.match(line))


def normalize_path(path: str) -> str:
    """Strip a leading `./` so paths match the file index keys."""
    while path.startswith("./"):
        path = path[2:]
    return path


@dataclass(frozen=True)
class FileRange:
    """0-based, half-open slice of the document's lines holding one file."""

    start: int
    end: int

    def __len__(self) -> int:
        return max(0, self.end - self.start)


@dataclass(frozen=True)
class SnapshotDocument:
    """A parsed snapshot plus the line index that points into it.

    Instances are immutable: a handle returned by the cache stays valid even
    when the cache entry is invalidated or reloaded underneath it.
    """

    path: str
    content: str
    lines: Tuple[str, ...]
    file_index: Dict[str, FileRange]
    metadata_blocks: Dict[str, FileRange]
    mtime: float
    loaded_at: _dt.datetime = field(default_factory=lambda: _dt.datetime.now(tz=_dt.timezone.utc))

    @property
    def file_count(self) -> int:
        return len(self.file_index)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def file_lines(self, path: str) -> Tuple[str, ...]:
        rng = self.file_index[normalize_path(path)]
        return self.lines[rng.start : rng.end]

    def file_text(self, path: str) -> str:
        return "\n".join(self.file_lines(path))

    def iter_files(self) -> Iterator[Tuple[str, str]]:
        for rel in self.file_index:
            yield rel, self.file_text(rel)

    def metadata_text(self, section: str) -> str:
        rng = self.metadata_blocks[section]
        return "\n".join(self.lines[rng.start : rng.end])


def parse_snapshot(text: str, *, path: str = "<memory>", mtime: float = 0.0) -> SnapshotDocument:
    """Build a `SnapshotDocument` from raw snapshot text.

    Layout:
      - header block
      - repeated `<separator>` / `FILE: ./<path>` / `<separator>` / content sections
      - optional trailing `<separator>` / `METADATA: <name>` / `<separator>` blocks
    """

    lines = tuple(text.split("\n"))
    file_index, metadata_blocks = build_file_index(lines)
    return SnapshotDocument(
        path=path,
        content=text,
        lines=lines,
        file_index=file_index,
        metadata_blocks=metadata_blocks,
        mtime=mtime,
    )


def _header_at(lines: Tuple[str, ...] | List[str], i: int, prefix: str) -> bool:
    """True when line `i` is a section header framed by separator lines."""
    if not lines[i].startswith(prefix):
        return False
    if i + 1 < len(lines) and not is_separator(lines[i + 1]):
        return False
    return i == 0 or is_separator(lines[i - 1])


def build_file_index(
    lines: Tuple[str, ...] | List[str],
) -> Tuple[Dict[str, FileRange], Dict[str, FileRange]]:
    """Map each `FILE:` section and `METADATA:` block to its line range.

    A section ends right before the separator that opens the next section, so
    ranges never overlap and never include delimiter lines.
    """

    file_index: Dict[str, FileRange] = {}
    metadata_blocks: Dict[str, FileRange] = {}

    current: str | None = None
    current_is_meta = False
    start = 0

    def close(end: int) -> None:
        if current is None:
            return
        rng = FileRange(start=start, end=max(start, end))
        if current_is_meta:
            metadata_blocks[current] = rng
        else:
            file_index[current] = rng

    for i in range(len(lines)):
        if _header_at(lines, i, FILE_PREFIX):
            close(i - 1)
            current = normalize_path(lines[i][len(FILE_PREFIX) :].strip())
            current_is_meta = False
            start = i + 2
        elif _header_at(lines, i, METADATA_PREFIX):
            close(i - 1)
            current = lines[i][len(METADATA_PREFIX) :].strip()
            current_is_meta = True
            start = i + 2

    close(len(lines))
    return file_index, metadata_blocks


# ------------------------- Metadata blocks (render) -------------------------


def render_metadata_blocks(metadata: "SnapshotMetadata") -> str:
    """Render the trailing METADATA blocks appended to an enriched snapshot."""

    def block(name: str, body: str) -> str:
        return f"\n{SEPARATOR}\n{METADATA_PREFIX}{name}\n{SEPARATOR}\n{body}\n"

    import_graph = "\n\n".join(
        f"{src}:\n" + "\n".join(f"  → {dep}" for dep in deps)
        for src, deps in metadata.import_graph.items()
    )
    export_index = "\n".join(
        f"{symbol}: {', '.join(files)}" for symbol, files in metadata.symbol_index.items()
    )
    file_exports = "\n".join(
        f"{e.file}:{e.line} - {e.kind} {e.symbol}" + (f" {e.signature}" if e.signature else "")
        for e in metadata.exports
    )
    who_imports = "\n\n".join(
        f"{target} is imported by:\n" + "\n".join(f"  ← {src}" for src in importers)
        for target, importers in metadata.reverse_graph.items()
    )

    return (
        "\n"
        + block("IMPORT GRAPH", import_graph)
        + block("EXPORT INDEX", export_index)
        + block("FILE EXPORTS", file_exports)
        + block("WHO IMPORTS WHOM", who_imports)
    )


def snapshot_stats(document: SnapshotDocument) -> Dict[str, int]:
    return {
        "chars": len(document.content),
        "files": document.file_count,
        "lines": document.line_count,
    }
