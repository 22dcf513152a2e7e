"""Shared fixtures: snapshot builders and a scripted provider."""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from argus.cache import SnapshotCache
from argus.providers import CompletionOptions, CompletionResult, LLMClient

SEP = "=" * 80


def build_snapshot(files: Dict[str, str]) -> str:
    """Render files in the snapshot text format (header + FILE sections)."""
    lines = [
        SEP,
        "CODEBASE SNAPSHOT",
        "Project: /tmp/demo",
        "Generated: 2026-01-01T00:00:00.000Z",
        f"Files: {len(files)}",
        SEP,
        "",
    ]
    for rel, content in files.items():
        lines += ["", SEP, f"FILE: ./{rel}", SEP, content]
    return "\n".join(lines)


Script = Union[List[str], Callable[[List[Dict[str, str]]], str]]


class ScriptedClient(LLMClient):
    """Replays canned responses; records every message list it was sent."""

    name = "scripted"

    def __init__(self, script: Script, fallback: Optional[str] = None):
        self.script = script
        self.fallback = fallback
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, options: Optional[CompletionOptions] = None) -> CompletionResult:
        self.calls.append([dict(m) for m in messages])
        if callable(self.script):
            return CompletionResult(content=self.script(messages))
        if self.script:
            return CompletionResult(content=self.script.pop(0))
        return CompletionResult(content=self.fallback or "")


@pytest.fixture
def write_snapshot(tmp_path: Path):
    """Write a snapshot built from `files` and return its path as str."""

    def _write(files: Dict[str, str], name: str = "snapshot.txt") -> str:
        path = tmp_path / name
        path.write_text(build_snapshot(files), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def cache() -> SnapshotCache:
    return SnapshotCache(max_size=4)


SAMPLE_FILES = {
    "src/index.ts": "\n".join(
        [
            "import { helper, other as alias } from './util';",
            "import * as api from './api';",
            "import React from 'react';",
            "import './styles.css';",
            "",
            "export function main(argv: string[]) {",
            "  return helper(argv);",
            "}",
        ]
    ),
    "src/util.ts": "\n".join(
        [
            "import type { Config } from './api/types';",
            "",
            "export const helper = (x: string[]) => x.length;",
            "export function other() {}",
        ]
    ),
    "src/api/index.ts": "\n".join(
        [
            "export class Client {}",
            "export default function createClient(base) {}",
            "const lazy = () => import('../util');",
        ]
    ),
    "src/api/types.ts": "\n".join(
        [
            "export interface Config { url: string }",
            "export type Mode = 'a' | 'b';",
            "export enum Level { Low, High }",
        ]
    ),
    "src/styles.css": "body { color: red; }",
    "README.md": "# Demo\nexport function notParsed() {}",
}
