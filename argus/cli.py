from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from . import tools
from .cache import SnapshotCache, default_cache
from .engine import ArgusConfig, ArgusEngine
from .providers import LiteLLMClient
from .snapshot import render_metadata_blocks


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="argus", description="Recursive analysis of large codebase snapshots")
    p.add_argument("--log-level", type=str, default="WARNING", help="Python logging level for library logs")

    sub = p.add_subparsers(dest="cmd", required=True)

    defaults = ArgusConfig()

    ask = sub.add_parser("ask", help="Ask a question about a codebase snapshot")
    ask.add_argument("--snapshot", type=str, required=True, help="Path to a snapshot text file")
    ask.add_argument("--question", type=str, required=True, help="Question to answer")
    ask.add_argument("--model", type=str, default=defaults.model, help="litellm model name")
    ask.add_argument("--api-base", type=str, default=defaults.api_base, help="Override provider base URL")
    ask.add_argument(
        "--max-turns",
        type=int,
        default=defaults.max_turns,
        help="Upper bound on analysis turns (the query type may pick fewer)",
    )
    ask.add_argument(
        "--turn-timeout-ms",
        type=int,
        default=defaults.turn_timeout_ms,
        help="Timeout for each model call (0 disables)",
    )
    ask.add_argument("--log-dir", type=str, default=defaults.log_dir, help="Write JSONL session traces here")
    ask.add_argument("--json", action="store_true", help="Print the full result as JSON")
    ask.add_argument("--verbose", action="store_true", help="Print each turn's command and result")

    search = sub.add_parser("search", help="Regex search across a snapshot (no AI)")
    search.add_argument("--snapshot", type=str, required=True)
    search.add_argument("--pattern", type=str, required=True)
    search.add_argument("-i", "--ignore-case", action="store_true")
    search.add_argument("--max-results", type=int, default=50)
    search.add_argument("--offset", type=int, default=0)

    context = sub.add_parser("context", help="Show lines around a line of a file (no AI)")
    context.add_argument("--snapshot", type=str, required=True)
    context.add_argument("--file", type=str, required=True)
    context.add_argument("--line", type=int, required=True)
    context.add_argument("--before", type=int, default=10)
    context.add_argument("--after", type=int, default=10)

    imports = sub.add_parser("imports", help="Files imported by a file (no AI)")
    imports.add_argument("--snapshot", type=str, required=True)
    imports.add_argument("--file", type=str, required=True)

    importers = sub.add_parser("importers", help="Files that import a file (no AI)")
    importers.add_argument("--snapshot", type=str, required=True)
    importers.add_argument("--file", type=str, required=True)

    symbol = sub.add_parser("symbol", help="Files that export a symbol (no AI)")
    symbol.add_argument("--snapshot", type=str, required=True)
    symbol.add_argument("--name", type=str, required=True)

    enrich = sub.add_parser("enrich", help="Append import/export METADATA blocks to a snapshot")
    enrich.add_argument("--snapshot", type=str, required=True)

    return p


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _run_ask(args: argparse.Namespace, cache: SnapshotCache) -> int:
    cfg = ArgusConfig(
        model=args.model,
        api_base=args.api_base,
        max_turns=args.max_turns,
        turn_timeout_ms=args.turn_timeout_ms,
        log_dir=args.log_dir,
    )
    client = LiteLLMClient(cfg.model, api_base=cfg.api_base, api_key=cfg.api_key, temperature=cfg.temperature)
    engine = ArgusEngine(client=client, config=cfg, cache=cache)

    result = asyncio.run(engine.analyze(args.snapshot, args.question, verbose=args.verbose))

    if args.json:
        _print_json(result.to_dict())
    else:
        print(result.answer)
        if args.verbose:
            print(f"[argus] turns: {result.turns} commands: {len(result.commands)}")
    return 0 if result.success else 1


def _run_enrich(args: argparse.Namespace, cache: SnapshotCache) -> int:
    document = cache.load(args.snapshot)
    if document.metadata_blocks:
        print(f"[argus] {args.snapshot} already has METADATA sections", file=sys.stderr)
        return 1

    meta = cache.metadata(args.snapshot)
    with open(document.path, "a", encoding="utf-8") as f:
        f.write(render_metadata_blocks(meta))
    cache.invalidate(args.snapshot)

    print(
        f"[argus] enriched {args.snapshot}: {len(meta.files)} files, "
        f"{len(meta.imports)} imports, {len(meta.exports)} exports"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    cache = default_cache()

    try:
        if args.cmd == "ask":
            return _run_ask(args, cache)
        if args.cmd == "enrich":
            return _run_enrich(args, cache)
        if args.cmd == "search":
            _print_json(
                tools.search_snapshot(
                    args.snapshot,
                    args.pattern,
                    case_insensitive=args.ignore_case,
                    max_results=args.max_results,
                    offset=args.offset,
                    cache=cache,
                )
            )
        elif args.cmd == "context":
            result = tools.get_context(
                args.snapshot, args.file, args.line, before=args.before, after=args.after, cache=cache
            )
            if result.get("error"):
                print(f"[argus] {result['error']}", file=sys.stderr)
                return 1
            print(result["content"])
        elif args.cmd == "imports":
            _print_json(tools.find_imports(args.snapshot, args.file, cache=cache))
        elif args.cmd == "importers":
            _print_json(tools.find_importers(args.snapshot, args.file, cache=cache))
        elif args.cmd == "symbol":
            _print_json(tools.find_symbol(args.snapshot, args.name, cache=cache))
        else:
            parser.print_help()
            return 2
    except Exception as e:
        print(f"[argus] error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
