from __future__ import annotations

import asyncio
import datetime as _dt
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from .cache import SnapshotCache, default_cache
from .nucleus import Environment, NucleusError, NucleusInterpreter, to_text
from .prompts import FINAL_CLOSE, FINAL_OPEN, select_prompt
from .providers import LLMClient, Message, ProviderTimeoutError
from .snapshot import SnapshotDocument, snapshot_stats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str, Any], None]

MAX_TURNS_ERROR = "Max turns reached"

NO_COMMAND_MESSAGE = "Please provide a Nucleus command or final answer."
FORCE_FINAL_MESSAGE = (
    "STOP SEARCHING. Based on everything you found, provide your final answer NOW "
    f"using {FINAL_OPEN}your answer{FINAL_CLOSE}"
)


@dataclass(frozen=True)
class ArgusConfig:
    model: str = os.environ.get("ARGUS_MODEL", "ollama/qwen2.5-coder:7b")
    api_base: str = os.environ.get("ARGUS_API_BASE", "")
    api_key: str = os.environ.get("ARGUS_API_KEY", "")

    temperature: float = float(os.environ.get("ARGUS_TEMPERATURE", "0.0"))

    max_turns: int = int(os.environ.get("ARGUS_MAX_TURNS", "15"))
    # 0 disables the per-call timeout.
    turn_timeout_ms: int = int(os.environ.get("ARGUS_TURN_TIMEOUT_MS", "60000"))

    # What the model sees of each command result.
    result_preview_chars: int = int(os.environ.get("ARGUS_RESULT_PREVIEW_CHARS", "2000"))

    # Persistent per-session JSONL traces; empty disables them.
    log_dir: str = os.environ.get("ARGUS_LOG_DIR", "")


class _JSONLLogger:
    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, entry: Dict[str, Any]) -> None:
        # Avoid non-serializable objects.
        def _default(o: Any) -> str:
            return f"<{type(o).__name__}>"

        line = json.dumps(entry, default=_default, ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


@dataclass
class TurnRecord:
    turn: int
    command: Optional[str]
    response: str
    result: Any = None
    error: Optional[str] = None
    forced: bool = False


@dataclass
class AnalysisResult:
    answer: str
    turns: int
    commands: List[str]
    success: bool
    error: Optional[str] = None
    history: List[TurnRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "answer": self.answer,
            "turns": self.turns,
            "commands": list(self.commands),
            "success": self.success,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


class Extracted(NamedTuple):
    command: Optional[str] = None
    final_answer: Optional[str] = None


@dataclass
class AnalysisSession:
    """Everything one `analyze` call owns. Never shared between sessions."""

    session_id: str
    query: str
    document: SnapshotDocument
    interpreter: NucleusInterpreter
    env: Environment
    turn_budget: int
    messages: List[Message] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)
    history: List[TurnRecord] = field(default_factory=list)
    trace: Optional[_JSONLLogger] = None

    def log(self, entry: Dict[str, Any]) -> None:
        if self.trace is None:
            return
        self.trace.write(
            {
                "ts": _dt.datetime.now(tz=_dt.timezone.utc).isoformat(),
                "session_id": self.session_id,
                **entry,
            }
        )

    def finish(self, answer: str, turns: int, *, success: bool, error: str | None = None) -> AnalysisResult:
        self.log({"type": "final", "success": success, "turns": turns, "answer": answer, "error": error})
        return AnalysisResult(
            answer=answer,
            turns=turns,
            commands=list(self.commands),
            success=success,
            error=error,
            history=list(self.history),
        )


class ArgusEngine:
    """Recursive analysis engine.

    This engine runs a bounded loop:
      - the model produces one Nucleus command (or a final answer)
      - the command runs against the cached snapshot's line index
      - only a truncated serialization of the result goes back to the model
      - the session ends on a `<<<FINAL>>>...<<<END>>>` answer or when turns run out

    The snapshot text itself is never inserted into the model context.
    """

    def __init__(
        self,
        *,
        client: LLMClient,
        config: ArgusConfig | None = None,
        cache: SnapshotCache | None = None,
    ):
        self.client = client
        self.config = config or ArgusConfig()
        self.cache = cache if cache is not None else default_cache()

    async def analyze(
        self,
        document_path: str,
        query: str,
        *,
        max_turns: int | None = None,
        turn_timeout_ms: int | None = None,
        verbose: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        """Answer `query` about the snapshot at `document_path`.

        Raises only for provider failures (`ProviderError`), snapshot I/O
        errors and a negative `max_turns` (`ValueError`); command errors are
        fed back to the model and running out of turns is a normal,
        unsuccessful result. A `max_turns` of 0 never calls the provider.
        """

        cfg = self.config
        ceiling = max_turns if max_turns is not None else cfg.max_turns
        timeout_ms = turn_timeout_ms if turn_timeout_ms is not None else cfg.turn_timeout_ms

        session = self._start_session(document_path, query, ceiling)
        budget = session.turn_budget

        for turn in range(1, budget + 1):
            is_last = turn == budget
            near_end = turn >= budget - 2

            if verbose:
                print(f"\n[argus] turn {turn}/{budget}: querying model...")

            response = await self._complete(session.messages, timeout_ms)

            if verbose:
                print(f"[argus] response: {response[:200]}")

            extracted = extract_command(response)

            if extracted.final_answer:
                session.history.append(TurnRecord(turn=turn, command=extracted.final_answer, response=response))
                return session.finish(extracted.final_answer, turn, success=True)

            if not extracted.command:
                session.history.append(TurnRecord(turn=turn, command=None, response=response))
                session.log({"type": "step", "turn": turn, "response": response, "command": None})
                session.messages.append({"role": "assistant", "content": response})
                session.messages.append({"role": "user", "content": NO_COMMAND_MESSAGE})
                continue

            command = extracted.command
            session.commands.append(command)

            if verbose:
                print(f"[argus] command: {command}")

            try:
                result = session.interpreter.execute(command, session.env)
            except NucleusError as e:
                if verbose:
                    print(f"[argus] error: {e}")
                session.history.append(TurnRecord(turn=turn, command=command, response=response, error=str(e)))
                session.log({"type": "step", "turn": turn, "command": command, "error": str(e)})
                session.messages.append({"role": "assistant", "content": command})
                session.messages.append({"role": "user", "content": f"Error executing command: {e}"})
                continue

            session.env.define("RESULTS", result)
            session.env.define(f"_{turn}", result)
            session.history.append(TurnRecord(turn=turn, command=command, response=response, result=result))

            preview = format_result(result, cfg.result_preview_chars)
            session.log({"type": "step", "turn": turn, "command": command, "result": preview})

            if verbose:
                print(f"[argus] result: {preview[:500]}")

            _notify(on_progress, turn, command, result)

            user_message = f"Result:\n{preview}"
            if near_end and not is_last:
                user_message += (
                    f"\n\n[!] {budget - turn} turns remaining. Start forming your final answer."
                )
            session.messages.append({"role": "assistant", "content": command})
            session.messages.append({"role": "user", "content": user_message})

            if is_last:
                session.messages.append({"role": "user", "content": FORCE_FINAL_MESSAGE})
                final_response = await self._complete(session.messages, timeout_ms)
                final = extract_command(final_response)
                answer = final.final_answer or final_response
                session.history.append(
                    TurnRecord(turn=turn, command=answer, response=final_response, forced=True)
                )
                # Unformatted output still counts: never drop what the model said.
                return session.finish(answer, turn, success=True)

        return session.finish(
            "Maximum turns reached without final answer",
            budget,
            success=False,
            error=MAX_TURNS_ERROR,
        )

    # ------------------------- Internal implementation -------------------------

    def _start_session(self, document_path: str, query: str, ceiling: int) -> AnalysisSession:
        if ceiling < 0:
            raise ValueError(f"max_turns must be >= 0, got {ceiling}")

        # Point-in-time handle: concurrent invalidations don't affect this session.
        document = self.cache.load(document_path)
        selection = select_prompt(query)
        budget = min(selection.turn_budget, ceiling)

        session_id = uuid.uuid4().hex
        trace = None
        if self.config.log_dir:
            stamp = _dt.datetime.now().strftime("%Y%m%d_%H%M%S")
            trace = _JSONLLogger(Path(self.config.log_dir) / f"argus_{stamp}_{session_id}.jsonl")

        session = AnalysisSession(
            session_id=session_id,
            query=query,
            document=document,
            interpreter=NucleusInterpreter(document.lines),
            env=Environment(),
            turn_budget=budget,
            trace=trace,
        )
        session.messages.append({"role": "system", "content": selection.template})
        session.messages.append({"role": "user", "content": _intro_message(document, query, budget)})
        session.log(
            {
                "type": "start",
                "document": document.path,
                "query": query,
                "prompt": selection.name,
                "turn_budget": budget,
            }
        )
        logger.debug("Session %s: prompt=%s budget=%d", session_id, selection.name, budget)
        return session

    async def _complete(self, messages: List[Message], timeout_ms: int) -> str:
        call = self.client.complete(list(messages))
        if timeout_ms and timeout_ms > 0:
            try:
                result = await asyncio.wait_for(call, timeout=timeout_ms / 1000)
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(f"Provider call timed out after {timeout_ms} ms") from e
        else:
            result = await call
        return result.content or ""


async def analyze(
    provider: LLMClient,
    document_path: str,
    query: str,
    *,
    max_turns: int | None = None,
    turn_timeout_ms: int | None = None,
    verbose: bool = False,
    on_progress: ProgressCallback | None = None,
    cache: SnapshotCache | None = None,
    config: ArgusConfig | None = None,
) -> AnalysisResult:
    engine = ArgusEngine(client=provider, config=config, cache=cache)
    return await engine.analyze(
        document_path,
        query,
        max_turns=max_turns,
        turn_timeout_ms=turn_timeout_ms,
        verbose=verbose,
        on_progress=on_progress,
    )


# ------------------------- Helpers -------------------------


def _intro_message(document: SnapshotDocument, query: str, budget: int) -> str:
    stats = snapshot_stats(document)
    lines = [
        "CODEBASE SNAPSHOT:",
        f"- Total size: {stats['chars']:,} characters",
        f"- Files: {stats['files']}",
        f"- Lines: {stats['lines']:,}",
        "",
        'Files are marked with "FILE: ./path/to/file" headers.',
    ]
    if document.metadata_blocks:
        names = ", ".join(document.metadata_blocks)
        lines.append(f'Precomputed sections are marked with "METADATA: <name>" headers: {names}.')
    lines += [
        "",
        f"QUERY: {query}",
        "",
        f"Begin analysis. You have {budget} turns maximum - provide your final answer before then.",
    ]
    return "\n".join(lines)


def _notify(callback: ProgressCallback | None, turn: int, command: str, result: Any) -> None:
    if callback is None:
        return
    try:
        callback(turn, command, result)
    except Exception:
        logger.warning("Progress callback failed on turn %d", turn, exc_info=True)


def format_result(value: Any, limit: int) -> str:
    text = json.dumps(value, indent=2, ensure_ascii=False, default=to_text)
    if len(text) > limit:
        return text[:limit] + "...[truncated]"
    return text


def find_sexpr(text: str) -> Optional[str]:
    """Return the first balanced S-expression in `text`, or None.

    Parentheses inside double-quoted strings are ignored, so commands like
    `(grep "foo\\(")` and deeply nested filter/map/lambda forms come out whole.
    """

    start = text.find("(")
    while start != -1:
        depth = 0
        in_string = False
        i = start
        while i < len(text):
            ch = text[i]
            if in_string:
                if ch == "\\":
                    i += 2
                    continue
                if ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
            i += 1
        # Unbalanced from here; try the next opening paren.
        start = text.find("(", start + 1)
    return None


def extract_command(response: str) -> Extracted:
    """Pull a final answer or a Nucleus command out of a model response."""

    if not response:
        return Extracted()

    open_at = response.find(FINAL_OPEN)
    if open_at != -1:
        close_at = response.find(FINAL_CLOSE, open_at + len(FINAL_OPEN))
        if close_at != -1:
            return Extracted(final_answer=response[open_at + len(FINAL_OPEN) : close_at].strip())

    return Extracted(command=find_sexpr(response))
