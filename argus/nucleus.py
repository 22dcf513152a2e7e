"""Nucleus: a tiny S-expression query language over a snapshot's lines.

Each command is a single S-expression, e.g.

    (grep "export function")
    (count RESULTS)
    (filter _1 (lambda (x) (match x "async" 0)))
    (take (sort RESULTS "lineNum") 5)

Atoms are double-quoted strings (only `\\"` is unescaped, so regex escapes
survive), decimal numbers, or bare symbols. Symbols resolve against the
session environment; unresolved symbols evaluate to their own name.

Evaluation is pure: the only inputs are the line index and the environment, and
the only environment writes happen in child frames created for lambdas.
"""

from __future__ import annotations

import functools
import json
import locale
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union


MAX_GREP_MATCHES = 1000

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


class NucleusError(Exception):
    """A command could not be evaluated. Reported back to the model, never fatal."""


class ParseError(NucleusError):
    pass


class UnknownOperatorError(NucleusError):
    def __init__(self, operator: str):
        super().__init__(f"Unknown command: {operator}")
        self.operator = operator


class LambdaShapeError(NucleusError):
    def __init__(self, operator: str):
        super().__init__(f"{operator} requires a lambda expression: (lambda (x) body)")
        self.operator = operator


# ------------------------- Expression tree -------------------------


@dataclass(frozen=True)
class Literal:
    value: Union[str, int, float]


@dataclass(frozen=True)
class Symbol:
    name: str


@dataclass(frozen=True)
class ListExpr:
    items: Tuple["Expr", ...]


Expr = Union[Literal, Symbol, ListExpr]


def tokenize(source: str) -> List[Tuple[str, str]]:
    """Split a command into `(kind, text)` tokens: `(`, `)`, `str`, `atom`."""

    tokens: List[Tuple[str, str]] = []
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch in "()":
            tokens.append((ch, ch))
            i += 1
            continue

        if ch == '"':
            i += 1
            buf: List[str] = []
            while i < n and source[i] != '"':
                if source[i] == "\\" and i + 1 < n:
                    if source[i + 1] == '"':
                        buf.append('"')
                    else:
                        buf.append(source[i : i + 2])
                    i += 2
                else:
                    buf.append(source[i])
                    i += 1
            if i >= n:
                raise ParseError(f"Unterminated string in command: {source}")
            i += 1
            tokens.append(("str", "".join(buf)))
            continue

        start = i
        while i < n and not source[i].isspace() and source[i] not in '()"':
            i += 1
        tokens.append(("atom", source[start:i]))

    return tokens


def _atom(text: str) -> Expr:
    if _NUMBER_RE.match(text):
        return Literal(float(text) if "." in text else int(text))
    return Symbol(text)


def parse(source: str) -> Expr:
    """Decode one command into an expression tree.

    Uses an explicit stack, so nesting depth is not bounded by recursion.
    """

    tokens = tokenize(source.strip())
    if not tokens:
        raise ParseError("Empty command")

    stack: List[List[Expr]] = []
    result: Optional[Expr] = None

    for pos, (kind, text) in enumerate(tokens):
        if result is not None:
            raise ParseError(f"Unexpected trailing input after position {pos}: {text!r}")

        if kind == "(":
            stack.append([])
            continue

        if kind == ")":
            if not stack:
                raise ParseError(f"Unbalanced ')' in command: {source}")
            node: Expr = ListExpr(tuple(stack.pop()))
        elif kind == "str":
            node = Literal(text)
        else:
            node = _atom(text)

        if stack:
            stack[-1].append(node)
        else:
            result = node

    if stack:
        raise ParseError(f"Missing ')' in command: {source}")
    assert result is not None
    return result


# ------------------------- Environment -------------------------

_MISSING = object()


class Environment:
    """A binding frame linked to its parent; lookups walk outward."""

    __slots__ = ("_bindings", "parent")

    def __init__(self, bindings: Optional[Dict[str, Any]] = None, parent: Optional["Environment"] = None):
        self._bindings: Dict[str, Any] = dict(bindings or {})
        self.parent = parent

    def lookup(self, name: str, default: Any = None) -> Any:
        frame: Optional[Environment] = self
        while frame is not None:
            if name in frame._bindings:
                return frame._bindings[name]
            frame = frame.parent
        return default

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name, _MISSING) is not _MISSING

    def __getitem__(self, name: str) -> Any:
        value = self.lookup(name, _MISSING)
        if value is _MISSING:
            raise KeyError(name)
        return value

    def define(self, name: str, value: Any) -> None:
        """Bind `name` in this frame only."""
        self._bindings[name] = value

    def child(self, name: str, value: Any) -> "Environment":
        return Environment({name: value}, parent=self)

    def names(self) -> List[str]:
        seen: Dict[str, None] = {}
        frame: Optional[Environment] = self
        while frame is not None:
            for k in frame._bindings:
                seen.setdefault(k, None)
            frame = frame.parent
        return sorted(seen)


# ------------------------- Value helpers -------------------------


def to_text(value: Any) -> str:
    """String form of a value, as the model sees it in results."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return None


_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def compile_pattern(pattern: Any, flags: Any = "") -> "re.Pattern[str]":
    if not isinstance(pattern, str):
        raise NucleusError(f"Pattern must be a string, got {to_text(pattern)}")
    if not isinstance(flags, str):
        flags = to_text(flags)

    re_flags = 0
    for f in flags:
        if f in _FLAG_MAP:
            re_flags |= _FLAG_MAP[f]
        elif f not in "gu":
            raise NucleusError(f"Unsupported regex flag: {f!r}")

    try:
        return re.compile(pattern, re_flags)
    except re.error as e:
        raise NucleusError(f"Invalid regex {pattern!r}: {e}") from e


# ------------------------- Interpreter -------------------------


class NucleusInterpreter:
    """Evaluates Nucleus expressions against a fixed sequence of lines."""

    def __init__(self, lines: Sequence[str]):
        self.lines = lines
        self._operators: Dict[str, Callable[[Tuple[Expr, ...], Environment], Any]] = {
            "grep": self._grep,
            "count": self._count,
            "map": self._map,
            "filter": self._filter,
            "first": self._first,
            "last": self._last,
            "take": self._take,
            "sort": self._sort,
            "match": self._match,
        }

    @property
    def operators(self) -> List[str]:
        return sorted(self._operators)

    def execute(self, command: str, env: Environment) -> Any:
        """Parse and evaluate one command.

        Parsing has no depth limit, but evaluation recurses once per nesting
        level: a command nested deeper than the interpreter recursion limit
        (several hundred levels) raises `NucleusError` instead of running.
        """
        expr = parse(command)
        try:
            return self.evaluate(expr, env)
        except RecursionError as e:
            raise NucleusError("Command is nested too deeply to evaluate") from e

    def evaluate(self, expr: Expr, env: Environment) -> Any:
        if isinstance(expr, Literal):
            return expr.value

        if isinstance(expr, Symbol):
            return self._resolve(expr.name, env)

        if not expr.items:
            return []

        head, args = expr.items[0], expr.items[1:]
        if not isinstance(head, Symbol):
            raise UnknownOperatorError(to_text(self._describe(head)))
        op = self._operators.get(head.name)
        if op is None:
            raise UnknownOperatorError(head.name)
        return op(args, env)

    # --- helpers

    def _describe(self, expr: Expr) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Symbol):
            return expr.name
        return "(" + " ".join(str(self._describe(e)) for e in expr.items) + ")"

    def _resolve(self, name: str, env: Environment) -> Any:
        value = env.lookup(name, _MISSING)
        if value is not _MISSING:
            return value

        # Dotted field access: x.line, _1.lineNum
        if "." in name:
            head, *fields = name.split(".")
            value = env.lookup(head, _MISSING)
            if value is not _MISSING:
                for f in fields:
                    value = _field(value, f)
                return value

        return name

    def _args(self, op: str, args: Tuple[Expr, ...], lo: int, hi: int) -> None:
        if not lo <= len(args) <= hi:
            expected = str(lo) if lo == hi else f"{lo}-{hi}"
            raise NucleusError(f"{op} expects {expected} argument(s), got {len(args)}")

    def _sequence(self, op: str, expr: Expr, env: Environment) -> List[Any]:
        value = self.evaluate(expr, env)
        if isinstance(value, (list, tuple)):
            return list(value)
        raise NucleusError(f"{op} expects a list, got {to_text(value)[:80]}")

    def _lambda(self, op: str, expr: Expr) -> Tuple[str, Expr]:
        if (
            not isinstance(expr, ListExpr)
            or len(expr.items) != 3
            or expr.items[0] != Symbol("lambda")
        ):
            raise LambdaShapeError(op)

        params = expr.items[1]
        if isinstance(params, ListExpr):
            if len(params.items) != 1 or not isinstance(params.items[0], Symbol):
                raise LambdaShapeError(op)
            params = params.items[0]
        if not isinstance(params, Symbol):
            raise LambdaShapeError(op)
        return params.name, expr.items[2]

    # --- operators

    def _grep(self, args: Tuple[Expr, ...], env: Environment) -> List[Dict[str, Any]]:
        self._args("grep", args, 1, 2)
        pattern = self.evaluate(args[0], env)
        flags = self.evaluate(args[1], env) if len(args) > 1 else ""
        rx = compile_pattern(pattern, flags)

        matches: List[Dict[str, Any]] = []
        char_index = 0
        for line_num, line in enumerate(self.lines, start=1):
            for m in rx.finditer(line):
                matches.append(
                    {
                        "match": m.group(0),
                        "line": line,
                        "lineNum": line_num,
                        "index": char_index + m.start(),
                        "groups": list(m.groups()),
                    }
                )
                if len(matches) >= MAX_GREP_MATCHES:
                    return matches
            char_index += len(line) + 1

        return matches

    def _count(self, args: Tuple[Expr, ...], env: Environment) -> int:
        self._args("count", args, 1, 1)
        value = self.evaluate(args[0], env)
        if isinstance(value, (list, tuple)):
            return len(value)
        return 0

    def _map(self, args: Tuple[Expr, ...], env: Environment) -> List[Any]:
        self._args("map", args, 2, 2)
        items = self._sequence("map", args[0], env)
        param, body = self._lambda("map", args[1])
        return [self.evaluate(body, env.child(param, item)) for item in items]

    def _filter(self, args: Tuple[Expr, ...], env: Environment) -> List[Any]:
        self._args("filter", args, 2, 2)
        items = self._sequence("filter", args[0], env)
        param, body = self._lambda("filter", args[1])
        return [item for item in items if self.evaluate(body, env.child(param, item))]

    def _first(self, args: Tuple[Expr, ...], env: Environment) -> Any:
        self._args("first", args, 1, 1)
        items = self._sequence("first", args[0], env)
        return items[0] if items else None

    def _last(self, args: Tuple[Expr, ...], env: Environment) -> Any:
        self._args("last", args, 1, 1)
        items = self._sequence("last", args[0], env)
        return items[-1] if items else None

    def _take(self, args: Tuple[Expr, ...], env: Environment) -> Any:
        self._args("take", args, 2, 2)
        value = self.evaluate(args[0], env)
        n = self.evaluate(args[1], env)
        if not _is_number(n):
            raise NucleusError(f"take expects a number, got {to_text(n)}")
        if isinstance(value, str):
            return value[: int(n)]
        if not isinstance(value, (list, tuple)):
            raise NucleusError(f"take expects a list, got {to_text(value)[:80]}")
        return list(value[: int(n)])

    def _sort(self, args: Tuple[Expr, ...], env: Environment) -> List[Any]:
        self._args("sort", args, 2, 2)
        items = self._sequence("sort", args[0], env)
        key = to_text(self.evaluate(args[1], env))

        def compare(a: Any, b: Any) -> int:
            av, bv = _field(a, key), _field(b, key)
            if _is_number(av) and _is_number(bv):
                return (av > bv) - (av < bv)
            return locale.strcoll(to_text(av), to_text(bv))

        return sorted(items, key=functools.cmp_to_key(compare))

    def _match(self, args: Tuple[Expr, ...], env: Environment) -> Optional[str]:
        self._args("match", args, 2, 3)
        value = self.evaluate(args[0], env)
        if isinstance(value, dict) and "line" in value:
            text = to_text(value["line"])
        else:
            text = to_text(value)

        rx = compile_pattern(self.evaluate(args[1], env))
        group = self.evaluate(args[2], env) if len(args) > 2 else 0
        if not _is_number(group):
            raise NucleusError(f"match group must be a number, got {to_text(group)}")

        m = rx.search(text)
        if m is None or not 0 <= int(group) <= rx.groups:
            return None
        return m.group(int(group)) or None
