"""
Tests for the Nucleus parser, environment frames and interpreter.
"""

import re

import pytest

from argus.nucleus import (
    MAX_GREP_MATCHES,
    Environment,
    LambdaShapeError,
    ListExpr,
    Literal,
    NucleusError,
    NucleusInterpreter,
    ParseError,
    Symbol,
    UnknownOperatorError,
    parse,
    tokenize,
)

LINES = [
    "fn alpha() {}",
    "const x = 1; fn beta() {}",
    "// nothing here",
    "fn gamma() { fn delta() {} }",
    "export function foo(a, b) {}",
]


@pytest.fixture
def interp():
    return NucleusInterpreter(LINES)


@pytest.fixture
def env():
    return Environment()


class TestParser:
    """Test tokenizing and decoding commands into the expression tree."""

    def test_parses_nested_lists(self):
        expr = parse('(take (grep "fn ") 5)')
        assert expr == ListExpr(
            (
                Symbol("take"),
                ListExpr((Symbol("grep"), Literal("fn "))),
                Literal(5),
            )
        )

    def test_numbers_become_int_or_float(self):
        expr = parse("(take RESULTS 2.5)")
        assert expr.items[2] == Literal(2.5)
        assert parse("(take RESULTS -3)").items[2] == Literal(-3)

    def test_escaped_quote_is_unescaped_but_regex_escapes_survive(self):
        tokens = tokenize(r'(grep "say \"hi\" \d+")')
        assert ("str", r'say "hi" \d+') in tokens

    def test_parens_inside_strings_are_literal(self):
        expr = parse('(grep "foo\\(")')
        assert expr.items[1] == Literal("foo\\(")

    @pytest.mark.parametrize(
        "source",
        ["", "   ", "(grep \"x\"", "(grep \"x\"))", '(grep "unterminated)', "(a) (b)"],
    )
    def test_malformed_commands_raise_parse_error(self, source):
        with pytest.raises(ParseError):
            parse(source)

    def test_deep_nesting_parses(self):
        source = "(" * 2000 + ")" * 2000
        expr = parse(source)
        assert isinstance(expr, ListExpr)


class TestEnvironment:
    """Test parent-linked binding frames."""

    def test_child_frame_shadows_without_mutating_parent(self):
        root = Environment({"x": 1})
        child = root.child("x", 2)
        assert child.lookup("x") == 2
        assert root.lookup("x") == 1

    def test_lookup_walks_outward(self):
        root = Environment({"RESULTS": [1, 2]})
        child = root.child("p", "v").child("q", "w")
        assert child.lookup("RESULTS") == [1, 2]
        assert "p" in child
        assert "p" not in root

    def test_getitem_raises_for_unbound(self):
        with pytest.raises(KeyError):
            Environment()["missing"]


class TestGrep:
    """Test the grep operator against a reference scan."""

    def test_match_count_equals_reference_finditer(self, interp, env):
        result = interp.execute('(grep "fn \\w+")', env)
        expected = sum(len(list(re.finditer(r"fn \w+", line))) for line in LINES)
        assert len(result) == expected == 5

    def test_match_record_fields(self, interp, env):
        result = interp.execute('(grep "fn (\\w+)")', env)
        second = result[1]
        assert second["match"] == "fn beta"
        assert second["line"] == LINES[1]
        assert second["lineNum"] == 2
        assert second["index"] == len(LINES[0]) + 1 + LINES[1].index("fn beta")
        assert second["groups"] == ["beta"]

    def test_multiple_matches_per_line(self, interp, env):
        result = interp.execute('(grep "fn ")', env)
        assert [m["lineNum"] for m in result] == [1, 2, 4, 4]

    def test_case_insensitive_flag(self, interp, env):
        assert interp.execute('(grep "EXPORT")', env) == []
        assert len(interp.execute('(grep "EXPORT" "i")', env)) == 1

    def test_global_flag_is_accepted(self, interp, env):
        assert len(interp.execute('(grep "fn " "g")', env)) == 4

    def test_unsupported_flag_raises(self, interp, env):
        with pytest.raises(NucleusError, match="flag"):
            interp.execute('(grep "fn" "x")', env)

    def test_invalid_regex_raises(self, interp, env):
        with pytest.raises(NucleusError, match="Invalid regex"):
            interp.execute('(grep "fn (")', env)

    def test_match_cap(self, env):
        interp = NucleusInterpreter(["a" * 600, "a" * 600])
        assert len(interp.execute('(grep "a")', env)) == MAX_GREP_MATCHES

    def test_unresolved_symbol_passes_through_as_pattern(self, interp, env):
        assert len(interp.execute("(grep alpha)", env)) == 1

    def test_count_is_idempotent(self, interp, env):
        first = interp.execute('(count (grep "fn "))', env)
        second = interp.execute('(count (grep "fn "))', env)
        assert first == second == 4


class TestSequenceOperators:
    """Test count/map/filter/first/last/take/sort/match."""

    def test_count_non_list_is_zero(self, interp, env):
        assert interp.execute('(count "abc")', env) == 0

    def test_take_sorted_by_line_number(self, interp, env):
        result = interp.execute('(take (sort (grep "fn ") "lineNum") 5)', env)
        assert len(result) <= 5
        nums = [m["lineNum"] for m in result]
        assert nums == sorted(nums)

    def test_sort_with_bare_symbol_key(self, interp, env):
        result = interp.execute('(sort (grep "fn (\\w+)") match)', env)
        assert [m["match"] for m in result] == ["fn alpha", "fn beta", "fn delta", "fn gamma"]

    def test_sort_numeric_not_lexicographic(self, env):
        env.define("items", [{"n": 10}, {"n": 9}, {"n": 100}])
        assert NucleusInterpreter([]).execute('(sort items "n")', env) == [{"n": 9}, {"n": 10}, {"n": 100}]

    def test_map_preserves_order_and_binds_param(self, interp, env):
        result = interp.execute('(map (grep "fn (\\w+)") (lambda (m) (match m "fn (\\w+)" 1)))', env)
        assert result == ["alpha", "beta", "gamma", "gamma"]

    def test_map_with_dotted_field_access(self, interp, env):
        result = interp.execute('(map (grep "export") (lambda (x) x.lineNum))', env)
        assert result == [5]

    def test_filter_keeps_truthy(self, interp, env):
        result = interp.execute('(filter (grep "fn ") (lambda (x) (match x "const" 0)))', env)
        assert [m["lineNum"] for m in result] == [2]

    def test_lambda_does_not_leak_binding(self, interp, env):
        interp.execute('(map (grep "fn ") (lambda (x) x))', env)
        assert "x" not in env

    def test_first_and_last(self, interp, env):
        assert interp.execute('(first (grep "fn "))', env)["lineNum"] == 1
        assert interp.execute('(last (grep "fn "))', env)["lineNum"] == 4

    def test_first_on_empty_is_none(self, interp, env):
        assert interp.execute('(first (grep "zzz"))', env) is None
        assert interp.execute('(last (grep "zzz"))', env) is None

    def test_take_uses_bound_results(self, interp, env):
        env.define("RESULTS", [1, 2, 3, 4])
        assert interp.execute("(take RESULTS 2)", env) == [1, 2]

    def test_match_on_plain_string(self, interp, env):
        assert interp.execute('(match "version 1.2.3" "(\\d+)\\.(\\d+)" 2)', env) == "2"
        assert interp.execute('(match "abc" "\\d+")', env) is None

    def test_match_group_out_of_range_is_none(self, interp, env):
        assert interp.execute('(match "abc" "b" 3)', env) is None

    def test_empty_list_evaluates_to_empty(self, interp, env):
        assert interp.execute("()", env) == []


class TestErrors:
    """Test DSL errors name the operator and are NucleusErrors."""

    def test_unknown_operator(self, interp, env):
        with pytest.raises(UnknownOperatorError) as exc:
            interp.execute("(frobnicate RESULTS)", env)
        assert exc.value.operator == "frobnicate"
        assert "frobnicate" in str(exc.value)

    @pytest.mark.parametrize(
        "command",
        [
            '(map (grep "fn") x)',
            '(filter (grep "fn") (lambda x))',
            '(map (grep "fn") (lambda (a b) a))',
            '(filter (grep "fn") (fn (x) x))',
        ],
    )
    def test_malformed_lambda(self, interp, env, command):
        with pytest.raises(LambdaShapeError) as exc:
            interp.execute(command, env)
        assert exc.value.operator in command

    def test_map_over_non_list(self, interp, env):
        with pytest.raises(NucleusError, match="map expects a list"):
            interp.execute('(map "abc" (lambda (x) x))', env)

    def test_wrong_arity(self, interp, env):
        with pytest.raises(NucleusError, match="take expects 2"):
            interp.execute("(take RESULTS)", env)

    def test_nesting_beyond_recursion_limit_is_a_dsl_error(self, interp, env):
        command = "(first " * 5000 + '(grep "fn")' + ")" * 5000
        with pytest.raises(NucleusError, match="nested too deeply"):
            interp.execute(command, env)
