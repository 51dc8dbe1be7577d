"""
Tests for ConditionEvaluator and the comparison helpers.

Covers:
- MemoryCheck with every operator
- Numeric-first comparison with string fallback
- TestResult / FileExists / Custom signals
- InvalidCondition for unknown types, operators, regexes and missing providers
"""

from pathlib import Path

import pytest

from reactree.errors import InvalidConditionError
from reactree.graph.condition import (
    ConditionDescriptor,
    ConditionEvaluator,
    SignalProviders,
    lookup,
)
from reactree.testing import TestResult


def check(key, operator="equals", expected=None, type="memory_check"):
    return ConditionDescriptor(type=type, key=key, operator=operator, expected=expected)


# ---------------------------------------------------------------------------
# MemoryCheck
# ---------------------------------------------------------------------------


class TestMemoryCheck:
    def setup_method(self):
        self.evaluator = ConditionEvaluator()

    def test_equals_string(self):
        snapshot = {"status": "passing"}
        assert self.evaluator.evaluate(check("status", expected="passing"), snapshot) is True
        assert self.evaluator.evaluate(check("status", expected="failing"), snapshot) is False

    def test_not_equals(self):
        snapshot = {"status": "failing"}
        assert self.evaluator.evaluate(check("status", "not_equals", "passing"), snapshot)

    def test_numbers_compare_numerically(self):
        snapshot = {"count": "10"}
        assert self.evaluator.evaluate(check("count", expected=10), snapshot)
        assert self.evaluator.evaluate(check("count", expected="10.0"), snapshot)

    def test_greater_than_numeric(self):
        snapshot = {"coverage": "90"}
        assert self.evaluator.evaluate(check("coverage", "greater_than", 85), snapshot)
        # Lexicographically "90" < "100", numerically it is not
        assert self.evaluator.evaluate(check("coverage", "less_than", 100), snapshot)

    def test_ordering_falls_back_to_strings(self):
        snapshot = {"phase": "beta"}
        assert self.evaluator.evaluate(check("phase", "greater_than", "alpha"), snapshot)
        assert not self.evaluator.evaluate(check("phase", "less_than", "alpha"), snapshot)

    def test_ordering_with_missing_value_is_false(self):
        assert not self.evaluator.evaluate(check("missing", "greater_than", 1), {})
        assert not self.evaluator.evaluate(check("missing", "less_than", 1), {})

    def test_contains_substring(self):
        snapshot = {"log": "3 examples, 0 failures"}
        assert self.evaluator.evaluate(check("log", "contains", "0 failures"), snapshot)
        assert self.evaluator.evaluate(check("log", "not_contains", "error"), snapshot)

    def test_contains_list_item(self):
        snapshot = {"files": ["app/models/user.rb", "spec/models/user_spec.rb"]}
        assert self.evaluator.evaluate(check("files", "contains", "app/models/user.rb"), snapshot)
        assert not self.evaluator.evaluate(check("files", "contains", "app/models"), snapshot)

    def test_matches_regex(self):
        snapshot = {"summary": "12 examples, 0 failures"}
        assert self.evaluator.evaluate(
            check("summary", "matches_regex", r"\d+ examples, 0 failures"), snapshot
        )
        assert not self.evaluator.evaluate(check("summary", "matches_regex", r"^0"), snapshot)

    def test_invalid_regex_raises(self):
        with pytest.raises(InvalidConditionError, match="Invalid regex"):
            self.evaluator.evaluate(check("summary", "matches_regex", "("), {"summary": "x"})

    def test_missing_key_equals_none(self):
        assert self.evaluator.evaluate(check("never_written"), {})
        assert not self.evaluator.evaluate(check("never_written", expected="x"), {})

    def test_booleans(self):
        snapshot = {"done": True, "flag": "yes"}
        assert self.evaluator.evaluate(check("done", expected=True), snapshot)
        assert self.evaluator.evaluate(check("flag", expected=True), snapshot)
        assert not self.evaluator.evaluate(check("done", expected=False), snapshot)

    def test_dotted_key_reads_nested_values(self):
        snapshot = {"tests": {"models": {"status": "passed"}}}
        assert self.evaluator.evaluate(check("tests.models.status", expected="passed"), snapshot)

    def test_flat_key_with_dots_wins(self):
        assert lookup({"a.b": 1, "a": {"b": 2}}, "a.b") == 1


# ---------------------------------------------------------------------------
# Unknown descriptors
# ---------------------------------------------------------------------------


class TestInvalidConditions:
    def test_unknown_operator(self):
        with pytest.raises(InvalidConditionError, match="operator"):
            ConditionEvaluator().evaluate(check("status", "roughly_equals", "x"), {})

    def test_unknown_type(self):
        with pytest.raises(InvalidConditionError, match="type"):
            ConditionEvaluator().evaluate(check("status", type="weather"), {})

    def test_unknown_values_still_load(self):
        cond = ConditionDescriptor(type="weather", key="k", operator="roughly")
        assert cond.describe().startswith("weather(k)")


class TestCamelCaseSpellings:
    @pytest.mark.parametrize(
        "operator, expected, outcome",
        [
            ("notEquals", "failing", True),
            ("greaterThan", 80, True),
            ("lessThan", 80, False),
            ("notContains", "pass", False),
            ("matchesRegex", "^pass", True),
        ],
    )
    def test_operators(self, operator, expected, outcome):
        snapshot = {"status": "passing", "coverage": 91}
        key = "coverage" if isinstance(expected, int) else "status"

        cond = check(key, operator, expected, type="MemoryCheck")

        assert ConditionEvaluator().evaluate(cond, snapshot) is outcome

    def test_same_fingerprint_as_snake_case(self):
        camel = ConditionDescriptor(type="MemoryCheck", key="n", operator="greaterThan", expected=1)
        snake = ConditionDescriptor(type="memory_check", key="n", operator="greater_than", expected=1)

        assert camel == snake
        assert camel.fingerprint() == snake.fingerprint()

    def test_loaded_from_document(self):
        cond = ConditionDescriptor.model_validate(
            {"type": "FileExists", "key": "Gemfile.lock", "expected": False}
        )

        assert cond.type == "file_exists"
        evaluator = ConditionEvaluator(SignalProviders(file_exists=lambda path: False))
        assert evaluator.evaluate(cond, {}) is True


# ---------------------------------------------------------------------------
# External signals
# ---------------------------------------------------------------------------


class TestExternalSignals:
    def test_test_result_from_mapping(self):
        signals = SignalProviders(test_results={"spec/models": "passed", "spec/api": "failed"})
        evaluator = ConditionEvaluator(signals)

        assert evaluator.evaluate(check("spec/models", type="test_result"), {})
        assert not evaluator.evaluate(check("spec/api", type="test_result"), {})

    def test_test_result_from_callable_and_model(self):
        results = {
            "spec/models": TestResult(test_id="spec/models", passed=True),
            "spec/api": False,
        }
        evaluator = ConditionEvaluator(SignalProviders(test_results=results.get))

        assert evaluator.evaluate(check("spec/models", type="test_result"), {})
        assert evaluator.evaluate(check("spec/api", type="test_result", expected="failed"), {})

    def test_test_result_without_feed_raises(self):
        with pytest.raises(InvalidConditionError, match="test-result feed"):
            ConditionEvaluator().evaluate(check("spec/models", type="test_result"), {})

    def test_file_exists_relative_to_root(self, tmp_path: Path):
        (tmp_path / "app").mkdir()
        (tmp_path / "app" / "user.rb").write_text("class User; end")
        evaluator = ConditionEvaluator(SignalProviders(file_root=tmp_path))

        assert evaluator.evaluate(check("app/user.rb", type="file_exists"), {})
        assert not evaluator.evaluate(check("app/post.rb", type="file_exists"), {})
        assert evaluator.evaluate(check("app/post.rb", type="file_exists", expected=False), {})

    def test_file_exists_uses_injected_check(self):
        seen = []

        def fake_exists(path: Path) -> bool:
            seen.append(path)
            return True

        evaluator = ConditionEvaluator(
            SignalProviders(file_root=Path("/project"), file_exists=fake_exists)
        )
        assert evaluator.evaluate(check("Gemfile", type="file_exists"), {})
        assert seen == [Path("/project/Gemfile")]

    def test_custom_predicate_receives_snapshot(self):
        signals = SignalProviders()
        signals.register_predicate("has_todo", lambda snap: "TODO" in snap.get("notes", ""))
        evaluator = ConditionEvaluator(signals)

        assert evaluator.evaluate(check("has_todo", type="custom"), {"notes": "TODO: tests"})
        assert not evaluator.evaluate(check("has_todo", type="custom"), {"notes": ""})

    def test_custom_predicate_missing_raises(self):
        with pytest.raises(InvalidConditionError, match="No predicate"):
            ConditionEvaluator().evaluate(check("nope", type="custom"), {})
