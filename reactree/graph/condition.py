"""
Condition Protocol - Boolean checks that steer LOOP and CONDITIONAL nodes.

A ConditionDescriptor is an immutable value: ``{type, key, operator,
expected}``. The ConditionEvaluator maps a descriptor plus a snapshot of
working memory to a boolean; it only implements comparison logic. Raw
signals other than memory (test status, file existence, custom
predicates) come from injected SignalProviders.

Condition types:
- memory_check: compare ``snapshot[key]``
- test_result: compare the status reported by the test-result feed for ``key``
- file_exists: compare whether the path ``key`` exists
- custom: compare the value returned by the predicate registered as ``key``

Comparison tries numbers first (both sides must parse), then falls back to
string comparison. Unknown types or operators raise InvalidConditionError,
never a silent False.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from reactree.errors import InvalidConditionError
from reactree.testing.test_result import TestResult

logger = logging.getLogger(__name__)


class ConditionType(StrEnum):
    MEMORY_CHECK = "memory_check"
    TEST_RESULT = "test_result"
    FILE_EXISTS = "file_exists"
    CUSTOM = "custom"


class Operator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    MATCHES_REGEX = "matches_regex"


# Value compared against when a descriptor leaves ``expected`` unset.
DEFAULT_EXPECTED: dict[ConditionType, Any] = {
    ConditionType.MEMORY_CHECK: None,
    ConditionType.TEST_RESULT: "passed",
    ConditionType.FILE_EXISTS: True,
    ConditionType.CUSTOM: True,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class ConditionDescriptor(BaseModel):
    """
    Immutable description of a check.

    ``type`` and ``operator`` are kept as plain strings so that a document
    naming an unknown kind still loads; the evaluator rejects it when the
    condition is actually used. CamelCase spellings ("MemoryCheck",
    "greaterThan") are normalised to the snake_case names on construction.

    Examples:
        ConditionDescriptor(type="memory_check", key="status", expected="passing")
        ConditionDescriptor(type="test_result", key="spec/models", operator="equals")
        ConditionDescriptor(type="memory_check", key="coverage",
                            operator="greater_than", expected=85)
    """

    type: str = ConditionType.MEMORY_CHECK
    key: str
    operator: str = Operator.EQUALS
    expected: Any = None

    model_config = {"frozen": True}

    @field_validator("type", "operator", mode="before")
    @classmethod
    def _snake_case(cls, value: Any) -> Any:
        # "MemoryCheck" and "notEquals" name the same kinds as "memory_check" and "not_equals"
        if isinstance(value, str):
            return _CAMEL_BOUNDARY.sub("_", value.strip()).lower()
        return value

    def fingerprint(self) -> str:
        """Stable structural identity, used as the cache's condition key."""
        expected = json.dumps(self.expected, sort_keys=True, default=str)
        return f"{self.type}:{self.key}:{self.operator}:{expected}"

    def describe(self) -> str:
        expected = "" if self.expected is None else f" {self.expected!r}"
        return f"{self.type}({self.key}) {self.operator}{expected}"


@dataclass
class SignalProviders:
    """External collaborators that produce raw signals for non-memory conditions."""

    # key → TestResult | bool | "passed"/"failed" | None (no result yet)
    test_results: Callable[[str], Any] | Mapping[str, Any] | None = None
    file_root: Path | None = None
    file_exists: Callable[[Path], bool] | None = None
    predicates: dict[str, Callable[[Mapping[str, Any]], Any]] = field(default_factory=dict)

    def register_predicate(self, name: str, func: Callable[[Mapping[str, Any]], Any]) -> None:
        self.predicates[name] = func


class ConditionEvaluator:
    """Maps a ConditionDescriptor and a memory snapshot to a boolean."""

    def __init__(self, signals: SignalProviders | None = None) -> None:
        self.signals = signals or SignalProviders()

    def evaluate(self, cond: ConditionDescriptor, snapshot: Mapping[str, Any]) -> bool:
        ctype = _parse_enum(ConditionType, cond.type, "type", cond)
        operator = _parse_enum(Operator, cond.operator, "operator", cond)
        actual = self._read_signal(ctype, cond, snapshot)
        expected = cond.expected if cond.expected is not None else DEFAULT_EXPECTED[ctype]
        outcome = compare(actual, operator, expected, cond)
        logger.debug("condition %s → %s (actual=%r)", cond.describe(), outcome, actual)
        return outcome

    def _read_signal(
        self,
        ctype: ConditionType,
        cond: ConditionDescriptor,
        snapshot: Mapping[str, Any],
    ) -> Any:
        if ctype == ConditionType.MEMORY_CHECK:
            return lookup(snapshot, cond.key)

        if ctype == ConditionType.TEST_RESULT:
            feed = self.signals.test_results
            if feed is None:
                raise InvalidConditionError(
                    f"No test-result feed configured for condition {cond.describe()}", cond
                )
            raw = feed.get(cond.key) if isinstance(feed, Mapping) else feed(cond.key)
            return _normalise_test_status(raw)

        if ctype == ConditionType.FILE_EXISTS:
            path = Path(cond.key)
            if not path.is_absolute() and self.signals.file_root is not None:
                path = self.signals.file_root / path
            check = self.signals.file_exists or Path.exists
            return bool(check(path))

        if ctype == ConditionType.CUSTOM:
            predicate = self.signals.predicates.get(cond.key)
            if predicate is None:
                raise InvalidConditionError(
                    f"No predicate registered under '{cond.key}'", cond
                )
            return predicate(snapshot)

        raise InvalidConditionError(f"Unhandled condition type: {ctype}", cond)


# ---------------------------------------------------------------------------
# Comparison helpers
# ---------------------------------------------------------------------------

_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}


def compare(
    actual: Any,
    operator: Operator,
    expected: Any,
    cond: ConditionDescriptor | None = None,
) -> bool:
    """Apply ``operator`` to ``actual`` and ``expected``."""
    if operator == Operator.EQUALS:
        return _equals(actual, expected)
    if operator == Operator.NOT_EQUALS:
        return not _equals(actual, expected)
    if operator == Operator.CONTAINS:
        return _contains(actual, expected)
    if operator == Operator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if operator == Operator.GREATER_THAN:
        return _ordered(actual, expected, greater=True)
    if operator == Operator.LESS_THAN:
        return _ordered(actual, expected, greater=False)
    if operator == Operator.MATCHES_REGEX:
        if actual is None:
            return False
        try:
            return re.search(str(expected), _as_text(actual)) is not None
        except re.error as e:
            raise InvalidConditionError(f"Invalid regex {expected!r}: {e}", cond) from e
    raise InvalidConditionError(f"Unknown operator: {operator}", cond)


def lookup(snapshot: Mapping[str, Any], key: str) -> Any:
    """Read ``key`` from the snapshot, following dots into nested mappings."""
    if key in snapshot:
        return snapshot[key]
    current: Any = snapshot
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _parse_enum(enum_cls: type[StrEnum], value: str, what: str, cond: ConditionDescriptor):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidConditionError(
            f"Unknown condition {what} '{value}' in {cond.describe()}", cond
        ) from None


def _normalise_test_status(raw: Any) -> Any:
    if isinstance(raw, TestResult):
        return raw.status
    if isinstance(raw, bool):
        return "passed" if raw else "failed"
    if isinstance(raw, str):
        return raw.strip().lower()
    return raw


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def to_bool(value: Any) -> bool | None:
    """Parse booleans, numbers and yes/no words; None when it is none of those."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _equals(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return actual is None and expected is None
    if isinstance(actual, bool) or isinstance(expected, bool):
        a, b = to_bool(actual), to_bool(expected)
        if a is not None and b is not None:
            return a == b
    a_num, b_num = _to_number(actual), _to_number(expected)
    if a_num is not None and b_num is not None:
        return a_num == b_num
    return _as_text(actual) == _as_text(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, Mapping):
        return str(expected) in {str(k) for k in actual}
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_equals(item, expected) for item in actual)
    return str(expected) in _as_text(actual)


def _ordered(actual: Any, expected: Any, *, greater: bool) -> bool:
    if actual is None or expected is None:
        return False
    a_num, b_num = _to_number(actual), _to_number(expected)
    if a_num is not None and b_num is not None:
        return a_num > b_num if greater else a_num < b_num
    a_text, b_text = _as_text(actual), _as_text(expected)
    return a_text > b_text if greater else a_text < b_text
