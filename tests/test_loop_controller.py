"""
Tests for LoopController, driven through the Orchestrator.

Covers:
- max_iterations exhausted → FAILURE + loop_max_iterations
- Exit condition met on iteration 2 → SUCCESS
- Children run at most max_iterations times
- Timeout checked at the top of each iteration → TIMEOUT
- exit_on condition_false and manual_break
- Child failures do not abort an iteration
- Conditions nested in a loop see every iteration's writes
- Configuration errors fail fast
"""

import pytest

from reactree.errors import LoopConfigError
from reactree.graph.condition import ConditionDescriptor, ConditionEvaluator
from reactree.graph.condition_cache import ConditionCache
from reactree.graph.executors import FunctionExecutor, ScriptedExecutor
from reactree.graph.node import (
    ActionNode,
    ConditionalNode,
    ExecContext,
    LoopNode,
    ResultStatus,
)
from reactree.graph.orchestrator import Orchestrator
from reactree.schemas.state_event import EventType
from reactree.storage.memory_store import WorkingMemory
from reactree.storage.state_log import StateLog

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class SteppingClock:
    """Advances by ``step`` seconds every time it is read."""

    def __init__(self, step: float):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


def make_orchestrator(executor=None, loop_clock=None):
    memory = WorkingMemory()
    state_log = StateLog()
    cache = ConditionCache(ConditionEvaluator(), memory)
    kwargs = {"loop_clock": loop_clock} if loop_clock is not None else {}
    orchestrator = Orchestrator(executor or ScriptedExecutor(), state_log, cache, **kwargs)
    return orchestrator, ExecContext(memory=memory), state_log


STATUS_PASSING = ConditionDescriptor(key="status", expected="passing")


def fix_loop(*children, **fields):
    fields.setdefault("max_iterations", 3)
    fields.setdefault("condition", STATUS_PASSING)
    return LoopNode(id="fix_loop", children=children, **fields)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestLoopOutcomes:
    @pytest.mark.asyncio
    async def test_max_iterations_exhausted(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(ActionNode(id="run_tests", action="set", params={"status": "failing"}))

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.FAILURE
        assert state_log.count("fix_loop", EventType.LOOP_ITERATION) == 3
        assert state_log.count("fix_loop", EventType.LOOP_MAX_ITERATIONS) == 1
        assert state_log.count("fix_loop", EventType.LOOP_COMPLETE) == 0

    @pytest.mark.asyncio
    async def test_exit_on_second_iteration(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(
            ActionNode(
                id="run_tests", action="set_each", params={"status": ["failing", "passing"]}
            )
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.SUCCESS
        assert result.output["iterations"] == 2
        iterations = state_log.events("fix_loop", EventType.LOOP_ITERATION)
        assert [e.payload["condition_met"] for e in iterations] == [False, True]
        complete = state_log.latest("fix_loop", EventType.LOOP_COMPLETE)
        assert complete.payload["iterations"] == 2

    @pytest.mark.asyncio
    async def test_events_are_ordered_per_loop(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(ActionNode(id="run_tests", action="set", params={"status": "passing"}))

        await orchestrator.execute(loop, ctx)

        types = [e.event_type for e in state_log.events("fix_loop")]
        assert types == [
            EventType.NODE_START,
            EventType.LOOP_START,
            EventType.LOOP_ITERATION,
            EventType.LOOP_COMPLETE,
            EventType.NODE_COMPLETE,
        ]
        assert state_log.events("fix_loop", EventType.LOOP_START)[0].payload["max_iterations"] == 3


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


class TestTermination:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_iterations", [1, 2, 5])
    async def test_children_run_at_most_max_iterations(self, max_iterations):
        calls = []
        executor = FunctionExecutor({"work": lambda node, ctx: calls.append(node.id)})
        orchestrator, ctx, state_log = make_orchestrator(executor)
        loop = fix_loop(
            ActionNode(id="step_one", action="work"),
            ActionNode(id="step_two", action="work"),
            max_iterations=max_iterations,
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.FAILURE
        assert calls.count("step_one") == max_iterations
        assert calls.count("step_two") == max_iterations

    @pytest.mark.asyncio
    async def test_timeout_checked_at_top_of_iteration(self):
        orchestrator, ctx, state_log = make_orchestrator(loop_clock=SteppingClock(10))
        loop = fix_loop(
            ActionNode(id="slow", action="noop"),
            max_iterations=5,
            timeout_seconds=15,
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.TIMEOUT
        assert result.output["iterations"] == 1
        assert state_log.count("fix_loop", EventType.LOOP_TIMEOUT) == 1
        assert state_log.count("fix_loop", EventType.LOOP_MAX_ITERATIONS) == 0
        timeout = state_log.latest("fix_loop", EventType.LOOP_TIMEOUT)
        assert timeout.payload["condition"]["key"] == "status"

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self):
        memory = WorkingMemory()
        orchestrator = Orchestrator(
            ScriptedExecutor(),
            StateLog(),
            ConditionCache(ConditionEvaluator(), memory),
            default_loop_timeout_seconds=5,
            loop_clock=SteppingClock(10),
        )
        loop = fix_loop(ActionNode(id="slow", action="noop"), max_iterations=5)

        result = await orchestrator.execute(loop, ExecContext(memory=memory))

        assert result.status == ResultStatus.TIMEOUT
        assert result.output["iterations"] == 0


# ---------------------------------------------------------------------------
# Exit modes
# ---------------------------------------------------------------------------


class TestExitModes:
    @pytest.mark.asyncio
    async def test_condition_false(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(
            ActionNode(
                id="run_tests",
                action="set_each",
                params={"status": ["failing", "failing", "passing"]},
            ),
            condition=ConditionDescriptor(key="status", expected="failing"),
            exit_on="condition_false",
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.SUCCESS
        assert result.output["iterations"] == 3

    @pytest.mark.asyncio
    async def test_manual_break(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = LoopNode(
            id="poll",
            max_iterations=5,
            exit_on="manual_break",
            children=(
                ActionNode(id="check", action="set_each", params={"poll.break": [False, True]}),
            ),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.SUCCESS
        assert result.output["iterations"] == 2

    @pytest.mark.asyncio
    async def test_manual_break_custom_key(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = LoopNode(
            id="poll",
            max_iterations=5,
            exit_on="manual_break",
            break_key="stop_now",
            children=(ActionNode(id="check", action="set", params={"stop_now": True}),),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.success
        assert result.output["iterations"] == 1

    @pytest.mark.asyncio
    async def test_break_signal_from_before_the_loop_is_ignored(self):
        orchestrator, ctx, state_log = make_orchestrator()
        ctx.memory.write("poll.break", True)
        loop = LoopNode(
            id="poll",
            max_iterations=3,
            exit_on="manual_break",
            children=(ActionNode(id="check", action="noop"),),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.FAILURE
        assert result.output["iterations"] == 3

    @pytest.mark.asyncio
    async def test_re_entered_loop_needs_a_new_break_signal(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = LoopNode(
            id="poll",
            max_iterations=3,
            exit_on="manual_break",
            children=(
                ActionNode(id="check", action="set_each", params={"poll.break": [False, True]}),
            ),
        )

        first = await orchestrator.execute(loop, ctx)
        quiet = loop.model_copy(
            update={"children": (ActionNode(id="check", action="noop"),), "max_iterations": 2}
        )
        second = await orchestrator.execute(quiet, ctx)

        assert first.output["iterations"] == 2
        assert ctx.memory.get("poll.break") is True
        assert second.status == ResultStatus.FAILURE
        assert second.output["iterations"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signal", ["false", "no", 0, False])
    async def test_falsy_break_values(self, signal):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = LoopNode(
            id="poll",
            max_iterations=2,
            exit_on="manual_break",
            children=(ActionNode(id="check", action="set", params={"poll.break": signal}),),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.FAILURE
        assert result.output["iterations"] == 2

    @pytest.mark.asyncio
    async def test_failing_child_does_not_abort_iteration(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(
            ActionNode(id="broken", action="fail"),
            ActionNode(id="run_tests", action="set", params={"status": "passing"}),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.SUCCESS
        iteration = state_log.latest("fix_loop", EventType.LOOP_ITERATION)
        assert iteration.payload["failed_children"] == ["broken"]


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class TestLoopConfiguration:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields, message",
        [
            ({"max_iterations": None}, "max_iterations is required"),
            ({"max_iterations": 0}, "must be positive"),
            ({"max_iterations": -2}, "must be positive"),
            ({"timeout_seconds": 0}, "timeout_seconds must be positive"),
            ({"condition": None}, "needs a condition"),
        ],
    )
    async def test_bad_budget_fails_fast(self, fields, message):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = fix_loop(ActionNode(id="run_tests", action="noop"), **fields)

        with pytest.raises(LoopConfigError, match=message):
            await orchestrator.execute(loop, ctx)

        assert state_log.count("run_tests") == 0
        assert state_log.count("fix_loop", EventType.LOOP_START) == 0


# ---------------------------------------------------------------------------
# Conditions inside loop bodies
# ---------------------------------------------------------------------------


class TestNestedConditions:
    @pytest.mark.asyncio
    async def test_conditional_sees_each_iteration(self):
        orchestrator, ctx, state_log = make_orchestrator()
        loop = LoopNode(
            id="fix_loop",
            max_iterations=3,
            condition=ConditionDescriptor(key="done", expected="yes"),
            children=(
                ActionNode(
                    id="run_tests", action="set_each", params={"status": ["failing", "passing"]}
                ),
                ConditionalNode(
                    id="route",
                    condition=STATUS_PASSING,
                    true_branch=ActionNode(id="finish", action="set", params={"done": "yes"}),
                    false_branch=ActionNode(id="fix", action="noop"),
                ),
            ),
        )

        result = await orchestrator.execute(loop, ctx)

        assert result.status == ResultStatus.SUCCESS
        assert result.output["iterations"] == 2
        evals = state_log.events("route", EventType.CONDITIONAL_EVAL)
        assert [e.payload["branch"] for e in evals] == ["fix", "finish"]
        sites = {entry.node_id for entry in orchestrator.condition_cache.records()}
        assert sites == {"fix_loop#1/route", "fix_loop#2/route", "fix_loop#1", "fix_loop#2"}

    @pytest.mark.asyncio
    async def test_inner_loop_re_evaluates_in_each_outer_iteration(self):
        orchestrator, ctx, state_log = make_orchestrator()
        inner = LoopNode(
            id="inner",
            max_iterations=3,
            condition=STATUS_PASSING,
            children=(
                ActionNode(
                    id="run_tests",
                    action="set_each",
                    params={"status": ["passing", "failing", "passing"]},
                ),
            ),
        )
        outer = LoopNode(
            id="outer",
            max_iterations=2,
            condition=ConditionDescriptor(key="outer_done", expected=True),
            children=(
                inner,
                ActionNode(id="mark", action="set_each", params={"outer_done": [False, True]}),
            ),
        )

        result = await orchestrator.execute(outer, ctx)

        assert result.success
        completed = state_log.events("inner", EventType.LOOP_COMPLETE)
        assert [e.payload["iterations"] for e in completed] == [1, 2]
