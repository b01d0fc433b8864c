"""
ReAct engine tests: boundedness, failure resilience and memory side effects.
"""
import asyncio

import pytest

from hivelang.decisions import AssignAction, Decision, SayAction, ToolAction
from hivelang.errors import HiveLangError
from hivelang.runtime import MAX_STEPS_MESSAGE, ReActEngine
from hivelang.schemas import RunStatus
from hivelang.tools import ToolContext, ToolRegistry, ToolResult, tool

from conftest import LoopingSource, ScriptedSource


def run(engine, task="do it", context=None, **kwargs):
    return asyncio.run(engine.run(task, context, **kwargs))


class TestBoundedness:

    def test_max_steps_stops_after_exactly_n_cycles(self, registry, context, settings):
        source = LoopingSource()
        engine = ReActEngine(registry, source, settings)
        result = run(engine, context=context, max_steps=5)
        assert result.success is False
        assert result.status is RunStatus.MAX_STEPS_EXCEEDED
        assert source.calls == 5
        assert len(result.steps) == 5
        assert result.final_answer == MAX_STEPS_MESSAGE
        assert result.errors == ["MAX_STEPS_EXCEEDED: no final answer within 5 steps"]

    def test_default_max_steps_comes_from_settings(self, registry, context):
        from hivelang.config import Settings

        source = LoopingSource()
        engine = ReActEngine(registry, source, Settings(max_steps=3))
        result = run(engine, context=context)
        assert source.calls == 3
        assert len(result.steps) == 3

    @pytest.mark.parametrize("n", [1, 2, 7])
    def test_never_more_cycles_than_max_steps(self, registry, context, n):
        result = run(ReActEngine(registry, LoopingSource()), context=context, max_steps=n)
        assert len(result.steps) <= n
        assert [s.step_index for s in result.steps] == list(range(len(result.steps)))


class TestHappyPath:

    def test_tool_then_final_answer(self, registry, context):
        source = ScriptedSource([
            Decision("add them", ToolAction("math.add", {"a": 2, "b": 3})),
            Decision("I know", final_answer="5"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.success is True
        assert result.status is RunStatus.FINISHED
        assert result.final_answer == "5"
        assert len(result.steps) == 2
        first = result.steps[0]
        assert first.thought == "add them"
        assert first.action.tool == "math.add"
        assert first.action.input == {"a": 2, "b": 3}
        assert first.observation == "5"
        assert result.steps[1].action is None
        # the second decision saw the first observation
        assert source.requests[1].trace[0].observation == "5"

    def test_immediate_final_answer(self, registry, context):
        result = run(ReActEngine(registry, ScriptedSource([Decision("easy", final_answer="hi")])), context=context)
        assert result.success
        assert len(result.steps) == 1

    def test_result_and_binding_written_to_memory(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("math.add", {"a": 1, "b": 1}, binding="total")),
            Decision("", final_answer="ok"),
        ])
        run(ReActEngine(registry, source), context=context)
        memory = context.shared_memory
        stored = asyncio.run(memory.get("total"))
        assert stored["success"] is True
        assert stored["output"] == "2"
        assert stored["sum"] == 2
        assert asyncio.run(memory.get("result")) == stored

    def test_say_and_assign_actions(self, registry, context):
        source = ScriptedSource([
            Decision("", SayAction("hello")),
            Decision("", AssignAction("mood", "good")),
            Decision("", final_answer="done"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.output == ["hello"]
        assert result.steps[1].observation == "mood = good"
        assert asyncio.run(context.shared_memory.get("mood")) == "good"

    def test_speak_outputs_only_successful_results(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("echo", {"text": "spoken"}, speak=True)),
            Decision("", ToolAction("broken", {}, speak=True)),
            Decision("", final_answer="done"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.output == ["spoken"]

    def test_tools_argument_restricts_the_run(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("math.add", {"a": 1, "b": 2})),
            Decision("", final_answer="done"),
        ])
        result = run(ReActEngine(registry, source), context=context, tools=["echo"])
        assert result.steps[0].observation == "Tool 'math.add' not found. Available tools: echo"
        assert [t.name for t in source.requests[0].tools] == ["echo"]


class TestFailureResilience:

    def test_unknown_tool_is_an_observation(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("nope", {})),
            Decision("", final_answer="recovered"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.success is True
        assert result.steps[0].observation.startswith("Tool 'nope' not found. Available tools: echo, math.add")

    def test_raising_tool_does_not_abort_the_run(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("flaky", {})),
            Decision("", final_answer="fine anyway"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.success is True
        assert result.steps[0].observation == "Error executing flaky: boom"
        assert result.errors == []

    def test_failed_result_is_an_observation(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("broken", {})),
            Decision("", final_answer="ok"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.steps[0].observation == "Tool 'broken' failed: service unavailable"
        assert asyncio.run(context.shared_memory.get("result"))["success"] is False

    def test_invalid_input_is_an_observation(self, registry, context):
        source = ScriptedSource([
            Decision("", ToolAction("math.add", {"a": 1})),
            Decision("", final_answer="ok"),
        ])
        result = run(ReActEngine(registry, source), context=context)
        assert result.steps[0].observation.startswith("Invalid input for math.add: b:")

    def test_tool_timeout(self, registry, context, settings):
        source = ScriptedSource([
            Decision("", ToolAction("slow", {})),
            Decision("", final_answer="ok"),
        ])
        result = run(ReActEngine(registry, source, settings), context=context)
        assert result.success is True
        assert result.steps[0].observation == "Error executing slow: timed out after 0.2s"

    def test_auth_tool_needs_a_signed_in_user(self, store):
        @tool("mail.send", requires_auth="google")
        async def send(payload, ctx):
            return ToolResult(success=True, output="sent")

        tools = ToolRegistry([send]).freeze()

        def send_once(context):
            source = ScriptedSource([Decision("", ToolAction("mail.send", {})), Decision("", final_answer="ok")])
            return run(ReActEngine(tools, source), context=context)

        anonymous = send_once(ToolContext.create(run_id="anon", store=store))
        assert anonymous.success is True
        assert anonymous.steps[0].observation == (
            "Tool 'mail.send' requires google authentication; no user is signed in"
        )
        assert asyncio.run(store.scope("anon").get("result")) is None

        signed_in = send_once(ToolContext.create(run_id="user", user_id="u-1", store=store))
        assert signed_in.steps[0].observation == "sent"

    def test_decision_without_action_gets_format_reminder(self, registry, context):
        source = ScriptedSource([Decision("rambling"), Decision("", final_answer="ok")])
        result = run(ReActEngine(registry, source), context=context)
        assert result.success
        assert result.steps[0].observation.startswith("Invalid format.")


class TestEngineFatal:

    def test_decision_source_failure_ends_run(self, registry, context):
        class Unreachable(ScriptedSource):
            async def decide(self, request):
                raise ConnectionError("service down")

        result = run(ReActEngine(registry, Unreachable([])), context=context)
        assert result.success is False
        assert result.status is RunStatus.FAILED
        assert result.errors == ["decision source failed: service down"]
        assert result.final_answer.startswith("Run failed:")

    def test_fatal_is_distinct_from_max_steps(self, registry, context):
        class Unreachable(ScriptedSource):
            async def decide(self, request):
                raise ConnectionError("down")

        failed = run(ReActEngine(registry, Unreachable([])), context=context)
        exhausted = run(ReActEngine(registry, LoopingSource()), context=context, max_steps=1)
        assert failed.status is not exhausted.status

    def test_missing_decision_source_raises(self, registry, context):
        with pytest.raises(HiveLangError, match="no decision source"):
            run(ReActEngine(registry), context=context)


def test_result_serialises_with_camel_case(registry, context):
    source = ScriptedSource([Decision("t", ToolAction("echo", {"text": "x"})), Decision("", final_answer="x")])
    data = run(ReActEngine(registry, source), context=context).to_dict()
    assert data["success"] is True
    assert data["finalAnswer"] == "x"
    assert data["runId"] == "run-1"
    assert data["steps"][0]["stepIndex"] == 0
    assert data["steps"][0]["action"] == {"tool": "echo", "input": {"text": "x"}}
