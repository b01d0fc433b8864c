from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .decisions import (
    AssignAction, Decision, DecisionRequest, DecisionSource, FORMAT_REMINDER, SayAction, ToolAction,
)
from .errors import EngineFatalError, HiveLangError, ToolInvocationError
from .ir import CompiledProgram
from .program import ProgramPolicy, stringify
from .schemas import ActionRecord, ReActStep, RunResult, RunStatus
from .tools import ToolContext, ToolRegistry, ToolResult

tracer = trace.get_tracer("hivelang.runtime")

RESULT_KEY = "result"
MAX_STEPS_MESSAGE = "Task incomplete: Maximum steps reached without final answer."


class Phase(str, Enum):
    START = "start"
    REASONING = "reasoning"
    ACTING = "acting"
    OBSERVING = "observing"
    FINISHED = "finished"
    FAILED = "failed"
    MAX_STEPS_EXCEEDED = "max_steps_exceeded"


@dataclass
class _Run:
    """Mutable state of one run; owned by a single ReActEngine.run call."""
    task: str
    context: ToolContext
    tools: ToolRegistry
    source: DecisionSource
    max_steps: int
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    phase: Phase = Phase.START
    cycles: int = 0
    trace: List[ReActStep] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    decision: Optional[Decision] = None
    observation: Optional[str] = None
    value: Any = None
    final_answer: str = ""


def _binding_value(result: ToolResult) -> Any:
    """Tool result as stored in memory; dict ``data`` fields are lifted to the top level."""
    value: Dict[str, Any] = result.model_dump()
    if isinstance(result.data, dict):
        value.update(result.data)
    return value


class ReActEngine:
    """Bounded reason / act / observe loop.

    Phases run strictly in sequence; the only awaits that touch the outside
    world are the decision source (Reasoning) and tool calls (Acting), and
    shared memory is written only while Observing.
    """

    def __init__(self, registry: ToolRegistry, decision_source: Optional[DecisionSource] = None,
                 settings: Optional[Settings] = None):
        self.registry = registry
        self.decision_source = decision_source
        self.settings = settings or Settings()

    # ----- entry points -----

    async def run(self, task: str, context: ToolContext, *, tools: Optional[Sequence[str]] = None,
                  max_steps: Optional[int] = None, decision_source: Optional[DecisionSource] = None,
                  system_prompt: Optional[str] = None, temperature: Optional[float] = None) -> RunResult:
        """Free-form run: a decision source chooses tools until it gives a final answer."""
        source = decision_source or self.decision_source
        if source is None:
            raise HiveLangError("no decision source configured")
        state = _Run(
            task=task,
            context=context,
            tools=self.registry.subset(tools) if tools else self.registry,
            source=source,
            max_steps=max_steps or self.settings.max_steps,
            system_prompt=system_prompt,
            temperature=temperature if temperature is not None else self.settings.temperature,
        )
        return await self._drive(state)

    async def run_program(self, program: CompiledProgram, context: ToolContext, *, input: str = "",
                          event: Optional[str] = None, max_steps: Optional[int] = None) -> RunResult:
        """Execute a compiled program's trigger, one cycle per step."""
        steps = program.for_event(event)
        if steps is None:
            return RunResult(success=False, status=RunStatus.FAILED, run_id=context.metadata.run_id,
                             errors=[f"bot has no trigger for event '{event}'"])
        state = _Run(
            task=input,
            context=context,
            tools=self.registry,
            source=ProgramPolicy(steps),
            max_steps=max_steps or self.settings.program_max_steps,
        )
        return await self._drive(state)

    # ----- state machine -----

    async def _drive(self, state: _Run) -> RunResult:
        meta = state.context.metadata
        log = logger.bind(run_id=meta.run_id, bot_id=meta.bot_id)
        with tracer.start_as_current_span("hivelang.run") as span:
            span.set_attribute("hivelang.run_id", meta.run_id)
            span.set_attribute("hivelang.max_steps", state.max_steps)
            while state.phase not in (Phase.FINISHED, Phase.FAILED, Phase.MAX_STEPS_EXCEEDED):
                if state.phase is Phase.START:
                    log.info("run started ({} tools, max {} steps)", len(state.tools), state.max_steps)
                    state.phase = Phase.REASONING
                elif state.phase is Phase.REASONING:
                    await self._reason(state, log)
                elif state.phase is Phase.ACTING:
                    await self._act(state, log)
                elif state.phase is Phase.OBSERVING:
                    await self._observe(state)
            span.set_attribute("hivelang.cycles", state.cycles)
            span.set_attribute("hivelang.status", state.phase.value)

        if state.phase is Phase.MAX_STEPS_EXCEEDED:
            log.warning("run stopped after {} cycles without a final answer", state.cycles)
            state.errors.append(f"MAX_STEPS_EXCEEDED: no final answer within {state.max_steps} steps")
            state.final_answer = MAX_STEPS_MESSAGE
        elif state.phase is Phase.FINISHED:
            log.info("run finished after {} cycles", state.cycles)

        return RunResult(
            success=state.phase is Phase.FINISHED,
            final_answer=state.final_answer,
            steps=list(state.trace),
            errors=list(state.errors),
            status=RunStatus(state.phase.value),
            output=list(state.outputs),
            run_id=meta.run_id,
        )

    async def _reason(self, state: _Run, log) -> None:
        if state.cycles >= state.max_steps:
            state.phase = Phase.MAX_STEPS_EXCEEDED
            return
        state.cycles += 1
        request = DecisionRequest(
            task=state.task,
            tools=tuple(state.tools),
            trace=tuple(state.trace),
            context=state.context,
            outputs=tuple(state.outputs),
            system_prompt=state.system_prompt,
            temperature=state.temperature,
        )
        try:
            decision = await state.source.decide(request)
        except Exception as exc:
            fatal = exc if isinstance(exc, EngineFatalError) else EngineFatalError(f"decision source failed: {exc}")
            log.error("{}", fatal)
            state.errors.append(str(fatal))
            state.final_answer = f"Run failed: {fatal}"
            state.phase = Phase.FAILED
            return

        if decision.final_answer is not None:
            state.trace.append(ReActStep(step_index=len(state.trace), thought=decision.thought))
            state.final_answer = decision.final_answer
            state.phase = Phase.FINISHED
        elif decision.action is None:
            # nothing to do this cycle; tell the source how to answer next time
            state.decision = decision
            state.observation = FORMAT_REMINDER
            state.value = None
            state.phase = Phase.OBSERVING
        else:
            state.decision = decision
            state.phase = Phase.ACTING

    async def _act(self, state: _Run, log) -> None:
        action = state.decision.action
        state.value = None
        if isinstance(action, SayAction):
            state.observation = action.text
        elif isinstance(action, AssignAction):
            state.observation = f"{action.name} = {stringify(action.value)}"
            state.value = action.value
        elif isinstance(action, ToolAction):
            state.observation, state.value = await self._invoke(state, action, log)
        state.phase = Phase.OBSERVING

    async def _invoke(self, state: _Run, action: ToolAction, log):
        descriptor = state.tools.get(action.tool)
        if descriptor is None:
            available = ", ".join(state.tools.names()) or "none"
            log.warning("decision chose unknown tool {}", action.tool)
            return f"Tool '{action.tool}' not found. Available tools: {available}", None
        if descriptor.requires_auth and not state.context.metadata.user_id:
            log.warning("tool {} needs {} auth but the run has no user", descriptor.name, descriptor.requires_auth)
            return f"Tool '{descriptor.name}' requires {descriptor.requires_auth} authentication; no user is signed in", None

        with tracer.start_as_current_span(f"hivelang.tool:{descriptor.name}") as span:
            span.set_attribute("hivelang.step", state.cycles)
            try:
                result = await asyncio.wait_for(
                    descriptor.invoke(action.input, state.context), timeout=self.settings.step_timeout_s,
                )
            except PydanticValidationError as exc:
                message = "; ".join(f"{'.'.join(str(p) for p in e['loc']) or 'input'}: {e['msg']}" for e in exc.errors())
                return f"Invalid input for {descriptor.name}: {message}", None
            except asyncio.TimeoutError:
                error = ToolInvocationError(descriptor.name, f"timed out after {self.settings.step_timeout_s}s")
                log.warning("{}", error)
                return str(error), None
            except Exception as exc:
                error = ToolInvocationError(descriptor.name, str(exc) or type(exc).__name__)
                log.warning("{}", error)
                return str(error), None
            span.set_attribute("hivelang.tool.success", result.success)

        if not result.success:
            return f"Tool '{descriptor.name}' failed: {result.output}", _binding_value(result)
        observation = result.output or json.dumps(result.model_dump(), default=str)
        return observation, _binding_value(result)

    async def _observe(self, state: _Run) -> None:
        decision = state.decision
        action = decision.action
        memory = state.context.shared_memory
        record = None

        if isinstance(action, ToolAction):
            record = ActionRecord(tool=action.tool, input=action.input)
            if state.value is not None:
                await memory.set(RESULT_KEY, state.value)
                if action.binding:
                    await memory.set(action.binding, state.value)
                if action.speak and state.value.get("success"):
                    state.outputs.append(state.observation)
        elif isinstance(action, SayAction):
            state.outputs.append(action.text)
        elif isinstance(action, AssignAction):
            await memory.set(action.name, action.value)

        state.trace.append(ReActStep(
            step_index=len(state.trace),
            thought=decision.thought,
            action=record,
            observation=state.observation,
        ))
        state.decision = None
        state.phase = Phase.REASONING
