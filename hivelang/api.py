"""Compile and execution entry points for a hosting application.

``check_source`` and ``compile_source`` return plain dicts and ``execute``
returns a :class:`RunResult`; none of them raise on bad programs or failing
tools. ``load`` is the raising variant for code that wants a CompiledProgram.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger

from .ai_providers import select_provider
from .ast import ProgramAST
from .config import Settings
from .decisions import DecisionSource, LLMDecisionSource
from .errors import CompileError, Diagnostic, ParseError, ProviderError, ValidationError
from .ir import CompiledProgram
from .lowering import compile_program
from .memory import InMemoryBackend, MemoryStore
from .parser import parse
from .persistence import FileMemoryBackend
from .runtime import ReActEngine
from .schemas import RunRequest, RunResult, RunStatus
from .semantic import ValidationResult, validate
from .tools import ToolContext, ToolDescriptor, ToolRegistry

Source = Union[str, Path]
Tools = Optional[Union[ToolRegistry, Iterable[ToolDescriptor]]]


def _analyze(source: Source, tools: Tools) -> Tuple[Optional[ProgramAST], ValidationResult]:
    parsed = parse(source)
    diagnostics: List[Diagnostic] = list(parsed.diagnostics)
    if parsed.program is not None:
        diagnostics.extend(validate(parsed.program, tools).diagnostics)
    return parsed.program, ValidationResult(diagnostics)


def diagnose(source: Source, tools: Tools = None) -> ValidationResult:
    """Parse errors followed by validation findings for the same source."""
    return _analyze(source, tools)[1]


def check_source(source: Source, tools: Tools = None) -> Dict[str, Any]:
    """{valid, errors, warnings}. Without ``tools`` only syntax and references are checked."""
    return diagnose(source, tools).to_dict()


def load(source: Source, tools: Tools = None) -> CompiledProgram:
    """Compile or raise ParseError / ValidationError (both CompileErrors) carrying every diagnostic."""
    parsed = parse(source)
    if not parsed.ok:
        raise ParseError(parsed.diagnostics)
    report = validate(parsed.program, tools)
    diagnostics = list(parsed.diagnostics) + report.diagnostics
    if not report.valid:
        raise ValidationError(diagnostics)
    for d in diagnostics:
        logger.warning("{}", d)
    return compile_program(parsed.program)


def compile_source(source: Source, tools: Tools = None) -> Dict[str, Any]:
    """{valid, errors, warnings, steps, summary}; steps is empty when invalid."""
    program, report = _analyze(source, tools)
    result = report.to_dict()
    if program is None or not report.valid:
        result.update(steps=[], summary=[])
        return result
    compiled = compile_program(program)
    result.update(steps=[s.to_dict() for s in compiled.steps], summary=compiled.summary())
    return result


def build_store(settings: Settings) -> MemoryStore:
    if settings.memory_backend == "file":
        return MemoryStore(FileMemoryBackend(settings.memory_path))
    return MemoryStore(InMemoryBackend())


def default_decision_source(settings: Settings) -> Optional[DecisionSource]:
    provider = select_provider(settings.ai_provider, settings.ai_model)
    if provider is None:
        return None
    return LLMDecisionSource(provider, temperature=settings.temperature)


async def execute(request: Union[RunRequest, Dict[str, Any]], registry: ToolRegistry, *,
                  decision_source: Optional[DecisionSource] = None, store: Optional[MemoryStore] = None,
                  settings: Optional[Settings] = None) -> RunResult:
    """Run a free-form task, or the HiveLang program in ``request.source``."""
    req = request if isinstance(request, RunRequest) else RunRequest.model_validate(request)
    settings = settings or Settings.from_env()
    store = store or build_store(settings)
    tools = registry.subset(req.tools) if req.tools else registry
    context = ToolContext.create(
        bot_id=req.context.bot_id,
        run_id=req.context.run_id,
        user_id=req.context.user_id,
        store=store,
        system_prompt=req.system_prompt,
    )
    run_id = context.metadata.run_id

    if req.source is not None:
        try:
            program = load(req.source, tools)
        except CompileError as e:
            return RunResult(success=False, status=RunStatus.FAILED, run_id=run_id,
                             final_answer="Program failed to compile",
                             errors=[str(d) for d in e.diagnostics if d.is_error])
        engine = ReActEngine(tools, settings=settings)
        return await engine.run_program(program, context, input=req.message or "", event=req.event,
                                        max_steps=req.max_steps)

    if not req.message:
        return RunResult(success=False, status=RunStatus.FAILED, run_id=run_id,
                         errors=["either 'message' or 'request' is required"])
    if decision_source is None:
        try:
            decision_source = default_decision_source(settings)
        except ProviderError as e:
            return RunResult(success=False, status=RunStatus.FAILED, run_id=run_id, errors=[str(e)])
        if decision_source is None:
            return RunResult(success=False, status=RunStatus.FAILED, run_id=run_id,
                             errors=["no AI provider configured (set OPENAI_API_KEY or ANTHROPIC_API_KEY)"])
    engine = ReActEngine(tools, decision_source, settings)
    return await engine.run(req.message, context, max_steps=req.max_steps,
                            system_prompt=req.system_prompt, temperature=req.temperature)
