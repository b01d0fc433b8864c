from __future__ import annotations
import copy
from typing import List

from loguru import logger

from .ast import Assign, Call, Conditional, ProgramAST, Say, Statement
from .errors import HiveLangError
from .ir import (
    AssignPayload, BotInfo, BranchPayload, CompiledProgram, SayPayload, Step, StepType,
    ToolCallPayload,
)


class Lowering:
    """Lowers a ProgramAST into Steps, one per statement, in source order.

    Expressions are copied, not evaluated; they are bound at run time.
    """

    def __init__(self, program: ProgramAST):
        self.program = program

    def lower(self) -> CompiledProgram:
        p = self.program
        compiled = CompiledProgram(
            bot=BotInfo(p.bot_name, p.description, p.model, list(p.capabilities)),
        )
        for trigger in p.triggers:
            compiled.triggers[trigger.event] = self._block(trigger.statements)
        if p.triggers:
            compiled.steps = compiled.triggers[p.triggers[0].event]
        logger.debug("compiled bot {} into {} top-level steps", p.bot_name, len(compiled.steps))
        return compiled

    def _block(self, statements: List[Statement]) -> List[Step]:
        return [self._statement(stmt) for stmt in statements]

    def _statement(self, stmt: Statement) -> Step:
        if isinstance(stmt, Say):
            return Step(StepType.SAY, SayPayload(copy.deepcopy(stmt.text)), stmt.position)
        if isinstance(stmt, Call):
            payload = ToolCallPayload(stmt.tool, copy.deepcopy(stmt.args), stmt.binding, stmt.speak)
            return Step(StepType.TOOL_CALL, payload, stmt.position)
        if isinstance(stmt, Assign):
            return Step(StepType.ASSIGN, AssignPayload(stmt.name, copy.deepcopy(stmt.value)), stmt.position)
        if isinstance(stmt, Conditional):
            payload = BranchPayload(
                copy.deepcopy(stmt.condition),
                self._block(stmt.then_block),
                self._block(stmt.else_block or []),
            )
            return Step(StepType.BRANCH, payload, stmt.position)
        raise HiveLangError(f"cannot lower statement {type(stmt).__name__}")


def compile_program(program: ProgramAST) -> CompiledProgram:
    return Lowering(program).lower()
