"""Pydantic records crossing the engine boundary: trace entries, run results and requests.

JSON uses camelCase keys (``finalAnswer``, ``stepIndex``); Python code uses
the snake_case attribute names.
"""

from __future__ import annotations
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ActionRecord(_Record):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    tool: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ReActStep(_Record):
    """One Reasoning cycle of a run. Immutable once appended to the trace."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    step_index: int = Field(ge=0)
    thought: str = ""
    action: Optional[ActionRecord] = None
    observation: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class RunStatus(str, Enum):
    FINISHED = "finished"
    FAILED = "failed"
    MAX_STEPS_EXCEEDED = "max_steps_exceeded"


class RunResult(_Record):
    success: bool
    final_answer: str = ""
    steps: List[ReActStep] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    status: RunStatus = RunStatus.FINISHED
    output: List[str] = Field(default_factory=list, description="Lines said during the run")
    run_id: Optional[str] = None


class RunContext(_Record):
    bot_id: Optional[str] = None
    run_id: Optional[str] = None
    user_id: Optional[str] = None


class RunRequest(_Record):
    """Execution endpoint input: a free-form task or a HiveLang program to run."""
    message: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "request", "input"))
    tools: List[str] = Field(default_factory=list)
    context: RunContext = Field(default_factory=RunContext)
    max_steps: Optional[int] = Field(default=None, ge=1, validation_alias=AliasChoices("maxSteps", "max_steps"))
    system_prompt: Optional[str] = Field(default=None, validation_alias=AliasChoices("systemPrompt", "system_prompt"))
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    source: Optional[str] = Field(default=None, description="HiveLang program text")
    event: Optional[str] = None

    @field_validator("context", mode="before")
    @classmethod
    def default_context(cls, v: Any) -> Any:
        return {} if v is None else v
