from __future__ import annotations
import os
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

ENV_PREFIX = "HIVELANG_"


class Settings(BaseModel):
    """Runtime knobs. Built explicitly and passed to the engine."""
    max_steps: int = Field(default=5, ge=1, description="Reasoning cycles for free-form runs")
    program_max_steps: int = Field(default=50, ge=1, description="Reasoning cycles for compiled programs")
    step_timeout_s: float = Field(default=30.0, gt=0, description="Per tool invocation timeout")
    ai_provider: str = Field(default="auto", description="auto | openai | anthropic")
    ai_model: Optional[str] = Field(default=None, description="Model override; providers fall back to their own default")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    memory_backend: str = Field(default="memory", description="memory | file")
    memory_path: str = ".hivelang/memory"
    log_level: str = "INFO"
    trace: bool = False

    @field_validator("ai_provider", "memory_backend", "log_level", mode="before")
    @classmethod
    def normalise(cls, v: Any) -> str:
        return str(v).strip()

    @field_validator("ai_provider")
    @classmethod
    def known_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("auto", "openai", "anthropic"):
            raise ValueError(f"unknown provider '{v}'")
        return v

    @field_validator("memory_backend")
    @classmethod
    def known_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "file"):
            raise ValueError(f"unknown memory backend '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None, **overrides: Any) -> "Settings":
        """Read HIVELANG_* variables; explicit keyword overrides win."""
        source = os.environ if env is None else env
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = source.get(ENV_PREFIX + name.upper())
            if raw is None and name == "step_timeout_s":
                raw = source.get(ENV_PREFIX + "STEP_TIMEOUT")
            if raw is not None and raw != "":
                values[name] = _parse_bool(raw) if name == "trace" else raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            bad = ", ".join(ENV_PREFIX + str(err["loc"][0]).upper() for err in e.errors() if err.get("loc"))
            raise ConfigError(f"invalid configuration ({bad}): {e}") from e


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")
