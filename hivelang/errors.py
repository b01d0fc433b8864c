from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Diagnostic:
    """A line-anchored compile message."""
    severity: str  # 'error' | 'warning'
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        if self.column is None:
            return f"line {self.line}: {self.message}"
        return f"line {self.line}:{self.column}: {self.message}"


class HiveLangError(Exception):
    pass

class LexError(HiveLangError):
    pass

class CompileError(HiveLangError):
    """Raised by load() when a program has parse or validation errors."""
    def __init__(self, diagnostics: List[Diagnostic]):
        self.diagnostics = list(diagnostics)
        errors = [str(d) for d in self.diagnostics if d.is_error]
        super().__init__("; ".join(errors) or "compilation failed")

class ParseError(CompileError):
    pass

class ValidationError(CompileError):
    pass

class ToolInvocationError(HiveLangError):
    """Raised inside the engine when a tool call fails; always turned into an observation."""
    def __init__(self, tool: str, message: str):
        super().__init__(f"Error executing {tool}: {message}")
        self.tool = tool

class EngineFatalError(HiveLangError):
    """Condition outside the ReAct loop's control, e.g. decision source unreachable."""
    pass

class RegistryError(HiveLangError):
    pass

class ConfigError(HiveLangError):
    pass

class ProviderError(HiveLangError):
    pass
