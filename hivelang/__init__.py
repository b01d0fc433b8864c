"""HiveLang: a small bot-definition language, its compiler and a ReAct runtime."""

from .api import check_source, compile_source, diagnose, execute, load
from .config import Settings
from .errors import CompileError, Diagnostic, HiveLangError
from .lexer import Token, TokenKind, tokenize
from .lowering import compile_program
from .memory import MemoryStore, SharedMemory
from .parser import ParseResult, parse
from .runtime import ReActEngine
from .schemas import ReActStep, RunRequest, RunResult, RunStatus
from .semantic import ValidationResult, validate
from .tools import ToolContext, ToolDescriptor, ToolRegistry, ToolResult, tool

__version__ = "0.1.0"
