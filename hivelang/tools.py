"""Tool descriptors, results and the registry the engine dispatches through."""

from __future__ import annotations
import inspect
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Type, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import RegistryError
from .memory import MemoryStore, SharedMemory


class ToolResult(BaseModel):
    """Shape every tool returns: {success, output, data?}."""
    success: bool
    output: str = Field(default="", description="Human-readable result text")
    data: Any = None

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, str):
            return v
        try:
            return json.dumps(v, default=str)
        except (TypeError, ValueError):
            return str(v)


class NoInput(BaseModel):
    model_config = ConfigDict(extra="allow")


@dataclass(frozen=True)
class RunMetadata:
    bot_id: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolContext:
    metadata: RunMetadata
    shared_memory: SharedMemory

    @classmethod
    def create(cls, bot_id: Optional[str] = None, run_id: Optional[str] = None,
               user_id: Optional[str] = None, store: Optional[MemoryStore] = None,
               **extra: Any) -> "ToolContext":
        meta = RunMetadata(bot_id=bot_id, run_id=run_id or uuid.uuid4().hex, user_id=user_id, extra=dict(extra))
        store = store if store is not None else MemoryStore()
        return cls(metadata=meta, shared_memory=store.scope(meta.run_id))


ToolRunner = Callable[[BaseModel, ToolContext], Awaitable[Union[ToolResult, Dict[str, Any], str]]]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    capability: str
    description: str
    input_schema: Type[BaseModel]
    run: ToolRunner
    requires_auth: Optional[str] = None
    deprecated: bool = False

    def required_fields(self) -> List[str]:
        return [n for n, f in self.input_schema.model_fields.items() if f.is_required()]

    def accepts_extra(self) -> bool:
        return self.input_schema.model_config.get("extra") == "allow"

    def spec(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema.model_json_schema(),
        }

    async def invoke(self, raw_input: Dict[str, Any], context: ToolContext) -> ToolResult:
        """Validate input against the schema, run the tool and normalise its result.

        Raises pydantic.ValidationError for bad input; whatever the tool raises propagates.
        """
        payload = self.input_schema.model_validate(raw_input or {})
        result = await self.run(payload, context)
        if isinstance(result, ToolResult):
            return result
        if isinstance(result, dict):
            return ToolResult.model_validate(result)
        return ToolResult(success=True, output=result)


def tool(name: str, *, capability: Optional[str] = None, description: Optional[str] = None,
         schema: Optional[Type[BaseModel]] = None, requires_auth: Optional[str] = None,
         deprecated: bool = False) -> Callable[[ToolRunner], ToolDescriptor]:
    """Decorator turning an async ``run(input, context)`` function into a ToolDescriptor."""
    def wrap(fn: ToolRunner) -> ToolDescriptor:
        if not inspect.iscoroutinefunction(fn):
            raise RegistryError(f"tool '{name}' must be an async function")
        return ToolDescriptor(
            name=name,
            capability=capability or name,
            description=description or inspect.getdoc(fn) or "",
            input_schema=schema or NoInput,
            run=fn,
            requires_auth=requires_auth,
            deprecated=deprecated,
        )
    return wrap


class ToolRegistry:
    """Name -> ToolDescriptor catalog. Populate, freeze, then share between runs."""

    def __init__(self, tools: Iterable[ToolDescriptor] = ()):
        self._by_name: Dict[str, ToolDescriptor] = {}
        self._by_capability: Dict[str, ToolDescriptor] = {}
        self._frozen = False
        for t in tools:
            self.register(t)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, descriptor: ToolDescriptor, replace: bool = False) -> None:
        if self._frozen:
            raise RegistryError(f"registry is frozen; cannot register '{descriptor.name}'")
        if descriptor.name in self._by_name and not replace:
            raise RegistryError(f"duplicate tool '{descriptor.name}'")
        self._by_name[descriptor.name] = descriptor
        self._by_capability.setdefault(descriptor.capability, descriptor)
        logger.debug("registered tool {} ({})", descriptor.name, descriptor.capability)

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    def get(self, name: str) -> Optional[ToolDescriptor]:
        """Exact name, then case-insensitive name, then capability tag."""
        found = self._by_name.get(name)
        if found is not None:
            return found
        lowered = name.lower()
        for key, descriptor in self._by_name.items():
            if key.lower() == lowered:
                return descriptor
        return self._by_capability.get(name)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(list(self._by_name.values()))

    def __len__(self) -> int:
        return len(self._by_name)

    def names(self) -> List[str]:
        return list(self._by_name)

    def capabilities(self) -> List[str]:
        return list(self._by_capability)

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """Frozen registry holding only the named tools; unknown names are skipped."""
        picked = ToolRegistry()
        for name in names:
            descriptor = self.get(name)
            if descriptor is None:
                logger.warning("requested tool '{}' is not registered", name)
                continue
            if descriptor.name not in picked._by_name:
                picked.register(descriptor)
        return picked.freeze()
