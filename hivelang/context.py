from __future__ import annotations
import dataclasses
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Sequence, Union

if TYPE_CHECKING:  # pragma: no cover
    from .compiler import CompiledProgram


class _Missing:
    """Sentinel for a path that resolved to nothing."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class MemoryAccessor(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> Any: ...

    def append(self, key: str, value: Any) -> Any: ...


MaybeAwaitable = Union[Any, Awaitable[Any]]
ToolInvoker = Callable[[str, Dict[str, Any], "RunContext"], MaybeAwaitable]
ConditionEvaluator = Callable[[str, "RunContext"], MaybeAwaitable]
CollectionResolver = Callable[[str, "RunContext"], MaybeAwaitable]
EventEmitter = Callable[[Dict[str, Any]], MaybeAwaitable]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def lookup_path(scope: Any, path: str) -> Any:
    current = scope
    for segment in path.strip().split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return MISSING
    return current


def assign_path(target: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at a dotted ``path``, creating intermediate dicts.

    A non-dict value sitting where an intermediate object is needed is
    replaced by a fresh dict.
    """
    segments = path.split(".")
    current = target
    for segment in segments[:-1]:
        nxt = current.get(segment)
        if not isinstance(nxt, dict):
            nxt = {}
            current[segment] = nxt
        current = nxt
    current[segments[-1]] = value


@dataclass
class RunContext:
    """Environment one program run evaluates against.

    ``locals`` and ``memory`` are handed to derived scopes by reference;
    loop iterations therefore write straight into the run's locals.
    Sub-agent invocations get their own copy of ``locals``. Loop variables
    live in ``bindings`` and win over same-named locals and input keys.
    """
    input: Any = field(default_factory=dict)
    locals: Dict[str, Any] = field(default_factory=dict)
    memory: Optional[MemoryAccessor] = None
    call_tool: Optional[ToolInvoker] = None
    evaluate: Optional[ConditionEvaluator] = None
    resolve_collection: Optional[CollectionResolver] = None
    emit: Optional[EventEmitter] = None
    agents: Sequence["CompiledProgram"] = ()
    bindings: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def scope(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = dict(self.input) if isinstance(self.input, Mapping) else {}
        merged.update(self.locals)
        merged.update(self.bindings)
        merged["input"] = self.input
        return merged

    def lookup(self, path: str) -> Any:
        return lookup_path(self.scope(), path)

    def derive(self, **changes: Any) -> "RunContext":
        return dataclasses.replace(self, **changes)

    def for_item(self, iterator: str, item: Any) -> "RunContext":
        base = dict(self.input) if isinstance(self.input, Mapping) else {}
        base[iterator] = item
        return self.derive(input=base, bindings={**self.bindings, iterator: item})

    def for_agent(self, program: "CompiledProgram", task: Any) -> "RunContext":
        return self.derive(input=task, locals=dict(self.locals), agents=tuple(program.agents), bindings={})
