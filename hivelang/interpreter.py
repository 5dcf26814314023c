"""Tree-walking interpreter for compiled HiveLang programs.

Steps run one after another, depth first into ``if``/``loop`` bodies.
Nothing a step does makes the interpreter raise: missing values render as
empty strings, unwired tools leave a gap in the transcript, and failing
conditions count as false. Exceptions raised by a tool dispatcher or a
memory accessor are theirs and propagate unchanged.
"""
from __future__ import annotations
import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from opentelemetry import trace

from .compiler import CompiledProgram
from .context import MISSING, RunContext, assign_path, lookup_path, maybe_await
from .memory import InMemoryStore
from .parser import IDENTIFIER_PATH, KEYWORD_LITERALS, NUMBER, unquote
from .types import EntryType, StepType

_tracer = trace.get_tracer(__name__)

TEMPLATE = re.compile(r"\{([^{}]+)\}")


def render_value(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def interpolate(template: str, scope: Mapping[str, Any]) -> str:
    """Replace ``{path.to.value}`` placeholders; unknown paths become ``""``."""
    return TEMPLATE.sub(lambda m: render_value(lookup_path(scope, m.group(1).strip())), template)


def resolve_argument(raw: Any, ctx: RunContext) -> Any:
    if not isinstance(raw, str):
        return raw
    raw = raw.strip()
    text = unquote(raw)
    if text is not None:
        return interpolate(text, ctx.scope())
    if NUMBER.match(raw):
        return float(raw) if "." in raw else int(raw)
    if raw.lower() in KEYWORD_LITERALS:
        return KEYWORD_LITERALS[raw.lower()]
    if raw[:1] in ("[", "{"):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    if IDENTIFIER_PATH.match(raw):
        value = ctx.lookup(raw)
        # an identifier that names nothing is taken literally
        return raw if value is MISSING else value
    return raw


@dataclass
class RunResult:
    transcript: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def says(self) -> List[str]:
        return [entry["payload"] for entry in self.transcript if entry.get("type") == EntryType.Say]

    @property
    def output(self) -> str:
        return "\n".join(self.says)


class StepInterpreter:
    async def run(self, program: CompiledProgram, context: Optional[RunContext] = None) -> RunResult:
        ctx = context if context is not None else RunContext()
        if ctx.memory is None:
            ctx = ctx.derive(memory=InMemoryStore())
        if not ctx.agents and program.agents:
            ctx = ctx.derive(agents=tuple(program.agents))
        transcript: List[Dict[str, Any]] = []
        logger.debug("[interpreter] run '{}' ({} instructions)", program.name, len(program.instructions))
        with _tracer.start_as_current_span(f"bot:{program.name or 'anonymous'}"):
            await self.execute(program.instructions, ctx, transcript)
        logger.debug("[interpreter] '{}' finished with {} transcript entries", program.name, len(transcript))
        return RunResult(transcript)

    async def execute(self, steps: Sequence[Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        for step in steps:
            kind = step.get("type") if isinstance(step, Mapping) else None
            match kind:
                case StepType.Say:
                    await self._say(step, ctx, transcript)
                case StepType.Tools:
                    for name in step.get("tools", []):
                        await self._invoke(name, {}, ctx, transcript)
                case StepType.Call:
                    args = {k: resolve_argument(v, ctx) for k, v in (step.get("args") or {}).items()}
                    await self._invoke(step.get("tool", ""), args, ctx, transcript)
                case StepType.Memory:
                    await self._memory(step, ctx, transcript)
                case StepType.Remember:
                    await self._remember(step, ctx, transcript)
                case StepType.Set:
                    self._set(step, ctx, transcript)
                case StepType.If:
                    allow = await self._evaluate(step.get("condition", ""), ctx)
                    branch = step.get("then", []) if allow else step.get("else") or []
                    await self.execute(branch, ctx, transcript)
                case StepType.Loop:
                    collection = await self._resolve_collection(step.get("source", ""), ctx)
                    iterator = step.get("iterator") or "item"
                    for item in collection:
                        await self.execute(step.get("steps", []), ctx.for_item(iterator, item), transcript)
                case _:
                    logger.debug("[interpreter] skipping unknown step {}", step)
                    await self._emit(ctx, {"type": "noop", "step": step})

    # ---------- Step handlers ----------
    async def _say(self, step: Mapping[str, Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        rendered = interpolate(step.get("payload", ""), ctx.scope())
        entry = {"type": EntryType.Say.value, "payload": rendered}
        transcript.append(entry)
        await self._emit(ctx, dict(entry))

    async def _invoke(self, name: str, args: Dict[str, Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        if ctx.call_tool is None:
            logger.debug("[interpreter] no dispatcher wired; '{}' skipped", name)
            return
        result = await maybe_await(ctx.call_tool(name, args, ctx))
        transcript.append({"type": EntryType.Tool.value, "tool": name, "result": result, "args": args})

    async def _memory(self, step: Mapping[str, Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        for key in step.get("keys", []):
            value = await maybe_await(ctx.memory.get(key)) if ctx.memory is not None else None
            transcript.append({"type": EntryType.Memory.value, "key": key, "value": value})

    async def _remember(self, step: Mapping[str, Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        if ctx.memory is None or not hasattr(ctx.memory, "append"):
            return
        key = step.get("key", "")
        value = interpolate(step.get("value", ""), ctx.scope())
        await maybe_await(ctx.memory.append(key, value))
        transcript.append({"type": EntryType.MemoryAppend.value, "key": key, "value": value})

    def _set(self, step: Mapping[str, Any], ctx: RunContext, transcript: List[Dict[str, Any]]) -> None:
        key = step.get("key")
        if not key:
            return
        if step.get("mode") == "reference":
            value = ctx.lookup(str(step.get("value", "")))
            value = None if value is MISSING else value
        else:
            value = copy.deepcopy(step.get("value"))
        assign_path(ctx.locals, key, value)
        transcript.append({"type": EntryType.Set.value, "key": key, "value": value})

    async def _evaluate(self, condition: str, ctx: RunContext) -> bool:
        if ctx.evaluate is None:
            return False
        try:
            return bool(await maybe_await(ctx.evaluate(condition, ctx)))
        except Exception as e:
            logger.warning("[interpreter] condition '{}' failed, treated as false: {}", condition, e)
            return False

    async def _resolve_collection(self, source: str, ctx: RunContext) -> List[Any]:
        if not source:
            return []
        value = ctx.lookup(source)
        try:
            if not isinstance(value, (list, tuple)):
                if ctx.resolve_collection is not None:
                    value = await maybe_await(ctx.resolve_collection(source, ctx))
                elif ctx.memory is not None:
                    value = await maybe_await(ctx.memory.get(source))
        except Exception as e:
            logger.warning("[interpreter] collection '{}' could not be resolved: {}", source, e)
            return []
        return list(value) if isinstance(value, (list, tuple)) else []

    async def _emit(self, ctx: RunContext, event: Dict[str, Any]) -> None:
        if ctx.emit is None:
            return
        try:
            await maybe_await(ctx.emit(event))
        except Exception as e:
            logger.warning("[interpreter] event observer failed on '{}': {}", event.get("type"), e)


_default: Optional[StepInterpreter] = None


def default_interpreter() -> StepInterpreter:
    global _default
    if _default is None:
        _default = StepInterpreter()
    return _default
