"""Program emitter: turns a parsed bot definition into a compiled program.

A compiled program is plain data (metadata plus a tree of instruction
records). Running it always goes through the shared
:class:`~hivelang.interpreter.StepInterpreter`; nothing executable is
embedded in the program itself.
"""
from __future__ import annotations
import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from loguru import logger

from .ast import (
    BotDefinition,
    CallStep,
    Diagnostic,
    IfStep,
    LoopStep,
    MemoryDeclaration,
    RememberStep,
    SayStep,
    SetStep,
    Step,
    ToolsDeclaration,
)
from .config import DEFAULT_MODEL, Settings
from .errors import CompileError
from .macros import MacroExpander
from .parser import parse
from .types import StepType

if TYPE_CHECKING:  # pragma: no cover
    from .context import RunContext
    from .interpreter import RunResult


def emit_step(step: Step) -> Dict[str, Any]:
    match step:
        case SayStep(text=text):
            return {"type": StepType.Say.value, "payload": text}
        case ToolsDeclaration(names=names):
            return {"type": StepType.Tools.value, "tools": list(names)}
        case MemoryDeclaration(keys=keys):
            return {"type": StepType.Memory.value, "keys": list(keys)}
        case CallStep(tool_name=tool, args=args):
            return {"type": StepType.Call.value, "tool": tool, "args": dict(args)}
        case RememberStep(key=key, value=value):
            return {"type": StepType.Remember.value, "key": key, "value": value}
        case SetStep(key=key, mode=mode, value=value):
            return {"type": StepType.Set.value, "key": key, "mode": mode.value, "value": copy.deepcopy(value)}
        case IfStep(condition=condition, then_steps=then_steps, else_steps=else_steps):
            record: Dict[str, Any] = {"type": StepType.If.value, "condition": condition, "then": emit_steps(then_steps)}
            if else_steps is not None:
                record["else"] = emit_steps(else_steps)
            return record
        case LoopStep(source=source, iterator=iterator, body=body):
            return {"type": StepType.Loop.value, "iterator": iterator, "source": source, "steps": emit_steps(body)}
        case _:
            return {"type": "unknown"}


def emit_steps(steps: List[Step]) -> List[Dict[str, Any]]:
    return [emit_step(step) for step in steps]


@dataclass(frozen=True)
class CompiledProgram:
    name: str
    description: str
    model: str
    tools: Tuple[str, ...] = ()
    memory: Tuple[str, ...] = ()
    instructions: Tuple[Dict[str, Any], ...] = ()
    agents: Tuple["CompiledProgram", ...] = ()

    async def run(self, context: Optional["RunContext"] = None) -> "RunResult":
        from .interpreter import default_interpreter

        return await default_interpreter().run(self, context)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "model": self.model,
            "tools": list(self.tools),
            "memory": list(self.memory),
            "agents": [agent.to_dict() for agent in self.agents],
            "instructions": copy.deepcopy(list(self.instructions)),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompiledProgram":
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            model=str(data.get("model") or DEFAULT_MODEL),
            tools=tuple(data.get("tools", [])),
            memory=tuple(data.get("memory", [])),
            instructions=tuple(copy.deepcopy(list(data.get("instructions", [])))),
            agents=tuple(cls.from_dict(a) for a in data.get("agents", [])),
        )


def find_agent(agents: Iterable[CompiledProgram], name: str) -> Optional[CompiledProgram]:
    """Exact name match first, then a case-insensitive one."""
    agents = list(agents)
    found = next((a for a in agents if a.name == name), None)
    if found is None:
        found = next((a for a in agents if a.name.lower() == name.lower()), None)
    return found


def emit(bot: BotDefinition, model: Optional[str] = None) -> CompiledProgram:
    """Serialize ``bot`` (and its sub-agents) into a compiled program.

    Emission is total: a partial definition from a failed parse still
    yields a program holding whatever was parsed.
    """
    model = model or Settings.from_env().model or DEFAULT_MODEL
    return CompiledProgram(
        name=bot.name,
        description=bot.description or "",
        model=model,
        tools=tuple(bot.tools),
        memory=tuple(bot.memory),
        instructions=tuple(emit_steps(bot.steps)),
        agents=tuple(emit(agent, model) for agent in bot.agents),
    )


@dataclass
class CompileResult:
    program: CompiledProgram
    diagnostics: List[Diagnostic] = field(default_factory=list)
    bot: Optional[BotDefinition] = None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def raise_for_errors(self) -> CompiledProgram:
        if self.has_errors:
            summary = "; ".join(f"line {d.line}: {d.message}" for d in self.errors)
            raise CompileError(f"Compilation failed: {summary}", self.errors)
        return self.program


def compile_source(
    source: str | Path,
    macros: Optional[Union[MacroExpander, Mapping[str, str]]] = None,
    model: Optional[str] = None,
) -> CompileResult:
    parsed = parse(source, macros=macros)
    program = emit(parsed.bot, model)
    logger.debug(
        "[compiler] '{}' -> {} instructions, {} agents, {} errors",
        program.name, len(program.instructions), len(program.agents), len(parsed.errors),
    )
    return CompileResult(program=program, diagnostics=parsed.diagnostics, bot=parsed.bot)
