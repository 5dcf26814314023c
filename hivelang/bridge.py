"""Entry points tying compiler, interpreter and reasoning engine together.

``run_program`` executes a bot deterministically; ``run_agentic`` hands
the bot's task to the reasoning engine with the bot's declared tools.
Compile errors are always fatal here, whereas gaps during a run are not.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger

from .ai_providers import select_provider
from .ast import Diagnostic
from .compiler import CompiledProgram, CompileResult, compile_source, find_agent
from .conditions import ConditionEvaluator
from .context import CollectionResolver, EventEmitter, MemoryAccessor, RunContext
from .macros import MacroExpander
from .memory import InMemoryStore
from .react import ReActEngine, StepCallback
from .schemas import DEFAULT_SYSTEM_PROMPT, ReActConfig, ReActResult, ToolResult
from .semantic import analyze
from .tools import DELEGATE_TOOL, ToolDescriptor, ToolRegistry

Source = Union[str, Path]
Macros = Optional[Union[MacroExpander, Mapping[str, str]]]
ToolsArg = Optional[Union[ToolRegistry, Iterable[ToolDescriptor]]]


@dataclass
class ExecutionResult:
    output: str = ""
    transcript: List[Dict[str, Any]] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output,
            "transcript": self.transcript,
            "success": self.success,
            "error": self.error,
            "variables": self.variables,
        }


@dataclass
class ValidationReport:
    valid: bool
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]


def compile_error_summary(result: CompileResult) -> str:
    return "; ".join(f"line {d.line}: {d.message}" for d in result.errors)


# ---------- Delegation ----------
def _last_say(transcript: List[Dict[str, Any]]) -> Optional[str]:
    for entry in reversed(transcript):
        if entry.get("type") == "say":
            return str(entry.get("payload", ""))
    return None


async def _delegate(args: Dict[str, Any], context: RunContext) -> ToolResult:
    name = str(args.get("agent") or args.get("name") or "").strip()
    if not name:
        return ToolResult(success=False, output="Agent name is required")
    agents = list(context.agents or [])
    if not agents:
        return ToolResult(success=False, output="No sub-agents available in this context")
    program = find_agent(agents, name)
    if program is None:
        available = ", ".join(a.name for a in agents)
        return ToolResult(success=False, output=f"Agent '{name}' not found. Available: {available}")

    task = args.get("task", args.get("prompt", ""))
    logger.debug("[bridge] delegating to '{}'", program.name)
    try:
        result = await program.run(context.for_agent(program, task))
    except Exception as e:
        logger.warning("[bridge] delegation to '{}' failed: {}", program.name, e)
        return ToolResult(success=False, output=f"Delegation to {program.name} failed: {e}")
    said = _last_say(result.transcript)
    output = said if said is not None else json.dumps(result.transcript, ensure_ascii=False, default=str)
    return ToolResult(success=True, output=output, data={"transcript": result.transcript})


def delegate_tool() -> ToolDescriptor:
    """Tool handing a task to one of the current bot's sub-agents."""
    return ToolDescriptor(
        name=DELEGATE_TOOL,
        capability=DELEGATE_TOOL,
        description='Delegate a task to a sub-agent. Input: {"agent": "<name>", "task": "<what to do>"}',
        run=_delegate,
    )


# ---------- Context ----------
def as_registry(tools: ToolsArg) -> ToolRegistry:
    if isinstance(tools, ToolRegistry):
        return tools
    return ToolRegistry(tools or [])


def _with_delegate(registry: ToolRegistry, program: CompiledProgram) -> ToolRegistry:
    if program.agents and DELEGATE_TOOL not in registry:
        registry = ToolRegistry([*registry, delegate_tool()])
    return registry


def build_context(
    input: Any = None,
    tools: ToolsArg = None,
    memory: Optional[MemoryAccessor] = None,
    evaluate: Any = None,
    resolve_collection: Optional[CollectionResolver] = None,
    emit: Optional[EventEmitter] = None,
    agents: Iterable[CompiledProgram] = (),
) -> RunContext:
    return RunContext(
        input=input if input is not None else {},
        memory=memory if memory is not None else InMemoryStore(),
        call_tool=as_registry(tools),
        evaluate=evaluate if evaluate is not None else ConditionEvaluator(),
        resolve_collection=resolve_collection,
        emit=emit,
        agents=tuple(agents),
    )


# ---------- Entry points ----------
async def run_program(
    source: Source,
    input: Any = None,
    tools: ToolsArg = None,
    memory: Optional[MemoryAccessor] = None,
    evaluate: Any = None,
    emit: Optional[EventEmitter] = None,
    macros: Macros = None,
) -> ExecutionResult:
    """Compile and run ``source`` with the step interpreter."""
    compiled = compile_source(source, macros=macros)
    if compiled.has_errors:
        logger.warning("[bridge] compilation failed: {}", compile_error_summary(compiled))
        return ExecutionResult(success=False, error=f"COMPILE_ERROR: {compile_error_summary(compiled)}")

    program = compiled.program
    registry = _with_delegate(as_registry(tools), program)
    ctx = build_context(input, registry, memory, evaluate, emit=emit, agents=program.agents)
    try:
        result = await program.run(ctx)
    except Exception as e:
        logger.error("[bridge] run of '{}' failed: {}", program.name, e)
        return ExecutionResult(success=False, error=str(e), variables=ctx.locals)
    return ExecutionResult(
        output="\n".join(result.says),
        transcript=result.transcript,
        success=True,
        variables=ctx.locals,
    )


def build_task(program: CompiledProgram, input: Any) -> str:
    lines = [f"You are {program.name or 'a bot'}."]
    if program.description:
        lines.append(program.description)
    rendered = input if isinstance(input, str) else json.dumps(input if input is not None else {}, ensure_ascii=False, default=str)
    lines.append(f"Input: {rendered}")
    if program.tools:
        lines.append(f"Declared tools: {', '.join(program.tools)}")
    if program.memory:
        lines.append(f"Memory keys: {', '.join(program.memory)}")
    if program.agents:
        lines.append(f"Sub-agents (use {DELEGATE_TOOL}): {', '.join(a.name for a in program.agents)}")
    return "\n".join(lines)


async def run_agentic(
    source: Source,
    input: Any = None,
    tools: ToolsArg = None,
    provider: Any = None,
    config: Optional[ReActConfig] = None,
    bot_prompt: Optional[str] = None,
    memory: Optional[MemoryAccessor] = None,
    macros: Macros = None,
    on_step: Optional[StepCallback] = None,
    model: Optional[str] = None,
) -> ReActResult:
    """Let the reasoning engine carry out the bot's task with its declared tools.

    Only the declared tools are offered to the model; sub-agents reached
    through delegation still see the whole catalog. ``model`` (or
    ``HIVELANG_AI_MODEL``) overrides the provider's own default model.
    """
    compiled = compile_source(source, macros=macros)
    if compiled.has_errors:
        logger.warning("[bridge] compilation failed: {}", compile_error_summary(compiled))
        return ReActResult(success=False, error=f"COMPILE_ERROR: {compile_error_summary(compiled)}")

    program = compiled.program
    provider = provider if provider is not None else select_provider()
    if provider is None:
        return ReActResult(success=False, error="NO_PROVIDER: no language model provider is configured")

    allowed = list(program.tools) + ([DELEGATE_TOOL] if program.agents else [])
    registry = _with_delegate(as_registry(tools), program)
    catalog = registry.narrowed(allowed)

    config = config or ReActConfig.from_settings(model=model)
    if bot_prompt:
        config = config.model_copy(update={"system_prompt": f"{DEFAULT_SYSTEM_PROMPT}\n\n{bot_prompt}"})

    ctx = build_context(input, registry, memory, agents=program.agents)
    logger.debug("[bridge] agentic run of '{}' with tools {}", program.name, catalog.names)
    return await ReActEngine(provider, config).run(build_task(program, input), catalog, ctx, on_step=on_step)


def validate_program(source: Source, tools: Optional[Iterable[Union[str, ToolDescriptor]]] = None, macros: Macros = None) -> ValidationReport:
    """Parse diagnostics plus catalog and consistency warnings."""
    compiled = compile_source(source, macros=macros)
    available = None
    if tools is not None:
        available = set()
        for tool in tools:
            if isinstance(tool, ToolDescriptor):
                available.add(tool.name)
                if tool.capability:
                    available.add(tool.capability)
            else:
                available.add(str(tool))
    diagnostics = list(compiled.diagnostics)
    if compiled.bot is not None:
        diagnostics += analyze(compiled.bot, available)
    return ValidationReport(valid=not compiled.has_errors, diagnostics=diagnostics)
