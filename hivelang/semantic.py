from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .ast import BotDefinition, CallStep, Diagnostic, IfStep, LoopStep, RememberStep, Step
from .tools import DELEGATE_TOOL
from .types import Severity


def walk_steps(steps: List[Step]) -> Iterator[Step]:
    for step in steps:
        yield step
        if isinstance(step, IfStep):
            yield from walk_steps(step.then_steps)
            yield from walk_steps(step.else_steps or [])
        elif isinstance(step, LoopStep):
            yield from walk_steps(step.body)


class SemanticAnalyzer:
    """Checks a parsed bot against the tool catalog it will run with:
    - declared tools that the catalog does not provide
    - agent.delegate used by a bot that has no sub-agents
    - sub-agents sharing a name
    - remember into a memory key the bot never declared

    Every finding is a warning; a bot may be saved before its tools exist.
    """

    def __init__(self, bot: BotDefinition, available: Optional[Iterable[str]] = None):
        self.bot = bot
        self.available: Optional[Set[str]] = set(available) if available is not None else None
        self.diagnostics: List[Diagnostic] = []

    def analyze(self) -> List[Diagnostic]:
        self._check(self.bot)
        self.diagnostics.sort(key=lambda d: d.line)
        return self.diagnostics

    def _warn(self, message: str, line: int) -> None:
        self.diagnostics.append(Diagnostic(message, line, 1, Severity.Warning))

    def _check(self, bot: BotDefinition) -> None:
        label = bot.name or "anonymous"
        if self.available is not None:
            for name, line in bot.declared_tools.items():
                if name == DELEGATE_TOOL and bot.agents:
                    continue
                if name not in self.available:
                    self._warn(f"Tool '{name}' declared by '{label}' is not available", line)

        delegate_lines = [line for name, line in bot.declared_tools.items() if name == DELEGATE_TOOL]
        delegate_lines += [s.line for s in walk_steps(bot.steps) if isinstance(s, CallStep) and s.tool_name == DELEGATE_TOOL]
        if delegate_lines and not bot.agents:
            self._warn(f"'{label}' uses {DELEGATE_TOOL} but declares no sub-agents", min(delegate_lines))

        seen: Dict[str, int] = {}
        for agent in bot.agents:
            if agent.name in seen:
                self._warn(f"Duplicate sub-agent '{agent.name}' (first declared on line {seen[agent.name]})", agent.line)
            else:
                seen[agent.name] = agent.line

        for step in walk_steps(bot.steps):
            if isinstance(step, RememberStep) and step.key not in bot.declared_memory:
                self._warn(f"remember into undeclared memory key '{step.key}'", step.line)

        for agent in bot.agents:
            self._check(agent)


def analyze(bot: BotDefinition, available: Optional[Iterable[str]] = None) -> List[Diagnostic]:
    return SemanticAnalyzer(bot, available).analyze()
