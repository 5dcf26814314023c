# AST types produced by the HiveLang statement parser
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .types import Severity, SetMode


@dataclass
class Diagnostic:
    message: str
    line: int
    column: int = 1
    severity: Severity = Severity.Error

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.Error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "line": self.line,
            "column": self.column,
            "severity": self.severity.value,
        }

    def __str__(self) -> str:
        return f"{self.line}:{self.column}: {self.severity.value}: {self.message}"


@dataclass
class SayStep:
    text: str


@dataclass
class ToolsDeclaration:
    names: List[str]


@dataclass
class MemoryDeclaration:
    keys: List[str]


@dataclass
class CallStep:
    tool_name: str
    # argument name -> raw source token, resolved at run time
    args: Dict[str, str] = field(default_factory=dict)
    line: int = 0


@dataclass
class RememberStep:
    key: str
    value: str
    line: int = 0


@dataclass
class SetStep:
    key: str
    mode: SetMode
    value: Any


@dataclass
class IfStep:
    condition: str
    then_steps: List["Step"] = field(default_factory=list)
    else_steps: Optional[List["Step"]] = None


@dataclass
class LoopStep:
    source: str
    iterator: str = "item"
    body: List["Step"] = field(default_factory=list)


Step = Union[SayStep, ToolsDeclaration, MemoryDeclaration, CallStep, RememberStep, SetStep, IfStep, LoopStep]


@dataclass
class BotDefinition:
    """A bot (or nested agent) as written in source.

    Declared tools and memory keys map each name to the line that first
    declared it; both only ever grow. Once ``close()`` runs the parser stops
    appending to the definition.
    """
    name: str = ""
    description: Optional[str] = None
    declared_tools: Dict[str, int] = field(default_factory=dict)
    declared_memory: Dict[str, int] = field(default_factory=dict)
    steps: List[Step] = field(default_factory=list)
    agents: List["BotDefinition"] = field(default_factory=list)
    line: int = 0
    closed: bool = False

    def declare_tools(self, names: List[str], line: int) -> None:
        for name in names:
            self.declared_tools.setdefault(name, line)

    def declare_memory(self, keys: List[str], line: int) -> None:
        for key in keys:
            self.declared_memory.setdefault(key, line)

    def close(self) -> None:
        self.closed = True

    @property
    def tools(self) -> List[str]:
        return list(self.declared_tools)

    @property
    def memory(self) -> List[str]:
        return list(self.declared_memory)
