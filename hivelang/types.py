from enum import Enum


class Severity(str, Enum):
    Error = "error"
    Warning = "warning"


class StepType(str, Enum):
    Say = "say"
    Tools = "tools"
    Memory = "memory"
    Call = "call"
    Remember = "remember"
    Set = "set"
    If = "if"
    Loop = "loop"


class SetMode(str, Enum):
    Literal = "literal"
    Reference = "reference"


# Scope frames tracked by the statement parser
class FrameKind(str, Enum):
    Root = "root"
    Agent = "agent"
    If = "if"
    Loop = "loop"


# Tags used on transcript entries
class EntryType(str, Enum):
    Say = "say"
    Tool = "tool"
    MemoryAppend = "memory.append"
    Set = "set"
    Memory = "memory"
