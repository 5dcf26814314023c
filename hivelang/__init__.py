from .bridge import ExecutionResult, ValidationReport, delegate_tool, run_agentic, run_program, validate_program
from .compiler import CompiledProgram, CompileResult, compile_source
from .context import RunContext
from .interpreter import RunResult, StepInterpreter
from .parser import parse
from .react import ReActEngine, execute_react, execute_react_streaming
from .schemas import ReActConfig, ReActResult, ReActStep, ToolResult
from .tools import ToolDescriptor, ToolRegistry

__all__ = [
    "CompiledProgram",
    "CompileResult",
    "ExecutionResult",
    "ReActConfig",
    "ReActEngine",
    "ReActResult",
    "ReActStep",
    "RunContext",
    "RunResult",
    "StepInterpreter",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
    "ValidationReport",
    "compile_source",
    "delegate_tool",
    "execute_react",
    "execute_react_streaming",
    "parse",
    "run_agentic",
    "run_program",
    "validate_program",
]
