"""Line-oriented parser for HiveLang bot definitions.

The parser never raises on malformed input. Every problem becomes a
:class:`~hivelang.ast.Diagnostic` and parsing carries on, so a single bad
line does not hide the diagnostics of the lines after it. The only early
stop is a source that does not open with a ``bot``/``agent`` declaration.
"""
from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

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
from .macros import MacroExpander, SourceLine, pending_lines
from .types import FrameKind, SetMode, Severity

DECLARATION = re.compile(r"^(bot|agent)\s+([A-Za-z][A-Za-z0-9_-]*)$", re.I)
DESCRIPTION = re.compile(r'^description\s+"([^"]*)"$', re.I)
ON_INPUT = re.compile(r"^on\s+input$", re.I)
SAY_INLINE = re.compile(r'^say\s+"(.*)"$', re.I)
SAY_MULTILINE_START = re.compile(r'^say\s+"""$', re.I)
SAY_MULTILINE_END = '"""'
TOOLS = re.compile(r"^tools\s*\(([^)]*)\)$", re.I)
MEMORY = re.compile(r"^memory\s*\[([^\]]*)\]$", re.I)
CALL = re.compile(r"^call\s+([A-Za-z_][\w.-]*)(?:\s+with\s+(.+))?$", re.I)
CALL_BINDING = re.compile(r"\s+as\s+([A-Za-z_]\w*)$", re.I)
REMEMBER = re.compile(r"^remember\s+([A-Za-z_][\w.-]*)\s+(.+)$", re.I)
SET = re.compile(r"^set\s+([A-Za-z_]\w*(?:\.\w+)*)\s+to\s+(.+)$", re.I)
IF = re.compile(r"^if\s+(.+)$", re.I)
ELSE = re.compile(r"^else$", re.I)
LOOP = re.compile(r"^loop\s+([A-Za-z_]\w*)(?:\s+in\s+(.+))?$", re.I)
END = re.compile(r"^end$", re.I)
COMMENT = re.compile(r"^(#|//)")
MACRO = re.compile(r"^use\s+([A-Za-z_][\w-]*)$", re.I)

IDENTIFIER_PATH = re.compile(r"^[A-Za-z_]\w*(?:\.\w+)*$")
NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")
KEYWORD_LITERALS: Dict[str, Any] = {"true": True, "false": False, "null": None, "none": None}


@dataclass
class Frame:
    kind: FrameKind
    bot: BotDefinition
    steps: List[Step]
    line: int
    node: Optional[Union[IfStep, LoopStep]] = None
    # Root/Agent frames only: whether their `on input` block is open
    in_on_input: bool = False
    in_else: bool = False


@dataclass
class Capture:
    line: int
    target: List[Step]
    buffer: List[str] = field(default_factory=list)


@dataclass
class ParseResult:
    bot: BotDefinition
    diagnostics: List[Diagnostic]

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)


def unquote(raw: str) -> Optional[str]:
    raw = raw.strip()
    if raw[:2] in ('f"', "f'"):
        raw = raw[1:]
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    return None


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split on ``sep`` outside quotes and brackets."""
    parts: List[str] = []
    buf: List[str] = []
    depth = 0
    quote: Optional[str] = None
    for ch in text:
        if quote:
            buf.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append("".join(buf).strip())
            buf = []
            continue
        buf.append(ch)
    tail = "".join(buf).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def _split_pair(part: str) -> Tuple[Optional[str], str]:
    quote: Optional[str] = None
    for idx, ch in enumerate(part):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch in "[{(":
            return None, part
        elif ch in ":=":
            key = part[:idx].strip()
            key = unquote(key) or key
            return key, part[idx + 1:].strip()
    return None, part


def parse_call_arguments(text: Optional[str]) -> Dict[str, str]:
    """Turn the text after ``with`` into a map of raw argument tokens.

    Values stay in source form (quoted strings keep their quotes) so the
    interpreter can tell literals from references. Positional values are
    named ``prompt``, then ``arg2``, ``arg3`` and so on.
    """
    if not text:
        return {}
    text = text.strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return {str(k): json.dumps(v) for k, v in parsed.items()}
    if text.startswith("{") and text.endswith("}"):
        text = text[1:-1]
    args: Dict[str, str] = {}
    positional = 0
    for part in split_top_level(text):
        key, value = _split_pair(part)
        if key is None:
            positional += 1
            key = "prompt" if positional == 1 else f"arg{positional}"
        args[key] = value
    return args


def classify_set_value(raw: str) -> Tuple[SetMode, Any]:
    raw = raw.strip()
    text = unquote(raw)
    if text is not None:
        return SetMode.Literal, text
    if NUMBER.match(raw):
        return SetMode.Literal, float(raw) if "." in raw else int(raw)
    if raw.lower() in KEYWORD_LITERALS:
        return SetMode.Literal, KEYWORD_LITERALS[raw.lower()]
    if raw[:1] in "[{":
        try:
            return SetMode.Literal, json.loads(raw)
        except ValueError:
            return SetMode.Literal, raw
    if IDENTIFIER_PATH.match(raw):
        return SetMode.Reference, raw
    return SetMode.Literal, raw


class StatementParser:
    def __init__(self, macros: Optional[Union[MacroExpander, Mapping[str, str]]] = None):
        if isinstance(macros, MacroExpander):
            self.macros = macros
        else:
            self.macros = MacroExpander(macros)

    def parse(self, source: str) -> ParseResult:
        self.bot = BotDefinition()
        self.diagnostics: List[Diagnostic] = []
        self.stack: List[Frame] = []
        self.capture: Optional[Capture] = None
        self.finished = False
        self.rejected = False
        pending = pending_lines(source)

        while pending:
            src = pending.popleft()
            if self.capture is not None:
                self._capture_line(src)
                continue
            line = src.text.strip()
            if not line or COMMENT.match(line):
                continue

            macro = MACRO.match(line)
            if macro:
                diag = self.macros.expand(macro.group(1), src, pending)
                if diag:
                    self.diagnostics.append(diag)
                continue

            if self.finished:
                if END.match(line):
                    self._warn(src, "Unexpected 'end'")
                else:
                    self._warn(src, f"Statement after end of bot definition ignored: {line}")
                continue

            if not self.stack:
                decl = DECLARATION.match(line)
                if not decl:
                    self._error(src, "HiveLang programs must start with 'bot <Name>' or 'agent <Name>'")
                    self.rejected = True
                    break
                self.bot.name = decl.group(2)
                self.bot.line = src.number
                self.stack.append(Frame(FrameKind.Root, self.bot, self.bot.steps, src.number))
                logger.debug("[parser] bot '{}' declared on line {}", self.bot.name, src.number)
                continue

            frame = self.stack[-1]
            if frame.kind in (FrameKind.Root, FrameKind.Agent) and not frame.in_on_input:
                self._declaration_statement(frame, src, line)
            else:
                self._behavior_statement(frame, src, line)

        self._finish(source)
        logger.debug("[parser] '{}' parsed with {} diagnostics", self.bot.name, len(self.diagnostics))
        return ParseResult(self.bot, self.diagnostics)

    # ---------- Statement kinds ----------
    def _declaration_statement(self, frame: Frame, src: SourceLine, line: str) -> None:
        if m := DESCRIPTION.match(line):
            frame.bot.description = m.group(1)
        elif ON_INPUT.match(line):
            frame.in_on_input = True
            frame.steps = frame.bot.steps
        elif m := DECLARATION.match(line):
            child = BotDefinition(name=m.group(2), line=src.number)
            frame.bot.agents.append(child)
            self.stack.append(Frame(FrameKind.Agent, child, child.steps, src.number))
        elif m := TOOLS.match(line):
            names = self._names(m.group(1), src, "tools() requires at least one identifier")
            if names:
                frame.bot.declare_tools(names, src.number)
        elif m := MEMORY.match(line):
            keys = self._names(m.group(1), src, "memory[] requires at least one key")
            if keys:
                frame.bot.declare_memory(keys, src.number)
        elif END.match(line):
            self.stack.pop()
            frame.bot.close()
            if frame.kind == FrameKind.Root:
                self.finished = True
        else:
            self._warn(src, f"Unexpected statement outside 'on input' block: {line}")

    def _behavior_statement(self, frame: Frame, src: SourceLine, line: str) -> None:
        if SAY_MULTILINE_START.match(line):
            self.capture = Capture(src.number, frame.steps)
        elif m := SAY_INLINE.match(line):
            frame.steps.append(SayStep(m.group(1)))
        elif m := TOOLS.match(line):
            names = self._names(m.group(1), src, "tools() requires at least one identifier")
            if names:
                frame.bot.declare_tools(names, src.number)
                frame.steps.append(ToolsDeclaration(names))
        elif m := MEMORY.match(line):
            keys = self._names(m.group(1), src, "memory[] requires at least one key")
            if keys:
                frame.bot.declare_memory(keys, src.number)
                frame.steps.append(MemoryDeclaration(keys))
        elif line.lower().startswith("call "):
            self._call(frame, src, line)
        elif m := REMEMBER.match(line):
            value = unquote(m.group(2))
            frame.steps.append(RememberStep(m.group(1), value if value is not None else m.group(2).strip(), src.number))
        elif m := SET.match(line):
            mode, value = classify_set_value(m.group(2))
            if mode == SetMode.Literal and isinstance(value, str) and unquote(m.group(2)) is None:
                self._warn(src, f"Expression is not evaluated; stored as literal text: {m.group(2).strip()}")
            frame.steps.append(SetStep(m.group(1), mode, value))
        elif m := IF.match(line):
            node = IfStep(condition=m.group(1).strip())
            frame.steps.append(node)
            self.stack.append(Frame(FrameKind.If, frame.bot, node.then_steps, src.number, node=node))
        elif ELSE.match(line):
            if frame.kind != FrameKind.If or frame.in_else:
                self._warn(src, "'else' without matching 'if'")
                return
            node = frame.node
            node.else_steps = []
            frame.steps = node.else_steps
            frame.in_else = True
        elif m := LOOP.match(line):
            iterator, source = m.group(1), m.group(2)
            if source is None:
                iterator, source = "item", m.group(1)
            node = LoopStep(source=source.strip(), iterator=iterator)
            frame.steps.append(node)
            self.stack.append(Frame(FrameKind.Loop, frame.bot, node.body, src.number, node=node))
        elif END.match(line):
            if frame.kind in (FrameKind.If, FrameKind.Loop):
                self.stack.pop()
            else:
                # closes `on input`; the bot/agent itself needs its own `end`
                frame.in_on_input = False
        elif DECLARATION.match(line):
            self._warn(src, "Agents must be declared outside 'on input'")
        else:
            self._warn(src, f"Unrecognised statement: {line}")

    def _call(self, frame: Frame, src: SourceLine, line: str) -> None:
        binding = CALL_BINDING.search(line)
        if binding:
            self._warn(src, f"'as {binding.group(1)}' is not supported; the result is only recorded in the transcript")
            line = line[:binding.start()]
        m = CALL.match(line)
        if not m:
            self._warn(src, f"Malformed call statement: {line}")
            return
        frame.steps.append(CallStep(m.group(1), parse_call_arguments(m.group(2)), src.number))

    def _capture_line(self, src: SourceLine) -> None:
        if src.text.strip() == SAY_MULTILINE_END:
            self.capture.target.append(SayStep("\n".join(self.capture.buffer)))
            self.capture = None
        else:
            self.capture.buffer.append(src.text.lstrip())

    def _finish(self, source: str) -> None:
        last_line = max(len(source.splitlines()), 1)
        if self.capture is not None:
            self._error(SourceLine(self.capture.line, ""), "Unterminated multi-line say block")
            self.capture = None
        if not self.bot.name and not self.rejected:
            self._error(SourceLine(1, ""), "No bot declaration found")
        while self.stack:
            frame = self.stack.pop()
            at = SourceLine(last_line, "")
            if frame.kind == FrameKind.Root:
                self._warn(at, "Missing 'end' to close bot definition")
            elif frame.kind == FrameKind.Agent:
                self._warn(at, f"Missing 'end' to close agent '{frame.bot.name}'")
            else:
                self._warn(at, f"Missing 'end' for '{frame.kind.value}' opened on line {frame.line}")
            if frame.kind in (FrameKind.Root, FrameKind.Agent):
                frame.bot.close()

    # ---------- Helpers ----------
    def _names(self, raw: str, src: SourceLine, empty_message: str) -> List[str]:
        names = [entry.strip() for entry in raw.split(",") if entry.strip()]
        if not names:
            self._warn(src, empty_message)
        return names

    def _column(self, src: SourceLine) -> int:
        return len(src.text) - len(src.text.lstrip()) + 1 if src.text.strip() else 1

    def _warn(self, src: SourceLine, message: str) -> None:
        self.diagnostics.append(Diagnostic(message, src.number, self._column(src), Severity.Warning))

    def _error(self, src: SourceLine, message: str) -> None:
        self.diagnostics.append(Diagnostic(message, src.number, self._column(src), Severity.Error))


def parse(source: str | Path, macros: Optional[Union[MacroExpander, Mapping[str, str]]] = None) -> ParseResult:
    text = Path(source).read_text(encoding="utf-8") if isinstance(source, Path) else str(source)
    return StatementParser(macros).parse(text)
