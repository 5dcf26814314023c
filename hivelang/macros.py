"""Macro expansion for HiveLang sources.

A macro is a named snippet of HiveLang statements. ``use <name>`` in a
source splices the snippet's lines into the parser's input at that point,
so the expanded lines are parsed exactly as if they had been written there.
"""
from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, List, Mapping, Optional

from loguru import logger

from .ast import Diagnostic
from .types import Severity


@dataclass
class SourceLine:
    number: int
    text: str
    # name of the macro the line was spliced from, if any
    macro: Optional[str] = None


def split_lines(source: str) -> List[SourceLine]:
    return [SourceLine(i + 1, raw) for i, raw in enumerate(source.splitlines())]


class MacroExpander:
    """Resolves ``use <name>`` statements against a table of macro sources.

    Self-referential macros are not detected: a macro that (directly or
    through another macro) uses itself expands forever. Keeping macro
    tables acyclic is the caller's responsibility.
    """

    def __init__(self, macros: Optional[Mapping[str, str]] = None):
        self.macros: Dict[str, str] = dict(macros or {})

    def __contains__(self, name: str) -> bool:
        return name in self.macros

    def register(self, name: str, source: str) -> None:
        self.macros[name] = source

    def expand(self, name: str, at: SourceLine, pending: Deque[SourceLine]) -> Optional[Diagnostic]:
        """Push the lines of macro ``name`` onto the front of ``pending``.

        Spliced lines keep the invoking line's number so diagnostics point
        at the ``use`` statement. Returns an error diagnostic when the macro
        is unknown; the invoking line is then skipped.
        """
        source = self.macros.get(name)
        if source is None:
            return Diagnostic(f"Unknown macro '{name}'", at.number, 1, Severity.Error)
        lines = source.splitlines()
        logger.debug("[macro] expanding '{}' ({} lines) at line {}", name, len(lines), at.number)
        for text in reversed(lines):
            pending.appendleft(SourceLine(at.number, text, macro=name))
        return None

    @classmethod
    def from_directory(cls, path: str | Path, pattern: str = "*.hive") -> "MacroExpander":
        """Load every file matching ``pattern`` as a macro named by its stem."""
        macros: Dict[str, str] = {}
        for file in sorted(Path(path).glob(pattern)):
            macros[file.stem] = file.read_text(encoding="utf-8")
        return cls(macros)


def pending_lines(source: str) -> Deque[SourceLine]:
    return deque(split_lines(source))
