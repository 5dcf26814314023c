"""
Macro expansion tests.
"""
from collections import deque

from hivelang.ast import SayStep
from hivelang.macros import MacroExpander, SourceLine
from hivelang.parser import parse


def test_macro_lines_are_spliced_in_place():
    macros = {"greeting": 'say "Hello"\nsay "Welcome"'}
    result = parse('bot A\non input\nuse greeting\nsay "Bye"\nend\nend', macros=macros)
    assert result.diagnostics == []
    assert result.bot.steps == [SayStep("Hello"), SayStep("Welcome"), SayStep("Bye")]


def test_unknown_macro_is_error_and_parsing_continues():
    result = parse('bot A\non input\nuse missing\nsay "after"\nend\nend')
    assert [d.message for d in result.errors] == ["Unknown macro 'missing'"]
    assert result.errors[0].line == 3
    assert result.bot.steps == [SayStep("after")]


def test_nested_macros_expand():
    expander = MacroExpander({"inner": 'say "in"', "outer": 'say "out"\nuse inner'})
    result = parse("bot A\non input\nuse outer\nend\nend", macros=expander)
    assert result.bot.steps == [SayStep("out"), SayStep("in")]


def test_spliced_lines_carry_invoking_line_number():
    expander = MacroExpander({"bad": "dance"})
    result = parse("bot A\non input\n\nuse bad\nend\nend", macros=expander)
    assert result.diagnostics[0].line == 4
    assert result.diagnostics[0].message == "Unrecognised statement: dance"


def test_expand_pushes_to_front():
    expander = MacroExpander()
    expander.register("two", "a\nb")
    assert "two" in expander
    pending = deque([SourceLine(9, "c")])
    assert expander.expand("two", SourceLine(5, "use two"), pending) is None
    assert [(l.number, l.text, l.macro) for l in pending] == [(5, "a", "two"), (5, "b", "two"), (9, "c", None)]


def test_from_directory(tmp_path):
    (tmp_path / "signoff.hive").write_text('say "Thanks!"', encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    expander = MacroExpander.from_directory(tmp_path)
    assert "signoff" in expander
    assert "notes" not in expander
