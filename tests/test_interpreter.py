"""
Step interpreter tests: transcript contents, scoping and failure modes.
"""
import asyncio

import pytest

from hivelang.compiler import CompiledProgram, compile_source
from hivelang.conditions import ConditionEvaluator
from hivelang.context import RunContext
from hivelang.interpreter import StepInterpreter, interpolate, render_value, resolve_argument
from hivelang.memory import InMemoryStore


def run(program, ctx=None):
    return asyncio.run(program.run(ctx))


def program_of(*instructions, name="T"):
    return CompiledProgram(name=name, description="", model="m", instructions=tuple(instructions))


class TestEndToEnd:
    def test_greeter(self, greeter_source):
        """The documented end-to-end example yields exactly one say entry."""
        program = compile_source(greeter_source).program
        result = run(program, RunContext(input={"name": "Ada"}))
        assert result.transcript == [{"type": "say", "payload": "Hi Ada"}]

    def test_say_matches_direct_interpolation(self, make_context):
        templates = ["Hi {input.name}", "{greeting}, {name}!", "{missing}x", "{input.tags}"]
        program = program_of(*({"type": "say", "payload": t} for t in templates))
        ctx = make_context(input={"name": "Ada", "tags": ["a"]}, locals={"greeting": "Hello"})
        result = run(program, ctx)
        assert result.says == [interpolate(t, ctx.scope()) for t in templates]
        assert result.says[1] == "Hello, Ada!"
        assert result.says[2] == "x"

    def test_rerun_is_idempotent(self, support_source, registry):
        program = compile_source(support_source).program
        ctx = lambda: RunContext(
            input={"question": "q", "urgent": False, "user": "bo", "tags": ["a", "b"]},
            memory=InMemoryStore(),
            call_tool=registry,
            evaluate=ConditionEvaluator(),
        )
        assert run(program, ctx()).transcript == run(program, ctx()).transcript


class TestSteps:
    def test_call_records_tool_entry(self, registry, calls, make_context):
        program = compile_source('bot A\non input\ncall kb.search with query: input.q, n: 2, raw: unknown.path\nend\nend').program
        result = run(program, make_context(input={"q": "refunds"}, call_tool=registry))
        entry = result.transcript[0]
        assert entry["type"] == "tool"
        assert entry["tool"] == "kb.search"
        assert entry["args"] == {"query": "refunds", "n": 2, "raw": "unknown.path"}
        assert entry["result"]["output"] == "results for refunds"
        assert calls == [{"tool": "kb.search", "args": {"query": "refunds", "n": 2, "raw": "unknown.path"}}]

    def test_tools_step_invokes_each_tool_without_args(self, registry, calls, make_context):
        program = program_of({"type": "tools", "tools": ["kb.search", "tickets.create"]})
        result = run(program, make_context(call_tool=registry))
        assert [e["tool"] for e in result.transcript] == ["kb.search", "tickets.create"]
        assert [c["args"] for c in calls] == [{}, {}]

    def test_no_dispatcher_leaves_gap(self):
        program = program_of({"type": "call", "tool": "x", "args": {}}, {"type": "say", "payload": "after"})
        assert run(program).transcript == [{"type": "say", "payload": "after"}]

    def test_memory_and_remember(self):
        store = InMemoryStore({"notes": ["old"]})
        program = program_of(
            {"type": "remember", "key": "notes", "value": "saw {input.q}"},
            {"type": "memory", "keys": ["notes"]},
        )
        result = run(program, RunContext(input={"q": "x"}, memory=store))
        assert result.transcript[0] == {"type": "memory.append", "key": "notes", "value": "saw x"}
        assert result.transcript[1] == {"type": "memory", "key": "notes", "value": ["old", "saw x"]}

    def test_default_memory_is_fresh(self):
        program = program_of({"type": "remember", "key": "k", "value": "v"}, {"type": "memory", "keys": ["k"]})
        first = run(program)
        second = run(program)
        assert first.transcript[1]["value"] == ["v"]
        assert second.transcript[1]["value"] == ["v"]

    def test_set_literal_and_reference(self, make_context):
        program = program_of(
            {"type": "set", "key": "user.name", "mode": "reference", "value": "input.name"},
            {"type": "set", "key": "count", "mode": "literal", "value": 3},
            {"type": "set", "key": "ghost", "mode": "reference", "value": "nope"},
            {"type": "say", "payload": "{user.name} {count}"},
        )
        ctx = make_context(input={"name": "Ada"})
        result = run(program, ctx)
        assert ctx.locals == {"user": {"name": "Ada"}, "count": 3, "ghost": None}
        assert result.says == ["Ada 3"]

    def test_dispatcher_exceptions_propagate(self):
        async def call_tool(name, args, ctx):
            raise RuntimeError("dispatcher down")

        program = program_of({"type": "call", "tool": "x", "args": {}})
        with pytest.raises(RuntimeError, match="dispatcher down"):
            run(program, RunContext(call_tool=call_tool))

    def test_unknown_step_is_skipped(self, make_context):
        events = []
        program = program_of({"type": "teleport"}, {"type": "say", "payload": "ok"})
        result = run(program, make_context(emit=events.append))
        assert result.says == ["ok"]
        assert events[0]["type"] == "noop"

    def test_observer_failure_does_not_stop_run(self, make_context):
        def observer(event):
            raise RuntimeError("observer down")

        program = program_of({"type": "say", "payload": "a"}, {"type": "say", "payload": "b"})
        assert run(program, make_context(emit=observer)).says == ["a", "b"]


class TestConditions:
    IF_ELSE = {"type": "if", "condition": "cond", "then": [{"type": "say", "payload": "then"}], "else": [{"type": "say", "payload": "else"}]}

    @pytest.mark.parametrize("evaluate,expected", [
        (lambda c, ctx: True, ["then"]),
        (lambda c, ctx: False, ["else"]),
        (None, ["else"]),
    ])
    def test_branch_selection(self, evaluate, expected, make_context):
        assert run(program_of(self.IF_ELSE), make_context(evaluate=evaluate)).says == expected

    def test_throwing_evaluator_is_falsy(self, make_context):
        def evaluate(condition, ctx):
            raise ValueError("bad condition")

        assert run(program_of(self.IF_ELSE), make_context(evaluate=evaluate)).says == ["else"]

    def test_async_evaluator(self, make_context):
        async def evaluate(condition, ctx):
            return condition == "cond"

        assert run(program_of(self.IF_ELSE), make_context(evaluate=evaluate)).says == ["then"]

    def test_default_evaluator_against_input(self, support_source, registry):
        program = compile_source(support_source).program
        ctx = RunContext(input={"question": "q", "urgent": True, "user": "bo", "tags": []},
                         memory=InMemoryStore(), call_tool=registry, evaluate=ConditionEvaluator())
        result = run(program, ctx)
        assert "Escalating for bo" in result.says
        assert "Looking into it, bo" not in result.says


class TestLoops:
    def test_iterates_collection(self, make_context):
        program = program_of({"type": "loop", "iterator": "n", "source": "input.nums",
                              "steps": [{"type": "say", "payload": "{n}/{input.label}"}]})
        result = run(program, make_context(input={"nums": [1, 2], "label": "x"}))
        assert result.says == ["1/x", "2/x"]

    @pytest.mark.parametrize("input", [{}, {"items": None}, {"items": "not a list"}, {"items": []}])
    def test_empty_or_unresolvable_collection(self, input, make_context):
        program = program_of({"type": "loop", "iterator": "item", "source": "items",
                              "steps": [{"type": "say", "payload": "{item}"}]})
        assert run(program, make_context(input=input)).transcript == []

    def test_resolver_and_memory_fallbacks(self):
        program = program_of({"type": "loop", "iterator": "item", "source": "queue",
                              "steps": [{"type": "say", "payload": "{item}"}]})
        resolved = run(program, RunContext(resolve_collection=lambda source, ctx: ["r1"]))
        assert resolved.says == ["r1"]
        from_memory = run(program, RunContext(memory=InMemoryStore({"queue": ["m1", "m2"]})))
        assert from_memory.says == ["m1", "m2"]

    def test_failing_resolver_yields_no_iterations(self):
        def resolver(source, ctx):
            raise KeyError(source)

        program = program_of({"type": "loop", "iterator": "item", "source": "queue",
                              "steps": [{"type": "say", "payload": "{item}"}]})
        assert run(program, RunContext(resolve_collection=resolver)).transcript == []

    def test_loop_body_writes_shared_locals(self, make_context):
        program = program_of({"type": "loop", "iterator": "item", "source": "input.items",
                              "steps": [{"type": "set", "key": "last", "mode": "reference", "value": "item"}]})
        ctx = make_context(input={"items": ["a", "b"]})
        run(program, ctx)
        assert ctx.locals["last"] == "b"

    def test_loop_variable_shadows_same_named_local(self, make_context):
        source = 'bot L\non input\nset item to "x"\nloop item in input.items\nsay "{item}"\nend\nsay "after {item}"\nend\nend'
        program = compile_source(source).program
        result = run(program, make_context(input={"items": ["a", "b"]}))
        assert result.says == ["a", "b", "after x"]


class TestHelpers:
    def test_render_value(self):
        assert render_value(None) == ""
        assert render_value(True) == "true"
        assert render_value({"a": 1}) == '{"a": 1}'
        assert render_value(2.5) == "2.5"

    def test_resolve_argument(self):
        ctx = RunContext(input={"name": "Ada", "user": {"id": 7}})
        assert resolve_argument('"hi {name}"', ctx) == "hi Ada"
        assert resolve_argument("user.id", ctx) == 7
        assert resolve_argument("true", ctx) is True
        assert resolve_argument("[1, 2]", ctx) == [1, 2]
        assert resolve_argument("nobody", ctx) == "nobody"
        assert resolve_argument("a + b", ctx) == "a + b"

    def test_interpreter_instance_is_reusable(self, greeter_source):
        interpreter = StepInterpreter()
        program = compile_source(greeter_source).program
        first = asyncio.run(interpreter.run(program, RunContext(input={"name": "A"})))
        second = asyncio.run(interpreter.run(program, RunContext(input={"name": "B"})))
        assert first.says == ["Hi A"]
        assert second.says == ["Hi B"]
