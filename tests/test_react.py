"""
Reasoning engine tests driven by scripted chat providers.
"""
import asyncio
import json

from hivelang.react import (
    INCOMPLETE_ANSWER,
    MAX_STEPS_EXCEEDED,
    REPROMPT,
    ReActEngine,
    build_initial_prompt,
    execute_react,
    execute_react_streaming,
)
from hivelang.schemas import DEFAULT_SYSTEM_PROMPT, ReActConfig
from hivelang.tools import ToolDescriptor

from conftest import FailingProvider, ScriptedProvider


def run_engine(provider, tools, max_steps=5, **kwargs):
    config = ReActConfig(max_steps=max_steps)
    return asyncio.run(ReActEngine(provider, config).run("help the user", tools, **kwargs))


def test_immediate_final_answer(registry):
    provider = ScriptedProvider("Thought: easy\nFinal Answer: All done, verbatim.")
    result = run_engine(provider, registry)
    assert result.success is True
    assert result.steps == []
    assert result.final_answer == "All done, verbatim."
    assert result.error is None


def test_never_answering_exhausts_budget(registry):
    provider = ScriptedProvider("Thought: hmm\nAction: kb.search\nAction Input: {}")
    result = run_engine(provider, registry, max_steps=3)
    assert result.success is False
    assert result.error == MAX_STEPS_EXCEEDED
    assert result.final_answer == INCOMPLETE_ANSWER
    assert len(result.steps) <= 3
    assert len(provider.calls) == 3


def test_tool_step_then_answer(registry, calls):
    provider = ScriptedProvider(
        'Thought: search first\nAction: Use kb.search to look\nAction Input: {"query": "refunds"}',
        "Final Answer: Refunds take 5 days.",
    )
    result = run_engine(provider, registry)
    assert result.success
    assert result.final_answer == "Refunds take 5 days."
    step = result.steps[0]
    assert step.thought == "search first"
    assert step.action == "kb.search"
    assert step.action_input == {"query": "refunds"}
    assert step.observation == "results for refunds"
    assert calls == [{"tool": "kb.search", "args": {"query": "refunds"}}]

    second_call = provider.calls[1]
    assert second_call[-1]["role"] == "user"
    assert second_call[-1]["content"].startswith("Observation: results for refunds\n\nWhat's your next step?")
    assert second_call[-2] == {"role": "assistant", "content": provider.replies[0]}


def test_conversation_starts_with_system_prompt_and_task(registry):
    provider = ScriptedProvider("Final Answer: ok")
    run_engine(provider, registry)
    system, task = provider.calls[0]
    assert system == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
    assert task["content"] == build_initial_prompt("help the user", list(registry))
    assert "1. kb.search: Search the knowledge base" in task["content"]
    assert task["content"].endswith("Begin! Remember to follow the Thought/Action/Action Input format.")


def test_tool_lookup_is_case_insensitive(registry, calls):
    provider = ScriptedProvider("Action: KB.Search\nAction Input: {}", "Final Answer: ok")
    result = run_engine(provider, registry)
    assert result.steps[0].observation == "results for None"
    assert calls[0]["tool"] == "kb.search"


def test_unknown_tool_lists_available(registry):
    provider = ScriptedProvider("Action: web.browse\nAction Input: {}", "Final Answer: ok")
    result = run_engine(provider, registry)
    assert result.success
    assert result.steps[0].observation == (
        "Tool 'web.browse' not found. Available tools: kb.search, tickets.create, broken.tool"
    )


def test_throwing_tool_becomes_observation(registry):
    provider = ScriptedProvider("Action: broken.tool\nAction Input: {}", "Final Answer: recovered")
    result = run_engine(provider, registry)
    assert result.success
    assert result.final_answer == "recovered"
    assert result.steps[0].observation == "Error executing broken.tool: boom"


def test_missing_action_reprompts_and_counts(registry):
    provider = ScriptedProvider("I am thinking out loud", "Final Answer: fine")
    result = run_engine(provider, registry)
    assert result.success
    assert len(result.steps) == 1
    assert result.steps[0].action == ""
    assert result.steps[0].observation == REPROMPT
    assert provider.calls[1][-1] == {"role": "user", "content": REPROMPT}


def test_unparseable_action_input_becomes_prompt(registry, calls):
    provider = ScriptedProvider("Action: kb.search\nAction Input: refund policy", "Final Answer: ok")
    run_engine(provider, registry)
    assert calls[0]["args"] == {"prompt": "refund policy"}


def test_non_string_output_is_serialized(registry, calls):
    provider = ScriptedProvider("Action: tickets.create\nAction Input: {\"title\": \"t\"}", "Final Answer: ok")
    result = run_engine(provider, registry)
    assert result.steps[0].observation == "ticket-1"


def test_model_failure_is_reported():
    result = run_engine(FailingProvider(), [])
    assert result.success is False
    assert result.error == "model unavailable"
    assert result.steps == []


def test_async_provider(registry):
    class AsyncProvider:
        async def complete(self, messages, model=None, temperature=0.7):
            return "Final Answer: async ok"

    assert run_engine(AsyncProvider(), registry).final_answer == "async ok"


def test_model_and_temperature_are_forwarded(registry):
    seen = {}

    class Recording:
        def complete(self, messages, model=None, temperature=0.7):
            seen.update(model=model, temperature=temperature)
            return "Final Answer: ok"

    config = ReActConfig(model="m-1", temperature=0.2)
    asyncio.run(ReActEngine(Recording(), config).run("t", registry))
    assert seen == {"model": "m-1", "temperature": 0.2}


def test_streaming_reports_each_step(registry):
    provider = ScriptedProvider("no format here", "Action: kb.search\nAction Input: {}", "Final Answer: ok")
    seen = []
    result = asyncio.run(execute_react_streaming("t", registry, provider, seen.append))
    assert [s.action for s in seen] == ["", "kb.search"]
    assert seen == result.steps


def test_failing_step_observer_is_ignored(registry):
    def observer(step):
        raise RuntimeError("ui gone")

    provider = ScriptedProvider("Action: kb.search\nAction Input: {}", "Final Answer: ok")
    result = asyncio.run(execute_react_streaming("t", registry, provider, observer))
    assert result.success


def test_execute_react_uses_configured_budget(registry, monkeypatch):
    monkeypatch.setenv("HIVELANG_MAX_STEPS", "2")
    provider = ScriptedProvider("Action: kb.search\nAction Input: {}")
    result = asyncio.run(execute_react("t", registry, provider))
    assert result.error == MAX_STEPS_EXCEEDED
    assert len(provider.calls) == 2


def test_final_answer_phrase_in_thought_still_runs_tool(registry, calls):
    provider = ScriptedProvider(
        "Thought: after searching I will write the final answer: a summary.\nAction: kb.search\nAction Input: {}",
        "Final Answer: summary",
    )
    result = run_engine(provider, registry)
    assert result.final_answer == "summary"
    assert len(result.steps) == 1
    assert calls == [{"tool": "kb.search", "args": {}}]


def test_unserializable_data_still_observed():
    class Blob:
        def __str__(self):
            return "<blob>"

    def fetch(args, context):
        return {"success": True, "output": "", "data": Blob()}

    tools = [ToolDescriptor("blob.fetch", fetch)]
    provider = ScriptedProvider("Action: blob.fetch\nAction Input: {}", "Final Answer: ok")
    result = run_engine(provider, tools)
    assert result.success
    observation = json.loads(result.steps[0].observation)
    assert observation == {"success": True, "output": "", "data": "<blob>"}
