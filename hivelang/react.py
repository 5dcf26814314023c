"""Reason-Act-Observe loop driving tools from model completions.

The engine keeps the whole conversation and sends it on every iteration.
A reply containing a final-answer marker ends the run; otherwise the
Action it names is executed and its observation fed back. Tool failures
and malformed replies never end a run: they become observations or a
format reminder, and only the step budget or a failing model call stops
the loop early.
"""
from __future__ import annotations
import asyncio
import inspect
import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from loguru import logger
from opentelemetry import trace

from .actions import extract_section, normalize_action, parse_action_input, split_final_answer
from .context import RunContext, maybe_await
from .schemas import ReActConfig, ReActResult, ReActStep
from .tools import ToolDescriptor, ToolRegistry

_tracer = trace.get_tracer(__name__)

MAX_STEPS_EXCEEDED = "MAX_STEPS_EXCEEDED"
INCOMPLETE_ANSWER = "Task incomplete: Maximum steps reached without final answer."
REPROMPT = "Please provide your next step in the format: Thought: ... | Action: ... | Action Input: {...}"
NEXT_STEP = "What's your next step? (Thought/Action/Action Input) or provide Final Answer if done."

StepCallback = Callable[[ReActStep], Any]
Tools = Union[ToolRegistry, Iterable[ToolDescriptor]]


def build_initial_prompt(task: str, tools: List[ToolDescriptor]) -> str:
    listing = "\n".join(f"{i}. {t.name}: {t.description}" for i, t in enumerate(tools, start=1))
    return (
        f"Task: {task}\n\n"
        f"Available tools:\n{listing}\n\n"
        "Begin! Remember to follow the Thought/Action/Action Input format."
    )


class ReActEngine:
    """Runs one task against a chat provider and a set of tools.

    ``provider.complete(messages, model=..., temperature=...)`` may be a
    plain function or a coroutine function; blocking providers run in a
    worker thread so the event loop stays free.
    """

    def __init__(self, provider: Any, config: Optional[ReActConfig] = None):
        self.provider = provider
        self.config = config or ReActConfig.from_settings()

    async def _complete(self, messages: List[Dict[str, str]]) -> str:
        complete = self.provider.complete
        kwargs = {"model": self.config.model, "temperature": self.config.temperature}
        if inspect.iscoroutinefunction(complete):
            reply = await complete(list(messages), **kwargs)
        else:
            reply = await maybe_await(await asyncio.to_thread(complete, list(messages), **kwargs))
        return reply or ""

    @staticmethod
    def _find_tool(action: str, tools: List[ToolDescriptor]) -> Optional[ToolDescriptor]:
        wanted = action.strip().lower()
        return next((t for t in tools if t.name.lower() == wanted), None)

    async def _observe(self, action: str, args: Dict[str, Any], tools: List[ToolDescriptor], context: RunContext) -> str:
        tool = self._find_tool(action, tools)
        if tool is None:
            return f"Tool '{action}' not found. Available tools: {', '.join(t.name for t in tools)}"
        try:
            result = await tool.invoke(args, context)
        except Exception as e:
            logger.warning("[react] tool {} raised: {}", tool.name, e)
            return f"Error executing {action}: {e}"
        return result.output or json.dumps(result.model_dump(), ensure_ascii=False, default=str)

    async def _record(self, step: ReActStep, steps: List[ReActStep], on_step: Optional[StepCallback]) -> None:
        steps.append(step)
        if on_step is None:
            return
        try:
            await maybe_await(on_step(step))
        except Exception as e:
            logger.warning("[react] step observer failed: {}", e)

    async def run(
        self,
        task: str,
        tools: Tools,
        context: Optional[RunContext] = None,
        on_step: Optional[StepCallback] = None,
    ) -> ReActResult:
        catalog = list(tools)
        context = context if context is not None else RunContext()
        steps: List[ReActStep] = []
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": self.config.system_prompt},
            {"role": "user", "content": build_initial_prompt(task, catalog)},
        ]

        with _tracer.start_as_current_span("react.run") as span:
            span.set_attribute("react.max_steps", self.config.max_steps)
            try:
                for number in range(1, self.config.max_steps + 1):
                    with _tracer.start_as_current_span("react.step") as step_span:
                        step_span.set_attribute("react.step", number)
                        reply = await self._complete(messages)
                        messages.append({"role": "assistant", "content": reply})

                        answer = split_final_answer(reply)
                        if answer is not None:
                            logger.debug("[react] final answer after {} steps", len(steps))
                            return ReActResult(final_answer=answer, steps=steps, success=True)

                        thought = extract_section(reply, "Thought")
                        action = normalize_action(extract_section(reply, "Action"))
                        if not action:
                            logger.debug("[react] step {}: no usable action, reprompting", number)
                            messages.append({"role": "user", "content": REPROMPT})
                            await self._record(ReActStep(thought=thought, observation=REPROMPT), steps, on_step)
                            continue

                        args = parse_action_input(extract_section(reply, "Action Input"))
                        step_span.set_attribute("react.action", action)
                        observation = await self._observe(action, args, catalog, context)
                        logger.debug("[react] step {}: {} -> {}", number, action, observation[:120])
                        await self._record(
                            ReActStep(thought=thought, action=action, action_input=args, observation=observation),
                            steps,
                            on_step,
                        )
                        messages.append({"role": "user", "content": f"Observation: {observation}\n\n{NEXT_STEP}"})
            except Exception as e:
                logger.error("[react] model call failed: {}", e)
                return ReActResult(steps=steps, success=False, error=str(e))

        logger.warning("[react] no final answer within {} steps", self.config.max_steps)
        return ReActResult(final_answer=INCOMPLETE_ANSWER, steps=steps, success=False, error=MAX_STEPS_EXCEEDED)


async def execute_react(
    task: str,
    tools: Tools,
    provider: Any,
    config: Optional[ReActConfig] = None,
    context: Optional[RunContext] = None,
) -> ReActResult:
    return await ReActEngine(provider, config).run(task, tools, context)


async def execute_react_streaming(
    task: str,
    tools: Tools,
    provider: Any,
    on_step: StepCallback,
    config: Optional[ReActConfig] = None,
    context: Optional[RunContext] = None,
) -> ReActResult:
    """Like :func:`execute_react`, calling ``on_step`` as each step is recorded."""
    return await ReActEngine(provider, config).run(task, tools, context, on_step=on_step)


def describe(result: ReActResult) -> str:
    return json.dumps(result.model_dump(by_alias=True), indent=2, ensure_ascii=False, default=str)
