"""Pydantic schemas for tool results and the reasoning engine.

Tool implementations are not trusted to return a well-formed result, so
whatever they return is coerced into :class:`ToolResult` before the
interpreter or the reasoning engine looks at it.
"""
from __future__ import annotations
import json
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_MAX_STEPS, DEFAULT_TEMPERATURE, Settings

DEFAULT_SYSTEM_PROMPT = """You are an agentic AI assistant that solves tasks by reasoning step-by-step.

You have access to tools. For each step, you must:
1. THINK: Reason about what to do next
2. ACT: Choose a tool and provide inputs
3. OBSERVE: Analyze the tool's output
4. DECIDE: Continue with more steps or provide final answer

CRITICAL FORMATTING RULES:
- Action field MUST contain ONLY the exact tool name, nothing else
- Action field MUST NOT contain sentences, explanations, or markdown
- Action field MUST NOT contain words like "Use", "Call", "Execute"
- Action field MUST be just the tool name, for example: integrations.firebase.read

Format your response EXACTLY as:
Thought: [your reasoning about what to do next]
Action: [exact tool name only - no extra words]
Action Input: [JSON object with tool parameters]

After seeing the observation, either:
- Continue with another Thought/Action/Action Input
- Or provide: Final Answer: [your complete response]"""


class ToolResult(BaseModel):
    """Schema every tool invocation is normalized to."""
    success: bool = True
    output: str = ""
    data: Optional[Any] = None

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, v: Any) -> str:
        """Non-string outputs are serialized so observations stay readable."""
        if v is None:
            return ""
        if isinstance(v, str):
            return v
        try:
            return json.dumps(v, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(v)

    @field_validator("success", mode="before")
    @classmethod
    def coerce_success(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.lower() in ("true", "yes", "1", "ok", "success")
        return bool(v)

    @classmethod
    def coerce(cls, raw: Any) -> "ToolResult":
        """Build a result from whatever a tool's ``run`` returned."""
        if isinstance(raw, ToolResult):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        if isinstance(raw, dict) and ("output" in raw or "success" in raw):
            return cls.model_validate(raw)
        if isinstance(raw, (dict, list)):
            return cls(success=True, output=raw, data=raw)
        return cls(success=True, output=raw)


class ReActStep(BaseModel):
    """One reasoning iteration, recorded for audit."""
    model_config = ConfigDict(populate_by_name=True)

    thought: str = ""
    action: str = ""
    action_input: Dict[str, Any] = Field(default_factory=dict, alias="actionInput")
    observation: str = ""
    timestamp: float = Field(default_factory=time.time)


class ReActResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    final_answer: str = Field(default="", alias="finalAnswer")
    steps: List[ReActStep] = Field(default_factory=list)
    success: bool = False
    error: Optional[str] = None


class ReActConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1, alias="maxSteps")
    model: Optional[str] = None
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="systemPrompt")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "ReActConfig":
        settings = settings or Settings.from_env()
        data: Dict[str, Any] = {
            "max_steps": settings.max_steps,
            "model": settings.model,
            "temperature": settings.temperature,
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)
