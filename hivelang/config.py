"""Environment driven settings for HiveLang.

Every value can be overridden with a ``HIVELANG_*`` environment variable;
provider credentials keep each vendor's own variable names
(``OPENAI_API_KEY``, ``ANTHROPIC_API_KEY``, ...).
"""
from __future__ import annotations
import os
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_STEPS = 5
DEFAULT_TEMPERATURE = 0.7

ENV_VARS: Dict[str, str] = {
    "provider": "HIVELANG_AI_PROVIDER",
    "model": "HIVELANG_AI_MODEL",
    "temperature": "HIVELANG_TEMPERATURE",
    "max_steps": "HIVELANG_MAX_STEPS",
    "log_level": "HIVELANG_LOG_LEVEL",
    "state_dir": "HIVELANG_STATE_DIR",
}


class Settings(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    log_level: str = "WARNING"
    state_dir: str = "./.hivelang_state"

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return str(v).strip().upper() if v else "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        data = {}
        for field_name, var in ENV_VARS.items():
            value = env.get(var)
            if value not in (None, ""):
                data[field_name] = value
        return cls.model_validate(data)
