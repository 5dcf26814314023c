"""Chat-completion providers driving the reasoning engine.

Every provider exposes ``complete(messages, model=None, temperature=0.7)``
and returns the assistant's text. Messages use the OpenAI shape
(``{"role": ..., "content": ...}``); providers with a separate system
field receive the system messages split out.
"""
from __future__ import annotations
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from loguru import logger

from .config import Settings
from .errors import ProviderError

# Optional vendor SDK imports guarded to keep each provider independent
try:
    from openai import OpenAI as _OpenAIClient  # type: ignore
except Exception:  # pragma: no cover
    _OpenAIClient = None

try:
    import anthropic  # type: ignore
except Exception:  # pragma: no cover
    anthropic = None

try:
    import google.generativeai as genai  # type: ignore
except Exception:  # pragma: no cover
    genai = None

try:
    from mistralai import Mistral as _MistralClient  # type: ignore
except Exception:  # pragma: no cover
    _MistralClient = None

try:
    import cohere as _cohere  # type: ignore
except Exception:  # pragma: no cover
    _cohere = None

Messages = List[Dict[str, str]]


def _with_retries(fn: Callable[[], str], retries: int = 2, base_delay: float = 0.5) -> str:
    last_exc: Optional[Exception] = None
    for i in range(retries + 1):
        try:
            return fn()
        except Exception as e:  # pragma: no cover - network variability
            last_exc = e
            if i == retries:
                break
            logger.debug("[provider] attempt {} failed ({}); retrying", i + 1, e)
            time.sleep(base_delay * (2 ** i))
    raise last_exc  # type: ignore


def _split_system(messages: Messages) -> Tuple[str, Messages]:
    system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
    rest = [m for m in messages if m.get("role") != "system"]
    return system, rest


def _env_present(keys: List[str]) -> bool:
    return all(os.getenv(k) for k in keys)


class ChatProvider:
    name: str = "base"
    default_model: str = ""

    def __init__(self, timeout_s: int = 60, retries: int = 2) -> None:
        self.timeout_s = timeout_s
        self.retries = retries

    def _model(self, model: Optional[str]) -> str:
        return model or os.getenv(f"HIVELANG_{self.name.upper()}_MODEL") or self.default_model

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:  # pragma: no cover - abstract
        raise NotImplementedError


class OpenAIProvider(ChatProvider):
    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not _OpenAIClient or not os.getenv("OPENAI_API_KEY"):
            raise ProviderError("OpenAI not available: missing client or OPENAI_API_KEY")
        self.client = _OpenAIClient()

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        def _call() -> str:
            resp = self.client.chat.completions.create(
                model=self._model(model),
                messages=messages,
                temperature=temperature,
                timeout=self.timeout_s,
            )
            return resp.choices[0].message.content or "" if resp and resp.choices else ""

        return _with_retries(_call, retries=self.retries)


class AnthropicProvider(ChatProvider):
    name = "anthropic"
    default_model = "claude-sonnet-4-5"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not anthropic or not os.getenv("ANTHROPIC_API_KEY"):
            raise ProviderError("Anthropic not available")
        self.client = anthropic.Anthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        system, rest = _split_system(messages)

        def _call() -> str:
            msg = self.client.messages.create(
                model=self._model(model),
                max_tokens=1024,
                temperature=min(temperature, 1.0),
                system=system,
                messages=rest,
                timeout=self.timeout_s,
            )
            return "".join(part.text for part in msg.content if getattr(part, "type", "") == "text")

        return _with_retries(_call, retries=self.retries)


class GeminiProvider(ChatProvider):
    name = "gemini"
    default_model = "gemini-2.0-flash"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not genai or not api_key:
            raise ProviderError("Gemini not available")
        genai.configure(api_key=api_key)

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        system, rest = _split_system(messages)
        contents = [
            {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
            for m in rest
        ]

        def _call() -> str:
            gm = genai.GenerativeModel(self._model(model), system_instruction=system or None)
            resp = gm.generate_content(
                contents,
                generation_config={"temperature": temperature},
                request_options={"timeout": self.timeout_s},
            )
            return resp.text or ""

        return _with_retries(_call, retries=self.retries)


class MistralProvider(ChatProvider):
    name = "mistral"
    default_model = "mistral-large-latest"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not _MistralClient or not os.getenv("MISTRAL_API_KEY"):
            raise ProviderError("Mistral not available")
        self.client = _MistralClient(api_key=os.getenv("MISTRAL_API_KEY"))

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        def _call() -> str:
            resp = self.client.chat.complete(model=self._model(model), messages=messages, temperature=temperature)
            return resp.choices[0].message.content or "" if resp and resp.choices else ""

        return _with_retries(_call, retries=self.retries)


class CohereProvider(ChatProvider):
    name = "cohere"
    default_model = "command-r-plus"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not _cohere or not os.getenv("COHERE_API_KEY"):
            raise ProviderError("Cohere not available")
        self.client = _cohere.ClientV2(api_key=os.getenv("COHERE_API_KEY"))

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        def _call() -> str:
            resp = self.client.chat(model=self._model(model), messages=messages, temperature=temperature)
            parts = getattr(resp.message, "content", None) or []
            return "".join(getattr(p, "text", "") for p in parts)

        return _with_retries(_call, retries=self.retries)


class _HTTPChatProvider(ChatProvider):
    """Providers reached over plain HTTP with an OpenAI-compatible body."""

    def _post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        r = requests.post(url, headers=headers, json=body, timeout=self.timeout_s)
        r.raise_for_status()
        return r.json()

    @staticmethod
    def _choice_content(data: Dict[str, Any]) -> str:
        return (data.get("choices") or [{}])[0].get("message", {}).get("content", "") or ""


class AzureOpenAIProvider(_HTTPChatProvider):
    name = "azure"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not _env_present(["AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_DEPLOYMENT"]):
            raise ProviderError("Azure OpenAI not available")
        self.api_key = os.getenv("AZURE_OPENAI_API_KEY")
        self.endpoint = os.getenv("AZURE_OPENAI_ENDPOINT").rstrip("/")
        self.deployment = os.getenv("AZURE_OPENAI_DEPLOYMENT")
        self.api_version = os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21")

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        url = f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions?api-version={self.api_version}"
        body = {"messages": messages, "temperature": temperature}
        headers = {"api-key": self.api_key, "Content-Type": "application/json"}
        return _with_retries(lambda: self._choice_content(self._post(url, body, headers)), retries=self.retries)


class OpenRouterProvider(_HTTPChatProvider):
    name = "openrouter"
    default_model = "openai/gpt-4o-mini"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not os.getenv("OPENROUTER_API_KEY"):
            raise ProviderError("OpenRouter not available")
        self.api_key = os.getenv("OPENROUTER_API_KEY")

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        url = "https://openrouter.ai/api/v1/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        body = {"model": self._model(model), "messages": messages, "temperature": temperature}
        return _with_retries(lambda: self._choice_content(self._post(url, body, headers)), retries=self.retries)


class OllamaProvider(_HTTPChatProvider):
    name = "ollama"
    default_model = "llama3.3"

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("timeout_s", 120)
        super().__init__(**kwargs)
        if not os.getenv("OLLAMA_HOST"):
            raise ProviderError("Ollama not available")
        self.base = os.getenv("OLLAMA_HOST").rstrip("/")

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        url = f"{self.base}/api/chat"
        body = {
            "model": self._model(model),
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }

        def _call() -> str:
            data = self._post(url, body, {"Content-Type": "application/json"})
            return (data.get("message") or {}).get("content", "") if isinstance(data, dict) else ""

        return _with_retries(_call, retries=self.retries)


class DryRunProvider(ChatProvider):
    """Offline provider that answers at once without calling any tool."""
    name = "dry-run"

    def __init__(self, answer: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.answer = answer

    def complete(self, messages: Messages, model: Optional[str] = None, temperature: float = 0.7) -> str:
        if self.answer is not None:
            return f"Final Answer: {self.answer}"
        task = ""
        for m in messages:
            if m.get("role") == "user" and m["content"].startswith("Task:"):
                task = m["content"].splitlines()[0][len("Task:"):].strip()
                break
        return f"Thought: dry run, no model configured.\nFinal Answer: [dry-run] {task}"


PROVIDERS: Dict[str, type] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "mistral": MistralProvider,
    "cohere": CohereProvider,
    "azure": AzureOpenAIProvider,
    "openrouter": OpenRouterProvider,
    "ollama": OllamaProvider,
    "dry-run": DryRunProvider,
}


def select_provider(settings: Optional[Settings] = None) -> Optional[ChatProvider]:
    """Select a provider from HIVELANG_AI_PROVIDER or the precedence list.

    Precedence: OpenAI → Anthropic → Gemini → Mistral → Cohere → Azure → OpenRouter → Ollama
    """
    settings = settings or Settings.from_env()

    def _instantiate(name: str) -> Optional[ChatProvider]:
        cls = PROVIDERS.get(name)
        if cls is None:
            logger.warning("[provider] unknown provider '{}'", name)
            return None
        try:
            return cls()
        except ProviderError as e:
            logger.debug("[provider] {} unavailable: {}", name, e)
            return None

    if settings.provider:
        return _instantiate(settings.provider)

    for name in ("openai", "anthropic", "gemini", "mistral", "cohere", "azure", "openrouter", "ollama"):
        prov = _instantiate(name)
        if prov:
            logger.debug("[provider] selected {}", name)
            return prov
    return None
