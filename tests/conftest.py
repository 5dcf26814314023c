"""
Test configuration and fixtures for the HiveLang test suite.
"""
import sys
import pytest
from pathlib import Path
from typing import Any, Dict, List

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hivelang.context import RunContext
from hivelang.memory import InMemoryStore
from hivelang.tools import ToolDescriptor, ToolRegistry


GREETER = """bot Greeter
  on input
    say "Hi {input.name}"
  end
end
"""


class ScriptedProvider:
    """Chat provider stub replaying canned replies in order.

    The last reply repeats once the script runs out; every message list
    it receives is kept for inspection.
    """

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.calls: List[List[Dict[str, str]]] = []

    def complete(self, messages, model=None, temperature=0.7):
        self.calls.append([dict(m) for m in messages])
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]


class FailingProvider:
    def complete(self, messages, model=None, temperature=0.7):
        raise RuntimeError("model unavailable")


@pytest.fixture
def greeter_source() -> str:
    """Return the smallest complete bot."""
    return GREETER


@pytest.fixture
def support_source() -> str:
    """Return a bot exercising tools, memory, conditions and loops."""
    return """bot Support
  description "Answers support questions"
  tools(kb.search, tickets.create)
  memory[history]
  on input
    call kb.search with query: input.question
    remember history "asked {input.question}"
    if input.urgent == true
      say "Escalating for {input.user}"
      call tickets.create with {title: "Urgent", user: input.user}
    else
      say "Looking into it, {input.user}"
    end
    loop tag in input.tags
      say "tag: {tag}"
    end
  end
end
"""


@pytest.fixture
def calls() -> List[Dict[str, Any]]:
    """Shared log the recording tools write to."""
    return []


@pytest.fixture
def registry(calls) -> ToolRegistry:
    """Registry with a few recording tools."""

    def search(args, context):
        calls.append({"tool": "kb.search", "args": args})
        return {"success": True, "output": f"results for {args.get('query')}"}

    async def create_ticket(args, context):
        calls.append({"tool": "tickets.create", "args": args})
        return "ticket-1"

    def broken(args, context):
        raise ValueError("boom")

    return ToolRegistry([
        ToolDescriptor("kb.search", search, capability="knowledge", description="Search the knowledge base"),
        ToolDescriptor("tickets.create", create_ticket, description="Open a ticket"),
        ToolDescriptor("broken.tool", broken, description="Always fails"),
    ])


@pytest.fixture
def make_context():
    """Build a RunContext with an in-memory store."""

    def _make(**kwargs) -> RunContext:
        kwargs.setdefault("memory", InMemoryStore())
        return RunContext(**kwargs)

    return _make


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep HIVELANG_* variables from the host out of the tests."""
    for var in (
        "HIVELANG_AI_PROVIDER",
        "HIVELANG_AI_MODEL",
        "HIVELANG_TEMPERATURE",
        "HIVELANG_MAX_STEPS",
        "HIVELANG_LOG_LEVEL",
        "HIVELANG_STATE_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
