"""Parsing of model replies in the Thought/Action/Action Input format.

Model output drifts from the requested format in predictable ways, so the
Action field is cleaned by a fixed sequence of small rules. Order matters:
each rule assumes the ones before it already ran.
"""
from __future__ import annotations
import json
import re
from typing import Any, Callable, Dict, Optional, Tuple

LABELS = ("Thought", "Action", "Action Input", "Observation", "Final Answer")

FINAL_ANSWER = re.compile(r"^[ \t]*\**[ \t]*Final Answer[ \t]*\**[ \t]*:\**", re.M)
BARE_ACTION = re.compile(r"^[A-Za-z0-9._-]+$")
DOTTED_ACTION = re.compile(r"[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)+")
FILLER_PREFIX = re.compile(r"^(?:use|call|execute|to)\s+", re.I)
TRAILING_CLAUSE = re.compile(r"\s+to\s+.*$", re.I | re.S)
CODE_FENCE = re.compile(r"^```[A-Za-z]*\s*(.*?)\s*```$", re.S)

_NEXT_LABEL = r"(?=\n\s*\**\s*(?i:" + "|".join(re.escape(label) for label in LABELS) + r")\s*\**\s*:|\Z)"


def extract_section(text: str, name: str) -> str:
    """Return the body of ``Name: ...`` up to the next known label."""
    pattern = re.compile(
        r"(?:^|\n)\s*\**\s*(?i:" + re.escape(name) + r")\s*\**\s*:\**[ \t]*(.+?)" + _NEXT_LABEL,
        re.S,
    )
    match = pattern.search(text)
    return match.group(1).strip() if match else ""


def split_final_answer(text: str) -> Optional[str]:
    """Text after a `Final Answer:` label opening a line, or None if there is none."""
    match = FINAL_ANSWER.search(text)
    if not match:
        return None
    answer = text[match.end():].strip()
    return answer or text.strip()


# ---------- Action normalization rules ----------
def strip_markdown(action: str) -> str:
    return action.replace("**", "").replace("`", "").strip()


def drop_after_newline(action: str) -> str:
    return action.split("\n", 1)[0].strip()


def strip_action_input_leak(action: str) -> str:
    idx = action.lower().find("action input:")
    return action[:idx].strip() if idx >= 0 else action


def strip_filler_prefixes(action: str) -> str:
    previous = None
    while previous != action:
        previous = action
        action = FILLER_PREFIX.sub("", action, count=1).strip()
    return action


def strip_trailing_clause(action: str) -> str:
    return TRAILING_CLAUSE.sub("", action).strip()


def salvage_identifier(action: str) -> str:
    """Keep a bare identifier as is; otherwise dig a dotted name out of the text."""
    if not action or BARE_ACTION.match(action):
        return action
    match = DOTTED_ACTION.search(action)
    return match.group(0) if match else ""


NORMALIZERS: Tuple[Callable[[str], str], ...] = (
    strip_markdown,
    drop_after_newline,
    strip_action_input_leak,
    strip_filler_prefixes,
    strip_trailing_clause,
    salvage_identifier,
)


def normalize_action(raw: str) -> str:
    action = raw or ""
    for rule in NORMALIZERS:
        action = rule(action)
    return action


def parse_action_input(raw: str) -> Dict[str, Any]:
    """Parse Action Input as a JSON object.

    Anything that is not a JSON object is kept as a single ``prompt``
    argument instead of being dropped.
    """
    text = (raw or "").strip()
    if not text:
        return {}
    fenced = CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        return {"prompt": text}
    if isinstance(parsed, dict):
        return parsed
    return {"prompt": parsed if isinstance(parsed, str) else text}
