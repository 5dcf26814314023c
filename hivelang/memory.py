"""Memory accessors used by ``remember`` and ``memory[...]`` steps."""
from __future__ import annotations
import copy
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .errors import MemoryStoreError


class InMemoryStore:
    """Dict backed memory shared by a run and everything it derives."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.slots: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self.slots.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.slots[key] = value

    async def append(self, key: str, value: Any) -> List[Any]:
        existing = self.slots.get(key)
        if existing is None:
            items: List[Any] = []
        elif isinstance(existing, list):
            items = existing
        else:
            items = [existing]
        items.append(value)
        self.slots[key] = items
        return items

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self.slots)


class MemorySnapshot(BaseModel):
    """Serializable state of a :class:`JsonFileMemoryStore`."""
    bot: str
    updated_at: str
    slots: Dict[str, Any] = Field(default_factory=dict)


class JsonFileMemoryStore(InMemoryStore):
    """Memory that survives between runs in a JSON file per bot."""

    def __init__(self, bot: str, base_path: Optional[str] = None):
        if base_path is None:
            base_path = Settings.from_env().state_dir
        self.bot = bot
        self.base_path = base_path
        safe_name = "".join(c for c in bot if c.isalnum() or c in ("-", "_")) or "anonymous"
        self.path = Path(base_path) / f"{safe_name}.memory.json"
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return MemorySnapshot.model_validate(data).slots
        except (ValueError, ValidationError) as e:
            raise MemoryStoreError(f"Invalid memory file {self.path}: {e}") from e

    def save(self) -> Path:
        os.makedirs(self.base_path, exist_ok=True)
        snapshot = MemorySnapshot(bot=self.bot, updated_at=datetime.now().isoformat(), slots=self.slots)
        self.path.write_text(json.dumps(snapshot.model_dump(), indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        logger.debug("[memory] saved {} slots to {}", len(self.slots), self.path)
        return self.path

    async def set(self, key: str, value: Any) -> None:
        await super().set(key, value)
        self.save()

    async def append(self, key: str, value: Any) -> List[Any]:
        items = await super().append(key, value)
        self.save()
        return items
