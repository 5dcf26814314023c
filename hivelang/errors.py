from typing import Any, List, Optional


class HiveLangError(Exception):
    pass


class CompileError(HiveLangError):
    """Raised on request when a compilation produced error diagnostics."""

    def __init__(self, message: str, diagnostics: Optional[List[Any]] = None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


class ConditionError(HiveLangError):
    """Raised when a condition expression cannot be parsed or evaluated."""
    pass


class ProviderError(HiveLangError):
    pass


class ToolError(HiveLangError):
    pass


class MemoryStoreError(HiveLangError):
    """Raised when a memory snapshot cannot be read or written."""
    pass
