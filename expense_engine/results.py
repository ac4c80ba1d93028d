from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

INVALID = "invalid"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a public engine operation: data on success, a reason otherwise."""

    success: bool
    data: Any = None
    message: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "OperationResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def failed(cls, message: str, code: str = INVALID) -> "OperationResult":
        return cls(success=False, message=message, code=code)

    @property
    def not_found(self) -> bool:
        return self.code == NOT_FOUND
