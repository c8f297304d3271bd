"""Result records of best-effort side calls"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class SideEffectResult:
    """Outcome of a call whose failure must not fail the primary operation"""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "SideEffectResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: Exception) -> "SideEffectResult":
        return cls(ok=False, error=str(error) or error.__class__.__name__)
