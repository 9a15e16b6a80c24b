"""
Rank Errors
Error taxonomy and explicit result values for the rank engine
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RankError(Exception):
    """Base error for the rank engine"""
    pass


class RankConfigError(RankError):
    """Rank ladder failed startup validation"""
    pass


class UserNotFoundError(RankError):
    """No stats record for this user"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class StatsValidationError(RankError):
    """
    Malformed stats field.
    Coerced to a safe default by the engine, never surfaced to callers.
    """

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for {field}: {value!r}")


class RankStoreError(RankError):
    """Data store I/O failure"""

    def __init__(self, message: str, original: Optional[Exception] = None):
        self.original = original
        super().__init__(message)


class RateLimited(BaseModel):
    """Recalculation refused because the per-user interval has not elapsed"""
    user_id: str
    next_allowed_at: datetime
    retry_after_minutes: int
    reason: str


class SideEffectResult(BaseModel):
    """
    Outcome of a best-effort side effect (notification, cache rebuild).
    Callers log a failure and discard it; it never escalates.
    """
    ok: bool
    name: str
    error: Optional[str] = None

    @classmethod
    def success(cls, name: str) -> "SideEffectResult":
        return cls(ok=True, name=name)

    @classmethod
    def failure(cls, name: str, error: Exception) -> "SideEffectResult":
        return cls(ok=False, name=name, error=f"{type(error).__name__}: {error}")
