from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ApiResult(BaseModel):
    """Outcome of a service call that talks to an outside provider.

    Service methods catch their own failures and hand back ``success=False`` with a
    human readable ``error`` instead of raising; routes map that onto a status code.
    """

    success: bool
    error: Optional[str] = None
    data: Any = None
    needs_reauth: bool = False
    auth_url: Optional[str] = None
    retry_after: Optional[int] = None
    playlist_type: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ApiResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, **extra: Any) -> "ApiResult":
        return cls(success=False, error=error, **extra)

    @property
    def rate_limited(self) -> bool:
        return not self.success and "429" in (self.error or "")
