from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    ok: bool = True
    redis: bool = True
    database: bool = True
    rapidapi_queue_length: int = 0
