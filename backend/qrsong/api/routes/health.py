from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...db.session import get_session
from ...rapidapi.queue import RapidApiQueue
from ...schemas.health import HealthResponse
from ..deps import get_rapidapi_queue, get_redis_dep

router = APIRouter(prefix="/v1", tags=["health"])

logger = logging.getLogger("health")


@router.get("/health", response_model=HealthResponse)
async def get_health(
    redis: Redis = Depends(get_redis_dep),
    queue: RapidApiQueue = Depends(get_rapidapi_queue),
    session: AsyncSession = Depends(get_session),
) -> HealthResponse:
    response = HealthResponse()
    try:
        await redis.ping()
        response.rapidapi_queue_length = await queue.length()
    except RedisError as exc:
        logger.error("Health check could not reach Redis: %s", exc)
        response.redis = False
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check could not reach the database: %s", exc)
        response.database = False
    response.ok = response.redis and response.database
    return response
