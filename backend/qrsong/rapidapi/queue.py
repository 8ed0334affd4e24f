from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..cache.redis import Cache
from ..core.config import Settings, get_settings

QUEUE_KEY = "rapidapi_queue"
LAST_REQUEST_KEY = "last_rapidapi_request"

logger = logging.getLogger("rapidapi.queue")

ResponseHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class QueueReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


def function_name_for(url: str) -> str:
    if "playlist_tracks" in url:
        return "getTracks"
    if "playlist" in url:
        return "getPlaylist"
    if "tracks" in url:
        return "getTracksByIds"
    if "search" in url:
        return "searchTracks"
    return "unknown"


class RapidApiQueue:
    """FIFO of outbound RapidAPI requests kept in a Redis list.

    Any worker may enqueue; ``process_queue`` drains the list no faster than the
    configured requests per second, measured against the last request time shared in
    Redis so several drainers still respect one budget.
    """

    def __init__(
        self,
        cache: Cache,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache = cache
        self.settings = settings or get_settings()
        self.transport = transport

    @property
    def spacing_ms(self) -> int:
        return 1000 // self.settings.rapidapi_requests_per_second

    async def enqueue(self, request: Dict[str, Any]) -> None:
        headers = request.get("headers") or {}
        simplified = {
            "method": request.get("method", "GET"),
            "url": request["url"],
            "params": request.get("params"),
            "headers": {
                "x-rapidapi-key": headers.get("x-rapidapi-key"),
                "x-rapidapi-host": headers.get("x-rapidapi-host"),
            },
        }
        await self.cache.execute("rpush", QUEUE_KEY, json.dumps(simplified))

    async def length(self) -> int:
        return int(await self.cache.execute("llen", QUEUE_KEY) or 0)

    async def _last_request_ms(self) -> int:
        raw = await self.cache.execute("get", LAST_REQUEST_KEY)
        return int(raw) if raw else 0

    async def _wait_for_slot(self) -> None:
        elapsed = _now_ms() - await self._last_request_ms()
        if elapsed < self.spacing_ms:
            await asyncio.sleep((self.spacing_ms - elapsed) / 1000)

    def _backoff_seconds(self, attempt: int, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), self.settings.rapidapi_max_backoff_seconds)
        return min(2 ** (attempt - 1) + random.random(), self.settings.rapidapi_max_backoff_seconds)

    async def _execute(self, client: httpx.AsyncClient, request: Dict[str, Any], handler: Optional[ResponseHandler]) -> bool:
        name = function_name_for(request.get("url") or "")
        max_attempts = self.settings.rapidapi_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.request(
                    request.get("method") or "GET",
                    request["url"],
                    params=request.get("params"),
                    headers={k: v for k, v in (request.get("headers") or {}).items() if v},
                )
                await self.cache.execute("set", LAST_REQUEST_KEY, str(_now_ms()))
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 404:
                    logger.warning("RapidAPI request for %s resulted in 404", name)
                    return False
                if attempt == max_attempts:
                    break
                delay = self._backoff_seconds(attempt, exc.response) if status == 429 else 1.0
                logger.error(
                    "Error in RapidAPI %s (status %s), attempt %d/%d, retrying in %.2fs",
                    name,
                    status,
                    attempt,
                    max_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            except httpx.RequestError as exc:
                if attempt == max_attempts:
                    break
                logger.error("Error in RapidAPI %s, attempt %d/%d, retrying in 1s: %s", name, attempt, max_attempts, exc)
                await asyncio.sleep(1.0)
                continue

            logger.info("RapidAPI request for %s successful", name)
            if handler is None:
                return True
            try:
                payload = response.json() if response.content else {}
                await handler(name, payload)
            except Exception as exc:
                logger.error("Handling RapidAPI %s response failed: %s", name, exc)
                return False
            return True

        logger.error("RapidAPI request for %s failed after %d attempts", name, max_attempts)
        return False

    async def process_queue(self, handler: Optional[ResponseHandler] = None) -> QueueReport:
        report = QueueReport()
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, transport=self.transport) as client:
            while await self.length() > 0:
                await self._wait_for_slot()
                raw = await self.cache.execute("lpop", QUEUE_KEY)
                if not raw:
                    continue
                try:
                    request = json.loads(raw)
                except ValueError:
                    logger.error("Dropping malformed RapidAPI queue entry: %s", raw[:200])
                    report.processed += 1
                    report.failed += 1
                    continue

                report.processed += 1
                if await self._execute(client, request, handler):
                    report.succeeded += 1
                else:
                    report.failed += 1
        return report
