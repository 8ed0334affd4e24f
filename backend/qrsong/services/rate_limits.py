from __future__ import annotations

import json
import logging
import math
import re
import time
from typing import Any, Dict, List, Literal, Optional, Protocol, Tuple

from ..cache.redis import Cache
from ..core.config import Settings, get_settings
from ..core.results import ApiResult

logger = logging.getLogger("rate_limits")

ProviderName = Literal["spotifyApi", "spotifyScraper"]

RATE_LIMIT_KEY = "rate_limit_info"
RETRY_AFTER_RE = re.compile(r"Retry after: (\d+) seconds")


ProviderMethod = Literal["get_playlist", "get_tracks", "get_tracks_by_ids", "search_tracks"]


class SpotifyProvider(Protocol):
    async def get_playlist(self, playlist_id: str) -> ApiResult: ...

    async def get_tracks(self, playlist_id: str) -> ApiResult: ...

    async def get_tracks_by_ids(self, track_ids: List[str]) -> ApiResult: ...

    async def search_tracks(self, search_term: str, limit: int = ..., offset: int = ...) -> ApiResult: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def _retry_after_from(result: ApiResult) -> Optional[int]:
    match = RETRY_AFTER_RE.search(result.error or "")
    if match:
        return int(match.group(1))
    return result.retry_after


class RateLimitManager:
    """Routes playlist reads between the Spotify API and the scraper fallback.

    A provider that answered 429 is blocked for its Retry-After plus a fixed buffer;
    while blocked, calls go to the other provider.
    """

    def __init__(self, cache: Cache, settings: Settings | None = None) -> None:
        self.cache = cache
        self.settings = settings or get_settings()

    @staticmethod
    def _key(provider: ProviderName) -> str:
        return f"{RATE_LIMIT_KEY}_{provider}"

    async def _retry_after_ms(self, provider: ProviderName) -> Optional[int]:
        raw = await self.cache.get(self._key(provider))
        if not raw:
            return None
        try:
            return int(json.loads(raw)["retryAfter"])
        except (ValueError, KeyError, TypeError):
            return None

    async def is_rate_limited(self, provider: ProviderName) -> bool:
        raw = await self.cache.get(self._key(provider))
        if not raw:
            return False
        retry_after = await self._retry_after_ms(provider)
        if retry_after is None or _now_ms() >= retry_after:
            await self.clear_rate_limit(provider)
            return False
        logger.info("%s is rate limited for %d more seconds", provider, math.ceil((retry_after - _now_ms()) / 1000))
        return True

    async def set_rate_limit(self, provider: ProviderName, retry_after_seconds: Optional[int] = None) -> None:
        now = _now_ms()
        buffer_ms = self.settings.rate_limit_fallback_seconds * 1000
        if retry_after_seconds:
            blocked_until = now + retry_after_seconds * 1000 + buffer_ms
        else:
            blocked_until = now + buffer_ms
        logger.warning("Setting rate limit for %s for %d seconds", provider, (blocked_until - now) // 1000)

        ttl = math.ceil((blocked_until - now) / 1000) + 60
        await self.cache.set(self._key(provider), json.dumps({"provider": provider, "retryAfter": blocked_until}), ttl)

    async def clear_rate_limit(self, provider: ProviderName) -> None:
        await self.cache.delete(self._key(provider))
        logger.info("Cleared rate limit for %s", provider)

    async def clear_all_rate_limits(self) -> None:
        await self.clear_rate_limit("spotifyApi")
        await self.clear_rate_limit("spotifyScraper")

    async def get_available_provider(
        self,
        primary: SpotifyProvider,
        fallback: SpotifyProvider,
    ) -> Tuple[SpotifyProvider, ProviderName]:
        api_limited = await self.is_rate_limited("spotifyApi")
        scraper_limited = await self.is_rate_limited("spotifyScraper")

        if api_limited and scraper_limited:
            api_until = await self._retry_after_ms("spotifyApi") or math.inf
            scraper_until = await self._retry_after_ms("spotifyScraper") or math.inf
            if api_until <= scraper_until:
                logger.warning("Both providers rate limited, using spotifyApi (available sooner)")
                return primary, "spotifyApi"
            logger.warning("Both providers rate limited, using spotifyScraper (available sooner)")
            return fallback, "spotifyScraper"

        if not api_limited:
            return primary, "spotifyApi"
        return fallback, "spotifyScraper"

    async def execute_with_fallback(
        self,
        method: ProviderMethod,
        args: Tuple[Any, ...],
        primary: SpotifyProvider,
        fallback: SpotifyProvider,
    ) -> ApiResult:
        provider, name = await self.get_available_provider(primary, fallback)
        try:
            result: ApiResult = await getattr(provider, method)(*args)
            if not result.rate_limited:
                return result

            retry_after = _retry_after_from(result)
            await self.set_rate_limit(name, retry_after)

            if name == "spotifyApi" and not await self.is_rate_limited("spotifyScraper"):
                logger.info("Attempting fallback to spotifyScraper after spotifyApi rate limit")
                fallback_result: ApiResult = await getattr(fallback, method)(*args)
                if fallback_result.rate_limited:
                    fallback_retry = _retry_after_from(fallback_result)
                    await self.set_rate_limit("spotifyScraper", fallback_retry)
                    return ApiResult.fail(
                        "Both Spotify API and Scraper are rate limited. Please try again later.",
                        retry_after=min(retry_after or 300, fallback_retry or 300),
                    )
                return fallback_result
            return result
        except Exception as exc:
            logger.error("Error in execute_with_fallback for %s: %s", method, exc)
            return ApiResult.fail(f"Internal error: {exc}")

    async def get_rate_limit_status(self) -> Dict[str, Dict[str, Any]]:
        now = _now_ms()
        status: Dict[str, Dict[str, Any]] = {}
        for provider in ("spotifyApi", "spotifyScraper"):
            retry_after = await self._retry_after_ms(provider)  # type: ignore[arg-type]
            if retry_after is not None and now < retry_after:
                status[provider] = {"limited": True, "retry_after": math.ceil((retry_after - now) / 1000)}
            else:
                status[provider] = {"limited": False, "retry_after": None}
        return status
