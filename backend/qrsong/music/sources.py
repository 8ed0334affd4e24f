from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..cache.redis import Cache
from ..core.config import Settings, get_settings

MUSICBRAINZ_BASE = "https://musicbrainz.org/ws/2/"
DISCOGS_SEARCH = "https://api.discogs.com/database/search"

MUSICBRAINZ_MIN_SCORE = 95

logger = logging.getLogger("music.sources")


@dataclass(slots=True)
class YearLookup:
    year: int = 0
    source: str = ""


class YearSource(Protocol):
    async def __call__(self, artist: str, title: str) -> int: ...


def _year_prefix(value: str | None) -> int:
    if not value:
        return 0
    try:
        return int(value.split("-")[0])
    except ValueError:
        return 0


def earliest_recording_year(recordings: List[Dict[str, Any]]) -> int:
    dates = [
        recording.get("first-release-date")
        for recording in recordings
        if (recording.get("score") or 0) >= MUSICBRAINZ_MIN_SCORE and recording.get("first-release-date")
    ]
    if not dates:
        return 0
    # ISO dates of mixed precision still sort chronologically as strings
    return _year_prefix(min(dates))


def earliest_release_year(results: List[Dict[str, Any]], current_year: int | None = None) -> int:
    current_year = current_year or date.today().year
    years = []
    for release in results:
        try:
            year = int(release.get("year"))
        except (TypeError, ValueError):
            continue
        if 0 < year <= current_year:
            years.append(year)
    return min(years) if years else 0


class MusicBrainzClient:
    """Recording search on MusicBrainz, spaced per their one-request-per-second rule."""

    RATE_LIMIT_KEY = "musicbrainz:rateLimit"
    RATE_LIMIT_MS = 1200
    MAX_RETRIES = 5

    def __init__(
        self,
        cache: Cache,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache = cache
        self.settings = settings or get_settings()
        self.transport = transport

    async def _query(self, query: str) -> int:
        headers = {"User-Agent": self.settings.musicbrainz_user_agent}
        async with httpx.AsyncClient(
            base_url=MUSICBRAINZ_BASE,
            headers=headers,
            timeout=self.settings.http_timeout_seconds,
            transport=self.transport,
        ) as client:
            for attempt in range(1, self.MAX_RETRIES + 1):
                await self.cache.rate_limit(self.RATE_LIMIT_KEY, self.RATE_LIMIT_MS)
                try:
                    response = await client.get("recording", params={"query": query, "fmt": "json"})
                    response.raise_for_status()
                    return earliest_recording_year(response.json().get("recordings") or [])
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Failed to fetch data from MusicBrainz (attempt %d): %s", attempt, exc)
        return 0

    async def release_year(self, isrc: str, artist: str, title: str) -> YearLookup:
        if isrc:
            year = await self._query(f"isrc:{isrc}")
            if year > 0:
                return YearLookup(year, "mb_api_isrc")
        year = await self._query(f'artist:"{artist}" AND recording:"{title}"')
        if year > 0:
            return YearLookup(year, "mb_api_artist_title")
        return YearLookup()


class DiscogsClient:
    RATE_LIMIT_KEY = "discogs:rateLimit"
    RATE_LIMIT_MS = 1000
    MAX_RETRIES = 3

    def __init__(
        self,
        cache: Cache,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache = cache
        self.settings = settings or get_settings()
        self.transport = transport

    async def release_year(self, artist: str, title: str) -> YearLookup:
        token = self.settings.discogs_token
        if not token:
            logger.error("Discogs token is not configured")
            return YearLookup()

        params = {"q": f"{artist} {title}", "type": "release", "token": token}
        headers = {"User-Agent": self.settings.musicbrainz_user_agent}
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, transport=self.transport) as client:
            for attempt in range(1, self.MAX_RETRIES + 1):
                await self.cache.rate_limit(self.RATE_LIMIT_KEY, self.RATE_LIMIT_MS)
                try:
                    response = await client.get(DISCOGS_SEARCH, params=params, headers=headers)
                    response.raise_for_status()
                    year = earliest_release_year(response.json().get("results") or [])
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Failed to fetch data from Discogs (attempt %d): %s", attempt, exc)
                    continue
                return YearLookup(year, "discogs") if year else YearLookup()
        return YearLookup()


async def safe_year(source: Optional[YearSource], artist: str, title: str) -> int:
    if source is None:
        return 0
    try:
        return int(await source(artist, title) or 0)
    except Exception as exc:
        logger.warning("Year source %r failed for %s - %s: %s", source, artist, title, exc)
        return 0
