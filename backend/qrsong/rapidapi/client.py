from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import httpx

from ..core.config import Settings, get_settings
from ..core.results import ApiResult
from .queue import RapidApiQueue

PAGE_LIMIT = 100
TRACK_IDS_BATCH = 50

logger = logging.getLogger("rapidapi.client")


class RapidApiError(Exception):
    pass


class SpotifyRapidApi:
    """Spotify playlist reads through the RapidAPI scraper, used as a fallback provider."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        queue: RapidApiQueue | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.queue = queue
        self.transport = transport

    def create_options(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.settings.rapid_api_key:
            raise RapidApiError("rapid api key is not configured")
        host = self.settings.rapid_api_host
        return {
            "method": "GET",
            "url": f"https://{host}{endpoint}",
            "params": params,
            "headers": {"x-rapidapi-key": self.settings.rapid_api_key, "x-rapidapi-host": host},
        }

    async def _send(self, client: httpx.AsyncClient, options: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.request(options["method"], options["url"], params=options["params"], headers=options["headers"])
        response.raise_for_status()
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RapidApiError(f"invalid JSON from {options['url']}: {exc}") from exc

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, transport=self.transport)

    @staticmethod
    def _failure(exc: Exception, what: str, playlist_id: str) -> ApiResult:
        status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
        logger.error("Error fetching RapidAPI %s for %s: %s - %s", what, playlist_id, status, exc)
        if status == 404:
            return ApiResult.fail("playlistNotFound")
        return ApiResult.fail(f"RapidAPI error fetching {what}: {status or exc}")

    async def get_playlist(self, playlist_id: str) -> ApiResult:
        try:
            options = self.create_options("/playlist", {"id": playlist_id})
            async with self._http() as client:
                data = await self._send(client, options)
        except (httpx.HTTPError, RapidApiError) as exc:
            return self._failure(exc, "playlist", playlist_id)
        if not data:
            logger.warning("RapidAPI get_playlist for %s returned unexpected data", playlist_id)
            return ApiResult.fail("Unexpected response from RapidAPI")
        return ApiResult.ok(data)

    async def get_tracks(self, playlist_id: str) -> ApiResult:
        items: List[Dict[str, Any]] = []
        offset = 0
        logger.info("Fetching tracks in RapidAPI for playlist %s", playlist_id)
        try:
            async with self._http() as client:
                while True:
                    options = self.create_options("/playlist_tracks", {"id": playlist_id, "limit": PAGE_LIMIT, "offset": offset})
                    data = await self._send(client, options)
                    page = data.get("items")
                    if page is None:
                        logger.warning("RapidAPI get_tracks for %s returned unexpected data at offset %d", playlist_id, offset)
                        break
                    items.extend(item for item in page if item and item.get("track"))
                    if len(page) < PAGE_LIMIT:
                        break
                    offset += PAGE_LIMIT
                    await asyncio.sleep(0.05)
        except (httpx.HTTPError, RapidApiError) as exc:
            return self._failure(exc, "tracks", playlist_id)
        return ApiResult.ok({"items": items})

    async def get_tracks_by_ids(self, track_ids: List[str]) -> ApiResult:
        if not track_ids:
            return ApiResult.fail("No track IDs provided")
        tracks: List[Dict[str, Any]] = []
        try:
            async with self._http() as client:
                for start in range(0, len(track_ids), TRACK_IDS_BATCH):
                    options = self.create_options("/tracks/", {"ids": ",".join(track_ids[start : start + TRACK_IDS_BATCH])})
                    data = await self._send(client, options)
                    if "tracks" not in data:
                        logger.warning("RapidAPI get_tracks_by_ids returned unexpected data")
                        return ApiResult.fail("Unexpected response from RapidAPI")
                    tracks.extend(track for track in data["tracks"] or [] if track)
        except (httpx.HTTPError, RapidApiError) as exc:
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.error("Error fetching RapidAPI tracks by IDs: %s - %s", status, exc)
            if status == 404:
                return ApiResult.fail("RapidAPI resource not found (one or more track IDs might be invalid)")
            return ApiResult.fail(f"RapidAPI error fetching tracks by IDs: {status or exc}")
        return ApiResult.ok({"tracks": tracks})

    async def search_tracks(self, search_term: str, limit: int = 10, offset: int = 0) -> ApiResult:
        if not search_term:
            return ApiResult.fail("Search term is required")
        try:
            options = self.create_options("/search/", {"q": search_term, "type": "tracks", "limit": limit, "offset": offset})
            async with self._http() as client:
                data = await self._send(client, options)
        except (httpx.HTTPError, RapidApiError) as exc:
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.error("Error searching RapidAPI tracks for %r: %s - %s", search_term, status, exc)
            return ApiResult.fail(f"RapidAPI error searching tracks: {status or exc}")

        found = data.get("tracks")
        if not isinstance(found, dict) or not isinstance(found.get("items"), list):
            return ApiResult.fail("No items or unexpected data structure from RapidAPI search")

        items = []
        for entry in found["items"]:
            # some hosts wrap each hit as {"data": {...}}
            track = entry.get("data", entry) if isinstance(entry, dict) else {}
            items.append(
                {
                    "id": track.get("id"),
                    "name": track.get("track_name") or track.get("name"),
                    "artists": track.get("artists") or [],
                    "album": track.get("album") or track.get("albumOfTrack") or {},
                    "external_urls": track.get("external_urls") or {},
                    "preview_url": track.get("preview_url"),
                }
            )
        total = found.get("total", found.get("totalCount"))
        return ApiResult.ok({"tracks": {"items": items, "total": total if isinstance(total, int) else len(items)}})

    async def enqueue(self, endpoint: str, params: Dict[str, Any]) -> ApiResult:
        """Schedule a read on the throttled queue instead of calling now."""
        if self.queue is None:
            return ApiResult.fail("RapidAPI queue is not configured")
        try:
            await self.queue.enqueue(self.create_options(endpoint, params))
        except RapidApiError as exc:
            return ApiResult.fail(str(exc))
        return ApiResult.ok({"queued": endpoint, "params": params})

    async def enqueue_playlist(self, playlist_id: str) -> ApiResult:
        return await self.enqueue("/playlist", {"id": playlist_id})
