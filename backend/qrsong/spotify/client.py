from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from urllib.parse import urlencode

import httpx

from ..core.config import Settings, get_settings
from ..core.results import ApiResult
from ..services.settings import SettingsStore
from .parsing import spotify_owned_playlist_type

API_BASE = "https://api.spotify.com/v1"
TOKEN_ENDPOINT = "https://accounts.spotify.com/api/token"
AUTHORIZE_ENDPOINT = "https://accounts.spotify.com/authorize"
SCOPES = "playlist-read-private playlist-modify-private playlist-modify-public"

PAGE_LIMIT = 100
PAGE_LIMIT_FALLBACK = 50
TRACK_IDS_BATCH = 50
SEARCH_LIMIT_MAX = 50

# refreshed tokens are treated as expired this long before Spotify says so
EXPIRY_MARGIN_SECONDS = 60

REAUTH_MARKERS = ("invalid_grant", "invalid_request", "invalid client", "invalid_token", "token expired")

T = TypeVar("T")

logger = logging.getLogger("spotify.client")


class SpotifyClientError(Exception):
    pass


class SpotifyAuthError(SpotifyClientError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "")
    parts = [str(error or ""), str(payload.get("error_description") or "")] if isinstance(payload, dict) else []
    return " ".join(part for part in parts if part)


@dataclass(slots=True)
class SpotifyApi:
    """Spotify Web API access on behalf of the shop's own Spotify account.

    Tokens live in the settings store so every worker shares one OAuth session; an
    expired access token is refreshed transparently with the stored refresh token.
    """

    store: SettingsStore
    settings: Settings = field(default_factory=get_settings)
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, transport=self.transport)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise SpotifyClientError("spotify client not initialized")
        return self._client

    def _has_credentials(self) -> bool:
        return bool(self.settings.spotify_client_id and self.settings.spotify_client_secret)

    def get_authorization_url(self) -> Optional[str]:
        if not self._has_credentials():
            return None
        query = urlencode(
            {
                "client_id": self.settings.spotify_client_id,
                "response_type": "code",
                "redirect_uri": self.settings.spotify_redirect_uri,
                "scope": SCOPES,
            }
        )
        return f"{AUTHORIZE_ENDPOINT}?{query}"

    async def get_access_token(self) -> Optional[str]:
        if not self._has_credentials():
            logger.error("Missing Spotify API credentials")
            return None

        access_token = await self.store.get_setting("spotify_access_token")
        refresh_token = await self.store.get_setting("spotify_refresh_token")
        expires_at_raw = await self.store.get_setting("spotify_token_expires_at")
        try:
            expires_at = int(expires_at_raw) if expires_at_raw else 0
        except ValueError:
            expires_at = 0

        if access_token and _now_ms() < expires_at:
            return access_token

        if refresh_token:
            refreshed = await self.refresh_access_token(refresh_token)
            if refreshed:
                return refreshed
            logger.warning("Spotify token refresh failed, authorization might be required")
            return None

        logger.warning("No valid Spotify access token or refresh token found, authorization required")
        return None

    async def _store_tokens(self, payload: Dict[str, Any]) -> str:
        access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        expires_at = _now_ms() + (expires_in - EXPIRY_MARGIN_SECONDS) * 1000

        await self.store.set_setting("spotify_access_token", access_token)
        await self.store.set_setting("spotify_token_expires_at", str(expires_at))
        if payload.get("refresh_token"):
            await self.store.set_setting("spotify_refresh_token", payload["refresh_token"])
        return access_token

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        response = await self.client.post(
            TOKEN_ENDPOINT,
            data=data,
            auth=(self.settings.spotify_client_id, self.settings.spotify_client_secret),
        )
        response.raise_for_status()
        payload = response.json()
        if "access_token" not in payload:
            raise SpotifyAuthError(f"token endpoint returned no access token: {payload}")
        return payload

    async def refresh_access_token(self, refresh_token: str) -> Optional[str]:
        if not self._has_credentials():
            return None
        try:
            payload = await self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})
            token = await self._store_tokens(payload)
        except (httpx.HTTPError, SpotifyClientError, ValueError) as exc:
            logger.error("Spotify token refresh error: %s", exc)
            return None
        logger.info("Successfully refreshed Spotify token")
        return token

    async def exchange_code(self, code: str) -> ApiResult:
        if not self._has_credentials():
            return ApiResult.fail("Missing Spotify API credentials")
        try:
            payload = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.settings.spotify_redirect_uri,
                }
            )
            await self._store_tokens(payload)
        except (httpx.HTTPError, SpotifyClientError, ValueError) as exc:
            logger.error("Spotify authorization code exchange failed: %s", exc)
            return ApiResult.fail("Spotify authorization failed", needs_reauth=True, auth_url=self.get_authorization_url())
        return ApiResult.ok()

    async def execute_with_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        context: str,
        max_retries: int | None = None,
    ) -> T:
        attempts = self.settings.spotify_max_retries if max_retries is None else max_retries
        for attempt in range(attempts):
            try:
                return await fn()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code != 429 or attempt == attempts - 1:
                    raise
                retry_after = exc.response.headers.get("Retry-After")
                if retry_after and retry_after.isdigit() and int(retry_after) > 0:
                    wait_ms = int(retry_after) * 1000 + 500
                else:
                    wait_ms = 2**attempt * 1000 + random.random() * 1000
                logger.warning(
                    "Rate limit hit %s, waiting %d ms before retry %d/%d",
                    context,
                    wait_ms,
                    attempt + 1,
                    attempts,
                )
                await asyncio.sleep(wait_ms / 1000)
        raise SpotifyClientError(f"max retries exceeded {context}")

    async def _clear_access_token(self) -> None:
        await self.store.delete_setting("spotify_access_token")
        await self.store.delete_setting("spotify_token_expires_at")

    async def handle_api_error(self, error: Exception, context: str) -> ApiResult:
        if not isinstance(error, httpx.HTTPStatusError):
            logger.error("Non-API error %s: %s", context, error)
            return ApiResult.fail(f"Internal error {context}")

        response = error.response
        status = response.status_code
        message = _error_message(response).lower()

        if status == 401 or (status == 400 and any(marker in message for marker in REAUTH_MARKERS)):
            await self._clear_access_token()
            return ApiResult.fail(
                "Spotify authorization error (token likely expired/invalid)",
                needs_reauth=True,
                auth_url=self.get_authorization_url(),
            )
        if status == 400:
            return ApiResult.fail("Spotify API error: 400 Bad Request")
        if status == 404:
            return ApiResult.fail("Spotify resource not found")
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            hint = f"Retry after: {seconds} seconds." if seconds is not None else "No Retry-After header."
            return ApiResult.fail(f"Spotify API error: 429 Too Many Requests. {hint}", retry_after=seconds)
        logger.error("Spotify API %s -> %s %s", context, status, response.text[:500])
        return ApiResult.fail(f"Spotify API error: {status}")

    def _auth_required(self) -> ApiResult:
        return ApiResult.fail("Spotify authentication required", needs_reauth=True, auth_url=self.get_authorization_url())

    async def _get(self, access_token: str, url: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        if not url.startswith("http"):
            url = f"{API_BASE}/{url.lstrip('/')}"
        response = await self.client.get(url, params=params, headers={"Authorization": f"Bearer {access_token}"})
        response.raise_for_status()
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise SpotifyClientError(f"invalid JSON from {url}: {exc}") from exc

    async def get_user_id(self) -> Optional[str]:
        access_token = await self.get_access_token()
        if not access_token:
            return None
        try:
            data = await self.execute_with_retry(lambda: self._get(access_token, "/me"), "fetching user ID")
        except (httpx.HTTPError, SpotifyClientError) as exc:
            logger.error("Error fetching Spotify user ID: %s", exc)
            return None
        return data.get("id")

    async def get_playlist(self, playlist_id: str) -> ApiResult:
        access_token = await self.get_access_token()
        if not access_token:
            return self._auth_required()

        try:
            data = await self.execute_with_retry(
                lambda: self._get(
                    access_token,
                    f"/playlists/{playlist_id}",
                    {"fields": "id,name,description,images(url),tracks(total),items(total)"},
                ),
                f"fetching playlist {playlist_id}",
            )
        except (httpx.HTTPError, SpotifyClientError) as exc:
            if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 404:
                owned_type = spotify_owned_playlist_type(playlist_id)
                if owned_type:
                    return ApiResult.fail("spotifyOwnedPlaylist", playlist_type=owned_type)
            return await self.handle_api_error(exc, f"fetching playlist {playlist_id}")

        # newer API responses name the track listing ``items``
        if "items" in data and "tracks" not in data:
            data["tracks"] = data.pop("items")
        return ApiResult.ok(data)

    async def get_tracks(self, playlist_id: str) -> ApiResult:
        access_token = await self.get_access_token()
        if not access_token:
            return self._auth_required()

        items: List[Dict[str, Any]] = []
        limit = PAGE_LIMIT
        url: Optional[str] = f"/playlists/{playlist_id}/tracks"
        params: Dict[str, Any] | None = {"limit": limit, "offset": 0}
        context = f"fetching tracks for playlist {playlist_id}"

        while url:
            page_url, page_params = url, params
            try:
                data = await self.execute_with_retry(lambda: self._get(access_token, page_url, page_params), context)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 400 and limit == PAGE_LIMIT and not items:
                    logger.info("Page size %d rejected for playlist %s, retrying with %d", limit, playlist_id, PAGE_LIMIT_FALLBACK)
                    limit = PAGE_LIMIT_FALLBACK
                    params = {"limit": limit, "offset": 0}
                    continue
                return await self.handle_api_error(exc, context)
            except (httpx.HTTPError, SpotifyClientError) as exc:
                return await self.handle_api_error(exc, context)

            for item in data.get("items") or []:
                if not item:
                    continue
                if "item" in item and "track" not in item:
                    item["track"] = item.pop("item")
                if item.get("track"):
                    items.append(item)

            url = data.get("next")
            params = None

        logger.info("Fetched %d tracks for playlist %s", len(items), playlist_id)
        return ApiResult.ok({"items": items})

    async def get_tracks_by_ids(self, track_ids: List[str]) -> ApiResult:
        if not track_ids:
            return ApiResult.fail("No track IDs provided")
        access_token = await self.get_access_token()
        if not access_token:
            return self._auth_required()

        tracks: List[Dict[str, Any]] = []
        context = f"fetching {len(track_ids)} tracks by id"
        for start in range(0, len(track_ids), TRACK_IDS_BATCH):
            batch = ",".join(track_ids[start : start + TRACK_IDS_BATCH])
            try:
                data = await self.execute_with_retry(lambda: self._get(access_token, "/tracks", {"ids": batch}), context)
            except (httpx.HTTPError, SpotifyClientError) as exc:
                return await self.handle_api_error(exc, context)
            # unknown ids come back as null entries
            tracks.extend(track for track in data.get("tracks") or [] if track)
        return ApiResult.ok({"tracks": tracks})

    async def search_tracks(self, search_term: str, limit: int = 20, offset: int = 0) -> ApiResult:
        if not search_term:
            return ApiResult.fail("Search term is required")
        access_token = await self.get_access_token()
        if not access_token:
            return self._auth_required()

        params = {
            "q": search_term,
            "type": "track",
            "limit": min(limit, SEARCH_LIMIT_MAX),
            "offset": offset,
            "fields": "tracks(items(id,name,artists(name),album(images(url))),total)",
        }
        context = f'searching tracks for "{search_term}"'
        try:
            data = await self.execute_with_retry(lambda: self._get(access_token, "/search", params), context)
        except (httpx.HTTPError, SpotifyClientError) as exc:
            return await self.handle_api_error(exc, context)
        return ApiResult.ok(data)
