from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Optional

SPOTIFY_URL_RE = re.compile(
    r"https?://(?:open|play)\.spotify\.com/(?:intl-[a-z]{2}/)?(?P<type>track|playlist)/(?P<id>[A-Za-z0-9]{22})",
    re.IGNORECASE,
)
SPOTIFY_URI_RE = re.compile(r"spotify:(?P<type>track|playlist):(?P<id>[A-Za-z0-9]{22})", re.IGNORECASE)

# Spotify-curated playlists are not readable through the public API and answer 404.
SPOTIFY_OWNED_PREFIXES = (
    ("37i9dQZF1DX", "editorial"),
    ("37i9dQZF1DZ", "this_is"),
    ("37i9dQZF1E", "daily_mix"),
    ("37i9dQZEVX", "personalized"),
)


@dataclass(slots=True)
class SpotifyEntity:
    kind: Literal["track", "playlist"]
    id: str


def parse_spotify_url(value: str) -> SpotifyEntity:
    value = value.strip()
    m = SPOTIFY_URI_RE.match(value)
    if not m:
        m = SPOTIFY_URL_RE.search(value)
    if not m:
        raise ValueError("unsupported spotify url")
    return SpotifyEntity(kind=m.group("type").lower(), id=m.group("id"))


def spotify_owned_playlist_type(playlist_id: str) -> Optional[str]:
    for prefix, kind in SPOTIFY_OWNED_PREFIXES:
        if playlist_id.startswith(prefix):
            return kind
    return None


def is_spotify_owned_playlist(playlist_id: str) -> bool:
    return spotify_owned_playlist_type(playlist_id) is not None
