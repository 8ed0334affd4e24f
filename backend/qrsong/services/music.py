from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..music.release_year import ReleaseYearEstimate, estimate_release_year
from ..music.sources import DiscogsClient, MusicBrainzClient, YearLookup, YearSource, safe_year

logger = logging.getLogger("music")


async def _lookup(coro, name: str) -> YearLookup:
    try:
        return await coro
    except Exception as exc:
        logger.warning("%s lookup failed: %s", name, exc)
        return YearLookup()


class Music:
    """Release year research for a single track.

    MusicBrainz, Discogs and the OpenPerplex web answer are fetched concurrently; the AI
    source runs last so it can be handed what the others found.
    """

    def __init__(
        self,
        musicbrainz: MusicBrainzClient,
        discogs: DiscogsClient,
        *,
        openperplex: Optional[YearSource] = None,
        ai: Optional[YearSource] = None,
    ) -> None:
        self.musicbrainz = musicbrainz
        self.discogs = discogs
        self.openperplex = openperplex
        self.ai = ai

    async def get_release_date(self, isrc: str, artist: str, title: str, spotify_year: int = 0) -> ReleaseYearEstimate:
        mb, discogs, openperplex_year = await asyncio.gather(
            _lookup(self.musicbrainz.release_year(isrc, artist, title), "MusicBrainz"),
            _lookup(self.discogs.release_year(artist, title), "Discogs"),
            safe_year(self.openperplex, artist, title),
        )
        ai_year = await safe_year(self.ai, artist, title)

        estimate = estimate_release_year(
            {"ai": ai_year, "openPerplex": openperplex_year, "mb": mb.year, "discogs": discogs.year},
            spotify_year=spotify_year,
        )
        logger.info(
            "[SP: %s] [MB: %s] [DC: %s] [OP: %s] [AI: %s] for track %s - %s [DV: %s] Final year: %s",
            spotify_year,
            mb.year,
            discogs.year,
            openperplex_year,
            ai_year,
            artist,
            title,
            estimate.standard_deviation,
            estimate.year,
        )
        return estimate
