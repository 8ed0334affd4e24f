from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Mapping

import numpy as np

SOURCE_WEIGHTS: Dict[str, float] = {
    "ai": 0.5,
    "openPerplex": 0.28,
    "mb": 0.11,
    "discogs": 0.11,
}

MANUAL_CHECK_STD_DEV = 2.0


@dataclass(slots=True)
class ReleaseYearEstimate:
    year: int
    standard_deviation: float
    sources: Dict[str, int] = field(default_factory=dict)
    needs_manual_check: bool = False


def _valid(year: int | None, current_year: int) -> bool:
    return bool(year) and 0 < int(year) <= current_year


def estimate_release_year(
    sources: Mapping[str, int | None],
    *,
    spotify_year: int = 0,
    current_year: int | None = None,
) -> ReleaseYearEstimate:
    """Combine per-source release years into one year.

    Only the weighted sources vote; ``spotify_year`` is carried along for reference since
    Spotify reports the release the track was taken from, often a reissue. Years in the
    future or <= 0 are ignored. The spread of the voting years is reported as a
    population standard deviation.
    """
    current_year = current_year or date.today().year

    valid = {name: int(year) for name, year in sources.items() if name in SOURCE_WEIGHTS and _valid(year, current_year)}

    total_weight = sum(SOURCE_WEIGHTS[name] for name in valid)
    weighted = sum(year * SOURCE_WEIGHTS[name] for name, year in valid.items())
    # halves round up
    final_year = math.floor(weighted / total_weight + 0.5) if total_weight > 0 else 0

    std_dev = float(np.std(list(valid.values()))) if len(valid) > 1 else 0.0
    std_dev = round(std_dev, 2)

    reported = {name: int(sources.get(name) or 0) for name in SOURCE_WEIGHTS}
    reported["spotify"] = spotify_year

    return ReleaseYearEstimate(
        year=final_year,
        standard_deviation=std_dev,
        sources=reported,
        needs_manual_check=final_year == 0 or std_dev > MANUAL_CHECK_STD_DEV,
    )
