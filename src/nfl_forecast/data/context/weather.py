from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
import pandas as pd

# Thresholds for the extreme-weather flag
COLD_F = 32.0
HOT_F = 95.0
WINDY_MPH = 15.0
SEVERE_WIND_MPH = 25.0
WET_PCT = 60.0

INDOOR_ROOFS = ("dome", "closed")


@dataclass(frozen=True)
class WeatherContext:
    source: str
    temperature: float | None = None
    wind_speed: float | None = None
    precip_prob: float | None = None
    impact_score: float = 0.0
    extreme: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


NEUTRAL_WEATHER = WeatherContext(source="neutral_template")
INDOOR_WEATHER = WeatherContext(source="indoor")


def _num(value: Any) -> float | None:
    if value is None or pd.isna(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def impact_score(temperature: float | None, wind_speed: float | None, precip_prob: float | None) -> float:
    """
    Weighted weather severity in [0, 1].

    Cold below 40F, wind above 10 mph and precipitation chance each map to
    [0, 1]; missing readings contribute nothing.
    """
    cold = 0.0 if temperature is None else float(np.clip((40.0 - temperature) / 40.0, 0.0, 1.0))
    wind = 0.0 if wind_speed is None else float(np.clip((wind_speed - 10.0) / 20.0, 0.0, 1.0))
    wet = 0.0 if precip_prob is None else float(np.clip(precip_prob / 100.0, 0.0, 1.0))
    return round(0.35 * cold + 0.40 * wind + 0.25 * wet, 4)


def is_extreme(temperature: float | None, wind_speed: float | None, precip_prob: float | None) -> bool:
    """At least two of (temperature, wind, precipitation) past threshold, or severe wind alone."""
    if wind_speed is not None and wind_speed >= SEVERE_WIND_MPH:
        return True
    hits = 0
    if temperature is not None and (temperature <= COLD_F or temperature >= HOT_F):
        hits += 1
    if wind_speed is not None and wind_speed >= WINDY_MPH:
        hits += 1
    if precip_prob is not None and precip_prob >= WET_PCT:
        hits += 1
    return hits >= 2


def weather_from_row(row: pd.Series | dict[str, Any], source: str = "feed") -> WeatherContext:
    temp = _num(row.get("temperature"))
    wind = _num(row.get("wind_speed"))
    precip = _num(row.get("precip_prob"))
    return WeatherContext(
        source=source,
        temperature=temp,
        wind_speed=wind,
        precip_prob=precip,
        impact_score=impact_score(temp, wind, precip),
        extreme=is_extreme(temp, wind, precip),
    )


def is_indoor(roof: object) -> bool:
    if roof is None or (isinstance(roof, float) and pd.isna(roof)):
        return False
    return any(token in str(roof).lower() for token in INDOOR_ROOFS)
