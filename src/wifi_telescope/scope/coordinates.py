from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol


class HorizontalTransform(Protocol):
    def to_horizontal(
        self,
        ra_deg: float,
        dec_deg: float,
        when: Optional[datetime] = None,
    ) -> tuple[float, float]:
        """Return ``(altitude_deg, azimuth_deg)`` for the given equatorial position."""
        ...


def julian_date(dt: datetime) -> float:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    # 2000-01-01T12:00:00Z
    epoch = datetime(2000, 1, 1, 12, tzinfo=timezone.utc)
    return 2451545.0 + (dt - epoch).total_seconds() / 86400.0


def greenwich_sidereal_time(jd: float) -> float:
    """Greenwich mean sidereal time in degrees [0, 360)."""
    t = (jd - 2451545.0) / 36525.0
    theta = 280.46061837 + 360.98564736629 * (jd - 2451545.0) + t * t * (0.000387933 - t / 38710000.0)
    return theta % 360.0


def local_sidereal_time(jd: float, longitude_deg: float) -> float:
    return (greenwich_sidereal_time(jd) + longitude_deg) % 360.0


def radec_to_altaz(
    ra_deg: float,
    dec_deg: float,
    lst_deg: float,
    lat_deg: float,
) -> tuple[float, float]:
    """Azimuth is measured from north through east, in [0, 360)."""
    ha = math.radians((lst_deg - ra_deg) % 360.0)
    dec = math.radians(dec_deg)
    lat = math.radians(lat_deg)

    sin_alt = math.sin(dec) * math.sin(lat) + math.cos(dec) * math.cos(lat) * math.cos(ha)
    alt = math.asin(max(-1.0, min(1.0, sin_alt)))

    y = -math.cos(dec) * math.sin(ha)
    x = math.sin(dec) * math.cos(lat) - math.cos(dec) * math.sin(lat) * math.cos(ha)
    az = math.degrees(math.atan2(y, x)) % 360.0
    return math.degrees(alt), az


@dataclass(frozen=True)
class SiteTransform:
    """Equatorial to horizontal conversion for a fixed observer site."""

    latitude: float
    longitude: float

    def to_horizontal(
        self,
        ra_deg: float,
        dec_deg: float,
        when: Optional[datetime] = None,
    ) -> tuple[float, float]:
        moment = when or datetime.now(timezone.utc)
        lst = local_sidereal_time(julian_date(moment), self.longitude)
        return radec_to_altaz(ra_deg, dec_deg, lst, self.latitude)
