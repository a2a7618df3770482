from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from fieldops.models import Installation

EARTH_RADIUS_M = 6371000.0


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2) - radians(lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    return EARTH_RADIUS_M * 2 * asin(sqrt(a))


@dataclass(frozen=True)
class GeofenceResult:
    validated: bool
    within: bool
    distance_m: int | None
    radius_m: int | None


def evaluate_geofence(installation: Installation, lat: float, lng: float) -> GeofenceResult:
    """Installations without a configured center accept any position, unvalidated."""
    if not installation.has_geofence:
        return GeofenceResult(validated=False, within=True, distance_m=None, radius_m=None)

    raw_distance = distance_m(lat, lng, installation.lat, installation.lng)
    radius = int(installation.geofence_radius_m)
    within = raw_distance <= radius
    return GeofenceResult(validated=within, within=within, distance_m=int(round(raw_distance)), radius_m=radius)
