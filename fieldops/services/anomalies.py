"""Per-mark anomaly checks run while a patrol is in progress.

Each accepted scan is compared against its checkpoint's own radius and against
the previous scan of the same execution. Anything odd is stored on the mark
and raised as a patrol alert; `alert_severity` decides whether it is a
novelty or a critical incident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from fieldops.models import AlertSeverity, CheckpointMark, PatrolCheckpoint
from fieldops.services.location import distance_m
from fieldops.services.timeutils import normalize_ts
from fieldops.services.trust_score import IDLE_MOTION_LEVEL, MAX_BATTERY_DROP, MAX_BATTERY_RISE

OUTSIDE_CHECKPOINT_RADIUS = "outside_checkpoint_radius"
IMPOSSIBLE_SPEED = "impossible_speed"
NO_MOVEMENT = "no_movement"
SAME_POSITION_AS_PREVIOUS = "same_position_as_previous"
BATTERY_JUMP = "battery_jump"

CRITICAL_ANOMALIES = frozenset({IMPOSSIBLE_SPEED})


@dataclass(frozen=True)
class MarkAssessment:
    geo_validated: bool | None
    geo_distance_m: int | None
    speed_from_prev_kmh: float | None
    time_from_prev_s: int | None
    anomalies: list[str] = field(default_factory=list)


def speed_kmh(meters: float, seconds: int) -> float:
    if seconds <= 0:
        return 0.0
    return round(meters / seconds * 3.6, 1)


def assess_mark(
    *,
    checkpoint: PatrolCheckpoint,
    previous: CheckpointMark | None,
    lat: float,
    lng: float,
    scanned_at: datetime,
    motion_score: float,
    battery_level: float | None,
    max_speed_kmh: float,
    same_position_m: float,
) -> MarkAssessment:
    anomalies: list[str] = []

    geo_validated = None
    geo_distance = None
    if checkpoint.has_geofence:
        raw = distance_m(lat, lng, checkpoint.lat, checkpoint.lng)
        geo_validated = raw <= checkpoint.geo_radius_m
        geo_distance = int(round(raw))
        if not geo_validated:
            anomalies.append(OUTSIDE_CHECKPOINT_RADIUS)

    speed = None
    elapsed = None
    if previous is not None:
        from_previous = distance_m(lat, lng, previous.lat, previous.lng)
        elapsed = max(1, int(round((normalize_ts(scanned_at) - normalize_ts(previous.scanned_at)).total_seconds())))
        speed = speed_kmh(from_previous, elapsed)
        if speed > max_speed_kmh:
            anomalies.append(IMPOSSIBLE_SPEED)
        if from_previous <= same_position_m:
            anomalies.append(SAME_POSITION_AS_PREVIOUS)
        if battery_level is not None and previous.battery_level is not None:
            delta = battery_level - previous.battery_level
            if delta > MAX_BATTERY_RISE or -delta > MAX_BATTERY_DROP:
                anomalies.append(BATTERY_JUMP)

    if motion_score <= IDLE_MOTION_LEVEL:
        anomalies.append(NO_MOVEMENT)

    return MarkAssessment(
        geo_validated=geo_validated,
        geo_distance_m=geo_distance,
        speed_from_prev_kmh=speed,
        time_from_prev_s=elapsed,
        anomalies=anomalies,
    )


def alert_severity(anomalies: list[str]) -> AlertSeverity | None:
    if not anomalies:
        return None
    if CRITICAL_ANOMALIES.intersection(anomalies) or len(anomalies) >= 2:
        return AlertSeverity.CRITICAL
    return AlertSeverity.NOVELTY
