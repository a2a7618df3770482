"""Trust score for a finished patrol execution.

Four components in [0, 1] are blended with configurable weights and scaled to
0-100: completion ratio, motion consistency, battery plausibility and timing
adherence to each checkpoint's expected window.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from statistics import mean, pstdev

from fieldops.services.timeutils import circular_minutes_diff, minutes_of_day, normalize_ts

FLAT_MOTION_STDDEV = 0.05
IDLE_MOTION_LEVEL = 0.1
ERRATIC_MOTION_CV = 1.5
MAX_BATTERY_RISE = 5.0
MAX_BATTERY_DROP = 20.0


@dataclass(frozen=True)
class MarkSample:
    scanned_at: datetime
    expected_at: datetime
    motion_score: float
    battery_level: float | None


@dataclass(frozen=True)
class TrustBreakdown:
    completion: float
    motion: float
    battery: float
    timing: float
    score: float


def motion_consistency(scores: Sequence[float]) -> float:
    if not scores:
        return 0.0
    if len(scores) == 1:
        return 1.0 if scores[0] > IDLE_MOTION_LEVEL else 0.5
    average = mean(scores)
    spread = pstdev(scores)
    if average <= IDLE_MOTION_LEVEL or spread < FLAT_MOTION_STDDEV:
        return 0.2
    if spread / average > ERRATIC_MOTION_CV:
        return 0.4
    return 1.0


def battery_plausibility(levels: Sequence[float | None]) -> float:
    readings = [level for level in levels if level is not None]
    if len(readings) < 2:
        return 1.0
    pairs = list(zip(readings, readings[1:]))
    plausible = sum(
        1
        for previous, current in pairs
        if current - previous <= MAX_BATTERY_RISE and previous - current <= MAX_BATTERY_DROP
    )
    return plausible / len(pairs)


def timing_adherence(samples: Sequence[MarkSample], window_minutes: int) -> float:
    if not samples:
        return 0.0
    within = 0
    for sample in samples:
        scanned = normalize_ts(sample.scanned_at)
        expected = normalize_ts(sample.expected_at)
        deviation = circular_minutes_diff(minutes_of_day(scanned), minutes_of_day(expected))
        if deviation <= window_minutes:
            within += 1
    return within / len(samples)


def compute_trust_score(
    *,
    completion_ratio: float,
    samples: Sequence[MarkSample],
    weights: Mapping[str, float],
    time_window_minutes: int,
) -> TrustBreakdown:
    components = {
        "completion": max(0.0, min(1.0, completion_ratio)),
        "motion": motion_consistency([sample.motion_score for sample in samples]),
        "battery": battery_plausibility([sample.battery_level for sample in samples]),
        "timing": timing_adherence(samples, time_window_minutes),
    }
    total_weight = sum(max(0.0, weights.get(name, 0.0)) for name in components)
    if total_weight <= 0:
        score = 0.0
    else:
        blended = sum(max(0.0, weights.get(name, 0.0)) * value for name, value in components.items())
        score = round(100 * blended / total_weight, 1)
    return TrustBreakdown(score=score, **components)
