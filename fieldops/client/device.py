from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from math import sqrt
from typing import Protocol

MOTION_DECAY = 0.8
MOTION_GAIN = 0.2
MOTION_MAX = 10.0


@dataclass(frozen=True)
class LocationFix:
    lat: float
    lng: float
    accuracy_m: float | None = None
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LocationProvider(Protocol):
    def acquire(self, timeout_s: float) -> LocationFix:
        """Return a fresh fix within `timeout_s` or raise."""
        ...


class BatteryProvider(Protocol):
    def level(self) -> float | None: ...


class MotionSampler:
    """Decaying average of acceleration magnitude, clamped to [0, 10]."""

    def __init__(self, initial: float = 0.0) -> None:
        self._score = max(0.0, min(MOTION_MAX, initial))

    @property
    def score(self) -> float:
        return round(self._score, 3)

    def add_sample(self, ax: float, ay: float = 0.0, az: float = 0.0) -> float:
        magnitude = sqrt(ax * ax + ay * ay + az * az)
        self._score = max(0.0, min(MOTION_MAX, MOTION_DECAY * self._score + MOTION_GAIN * magnitude))
        return self.score
