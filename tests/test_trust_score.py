from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from fieldops.services.trust_score import (
    MarkSample,
    battery_plausibility,
    compute_trust_score,
    motion_consistency,
    timing_adherence,
)

WEIGHTS = {"completion": 0.40, "motion": 0.20, "battery": 0.15, "timing": 0.25}
BASE = datetime(2026, 6, 15, 14, 0, tzinfo=timezone.utc)


def _sample(offset: int, *, delay: int = 0, motion: float = 2.0, battery: float | None = 80.0) -> MarkSample:
    expected = BASE + timedelta(minutes=offset)
    return MarkSample(
        scanned_at=expected + timedelta(minutes=delay),
        expected_at=expected,
        motion_score=motion,
        battery_level=battery,
    )


class TrustScoreTests(unittest.TestCase):
    def test_motion_flat_readings_are_penalized(self) -> None:
        self.assertEqual(motion_consistency([0.0, 0.0, 0.0]), 0.2)
        self.assertEqual(motion_consistency([3.0, 3.0, 3.0]), 0.2)

    def test_motion_natural_variation_scores_full(self) -> None:
        self.assertEqual(motion_consistency([2.0, 2.5, 3.0]), 1.0)

    def test_motion_empty_is_zero(self) -> None:
        self.assertEqual(motion_consistency([]), 0.0)

    def test_battery_jumps_are_implausible(self) -> None:
        self.assertEqual(battery_plausibility([90, 89, 88]), 1.0)
        self.assertEqual(battery_plausibility([20, 90]), 0.0)
        self.assertEqual(battery_plausibility([90, 88, 40]), 0.5)

    def test_battery_missing_readings_ignored(self) -> None:
        self.assertEqual(battery_plausibility([None, 50, None]), 1.0)

    def test_timing_window(self) -> None:
        samples = [_sample(0), _sample(10, delay=14), _sample(20, delay=40)]
        self.assertAlmostEqual(timing_adherence(samples, 15), 2 / 3)

    def test_full_patrol_scores_hundred(self) -> None:
        samples = [
            _sample(0, motion=2.0, battery=90),
            _sample(10, motion=2.5, battery=89),
            _sample(20, motion=3.0, battery=88),
        ]
        breakdown = compute_trust_score(
            completion_ratio=1.0,
            samples=samples,
            weights=WEIGHTS,
            time_window_minutes=15,
        )
        self.assertEqual(breakdown.score, 100.0)

    def test_partial_patrol_blends_components(self) -> None:
        samples = [
            _sample(0, motion=2.0, battery=90),
            _sample(10, motion=2.5, battery=89),
            _sample(20, motion=3.0, battery=88),
        ]
        breakdown = compute_trust_score(
            completion_ratio=0.6,
            samples=samples,
            weights=WEIGHTS,
            time_window_minutes=15,
        )
        self.assertEqual(breakdown.completion, 0.6)
        self.assertEqual(breakdown.score, 84.0)

    def test_score_stays_in_range_with_zero_weights(self) -> None:
        breakdown = compute_trust_score(
            completion_ratio=1.0,
            samples=[],
            weights={"completion": 0, "motion": 0, "battery": 0, "timing": 0},
            time_window_minutes=15,
        )
        self.assertEqual(breakdown.score, 0.0)


if __name__ == "__main__":
    unittest.main()
