"""
Tolerance Classifier Tests.
"""

import pytest

from riskgov.tolerance.classifier import ToleranceClassifier
from riskgov.tolerance.schemas import BandStatus, Bands, MetricType, TrendConfig, TrendDirection

MAX_BANDS = Bands(green_max=8, amber_max=10, red_max=20)
MIN_BANDS = Bands(green_min=60, amber_min=50, red_min=30)
RANGE_BANDS = Bands(red_min=0, amber_min=10, amber_max=90, red_max=100)
TREND_UP_BAD = TrendConfig(lookback_days=30, allowed_change_pct=10, trend=TrendDirection.INCREASING_IS_BAD)
TREND_DOWN_BAD = TrendConfig(lookback_days=30, allowed_change_pct=10, trend=TrendDirection.DECREASING_IS_BAD)


class TestThresholdMetrics:
    def setup_method(self):
        self.clf = ToleranceClassifier()

    @pytest.mark.parametrize("value,status,threshold", [
        (5, BandStatus.GREEN, None),
        (10, BandStatus.GREEN, None),
        (10.01, BandStatus.AMBER, 10),
        (20, BandStatus.AMBER, 10),
        (25, BandStatus.RED, 20),
    ])
    def test_maximum(self, value, status, threshold):
        result = self.clf.classify(MetricType.MAXIMUM, MAX_BANDS, value)
        assert result.status == status
        assert result.threshold == threshold

    @pytest.mark.parametrize("value,status,threshold", [
        (70, BandStatus.GREEN, None),
        (50, BandStatus.GREEN, None),
        (40, BandStatus.AMBER, 50),
        (20, BandStatus.RED, 30),
    ])
    def test_minimum(self, value, status, threshold):
        result = self.clf.classify(MetricType.MINIMUM, MIN_BANDS, value)
        assert result.status == status
        assert result.threshold == threshold

    @pytest.mark.parametrize("value,status,threshold", [
        (50, BandStatus.GREEN, None),
        (5, BandStatus.AMBER, 10),
        (95, BandStatus.AMBER, 90),
        (-1, BandStatus.RED, 0),
        (101, BandStatus.RED, 100),
    ])
    def test_range(self, value, status, threshold):
        result = self.clf.classify(MetricType.RANGE, RANGE_BANDS, value)
        assert result.status == status
        assert result.threshold == threshold

    def test_red_only_limit(self):
        result = self.clf.classify(MetricType.MAXIMUM, Bands(red_max=20), 15)
        assert result.status == BandStatus.GREEN

    def test_missing_limits_are_unknown(self):
        assert self.clf.classify(MetricType.MAXIMUM, Bands(), 5).status == BandStatus.UNKNOWN
        assert self.clf.classify(MetricType.MINIMUM, Bands(amber_max=3), 5).status == BandStatus.UNKNOWN
        assert self.clf.classify(MetricType.RANGE, Bands(green_min=1), 5).status == BandStatus.UNKNOWN

    def test_explanation_mentions_limit(self):
        result = self.clf.classify(MetricType.MAXIMUM, MAX_BANDS, 25)
        assert result.explanation == "25 exceeds red limit 20"
        assert result.is_breach


class TestDirectionalMetrics:
    def setup_method(self):
        self.clf = ToleranceClassifier()

    def _classify(self, value, baseline, config=TREND_UP_BAD):
        return self.clf.classify(MetricType.DIRECTIONAL, Bands(), value, config, baseline)

    def test_within_allowed_change(self):
        result = self._classify(105, 100)
        assert result.status == BandStatus.GREEN
        assert result.change_pct == 5.0
        assert result.baseline == 100

    def test_adverse_change_amber(self):
        result = self._classify(115, 100)
        assert result.status == BandStatus.AMBER
        assert result.value == 15.0
        assert result.threshold == 10

    def test_adverse_change_red_at_twice_allowed(self):
        result = self._classify(125, 100)
        assert result.status == BandStatus.RED
        assert result.threshold == 20

    def test_exactly_twice_allowed_is_amber(self):
        assert self._classify(120, 100).status == BandStatus.AMBER

    def test_favourable_change_green(self):
        assert self._classify(50, 100).status == BandStatus.GREEN

    def test_decreasing_is_bad(self):
        assert self._classify(85, 100, TREND_DOWN_BAD).status == BandStatus.AMBER
        assert self._classify(150, 100, TREND_DOWN_BAD).status == BandStatus.GREEN

    def test_negative_baseline_uses_magnitude(self):
        """-100 → -80 is a 20% rise."""
        result = self._classify(-80, -100)
        assert result.change_pct == 20.0
        assert result.status == BandStatus.AMBER

    def test_unusable_baseline_is_unknown(self):
        assert self._classify(100, None).status == BandStatus.UNKNOWN
        assert self._classify(100, 0).status == BandStatus.UNKNOWN
        assert self._classify(100, 90, config=None).status == BandStatus.UNKNOWN
        assert not self._classify(100, None).is_breach
