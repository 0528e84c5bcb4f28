"""
Tolerance band classification.

Compares one measurement against a metric's green/amber/red limits:
- maximum: breach when the value rises above amber_max / red_max
- minimum: breach when the value falls below amber_min / red_min
- range: breach when the value leaves [amber_min, amber_max] / [red_min, red_max]
- directional: breach when the change against a trailing baseline moves
  the wrong way by more than the allowed percentage (red at twice it)

Anything that cannot be judged (no limits, no usable baseline) is UNKNOWN,
which callers treat as "no breach, no assurance claimed".
"""

from typing import Optional

import structlog

from riskgov.tolerance.schemas import (
    BandStatus,
    Bands,
    Classification,
    MetricType,
    TrendConfig,
    TrendDirection,
)

logger = structlog.get_logger(__name__)

RED_MULTIPLIER: float = 2.0


def _unknown(value: float, reason: str, **extra) -> Classification:
    return Classification(status=BandStatus.UNKNOWN, value=value, threshold=None, explanation=reason, **extra)


def _green(value: float, explanation: str, **extra) -> Classification:
    return Classification(status=BandStatus.GREEN, value=value, threshold=None, explanation=explanation, **extra)


def classify_maximum(bands: Bands, value: float) -> Classification:
    if bands.red_max is None and bands.amber_max is None:
        return _unknown(value, "No upper limits configured")
    if bands.red_max is not None and value > bands.red_max:
        return Classification(BandStatus.RED, value, bands.red_max, f"{value:g} exceeds red limit {bands.red_max:g}")
    if bands.amber_max is not None and value > bands.amber_max:
        return Classification(
            BandStatus.AMBER, value, bands.amber_max, f"{value:g} exceeds amber limit {bands.amber_max:g}",
        )
    return _green(value, f"{value:g} within tolerance")


def classify_minimum(bands: Bands, value: float) -> Classification:
    if bands.red_min is None and bands.amber_min is None:
        return _unknown(value, "No lower limits configured")
    if bands.red_min is not None and value < bands.red_min:
        return Classification(BandStatus.RED, value, bands.red_min, f"{value:g} below red limit {bands.red_min:g}")
    if bands.amber_min is not None and value < bands.amber_min:
        return Classification(
            BandStatus.AMBER, value, bands.amber_min, f"{value:g} below amber limit {bands.amber_min:g}",
        )
    return _green(value, f"{value:g} within tolerance")


def classify_range(bands: Bands, value: float) -> Classification:
    limits = (bands.red_min, bands.red_max, bands.amber_min, bands.amber_max)
    if all(limit is None for limit in limits):
        return _unknown(value, "No range limits configured")

    for status, low, high in (
        (BandStatus.RED, bands.red_min, bands.red_max),
        (BandStatus.AMBER, bands.amber_min, bands.amber_max),
    ):
        if low is not None and value < low:
            return Classification(status, value, low, f"{value:g} below {status.value} floor {low:g}")
        if high is not None and value > high:
            return Classification(status, value, high, f"{value:g} above {status.value} ceiling {high:g}")
    return _green(value, f"{value:g} within range")


def classify_directional(
    config: Optional[TrendConfig],
    value: float,
    baseline: Optional[float],
) -> Classification:
    """Classify the percentage move from ``baseline`` to ``value``."""
    if config is None:
        return _unknown(value, "No trend configuration")
    if baseline is None:
        return _unknown(value, f"No baseline measurement {config.lookback_days} days back")
    if baseline == 0:
        return _unknown(value, "Baseline is zero; percentage change undefined", baseline=baseline)

    change_pct = round((value - baseline) / abs(baseline) * 100.0, 4)
    adverse = change_pct if config.trend == TrendDirection.INCREASING_IS_BAD else -change_pct
    extra = {"baseline": baseline, "change_pct": change_pct}

    if adverse <= 0:
        return _green(change_pct, f"Change of {change_pct:g}% is in the favourable direction", **extra)

    red_limit = config.allowed_change_pct * RED_MULTIPLIER
    if adverse > red_limit:
        return Classification(
            BandStatus.RED, change_pct, red_limit,
            f"Adverse change of {adverse:g}% exceeds {red_limit:g}% over {config.lookback_days} days",
            **extra,
        )
    if adverse > config.allowed_change_pct:
        return Classification(
            BandStatus.AMBER, change_pct, config.allowed_change_pct,
            f"Adverse change of {adverse:g}% exceeds {config.allowed_change_pct:g}% over {config.lookback_days} days",
            **extra,
        )
    return _green(change_pct, f"Adverse change of {adverse:g}% within {config.allowed_change_pct:g}%", **extra)


class ToleranceClassifier:
    """Dispatches on metric type."""

    def classify(
        self,
        metric_type: MetricType,
        bands: Bands,
        value: float,
        trend_config: Optional[TrendConfig] = None,
        baseline: Optional[float] = None,
    ) -> Classification:
        if metric_type == MetricType.MAXIMUM:
            result = classify_maximum(bands, value)
        elif metric_type == MetricType.MINIMUM:
            result = classify_minimum(bands, value)
        elif metric_type == MetricType.RANGE:
            result = classify_range(bands, value)
        else:
            result = classify_directional(trend_config, value, baseline)

        logger.debug(
            "tolerance_classified",
            metric_type=metric_type.value,
            status=result.status.value,
            value=result.value,
            threshold=result.threshold,
        )
        return result


tolerance_classifier = ToleranceClassifier()
