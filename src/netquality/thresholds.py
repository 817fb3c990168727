from __future__ import annotations

from typing import Optional

from netquality.models import ConfigError, ThresholdCategory, Thresholds


def classify(actual_mbps: float, expected_mbps: float, thresholds: Thresholds) -> ThresholdCategory:
    """Map a measured speed to a tier using its share of the expected speed.

    Tiers are scanned from best to worst; a value sitting exactly on a
    boundary belongs to the worse tier.
    """
    percent = (actual_mbps / expected_mbps) * 100.0
    if percent > thresholds.medium_fast:
        return ThresholdCategory.EXPECTED
    if percent > thresholds.medium:
        return ThresholdCategory.MEDIUM_FAST
    if percent > thresholds.slow:
        return ThresholdCategory.MEDIUM
    if percent > thresholds.very_slow:
        return ThresholdCategory.SLOW
    return ThresholdCategory.VERY_SLOW


def classify_optional(
    actual_mbps: Optional[float],
    expected_mbps: Optional[float],
    thresholds: Thresholds,
) -> Optional[ThresholdCategory]:
    if actual_mbps is None or expected_mbps is None:
        return None
    return classify(actual_mbps, expected_mbps, thresholds)


def parse_thresholds(value: str) -> Thresholds:
    """Parse the CLI form `V,S,M,MF`, e.g. `30,50,65,85`."""
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 4:
        raise ConfigError("Thresholds must have 4 comma-separated values (e.g. 30,50,65,85).")
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        raise ConfigError(f"Invalid threshold values: {value}") from None
    thresholds = Thresholds(*numbers)
    thresholds.validate()
    return thresholds
