"""
Feature Extractor - statystyki opisowe i flagi anomalii dla serii GA4.

Funkcjonalności:
- total / average / min / max / median
- odchylenie standardowe (populacyjne, dzielone przez n)
- trend: nachylenie regresji liniowej OLS (x = 0..n-1)
- zmiana YoY na sumach (bieżący okres vs ten sam okres rok wcześniej)
- spikes / dips: zmiana okres-do-okresu (+30% / -20%, progi konfigurowalne)
- outliers: |z-score| > 2 względem średniej i odchylenia całej serii

Funkcja jest czysta i deterministyczna; bezpieczna przy wywołaniach współbieżnych.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from src.insights.errors import InvalidInput
from src.insights.models import TimeSeriesPoint
from src.utils.logger import get_logger

__all__ = ["AnomalyPoint", "CalculatedFeatures", "FeatureThresholds", "compute_features"]

LOGGER = get_logger("feature_extractor")

# ========================================================================================
# KONFIGURACJA
# ========================================================================================

DEFAULT_SPIKE_PCT = 30.0
DEFAULT_DIP_PCT = -20.0
DEFAULT_OUTLIER_Z = 2.0


@dataclass(frozen=True)
class FeatureThresholds:
    """Progi detekcji anomalii (asymetria spike/dip jest zamierzona)."""
    spike_pct: float = DEFAULT_SPIKE_PCT
    dip_pct: float = DEFAULT_DIP_PCT
    outlier_z: float = DEFAULT_OUTLIER_Z


# ========================================================================================
# DATACLASSES
# ========================================================================================

@dataclass(frozen=True)
class AnomalyPoint:
    """Punkt oznaczony jako spike/dip (change w %) lub outlier (z_score)."""
    date: str
    value: float
    change: Optional[float] = None
    z_score: Optional[float] = None


@dataclass(frozen=True)
class CalculatedFeatures:
    """Cechy wyliczone z serii bieżącej i poprzedniorocznej."""
    total: float
    average: float
    min: float
    max: float
    median: float
    std_dev: float
    trend: float
    yoy_change: float
    spikes: List[AnomalyPoint] = field(default_factory=list)
    dips: List[AnomalyPoint] = field(default_factory=list)
    outliers: List[AnomalyPoint] = field(default_factory=list)
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ========================================================================================
# HELPERS
# ========================================================================================

def _values_of(series: Sequence[TimeSeriesPoint], name: str) -> np.ndarray:
    try:
        values = np.asarray([float(p.value) for p in series], dtype=float)
    except (TypeError, ValueError):
        raise InvalidInput(f"Series '{name}' contains non-numeric values") from None
    if values.size and not np.all(np.isfinite(values)):
        raise InvalidInput(f"Series '{name}' contains non-finite values")
    return values


def _median(values: np.ndarray) -> float:
    ordered = np.sort(values)
    n = ordered.size
    mid = n // 2
    if n % 2 == 0:
        return float((ordered[mid - 1] + ordered[mid]) / 2)
    return float(ordered[mid])


def _ols_slope(values: np.ndarray) -> float:
    """Nachylenie OLS w postaci zamkniętej; dla n < 2 zwraca 0."""
    n = values.size
    x = np.arange(n, dtype=float)
    sum_x = float(x.sum())
    sum_y = float(values.sum())
    sum_xy = float((x * values).sum())
    sum_xx = float((x * x).sum())
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def _yoy_change(total: float, previous_total: float) -> float:
    if previous_total == 0:
        return 0.0
    return (total - previous_total) / previous_total * 100


def _period_changes(
    series: Sequence[TimeSeriesPoint],
    values: np.ndarray,
    thresholds: FeatureThresholds,
) -> tuple:
    spikes: List[AnomalyPoint] = []
    dips: List[AnomalyPoint] = []
    for i in range(1, values.size):
        prev = float(values[i - 1])
        cur = float(values[i])
        if prev == 0:
            # wzrost od zera = nieskończona zmiana; 0 -> 0 pomijamy
            if cur > 0:
                spikes.append(AnomalyPoint(date=series[i].date, value=cur, change=float("inf")))
            elif cur < 0:
                dips.append(AnomalyPoint(date=series[i].date, value=cur, change=float("-inf")))
            continue
        # mnożenie przed dzieleniem: 130 vs 100 daje dokładnie 30.0
        change = (cur - prev) * 100 / prev
        if change > thresholds.spike_pct:
            spikes.append(AnomalyPoint(date=series[i].date, value=cur, change=change))
        elif change < thresholds.dip_pct:
            dips.append(AnomalyPoint(date=series[i].date, value=cur, change=change))
    return spikes, dips


def _outliers(
    series: Sequence[TimeSeriesPoint],
    values: np.ndarray,
    average: float,
    std_dev: float,
    thresholds: FeatureThresholds,
) -> List[AnomalyPoint]:
    if std_dev == 0:
        return []
    z_scores = np.abs((values - average) / std_dev)
    return [
        AnomalyPoint(date=series[i].date, value=float(values[i]), z_score=float(z))
        for i, z in enumerate(z_scores)
        if z > thresholds.outlier_z
    ]


# ========================================================================================
# GŁÓWNA FUNKCJA
# ========================================================================================

def compute_features(
    current: Sequence[TimeSeriesPoint],
    previous: Sequence[TimeSeriesPoint],
    thresholds: Optional[FeatureThresholds] = None,
) -> CalculatedFeatures:
    """
    Wylicza cechy serii czasowej dla summarizera AI.

    Args:
        current: Seria bieżącego okresu (rosnąco po dacie), niepusta
        previous: Seria tego samego okresu rok wcześniej (może być pusta)
        thresholds: Progi anomalii (domyślnie +30% / -20% / z=2)

    Returns:
        CalculatedFeatures

    Raises:
        InvalidInput: Pusta seria bieżąca lub wartości NaN/inf
    """
    if not current:
        raise InvalidInput("Current time series is empty")

    th = thresholds or FeatureThresholds()
    values = _values_of(current, "current")
    previous_values = _values_of(previous, "previous")

    n = values.size
    total = float(values.sum())
    average = total / n
    std_dev = float(np.sqrt(((values - average) ** 2).sum() / n))

    spikes, dips = _period_changes(current, values, th)

    features = CalculatedFeatures(
        total=total,
        average=average,
        min=float(values.min()),
        max=float(values.max()),
        median=_median(values),
        std_dev=std_dev,
        trend=_ols_slope(values),
        yoy_change=_yoy_change(total, float(previous_values.sum())),
        spikes=spikes,
        dips=dips,
        outliers=_outliers(current, values, average, std_dev, th),
        count=n,
    )

    LOGGER.debug(
        f"Features: n={n}, total={total:.2f}, trend={features.trend:.4f}, "
        f"spikes={len(spikes)}, dips={len(dips)}, outliers={len(features.outliers)}"
    )
    return features
