"""
Modele domenowe rdzenia insightów GA4.

Wszystkie obiekty wartości są niemutowalne (frozen dataclasses); enumy dziedziczą
po `str`, więc porównują się z surowymi napisami z UI ("sessions", "DAY").
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

import pandas as pd

from src.insights.errors import InvalidInput

# ========================================================================================
# ENUMS
# ========================================================================================

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Confidence = Literal["low", "medium", "high"]
CONFIDENCE_LEVELS = ("low", "medium", "high")


class Metric(str, Enum):
    PAGEVIEWS = "pageviews"
    SESSIONS = "sessions"
    USERS = "users"
    ENGAGEMENT = "engagement"

    @classmethod
    def parse(cls, value: Union[str, "Metric"]) -> "Metric":
        """Zamienia napis na Metric; nieznana wartość -> InvalidInput."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidInput(f"Invalid metric '{value}'. Must be one of: {valid}") from None


class Granularity(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"

    @classmethod
    def parse(cls, value: Union[str, "Granularity", None]) -> "Granularity":
        if value is None or value == "":
            return cls.DAY
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            valid = ", ".join(g.value for g in cls)
            raise InvalidInput(f"Invalid granularity '{value}'. Must be one of: {valid}") from None


class ProgressStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"


# ========================================================================================
# TIME SERIES
# ========================================================================================

@dataclass(frozen=True)
class TimeSeriesPoint:
    """Jeden punkt serii (data jako nieprzezroczysty token, np. '20240131')."""
    date: str
    value: float


@dataclass(frozen=True)
class DateRange:
    """Zakres dat w formacie ISO YYYY-MM-DD (włącznie)."""
    start: str
    end: str

    def _parsed(self) -> Optional[tuple]:
        try:
            return date.fromisoformat(self.start), date.fromisoformat(self.end)
        except (TypeError, ValueError):
            return None

    def validate(self) -> "DateRange":
        """Sprawdza format i kolejność dat; zwraca self."""
        if not self.start or not self.end:
            raise InvalidInput("Missing required parameters: dateRange.start, dateRange.end")
        if not ISO_DATE_RE.match(self.start) or not ISO_DATE_RE.match(self.end):
            raise InvalidInput("Invalid date format. Use YYYY-MM-DD")
        parsed = self._parsed()
        if parsed is None:
            raise InvalidInput(f"Invalid calendar date in range {self.start}..{self.end}")
        if parsed[0] > parsed[1]:
            raise InvalidInput(f"Start date {self.start} is after end date {self.end}")
        return self

    def day_span(self) -> int:
        """Liczba dni między start i end; 0 gdy daty nieparsowalne."""
        parsed = self._parsed()
        if parsed is None:
            return 0
        return max(0, (parsed[1] - parsed[0]).days)

    def previous_year(self) -> "DateRange":
        """Ten sam kalendarzowy zakres rok wcześniej (29.02 -> 28.02)."""
        shift = pd.DateOffset(years=1)
        start = (pd.Timestamp(self.start) - shift).strftime("%Y-%m-%d")
        end = (pd.Timestamp(self.end) - shift).strftime("%Y-%m-%d")
        return DateRange(start=start, end=end)


# ========================================================================================
# CACHE KEY / PAYLOAD
# ========================================================================================

@dataclass(frozen=True)
class CacheKey:
    """Złożony klucz (metric, start, end, granularity); równość strukturalna."""
    metric: Metric
    start_date: str
    end_date: str
    granularity: Granularity = Granularity.DAY

    def __post_init__(self) -> None:
        # normalizacja do enumów, żeby "sessions" i Metric.SESSIONS dawały ten sam hash
        object.__setattr__(self, "metric", Metric.parse(self.metric))
        object.__setattr__(self, "granularity", Granularity.parse(self.granularity))

    @classmethod
    def of(cls, metric: Union[str, Metric], date_range: DateRange,
           granularity: Union[str, Granularity, None] = None) -> "CacheKey":
        return cls(metric=metric, start_date=date_range.start, end_date=date_range.end,
                   granularity=granularity)

    @property
    def fingerprint(self) -> str:
        return f"{self.metric.value}:{self.start_date}:{self.end_date}:{self.granularity.value}"


@dataclass(frozen=True)
class InsightPayload:
    """Narracja AI (lub lokalny fallback) dla jednej metryki i zakresu."""
    summary: str
    actions: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    confidence: Confidence = "low"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ========================================================================================
# PREFETCH RESULT
# ========================================================================================

@dataclass(frozen=True)
class PrefetchError:
    metric: str
    error: str


@dataclass
class PrefetchResult:
    """Wynik batcha prefetchu: metryki gotowe w cache + błędy per metryka."""
    success: List[str] = field(default_factory=list)
    errors: List[PrefetchError] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.success and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": list(self.success),
            "errors": [{"metric": e.metric, "error": e.error} for e in self.errors],
        }
