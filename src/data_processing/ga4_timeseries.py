"""
GA4 Time Series - adapter Google Analytics Data API (v1beta) dla rdzenia insightów.

- fetch_time_series(metric, start, end, granularity) -> TimeSeriesResult
  (bieżący okres + ten sam okres rok wcześniej)
- fetch_metrics(date_range, include_growth_rates) -> MetricsResult (agregaty "widgetowe" + opcjonalnie YoY)
- engagement = userEngagementDuration / sessions per punkt (średnia na sesję)

Błędy zdalne nie są rzucane: wracają jako `error` w wyniku (graceful degradation).
Uwierzytelnienie klienta należy do hosta; bez klienta używamy ADC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange as GaDateRange,
    Dimension,
    Metric as GaMetric,
    OrderBy,
    RunReportRequest,
)

from src.insights.models import DateRange, Granularity, Metric, TimeSeriesPoint
from src.utils.logger import get_logger
from src.utils.settings import load_settings

LOGGER = get_logger("ga4_timeseries")

# ========================================================================================
# MAPOWANIA
# ========================================================================================

GA4_METRIC_NAMES: Dict[Metric, str] = {
    Metric.PAGEVIEWS: "screenPageViews",
    Metric.SESSIONS: "sessions",
    Metric.USERS: "totalUsers",
    Metric.ENGAGEMENT: "userEngagementDuration",
}

GA4_TIME_DIMENSIONS: Dict[Granularity, str] = {
    Granularity.DAY: "date",
    Granularity.WEEK: "yearWeek",
    Granularity.MONTH: "yearMonth",
}

TOTALS_METRICS = ("sessions", "totalUsers", "screenPageViews", "userEngagementDuration")


# ========================================================================================
# DATACLASSES
# ========================================================================================

@dataclass(frozen=True)
class TimeSeriesResult:
    current: List[TimeSeriesPoint] = field(default_factory=list)
    previous_year: List[TimeSeriesPoint] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class Ga4Metrics:
    sessions: int = 0
    total_users: int = 0
    pageviews: int = 0
    average_engagement_time: float = 0.0

    def total_for(self, metric: Union[str, Metric]) -> float:
        """Agregat odpowiadający metryce insightu."""
        m = Metric.parse(metric)
        return {
            Metric.SESSIONS: self.sessions,
            Metric.USERS: self.total_users,
            Metric.PAGEVIEWS: self.pageviews,
            Metric.ENGAGEMENT: self.average_engagement_time,
        }[m]


@dataclass(frozen=True)
class GrowthRates:
    """Zmiana YoY agregatów w % (2 miejsca po przecinku)."""
    sessions: float = 0.0
    total_users: float = 0.0
    pageviews: float = 0.0
    average_engagement_time: float = 0.0


@dataclass(frozen=True)
class MetricsResult:
    data: Ga4Metrics = field(default_factory=Ga4Metrics)
    error: Optional[str] = None
    growth_rates: Optional[GrowthRates] = None


# ========================================================================================
# KLIENT
# ========================================================================================

def growth_rate(current: float, previous: float) -> float:
    """Zmiana % zaokrąglona do 2 miejsc; od zera: 100 gdy wzrost, inaczej 0."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def _per_session(values: List[TimeSeriesPoint], sessions: List[TimeSeriesPoint]) -> List[TimeSeriesPoint]:
    """Dzieli wartości przez liczbę sesji w tym samym indeksie (0 gdy brak sesji)."""
    out: List[TimeSeriesPoint] = []
    for i, point in enumerate(values):
        s = sessions[i].value if i < len(sessions) else 0.0
        out.append(TimeSeriesPoint(date=point.date, value=point.value / s if s > 0 else 0.0))
    return out


class Ga4TimeSeriesClient:
    """Wrapper na BetaAnalyticsDataClient.run_report dla serii i agregatów."""

    def __init__(self, client: Optional[Any] = None, property_id: Optional[str] = None):
        self.property_id = property_id or load_settings().ga4_property_id
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = BetaAnalyticsDataClient()
        return self._client

    @property
    def _property(self) -> str:
        return f"properties/{self.property_id}"

    def _run_series(self, date_range: DateRange, ga_metric: str, granularity: Granularity) -> List[TimeSeriesPoint]:
        dimension = GA4_TIME_DIMENSIONS[granularity]
        request = RunReportRequest(
            property=self._property,
            date_ranges=[GaDateRange(start_date=date_range.start, end_date=date_range.end)],
            metrics=[GaMetric(name=ga_metric)],
            dimensions=[Dimension(name=dimension)],
            order_bys=[OrderBy(dimension=OrderBy.DimensionOrderBy(dimension_name=dimension))],
        )
        response = self.client.run_report(request)
        points: List[TimeSeriesPoint] = []
        for row in response.rows or []:
            label = row.dimension_values[0].value if row.dimension_values else ""
            raw = row.metric_values[0].value if row.metric_values else "0"
            points.append(TimeSeriesPoint(date=label, value=float(raw or 0)))
        return points

    def fetch_time_series(
        self,
        metric: Union[str, Metric],
        start_date: str,
        end_date: str,
        granularity: Union[str, Granularity, None] = Granularity.DAY,
    ) -> TimeSeriesResult:
        """
        Pobiera serię bieżącą i poprzednioroczną.

        Raises:
            InvalidInput: Zła metryka/granulacja/zakres dat
        """
        m = Metric.parse(metric)
        g = Granularity.parse(granularity)
        current_range = DateRange(start_date, end_date).validate()
        previous_range = current_range.previous_year()

        if not self.property_id:
            return TimeSeriesResult(error="GA4 client not initialized: GA4_PROPERTY_ID is not set")

        ga_metric = GA4_METRIC_NAMES[m]
        LOGGER.info(f"Fetching time series {m.value} ({ga_metric}) {start_date}..{end_date} [{g.value}]")

        try:
            current = self._run_series(current_range, ga_metric, g)
            previous = self._run_series(previous_range, ga_metric, g)

            if m is Metric.ENGAGEMENT:
                current = _per_session(current, self._run_series(current_range, "sessions", g))
                previous = _per_session(previous, self._run_series(previous_range, "sessions", g))
        except Exception as e:
            LOGGER.error(f"GA4 time series fetch failed: {e}")
            return TimeSeriesResult(error=str(e) or e.__class__.__name__)

        LOGGER.debug(f"GA4 returned {len(current)} current / {len(previous)} previous-year points")
        return TimeSeriesResult(current=current, previous_year=previous)

    def _run_totals(self, date_range: DateRange) -> Tuple[Ga4Metrics, int]:
        """Agregaty okresu + liczba wierszy odpowiedzi (0 = brak danych)."""
        request = RunReportRequest(
            property=self._property,
            date_ranges=[GaDateRange(start_date=date_range.start, end_date=date_range.end)],
            metrics=[GaMetric(name=name) for name in TOTALS_METRICS],
        )
        response = self.client.run_report(request)
        rows = list(response.rows or [])

        sessions = users = pageviews = 0
        engagement = 0.0
        for row in rows:
            vals = [mv.value for mv in row.metric_values]
            sessions += int(float(vals[0] or 0)) if len(vals) > 0 else 0
            users += int(float(vals[1] or 0)) if len(vals) > 1 else 0
            pageviews += int(float(vals[2] or 0)) if len(vals) > 2 else 0
            engagement += float(vals[3] or 0) if len(vals) > 3 else 0.0

        metrics = Ga4Metrics(
            sessions=sessions,
            total_users=users,
            pageviews=pageviews,
            average_engagement_time=engagement / sessions if sessions > 0 else 0.0,
        )
        return metrics, len(rows)

    def _growth_rates(self, date_range: DateRange, current: Ga4Metrics) -> GrowthRates:
        """YoY względem tego samego okresu rok wcześniej; błąd lub brak danych -> zera."""
        previous_range = date_range.previous_year()
        try:
            previous, row_count = self._run_totals(previous_range)
        except Exception as e:
            LOGGER.warning(f"GA4 previous-year totals failed, growth rates set to 0: {e}")
            return GrowthRates()
        if row_count == 0:
            LOGGER.info(f"No GA4 data for {previous_range.start}..{previous_range.end}, growth rates set to 0")
            return GrowthRates()

        return GrowthRates(
            sessions=growth_rate(current.sessions, previous.sessions),
            total_users=growth_rate(current.total_users, previous.total_users),
            pageviews=growth_rate(current.pageviews, previous.pageviews),
            average_engagement_time=growth_rate(current.average_engagement_time, previous.average_engagement_time),
        )

    def fetch_metrics(self, date_range: DateRange, include_growth_rates: bool = False) -> MetricsResult:
        """
        Agregaty okresu (sesje, użytkownicy, odsłony, śr. czas zaangażowania na sesję).

        Args:
            date_range: Zakres dat
            include_growth_rates: Dołącz zmianę YoY (dodatkowe zapytanie GA4)

        Returns:
            MetricsResult; błąd GA4 w polu `error`
        """
        date_range.validate()
        if not self.property_id:
            return MetricsResult(error="GA4 client not initialized: GA4_PROPERTY_ID is not set")

        try:
            data, _ = self._run_totals(date_range)
        except Exception as e:
            LOGGER.error(f"GA4 metrics fetch failed: {e}")
            return MetricsResult(error=str(e) or e.__class__.__name__)

        if not include_growth_rates:
            return MetricsResult(data=data)
        return MetricsResult(data=data, growth_rates=self._growth_rates(date_range, data))
