"""
Tests for the GA4 time-series adapter (request shape, previous-year range,
engagement averaging, aggregate metrics, error degradation).
"""

from __future__ import annotations

import types
from typing import Dict, List, Sequence

import pytest

from src.data_processing.ga4_timeseries import (
    GA4_METRIC_NAMES,
    Ga4Metrics,
    Ga4TimeSeriesClient,
    GrowthRates,
    growth_rate,
)
from src.insights.errors import InvalidInput
from src.insights.models import DateRange, Metric


def _row(label: str, *values: str):
    return types.SimpleNamespace(
        dimension_values=[types.SimpleNamespace(value=label)] if label else [],
        metric_values=[types.SimpleNamespace(value=v) for v in values],
    )


class FakeDataClient:
    """BetaAnalyticsDataClient double keyed by (metric name, start date)."""

    def __init__(self, series: Dict[tuple, Sequence[tuple]] = None, totals: Sequence[Sequence[str]] = (),
                 error: Exception = None, totals_by_start: Dict[str, Sequence[Sequence[str]]] = None,
                 failing_starts: Sequence[str] = ()):
        self.series = series or {}
        self.totals = totals
        self.totals_by_start = totals_by_start or {}
        self.failing_starts = set(failing_starts)
        self.error = error
        self.requests: List = []

    def run_report(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if not request.dimensions:
            start = request.date_ranges[0].start_date
            if start in self.failing_starts:
                raise RuntimeError("DEADLINE_EXCEEDED")
            totals = self.totals_by_start.get(start, self.totals)
            return types.SimpleNamespace(rows=[_row("", *vals) for vals in totals])
        key = (request.metrics[0].name, request.date_ranges[0].start_date)
        return types.SimpleNamespace(rows=[_row(label, value) for label, value in self.series.get(key, [])])


class TestFetchTimeSeries:

    def test_current_and_previous_year(self):
        fake = FakeDataClient(series={
            ("sessions", "2024-03-01"): [("20240301", "10"), ("20240302", "12")],
            ("sessions", "2023-03-01"): [("20230301", "8"), ("20230302", "9")],
        })
        client = Ga4TimeSeriesClient(client=fake, property_id="123")

        result = client.fetch_time_series("sessions", "2024-03-01", "2024-03-02", "DAY")

        assert result.error is None
        assert [(p.date, p.value) for p in result.current] == [("20240301", 10.0), ("20240302", 12.0)]
        assert [p.value for p in result.previous_year] == [8.0, 9.0]

        first, second = fake.requests
        assert first.property == "properties/123"
        assert first.metrics[0].name == "sessions"
        assert first.dimensions[0].name == "date"
        assert second.date_ranges[0].start_date == "2023-03-01"
        assert second.date_ranges[0].end_date == "2023-03-02"

    @pytest.mark.parametrize(
        "metric,ga_name",
        [("pageviews", "screenPageViews"), ("users", "totalUsers"), ("sessions", "sessions")],
    )
    def test_metric_names(self, metric, ga_name):
        fake = FakeDataClient()
        Ga4TimeSeriesClient(client=fake, property_id="1").fetch_time_series(metric, "2024-01-01", "2024-01-02")
        assert fake.requests[0].metrics[0].name == ga_name
        assert GA4_METRIC_NAMES[Metric(metric)] == ga_name

    @pytest.mark.parametrize("granularity,dimension", [("WEEK", "yearWeek"), ("MONTH", "yearMonth"), (None, "date")])
    def test_granularity_maps_to_dimension(self, granularity, dimension):
        fake = FakeDataClient()
        Ga4TimeSeriesClient(client=fake, property_id="1").fetch_time_series(
            "users", "2024-01-01", "2024-03-31", granularity)
        assert fake.requests[0].dimensions[0].name == dimension

    def test_engagement_is_averaged_per_session(self):
        fake = FakeDataClient(series={
            ("userEngagementDuration", "2024-01-01"): [("20240101", "300"), ("20240102", "100")],
            ("sessions", "2024-01-01"): [("20240101", "10"), ("20240102", "0")],
            ("userEngagementDuration", "2023-01-01"): [("20230101", "50")],
            ("sessions", "2023-01-01"): [("20230101", "5")],
        })
        result = Ga4TimeSeriesClient(client=fake, property_id="1").fetch_time_series(
            "engagement", "2024-01-01", "2024-01-02")
        assert [p.value for p in result.current] == [30.0, 0.0]
        assert [p.value for p in result.previous_year] == [10.0]

    def test_leap_day_previous_year(self):
        fake = FakeDataClient()
        Ga4TimeSeriesClient(client=fake, property_id="1").fetch_time_series("users", "2024-02-29", "2024-02-29")
        assert fake.requests[1].date_ranges[0].start_date == "2023-02-28"

    def test_remote_error_is_returned_not_raised(self):
        fake = FakeDataClient(error=RuntimeError("PERMISSION_DENIED"))
        result = Ga4TimeSeriesClient(client=fake, property_id="1").fetch_time_series(
            "users", "2024-01-01", "2024-01-31")
        assert result.error == "PERMISSION_DENIED"
        assert result.current == []

    def test_missing_property_id(self):
        fake = FakeDataClient()
        client = Ga4TimeSeriesClient(client=fake, property_id="x")
        client.property_id = None
        result = client.fetch_time_series("users", "2024-01-01", "2024-01-31")
        assert "GA4_PROPERTY_ID" in result.error
        assert fake.requests == []

    @pytest.mark.parametrize(
        "metric,start,end",
        [
            ("bounces", "2024-01-01", "2024-01-31"),
            ("users", "2024/01/01", "2024-01-31"),
            ("users", "2024-02-10", "2024-02-01"),
            ("users", "2024-02-30", "2024-03-01"),
        ],
    )
    def test_invalid_input_raises(self, metric, start, end):
        with pytest.raises(InvalidInput):
            Ga4TimeSeriesClient(client=FakeDataClient(), property_id="1").fetch_time_series(metric, start, end)


class TestFetchMetrics:

    def test_aggregates_rows(self):
        fake = FakeDataClient(totals=[("100", "80", "250", "3000"), ("50", "40", "150", "1500")])
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(DateRange("2024-01-01", "2024-01-31"))
        assert result.error is None
        assert result.data == Ga4Metrics(sessions=150, total_users=120, pageviews=400, average_engagement_time=30.0)
        assert [m.name for m in fake.requests[0].metrics] == [
            "sessions", "totalUsers", "screenPageViews", "userEngagementDuration"]

    def test_no_sessions_gives_zero_engagement(self):
        fake = FakeDataClient(totals=[("0", "0", "0", "0")])
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(DateRange("2024-01-01", "2024-01-31"))
        assert result.data.average_engagement_time == 0.0

    def test_error(self):
        fake = FakeDataClient(error=RuntimeError("quota"))
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(DateRange("2024-01-01", "2024-01-31"))
        assert result.error == "quota"

    def test_total_for_metric(self):
        data = Ga4Metrics(sessions=5, total_users=4, pageviews=9, average_engagement_time=12.5)
        assert data.total_for("pageviews") == 9
        assert data.total_for(Metric.USERS) == 4
        assert data.total_for("engagement") == 12.5


JAN_2024 = DateRange("2024-01-01", "2024-01-31")


class TestGrowthRates:

    def test_year_over_year_rates(self):
        fake = FakeDataClient(totals_by_start={
            "2024-01-01": [("100", "80", "250", "3000")],
            "2023-01-01": [("80", "80", "0", "1600")],
        })
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(JAN_2024, include_growth_rates=True)

        assert result.error is None
        assert result.data.sessions == 100
        assert result.growth_rates == GrowthRates(
            sessions=25.0, total_users=0.0, pageviews=100.0, average_engagement_time=50.0)
        assert [r.date_ranges[0].start_date for r in fake.requests] == ["2024-01-01", "2023-01-01"]
        assert fake.requests[1].date_ranges[0].end_date == "2023-01-31"

    def test_no_previous_year_data_gives_zero_rates(self):
        fake = FakeDataClient(totals_by_start={"2024-01-01": [("100", "80", "250", "3000")], "2023-01-01": []})
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(JAN_2024, include_growth_rates=True)
        assert result.growth_rates == GrowthRates()

    def test_previous_year_error_keeps_current_totals(self):
        fake = FakeDataClient(totals=[("100", "80", "250", "3000")], failing_starts=["2023-01-01"])
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(JAN_2024, include_growth_rates=True)
        assert result.error is None
        assert result.data.sessions == 100
        assert result.growth_rates == GrowthRates()

    def test_growth_rates_are_opt_in(self):
        fake = FakeDataClient(totals=[("100", "80", "250", "3000")])
        result = Ga4TimeSeriesClient(client=fake, property_id="9").fetch_metrics(JAN_2024)
        assert result.growth_rates is None
        assert len(fake.requests) == 1

    @pytest.mark.parametrize(
        "current,previous,expected",
        [(150, 100, 50.0), (50, 100, -50.0), (10, 0, 100.0), (0, 0, 0.0), (1, 3, -66.67)],
    )
    def test_growth_rate(self, current, previous, expected):
        assert growth_rate(current, previous) == expected
