"""
Insights Pipeline - pełna ścieżka generowania insightu dla jednej metryki.

GA4 (seria bieżąca + rok wcześniej) -> compute_features -> [opcjonalnie total z agregatów]
-> summarize (OpenAI) -> przy błędzie AI lokalny fallback.

Blokujące wywołania SDK (GA4, OpenAI) wykonywane są w wątku roboczym, więc
pipeline jest awaitable i pasuje jako `fetcher` do InsightsPrefetcher.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Optional, Union

from src.ai_engine.insights_generator import InsightsOptions, fallback_insights, summarize
from src.data_processing.feature_extractor import CalculatedFeatures, FeatureThresholds, compute_features
from src.data_processing.ga4_timeseries import Ga4TimeSeriesClient
from src.database.insights_cache import InsightsCache
from src.insights.errors import RemoteUnavailable
from src.insights.models import DateRange, Granularity, InsightPayload, Metric
from src.insights.prefetcher import InsightsPrefetcher
from src.utils.logger import get_logger
from src.utils.settings import InsightsSettings, load_settings

LOGGER = get_logger("insights_pipeline")

Summarizer = Callable[[CalculatedFeatures, Metric, DateRange], InsightPayload]


class InsightsPipeline:
    """Awaitable fetcher insightów: (metric, date_range, granularity) -> InsightPayload."""

    def __init__(
        self,
        series_client: Ga4TimeSeriesClient,
        *,
        thresholds: Optional[FeatureThresholds] = None,
        options: Optional[InsightsOptions] = None,
        summarizer: Optional[Summarizer] = None,
        use_widget_totals: bool = False,
    ):
        self.series_client = series_client
        self.thresholds = thresholds or FeatureThresholds()
        self.options = options or InsightsOptions()
        self._summarizer = summarizer or (lambda f, m, r: summarize(f, m, r, self.options))
        self.use_widget_totals = use_widget_totals

    def build_features(self, metric: Metric, date_range: DateRange, granularity: Granularity) -> CalculatedFeatures:
        """
        Pobiera serie i liczy cechy.

        Raises:
            RemoteUnavailable: GA4 zwrócił błąd
            InvalidInput: Pusta/niepoprawna seria bieżąca
        """
        series = self.series_client.fetch_time_series(metric, date_range.start, date_range.end, granularity)
        if series.error:
            raise RemoteUnavailable(f"Failed to fetch time series data: {series.error}", metric=metric.value)

        features = compute_features(series.current, series.previous_year, self.thresholds)

        if self.use_widget_totals:
            # total spójny z kartami przeglądu (agregat GA4, nie suma punktów)
            totals = self.series_client.fetch_metrics(date_range)
            if totals.error:
                raise RemoteUnavailable(f"Failed to fetch metrics data: {totals.error}", metric=metric.value)
            LOGGER.debug(f"Overriding total {features.total:.2f} with widget total for {metric.value}")
            features = replace(features, total=float(totals.data.total_for(metric)))

        return features

    def generate(
        self,
        metric: Union[str, Metric],
        date_range: DateRange,
        granularity: Union[str, Granularity, None] = Granularity.DAY,
    ) -> InsightPayload:
        """Synchroniczna ścieżka: cechy -> AI -> fallback."""
        m = Metric.parse(metric)
        g = Granularity.parse(granularity)
        date_range.validate()

        features = self.build_features(m, date_range, g)

        try:
            payload = self._summarizer(features, m, date_range)
            LOGGER.info(f"AI insights ready for {m.value} (confidence={payload.confidence})")
            return payload
        except RemoteUnavailable as e:
            LOGGER.warning(f"AI summarizer failed for {m.value}, returning fallback insights: {e}")
            return fallback_insights(features, m, date_range)

    async def __call__(
        self,
        metric: Union[str, Metric],
        date_range: DateRange,
        granularity: Union[str, Granularity, None] = Granularity.DAY,
    ) -> InsightPayload:
        return await asyncio.to_thread(self.generate, metric, date_range, granularity)


def build_prefetcher(
    settings: Optional[InsightsSettings] = None,
    *,
    series_client: Optional[Ga4TimeSeriesClient] = None,
    cache: Optional[InsightsCache] = None,
) -> InsightsPrefetcher:
    """
    Składa prefetcher z ustawień; host decyduje o czasie życia (proces / request).
    """
    cfg = settings or load_settings()
    pipeline = InsightsPipeline(
        series_client or Ga4TimeSeriesClient(property_id=cfg.ga4_property_id),
        thresholds=FeatureThresholds(spike_pct=cfg.spike_pct, dip_pct=cfg.dip_pct, outlier_z=cfg.outlier_z),
        options=InsightsOptions(
            model=cfg.openai_model,
            temperature=cfg.openai_temperature,
            max_tokens=cfg.openai_max_tokens,
            retries=cfg.openai_retries,
            language=cfg.language,
        ),
        use_widget_totals=cfg.use_widget_totals,
    )
    return InsightsPrefetcher(
        pipeline,
        cache or InsightsCache(default_ttl=cfg.cache_ttl),
        min_timeout=cfg.min_timeout,
        timeout_per_day=cfg.timeout_per_day,
    )
