"""
Insights Prefetcher - równoległe wypełnianie cache insightów dla wielu metryk.

Kolejność rozwiązywania per metryka:
1) wpis w cache (żywy)      -> 'completed', bez wywołania zdalnego
2) ten sam fingerprint w locie -> czekamy na tę samą operację (coalescing)
3) inaczej                   -> nowe wywołanie fetchera ('started' -> 'completed'|'error')

Batch: co najwyżej jeden naraz na instancję; kolejny zwraca pusty wynik.
Błąd jednej metryki nie przerywa pozostałych. Timeout per pobranie:
max(min_timeout, timeout_per_day * dni zakresu).

Model współbieżności: jedna pętla asyncio; mapa in-flight mutowana wyłącznie
z wątku pętli, więc dostęp jest serializowany bez dodatkowego locka.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, Mapping, Optional, Union

from src.database.insights_cache import InsightsCache
from src.insights.errors import FetchTimeout, InvalidInput, RemoteUnavailable
from src.insights.models import (
    CacheKey,
    DateRange,
    Granularity,
    InsightPayload,
    Metric,
    PrefetchError,
    PrefetchResult,
    ProgressStatus,
)
from src.utils.logger import get_logger, request_scope

LOGGER = get_logger("insights_prefetcher")

DEFAULT_MIN_TIMEOUT = 60.0
DEFAULT_TIMEOUT_PER_DAY = 1.0

InsightsFetcher = Callable[[Metric, DateRange, Granularity], Awaitable[Optional[InsightPayload]]]
ProgressCallback = Callable[[str, ProgressStatus], None]
DateRangeLike = Union[DateRange, Mapping[str, str]]


def as_date_range(value: DateRangeLike) -> DateRange:
    """DateRange albo mapa {"start": ..., "end": ...} (format z UI)."""
    if isinstance(value, DateRange):
        return value
    try:
        return DateRange(start=value["start"], end=value["end"])
    except (KeyError, TypeError):
        raise InvalidInput("dateRange must provide 'start' and 'end'") from None


def _error_text(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class InsightsPrefetcher:
    """Koordynator pobierania insightów; właścicielem cache jest host."""

    def __init__(
        self,
        fetcher: InsightsFetcher,
        cache: Optional[InsightsCache] = None,
        *,
        min_timeout: float = DEFAULT_MIN_TIMEOUT,
        timeout_per_day: float = DEFAULT_TIMEOUT_PER_DAY,
        cache_ttl: Optional[float] = None,
    ):
        self._fetcher = fetcher
        self.cache = cache if cache is not None else InsightsCache()
        self.min_timeout = float(min_timeout)
        self.timeout_per_day = float(timeout_per_day)
        self.cache_ttl = cache_ttl
        self._in_flight: Dict[CacheKey, "asyncio.Task[InsightPayload]"] = {}
        self._is_prefetching = False

    # ------------------------------------------------------------------ queries

    @property
    def is_prefetching(self) -> bool:
        return self._is_prefetching

    def fetch_timeout(self, date_range: DateRange) -> float:
        """Budżet czasu pobrania: dłuższe zakresy dostają proporcjonalnie więcej."""
        return max(self.min_timeout, self.timeout_per_day * date_range.day_span())

    def get_cached_insights(
        self,
        metric: Union[str, Metric],
        date_range: DateRangeLike,
        granularity: Union[str, Granularity, None],
    ) -> Optional[InsightPayload]:
        return self.cache.get(CacheKey.of(metric, as_date_range(date_range), granularity))

    def is_prefetching_metric(
        self,
        metric: Union[str, Metric],
        date_range: DateRangeLike,
        granularity: Union[str, Granularity, None],
    ) -> bool:
        return CacheKey.of(metric, as_date_range(date_range), granularity) in self._in_flight

    def invalidate_cache(self, date_range: DateRangeLike) -> None:
        """Wołane przy zmianie aktywnego zakresu dat w UI."""
        dr = as_date_range(date_range)
        self.cache.invalidate_by_date_range(dr.start, dr.end)

    def clear_cache(self) -> None:
        self.cache.clear()

    # ------------------------------------------------------------------ fetching

    async def _fetch_and_store(self, key: CacheKey, date_range: DateRange) -> InsightPayload:
        timeout = self.fetch_timeout(date_range)
        try:
            LOGGER.info(f"Fetching insights for {key.metric.value}...")
            try:
                payload = await asyncio.wait_for(
                    self._fetcher(key.metric, date_range, key.granularity), timeout=timeout
                )
            except asyncio.TimeoutError:
                days = date_range.day_span()
                LOGGER.error(
                    f"Timeout fetching insights for {key.metric.value} "
                    f"({timeout:.0f}s limit reached for {days} days)"
                )
                raise FetchTimeout(
                    f"Timeout after {timeout:.0f}s", metric=key.metric.value, timeout=timeout
                ) from None

            if payload is None:
                raise RemoteUnavailable("No insights returned", metric=key.metric.value)

            self.cache.set(key, payload, ttl=self.cache_ttl)
            LOGGER.info(f"Successfully fetched insights for {key.metric.value}")
            return payload
        finally:
            # zwolnij slot niezależnie od wyniku; tylko jeśli to nadal nasz wpis
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def _start_fetch(self, key: CacheKey, date_range: DateRange) -> "asyncio.Task[InsightPayload]":
        task = asyncio.ensure_future(self._fetch_and_store(key, date_range))
        self._in_flight[key] = task
        return task

    @staticmethod
    async def _await_fetch(key: CacheKey, task: "asyncio.Task[InsightPayload]") -> InsightPayload:
        """
        Czeka na współdzielone pobranie. Anulowana operacja (a nie czekający)
        staje się RemoteUnavailable; anulowanie czekającego idzie dalej.
        """
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            LOGGER.warning(f"Insights fetch for {key.metric.value} was cancelled")
            raise RemoteUnavailable("Fetch cancelled", metric=key.metric.value) from None

    async def ensure_insights(
        self,
        metric: Union[str, Metric],
        date_range: DateRangeLike,
        granularity: Union[str, Granularity, None] = Granularity.DAY,
    ) -> InsightPayload:
        """
        Pobranie na żądanie (np. sidebar): cache -> operacja w locie -> nowe wywołanie.
        Nie podlega blokadzie batcha, ale współdzieli mapę in-flight.

        Raises:
            InvalidInput, RemoteUnavailable, FetchTimeout
        """
        dr = as_date_range(date_range)
        key = CacheKey.of(metric, dr, granularity)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        task = self._in_flight.get(key) or self._start_fetch(key, dr)
        return await self._await_fetch(key, task)

    # ------------------------------------------------------------------ batch

    @staticmethod
    def _notify(on_progress: Optional[ProgressCallback], metric: str, status: ProgressStatus) -> None:
        if on_progress is None:
            return
        try:
            on_progress(metric, status)
        except Exception as e:
            LOGGER.warning(f"Progress callback failed for {metric}: {e}")

    async def _resolve_metric(
        self,
        metric: str,
        date_range: DateRange,
        granularity: Union[str, Granularity, None],
        on_progress: Optional[ProgressCallback],
        result: PrefetchResult,
    ) -> None:
        try:
            key = CacheKey.of(metric, date_range, granularity)
        except InvalidInput as e:
            result.errors.append(PrefetchError(metric=metric, error=_error_text(e)))
            self._notify(on_progress, metric, ProgressStatus.ERROR)
            return

        if self.cache.has(key):
            LOGGER.debug(f"Insights already cached for {metric}")
            result.success.append(metric)
            self._notify(on_progress, metric, ProgressStatus.COMPLETED)
            return

        task = self._in_flight.get(key)
        if task is not None:
            LOGGER.info(f"Already prefetching {metric}, waiting...")
        else:
            self._notify(on_progress, metric, ProgressStatus.STARTED)
            task = self._start_fetch(key, date_range)

        try:
            await self._await_fetch(key, task)
        except Exception as e:
            result.errors.append(PrefetchError(metric=metric, error=_error_text(e)))
            self._notify(on_progress, metric, ProgressStatus.ERROR)
            return

        result.success.append(metric)
        self._notify(on_progress, metric, ProgressStatus.COMPLETED)

    async def prefetch_insights(
        self,
        date_range: DateRangeLike,
        granularity: Union[str, Granularity, None],
        metrics: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> PrefetchResult:
        """
        Wypełnia cache dla listy metryk (fan-out, częściowe błędy tolerowane).

        Returns:
            PrefetchResult(success, errors); pusty gdy inny batch już trwa
        """
        if self._is_prefetching:
            LOGGER.info("Prefetch already in progress, skipping...")
            return PrefetchResult()

        self._is_prefetching = True
        result = PrefetchResult()
        try:
            with request_scope() as batch_id:
                dr = as_date_range(date_range)
                metric_list = [str(m.value if isinstance(m, Metric) else m) for m in metrics]
                LOGGER.info(f"Starting insights prefetch {batch_id} for metrics: {metric_list}")

                # taski tworzone przez gather dziedziczą request_id batcha
                outcomes = await asyncio.gather(
                    *(self._resolve_metric(m, dr, granularity, on_progress, result) for m in metric_list),
                    return_exceptions=True,
                )
                for metric, outcome in zip(metric_list, outcomes):
                    if isinstance(outcome, BaseException):
                        LOGGER.error(f"Unexpected prefetch failure for {metric}: {outcome!r}")
                        result.errors.append(PrefetchError(metric=metric, error=_error_text(outcome)))
                        self._notify(on_progress, metric, ProgressStatus.ERROR)

                LOGGER.info(f"Prefetch completed: success={result.success}, errors={len(result.errors)}")
                return result
        finally:
            self._is_prefetching = False
