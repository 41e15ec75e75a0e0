# src/utils/settings.py
from __future__ import annotations
# === KONTEKST ===
# Jeden, niemutowalny obiekt ustawień rdzenia insightów (cache/prefetch/AI/GA4).
# Czytany z ENV (+ .env) przez src.utils.secrets; host decyduje kiedy go zbudować.

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from src.utils.secrets import get_secret, get_int, get_float, get_bool


@dataclass(frozen=True)
class InsightsSettings:
    """Ustawienia rdzenia insightów."""
    # Cache
    cache_ttl: float = 300.0               # 5 min
    # Prefetch timeout: max(min_timeout, per_day * dni)
    min_timeout: float = 60.0
    timeout_per_day: float = 1.0
    # Progi anomalii (%, %, z-score)
    spike_pct: float = 30.0
    dip_pct: float = -20.0
    outlier_z: float = 2.0
    # OpenAI
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.1
    openai_max_tokens: int = 1500
    openai_retries: int = 2
    language: str = "English"
    # GA4
    ga4_property_id: Optional[str] = None
    # total z agregatu GA4 (jak karty przeglądu), nie suma punktów serii
    use_widget_totals: bool = True


def read_settings() -> InsightsSettings:
    """Buduje ustawienia z ENV (bez cache)."""
    d = InsightsSettings()
    return InsightsSettings(
        cache_ttl=get_float("INSIGHTS_CACHE_TTL", d.cache_ttl),
        min_timeout=get_float("INSIGHTS_MIN_TIMEOUT", d.min_timeout),
        timeout_per_day=get_float("INSIGHTS_TIMEOUT_PER_DAY", d.timeout_per_day),
        spike_pct=get_float("INSIGHTS_SPIKE_PCT", d.spike_pct),
        dip_pct=get_float("INSIGHTS_DIP_PCT", d.dip_pct),
        outlier_z=get_float("INSIGHTS_OUTLIER_Z", d.outlier_z),
        openai_model=get_secret("OPENAI_MODEL", d.openai_model),
        openai_temperature=get_float("OPENAI_TEMPERATURE", d.openai_temperature),
        openai_max_tokens=get_int("OPENAI_MAX_TOKENS", d.openai_max_tokens),
        openai_retries=get_int("OPENAI_RETRIES", d.openai_retries),
        language=get_secret("INSIGHTS_LANGUAGE", d.language),
        ga4_property_id=get_secret("GA4_PROPERTY_ID"),
        use_widget_totals=get_bool("INSIGHTS_USE_WIDGET_TOTALS", d.use_widget_totals),
    )


@lru_cache(maxsize=1)
def load_settings() -> InsightsSettings:
    """Ustawienia procesu (czytane raz); zmień ENV przed pierwszym wywołaniem."""
    return read_settings()
