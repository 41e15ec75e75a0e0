"""
AI Insights Engine - narracja AI dla metryk GA4 na podstawie wyliczonych cech.

Funkcjonalności:
- Budowanie promptu z CalculatedFeatures (statystyki, YoY, anomalie)
- Wywołanie OpenAI (JSON) przez openai_integrator
- Walidacja i sanityzacja odpowiedzi JSON (schemat InsightPayload)
- Jedna ponowna próba z podpowiedzią przy złym formacie
- Lokalny fallback (bez sieci) gdy ścieżka AI zawiedzie
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from src.ai_engine.openai_integrator import chat_completion, safe_json_parse, DEFAULT_MODEL
from src.data_processing.feature_extractor import CalculatedFeatures
from src.insights.errors import RemoteUnavailable
from src.insights.models import CONFIDENCE_LEVELS, DateRange, InsightPayload, Metric
from src.utils.logger import get_logger

# ========================================================================================
# KONFIGURACJA
# ========================================================================================

# Limity odpowiedzi
MAX_SUMMARY_LENGTH = 4000
MAX_ITEM_LENGTH = 240
MAX_LIST_ITEMS = 8

API_TIMEOUT = 60

LOGGER = get_logger("ai_insights")

SYSTEM_PROMPT = """You are a senior data analyst specializing in web analytics. Analyze the provided metric data and provide insights in {language}.

Key responsibilities:
- Identify patterns, trends, and anomalies in the data
- Compare current period performance with previous year
- Provide actionable recommendations
- Be specific and data-driven in your analysis

Response format:
- summaryMarkdown: HTML-formatted summary in {language}
- actions: Array of specific, actionable recommendations in {language}
- anomalies: Array of detected anomalies or unusual patterns in {language}
- confidence: "low", "medium", or "high" based on data quality and clarity of patterns

IMPORTANT: Respond with ONLY valid JSON. Do not include any markdown code blocks, explanations, or additional text. Start your response directly with {{ and end with }}."""

RETRY_HINT = "\n\nNOTE: The previous answer violated the format. Return 100% valid JSON and nothing else."


@dataclass(frozen=True)
class InsightsOptions:
    """Opcje generowania insightów."""
    model: str = DEFAULT_MODEL
    temperature: float = 0.1
    max_tokens: int = 1500
    retries: int = 2
    timeout: float = API_TIMEOUT
    language: str = "English"


# ========================================================================================
# UTILITY FUNCTIONS
# ========================================================================================

def truncate_string(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[:max_len - 1] + "…"


def normalize_list_of_strings(x: Any) -> List[str]:
    """Lista/napis/liczba -> lista niepustych napisów."""
    if x is None:
        return []
    if isinstance(x, list):
        items = [str(i).strip() for i in x if isinstance(i, (str, int, float))]
    elif isinstance(x, (str, int, float)):
        items = [str(x).strip()]
    else:
        return []
    return [truncate_string(i, MAX_ITEM_LENGTH) for i in items if i][:MAX_LIST_ITEMS]


def coerce_confidence(value: Any) -> str:
    text = str(value or "").strip().lower()
    return text if text in CONFIDENCE_LEVELS else "low"


def coerce_to_schema(obj: Any) -> Optional[InsightPayload]:
    """
    Dopasowuje odpowiedź modelu do InsightPayload.

    Akceptuje klucz "summaryMarkdown" (jak w prompcie) albo "summary".
    """
    if not isinstance(obj, dict):
        return None

    summary = str(obj.get("summaryMarkdown") or obj.get("summary") or "").strip()
    if not summary:
        LOGGER.warning("Summary is empty")
        return None

    return InsightPayload(
        summary=truncate_string(summary, MAX_SUMMARY_LENGTH),
        actions=normalize_list_of_strings(obj.get("actions")),
        anomalies=normalize_list_of_strings(obj.get("anomalies")),
        confidence=coerce_confidence(obj.get("confidence")),  # type: ignore[arg-type]
    )


def _signed(value: float, digits: int) -> str:
    return f"{'+' if value > 0 else ''}{value:.{digits}f}"


def _change_label(change: Optional[float]) -> str:
    """Zmiana okres-do-okresu w %; skok od zera opisany słownie."""
    if change is None:
        return "n/a"
    if math.isinf(change):
        return "up from 0" if change > 0 else "down from 0"
    return f"{_signed(change, 1)}%"


# ========================================================================================
# PROMPT BUILDING
# ========================================================================================

def build_user_prompt(features: CalculatedFeatures, metric: str, date_range: DateRange) -> str:
    """Prompt użytkownika z pełnym zestawem cech."""
    lines = [
        f"Analyze the following {metric} data for the period {date_range.start} to {date_range.end}:",
        "",
        "CURRENT PERIOD STATISTICS:",
        f"- Total: {features.total:,.0f}",
        f"- Average: {features.average:.2f}",
        f"- Min: {features.min:,.0f}",
        f"- Max: {features.max:,.0f}",
        f"- Median: {features.median:.2f}",
        f"- Standard Deviation: {features.std_dev:.2f}",
        f"- Trend: {_signed(features.trend, 2)} per period",
        f"- Year-over-Year Change: {_signed(features.yoy_change, 1)}%",
        "",
        "ANOMALIES DETECTED:",
        f"- Spikes: {len(features.spikes)} detected",
        f"- Dips: {len(features.dips)} detected",
        f"- Outliers: {len(features.outliers)} detected",
    ]

    if features.spikes:
        lines.append("SPIKES: " + ", ".join(f"{s.date}: {_change_label(s.change)}" for s in features.spikes))
    if features.dips:
        lines.append("DIPS: " + ", ".join(f"{d.date}: {_change_label(d.change)}" for d in features.dips))
    if features.outliers:
        lines.append("OUTLIERS: " + ", ".join(f"{o.date}: z-score {o.z_score:.2f}" for o in features.outliers))

    lines += [
        "",
        "Provide a comprehensive analysis focusing on:",
        "1. Overall performance and trends",
        "2. Key anomalies and their potential causes",
        "3. Specific actionable recommendations",
        "4. Confidence level in the analysis",
        "",
        "Respond with ONLY valid JSON. No markdown, no explanations, just pure JSON starting with { and ending with }.",
    ]
    return "\n".join(lines)


# ========================================================================================
# GŁÓWNA FUNKCJA
# ========================================================================================

def _call(system: str, user: str, opts: InsightsOptions) -> str:
    return chat_completion(
        system=system,
        user=user,
        model=opts.model,
        temperature=opts.temperature,
        max_tokens=opts.max_tokens,
        response_format="json",
        retries=opts.retries,
        timeout=opts.timeout,
    )


def summarize(
    features: CalculatedFeatures,
    metric: Union[str, Metric],
    date_range: DateRange,
    options: Optional[InsightsOptions] = None,
) -> InsightPayload:
    """
    Generuje narrację AI dla metryki.

    Args:
        features: Cechy serii (compute_features)
        metric: Nazwa metryki GA4
        date_range: Analizowany zakres dat
        options: Model/temperatura/język

    Returns:
        InsightPayload

    Raises:
        RemoteUnavailable: Błąd API lub odpowiedź niezgodna ze schematem
    """
    opts = options or InsightsOptions()
    metric_name = Metric.parse(metric).value
    system = SYSTEM_PROMPT.format(language=opts.language)
    user = build_user_prompt(features, metric_name, date_range)

    LOGGER.info(f"Requesting AI insights for {metric_name} {date_range.start}..{date_range.end}")
    raw = _call(system, user, opts)

    payload = coerce_to_schema(safe_json_parse(raw))
    if payload is not None:
        return payload

    LOGGER.warning("Invalid response format, attempting retry with hint")
    raw_retry = _call(system, user + RETRY_HINT, opts)
    payload = coerce_to_schema(safe_json_parse(raw_retry))
    if payload is None:
        raise RemoteUnavailable("Failed to generate AI insights: response did not match schema",
                                metric=metric_name)
    return payload


def fallback_insights(
    features: CalculatedFeatures,
    metric: Union[str, Metric],
    date_range: DateRange,
) -> InsightPayload:
    """Lokalne podsumowanie z samych cech (bez sieci), confidence='low'."""
    metric_name = Metric.parse(metric).value
    direction = "Upward" if features.trend > 0 else "Downward"

    summary = (
        f"<h3>Analysis of {metric_name} data</h3>"
        f"<p><strong>Period:</strong> {date_range.start} to {date_range.end}</p>"
        f"<p><strong>Total:</strong> {features.total:,.0f}</p>"
        f"<p><strong>Average per period:</strong> {features.average:.2f}</p>"
        f"<p><strong>Trend:</strong> {direction} ({_signed(features.trend, 2)} per period)</p>"
        f"<p><strong>Year-over-year change:</strong> {_signed(features.yoy_change, 1)}%</p>"
        "<p><em>AI analysis is currently unavailable.</em></p>"
    )

    if features.outliers:
        top_z = max(o.z_score or 0.0 for o in features.outliers)
        anomalies = [
            f"Detected {len(features.outliers)} outlying data points",
            f"Largest deviation: {top_z:.2f} standard deviations",
        ]
    else:
        anomalies = ["No anomalies detected"]

    return InsightPayload(
        summary=summary,
        actions=[
            "Check that the OpenAI API key is configured correctly",
            "Verify that the API key has sufficient credit",
            "Retry the analysis later",
        ],
        anomalies=anomalies,
        confidence="low",
    )
