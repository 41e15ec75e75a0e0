from src.utils.secrets import get_secret, get_int, get_float, get_bool, has_secret
from src.utils.settings import InsightsSettings, read_settings
from src.utils.logger import LogCfg, configure_logger, get_logger, request_scope
from loguru import logger
import sys


def test_settings_defaults(monkeypatch):
    for name in ("INSIGHTS_CACHE_TTL", "INSIGHTS_MIN_TIMEOUT", "INSIGHTS_TIMEOUT_PER_DAY", "INSIGHTS_SPIKE_PCT",
                 "INSIGHTS_DIP_PCT", "INSIGHTS_OUTLIER_Z", "INSIGHTS_LANGUAGE", "OPENAI_MODEL",
                 "OPENAI_TEMPERATURE", "OPENAI_MAX_TOKENS", "OPENAI_RETRIES", "GA4_PROPERTY_ID",
                 "INSIGHTS_USE_WIDGET_TOTALS"):
        monkeypatch.delenv(name, raising=False)
    s = read_settings()
    assert s == InsightsSettings()
    assert s.cache_ttl == 300
    assert s.openai_model == "gpt-4o-mini"
    assert s.ga4_property_id is None
    assert s.use_widget_totals is True


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("INSIGHTS_CACHE_TTL", "42")
    monkeypatch.setenv("INSIGHTS_SPIKE_PCT", "50")
    monkeypatch.setenv("OPENAI_MAX_TOKENS", "900")
    monkeypatch.setenv("INSIGHTS_LANGUAGE", "Swedish")
    monkeypatch.setenv("GA4_PROPERTY_ID", "987654")
    s = read_settings()
    assert s.cache_ttl == 42.0
    assert s.spike_pct == 50.0
    assert s.openai_max_tokens == 900
    assert s.language == "Swedish"
    assert s.ga4_property_id == "987654"


def test_widget_totals_can_be_disabled(monkeypatch):
    monkeypatch.setenv("INSIGHTS_USE_WIDGET_TOTALS", "0")
    assert read_settings().use_widget_totals is False


def test_secret_section_path(monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-abc  ")
    assert get_secret("openai.api_key") == "sk-abc"
    assert get_secret("openai.api_key", strip=False) == "  sk-abc  "
    assert has_secret("openai.api_key")


def test_typed_getters(monkeypatch):
    monkeypatch.setenv("GA4I_TEST_INT", "7")
    monkeypatch.setenv("GA4I_TEST_FLOAT", "not-a-number")
    monkeypatch.setenv("GA4I_TEST_BOOL", "yes")
    assert get_int("GA4I_TEST_INT", 1) == 7
    assert get_float("GA4I_TEST_FLOAT", 2.5) == 2.5
    assert get_bool("GA4I_TEST_BOOL") is True
    assert get_secret("GA4I_TEST_MISSING", "fallback") == "fallback"


def test_logger_file_sink(tmp_path):
    log_file = tmp_path / "insights.log"
    cfg = LogCfg(level="INFO", file_path=str(log_file), rotation="1 MB", retention="1 day",
                 service="ga4-insights-test", environment="test")
    try:
        configure_logger(cfg)
        with request_scope("batch-1") as rid:
            get_logger("prefetcher").info("prefetch finished")
        get_logger("prefetcher").info("outside batch")
    finally:
        logger.remove()
        logger.add(sys.stderr)
    text = log_file.read_text(encoding="utf-8")
    assert rid == "batch-1"
    assert "rid=batch-1 | prefetch finished" in text
    assert "rid=- | outside batch" in text


def test_request_scope_generates_id():
    with request_scope() as first:
        pass
    with request_scope() as second:
        pass
    assert first and second and first != second
