"""
OpenAI Integrator - Backend module dla integracji z OpenAI API.

Funkcjonalności:
- Chat completions z retry logic i exponential backoff (z jitterem)
- JSON response format enforcement
- Circuit breaker pattern
- Singleton klienta budowany z secrets/env
- Metryki (tokeny, czas, liczba retry)
- Czyszczenie odpowiedzi JSON (code fences, szum przed/po obiekcie)
"""

from __future__ import annotations

import re
import json
import time
import random
import threading
from dataclasses import dataclass
from typing import Optional, Callable, Any, Dict, List, Literal, Tuple

from openai import (
    OpenAI,
    APIError,
    RateLimitError,
    APITimeoutError,
    APIConnectionError,
    BadRequestError,
    AuthenticationError,
)

from src.insights.errors import RemoteUnavailable
from src.utils.logger import get_logger
from src.utils.secrets import get_secret

# ========================================================================================
# KONFIGURACJA
# ========================================================================================

DEFAULT_MODEL = "gpt-4o-mini"

# Retry configuration
DEFAULT_RETRIES = 2
DEFAULT_TIMEOUT = 60
DEFAULT_BASE_BACKOFF = 1.0
MAX_BACKOFF = 16.0

# Circuit breaker
CIRCUIT_BREAKER_THRESHOLD = 5  # failures before opening
CIRCUIT_BREAKER_TIMEOUT = 60  # seconds before retry

LOGGER = get_logger("openai_integrator")


# ========================================================================================
# DATACLASSES
# ========================================================================================

@dataclass
class OpenAIConfig:
    """Konfiguracja OpenAI."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None


@dataclass
class CompletionMetrics:
    """Metryki completion."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    duration_seconds: float
    model: str
    retries: int = 0


@dataclass
class CompletionResult:
    """Wynik completion; ok=False oznacza, że content to komunikat błędu."""
    content: str
    metrics: CompletionMetrics
    ok: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "ok": self.ok,
            "metrics": {
                "prompt_tokens": self.metrics.prompt_tokens,
                "completion_tokens": self.metrics.completion_tokens,
                "total_tokens": self.metrics.total_tokens,
                "duration_seconds": self.metrics.duration_seconds,
                "model": self.metrics.model,
                "retries": self.metrics.retries,
            },
        }


# ========================================================================================
# CIRCUIT BREAKER
# ========================================================================================

class CircuitBreaker:
    """Circuit breaker pattern for API calls."""

    def __init__(self, threshold: int, timeout: int):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed, open, half_open
        self.lock = threading.Lock()

    def call(self, func: Callable[[], Any]) -> Any:
        """
        Call function through circuit breaker.

        Raises:
            RemoteUnavailable: If circuit is open
        """
        with self.lock:
            if self.state == "open":
                if time.time() - self.last_failure_time >= self.timeout:
                    LOGGER.info("Circuit breaker: transitioning to half-open")
                    self.state = "half_open"
                else:
                    raise RemoteUnavailable("Circuit breaker is OPEN - too many OpenAI failures")

        try:
            result = func()
        except Exception:
            with self.lock:
                self.failures += 1
                self.last_failure_time = time.time()
                if self.failures >= self.threshold:
                    LOGGER.warning(f"Circuit breaker: OPENING after {self.failures} failures")
                    self.state = "open"
            raise

        with self.lock:
            if self.state == "half_open":
                LOGGER.info("Circuit breaker: transitioning to closed")
            self.state = "closed"
            self.failures = 0
        return result

    def reset(self) -> None:
        with self.lock:
            self.failures = 0
            self.state = "closed"
            LOGGER.info("Circuit breaker: RESET")


_CIRCUIT_BREAKER = CircuitBreaker(CIRCUIT_BREAKER_THRESHOLD, CIRCUIT_BREAKER_TIMEOUT)


# ========================================================================================
# CLIENT MANAGEMENT
# ========================================================================================

_CLIENT_CACHE: Optional[OpenAI] = None
_CLIENT_LOCK = threading.Lock()


def has_openai_key() -> bool:
    return bool(get_secret("openai.api_key") or get_secret("OPENAI_API_KEY"))


def config_from_env() -> OpenAIConfig:
    return OpenAIConfig(
        api_key=get_secret("openai.api_key") or get_secret("OPENAI_API_KEY"),
        base_url=get_secret("OPENAI_BASE_URL"),
        organization=get_secret("OPENAI_ORG"),
        project=get_secret("OPENAI_PROJECT"),
    )


def build_client(config: OpenAIConfig) -> Optional[OpenAI]:
    """
    Build OpenAI client.

    Returns:
        OpenAI client or None when no API key is configured
    """
    if not config.api_key:
        return None

    kwargs: Dict[str, Any] = {"api_key": config.api_key}
    if config.base_url:
        kwargs["base_url"] = config.base_url
    if config.organization:
        kwargs["organization"] = config.organization
    if config.project:
        kwargs["project"] = config.project

    return OpenAI(**kwargs)


def get_client(config: Optional[OpenAIConfig] = None) -> Optional[OpenAI]:
    """Singleton klienta OpenAI (config z secrets/env gdy nie podano)."""
    global _CLIENT_CACHE

    with _CLIENT_LOCK:
        if _CLIENT_CACHE is not None:
            return _CLIENT_CACHE
        _CLIENT_CACHE = build_client(config or config_from_env())
        return _CLIENT_CACHE


def reset_client() -> None:
    global _CLIENT_CACHE

    with _CLIENT_LOCK:
        _CLIENT_CACHE = None
        LOGGER.info("OpenAI client reset")


# ========================================================================================
# UTILITIES
# ========================================================================================

def response_format_for(format_type: Optional[str]) -> Optional[Dict[str, str]]:
    if format_type == "json":
        return {"type": "json_object"}
    return None


def is_transient_error(error: Exception) -> bool:
    """Błędy, które warto ponowić (limit, timeout, połączenie, 5xx)."""
    if isinstance(error, (AuthenticationError, BadRequestError)):
        return False
    return isinstance(error, (RateLimitError, APITimeoutError, APIConnectionError, APIError))


def backoff_sleep(attempt: int, base: float = DEFAULT_BASE_BACKOFF) -> None:
    """Sleep with exponential backoff and jitter."""
    wait = min(MAX_BACKOFF, base * (2 ** attempt))
    jitter = wait * (0.5 + random.random() * 0.5)
    LOGGER.debug(f"Backing off for {jitter:.2f}s (attempt {attempt + 1})")
    time.sleep(jitter)


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.IGNORECASE)


def strip_json_noise(text: str) -> str:
    """
    Usuwa code fences (```json ... ```) i tekst przed/po pierwszym obiekcie JSON.
    """
    if not isinstance(text, str):
        return text
    cleaned = _FENCE_RE.sub("", text.strip())
    match = re.search(r"(\{.*\}|\[.*\])", cleaned, flags=re.DOTALL)
    if match:
        return match.group(1)
    return cleaned


def safe_json_parse(text: str) -> Optional[dict]:
    """Parsuje JSON; przy błędzie próbuje po oczyszczeniu; None gdy się nie da."""
    try:
        return json.loads(text)
    except (TypeError, json.JSONDecodeError):
        pass

    try:
        return json.loads(strip_json_noise(text))
    except (TypeError, json.JSONDecodeError):
        pass

    LOGGER.warning("Failed to parse JSON")
    return None


# ========================================================================================
# MAIN API
# ========================================================================================

def _blocking_completion(
    client: OpenAI,
    model: str,
    messages: List[Dict[str, str]],
    temperature: float,
    max_tokens: int,
    resp_fmt: Optional[Dict[str, str]],
    timeout: float,
) -> Tuple[str, Dict[str, int]]:
    kwargs: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "timeout": timeout,
    }
    if resp_fmt is not None:
        kwargs["response_format"] = resp_fmt

    response = client.chat.completions.create(**kwargs)  # type: ignore

    content = response.choices[0].message.content  # type: ignore
    usage_obj = getattr(response, "usage", None)
    usage = {
        "prompt_tokens": getattr(usage_obj, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage_obj, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage_obj, "total_tokens", 0) or 0,
    }

    if content is None:
        raise RemoteUnavailable("No content received from OpenAI")
    if not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False)

    return content.strip(), usage


def _failed(message: str, model: str, start_time: float, retries: int) -> CompletionResult:
    LOGGER.error(message)
    metrics = CompletionMetrics(
        prompt_tokens=0,
        completion_tokens=0,
        total_tokens=0,
        duration_seconds=time.time() - start_time,
        model=model,
        retries=retries,
    )
    return CompletionResult(content=message, metrics=metrics, ok=False)


def chat_completion_with_metrics(
    system: str,
    user: str,
    model: str = DEFAULT_MODEL,
    temperature: float = 0.2,
    max_tokens: int = 1000,
    response_format: Literal["text", "json"] = "text",
    retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
    *,
    config: Optional[OpenAIConfig] = None,
) -> CompletionResult:
    """
    Call OpenAI Chat Completions API with metrics tracking.

    Args:
        system: System prompt
        user: User prompt
        model: Model name
        temperature: Temperature
        max_tokens: Max completion tokens
        response_format: "text" or "json"
        retries: Max retry attempts (on transient errors)
        timeout: Per-request timeout in seconds
        config: Optional OpenAI config

    Returns:
        CompletionResult (ok=False carries the error message in content)
    """
    start_time = time.time()

    client = get_client(config)
    if client is None:
        return _failed("OpenAI API key not configured. Set OPENAI_API_KEY in env or .env.",
                       model, start_time, 0)

    resp_fmt = response_format_for(response_format)
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]

    last_error: Optional[str] = None
    retry_count = 0

    for attempt in range(retries + 1):
        try:
            content, usage = _CIRCUIT_BREAKER.call(
                lambda: _blocking_completion(
                    client=client,
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    resp_fmt=resp_fmt,
                    timeout=timeout,
                )
            )

            elapsed = time.time() - start_time
            metrics = CompletionMetrics(
                prompt_tokens=usage["prompt_tokens"],
                completion_tokens=usage["completion_tokens"],
                total_tokens=usage["total_tokens"],
                duration_seconds=elapsed,
                model=model,
                retries=retry_count,
            )
            LOGGER.info(f"Completion success: {metrics.total_tokens} tokens, {elapsed:.2f}s")
            return CompletionResult(content=content, metrics=metrics)

        except AuthenticationError as e:
            last_error = f"OpenAI authentication failed (check API key): {e}"
            break

        except BadRequestError as e:
            last_error = str(e)
            LOGGER.warning(f"Bad request: {e}")
            # model bez wsparcia response_format -> spróbuj bez
            if "response_format" in last_error and resp_fmt is not None:
                LOGGER.info("Retrying without JSON format enforcement")
                resp_fmt = None
                retry_count += 1
                continue
            break

        except RemoteUnavailable as e:
            last_error = str(e)
            break

        except Exception as e:
            last_error = str(e)
            LOGGER.warning(f"Attempt {attempt + 1} failed: {e}")
            if is_transient_error(e) and attempt < retries:
                retry_count += 1
                backoff_sleep(attempt)
                continue
            break

    return _failed(f"OpenAI error after {retry_count + 1} attempt(s): {last_error or 'unknown error'}",
                   model, start_time, retry_count)


def chat_completion(system: str, user: str, **kwargs: Any) -> str:
    """
    Jak chat_completion_with_metrics, ale zwraca sam tekst.

    Raises:
        RemoteUnavailable: Gdy wywołanie się nie powiodło
    """
    result = chat_completion_with_metrics(system=system, user=user, **kwargs)
    if not result.ok:
        raise RemoteUnavailable(result.content)
    return result.content


# ========================================================================================
# MANAGEMENT
# ========================================================================================

def reset_circuit_breaker() -> None:
    _CIRCUIT_BREAKER.reset()


def get_circuit_breaker_stats() -> Dict[str, Any]:
    return {
        "state": _CIRCUIT_BREAKER.state,
        "failures": _CIRCUIT_BREAKER.failures,
        "threshold": _CIRCUIT_BREAKER.threshold,
    }
