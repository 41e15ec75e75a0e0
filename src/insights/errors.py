"""
Hierarchia wyjątków rdzenia insightów.

- InsightsError       - baza
- RemoteUnavailable   - błąd sieci/API (GA4, OpenAI)
- FetchTimeout        - przekroczony budżet czasu pobrania
- InvalidInput        - pusta/niepoprawna seria, zły metric/zakres dat

Brak wpisu w cache NIE jest błędem (zwracamy None).
"""

from __future__ import annotations

from typing import Optional


class InsightsError(Exception):
    """Bazowy wyjątek rdzenia insightów."""

    def __init__(self, message: str, *, metric: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.metric = metric


class RemoteUnavailable(InsightsError):
    """Zdalny backend (GA4 / OpenAI) nie odpowiedział poprawnie."""


class FetchTimeout(InsightsError, TimeoutError):
    """Pobranie insightu przekroczyło budżet czasu."""

    def __init__(self, message: str, *, metric: Optional[str] = None, timeout: float = 0.0):
        super().__init__(message, metric=metric)
        self.timeout = timeout


class InvalidInput(InsightsError, ValueError):
    """Dane wejściowe nie spełniają kontraktu (np. pusta seria)."""
