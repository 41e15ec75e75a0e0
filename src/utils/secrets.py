# src/utils/secrets.py
from __future__ import annotations
# === KONTEKST ===
# Zarządzanie sekretami/konfiguracją: ENV z opcjonalnym .env (python-dotenv),
# zagnieżdżone ścieżki "a.b" mapowane na nazwy ENV, casty (bool/int/float).
# Kontrakt: get_secret(path, default) + get_int/get_float/get_bool.

from typing import Any, Optional, List
import os, pathlib

from dotenv import load_dotenv

_DOTENV_FLAG = "_GA4I_DOTENV_LOADED"


# === HELPERY RDZENIOWE ===
def _env_candidates(path: str) -> List[str]:
    """
    Kandydaci na nazwy ENV dla ścieżki "a.b": ["B", "A_B", "a.b"].
    Najpierw KEY (ostatni segment upper), jak w secrets.toml sekcjach.
    """
    if "." in path:
        section, key = path.split(".", 1)
        return [key.upper(), f"{section}_{key}".upper(), path]
    return [path, path.upper()]

def _coerce_bool(val: Any) -> Optional[bool]:
    if isinstance(val, bool):
        return val
    if not isinstance(val, str):
        return None
    t = val.strip().lower()
    if t in {"1","true","yes","y","on"}: return True
    if t in {"0","false","no","n","off"}: return False
    return None


# === ŁADOWANIE .ENV ===
def ensure_dotenv_loaded() -> None:
    """Załaduj .env tylko raz (cwd lub katalog nadrzędny); nie nadpisuje ENV."""
    if os.environ.get(_DOTENV_FLAG) == "1":
        return
    for p in (pathlib.Path(".env"), pathlib.Path("..") / ".env"):
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=False)
            break
    os.environ[_DOTENV_FLAG] = "1"


# === PUBLICZNE API ===
def get_secret(path: str, default: Optional[Any] = None, *, strip: bool = True) -> Optional[Any]:
    """
    Pobiera wartość sekretu/ustawienia.

    Args:
        path: Nazwa lub ścieżka "sekcja.klucz" (np. "openai.api_key")
        default: Wartość domyślna gdy brak/pusty
        strip: Czy obciąć białe znaki

    Returns:
        Wartość z ENV lub default
    """
    ensure_dotenv_loaded()
    for key in _env_candidates(path):
        val = os.getenv(key)
        if val not in (None, ""):
            return val.strip() if strip else val
    return default

def get_int(path: str, default: int) -> int:
    raw = get_secret(path)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default

def get_float(path: str, default: float) -> float:
    raw = get_secret(path)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default

def get_bool(path: str, default: bool = False) -> bool:
    coerced = _coerce_bool(get_secret(path))
    return default if coerced is None else coerced

def has_secret(path: str) -> bool:
    """Czy sekret jest ustawiony (bez ujawniania wartości)."""
    return get_secret(path) is not None
