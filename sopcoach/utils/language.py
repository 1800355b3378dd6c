"""Lightweight response-language detection for operator questions."""

from __future__ import annotations

import re
from typing import Optional

DEFAULT_LANGUAGE = "en"

# Checked in order; first match wins
LANGUAGE_PATTERNS = [
    ("es", re.compile(r"[¿¡]|\b(hola|gracias|seguridad|maquina|calidad)\b", re.IGNORECASE)),
    ("fr", re.compile(r"\b(bonjour|merci|sécurité|qualité)\b", re.IGNORECASE)),
    ("de", re.compile(r"\b(hallo|danke|sicherheit|maschine|qualität)\b", re.IGNORECASE)),
    ("pt", re.compile(r"\b(olá|obrigado|segurança|máquina|qualidade)\b", re.IGNORECASE)),
    ("hi", re.compile(r"[\u0900-\u097F]")),
    ("zh", re.compile(r"[\u4e00-\u9fff]")),
]

SUPPORTED_PREFIXES = ("en", "es", "fr", "de", "pt", "hi", "zh")


def detect_language(text: str) -> Optional[str]:
    """Return a two-letter code when the text carries a clear marker, else None."""
    for code, pattern in LANGUAGE_PATTERNS:
        if pattern.search(text):
            return code
    return None


def normalize_language(language: Optional[str]) -> str:
    """
    Reduce a language tag to a two-letter code.

    Example:
        >>> normalize_language("es-MX")
        'es'
        >>> normalize_language(None)
        'en'
    """
    if not language:
        return DEFAULT_LANGUAGE

    normalized = language.strip().lower()
    if not normalized:
        return DEFAULT_LANGUAGE

    if len(normalized) == 2:
        return normalized

    for prefix in SUPPORTED_PREFIXES:
        if normalized.startswith(prefix):
            return prefix

    return DEFAULT_LANGUAGE
