"""Localization helper functions."""
from __future__ import annotations

from contextvars import ContextVar
from typing import Optional
from fastapi import Request

from taskhub.localization.translations import TRANSLATIONS

# Locale of the request being served; set by the locale middleware in main.
current_locale: ContextVar[str] = ContextVar("current_locale", default="en")


def get_locale_from_request(request: Optional[Request] = None, default: str = "en") -> str:
    """Extract locale from request Accept-Language header or return default."""
    if request is None:
        return default

    accept_language = request.headers.get("Accept-Language", "")
    if not accept_language:
        return default

    # Take the first language code of e.g. "ru-RU,ru;q=0.9,en;q=0.8"
    first_lang = accept_language.split(",")[0].split(";")[0].strip().lower()
    if first_lang.startswith("ru"):
        return "ru"
    if first_lang.startswith("en"):
        return "en"
    return default


def get_translation(key: str, locale: Optional[str] = None, **kwargs) -> str:
    """Get translated message for a key, with optional formatting."""
    locale = locale or current_locale.get()
    translations = TRANSLATIONS.get(locale.lower(), TRANSLATIONS["en"])
    message = translations.get(key) or TRANSLATIONS["en"].get(key, key)

    if kwargs:
        try:
            message = message.format(**kwargs)
        except (KeyError, ValueError):
            pass

    return message


def t(key: str, locale: Optional[str] = None, **kwargs) -> str:
    """Short alias for get_translation."""
    return get_translation(key, locale, **kwargs)
