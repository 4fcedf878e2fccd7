"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import numbers
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

import pandas as pd


__all__ = [
    "_dedupe_preserve_order",
    "_format_first_release_date",
    "_normalize_lookup_name",
    "_parse_iterable",
    "coerce_external_id",
    "has_text",
]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def has_text(value: Any) -> bool:
    """Return ``True`` when ``value`` contains non-empty text."""

    if _is_missing(value):
        return False
    text = value.strip() if isinstance(value, str) else str(value).strip()
    if not text:
        return False
    if text.lower() == "nan":
        return False
    return True


def coerce_external_id(value: Any) -> str:
    """Normalize a provider identifier to a canonical string."""

    if _is_missing(value):
        return ""
    if isinstance(value, bool):
        return ""
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() == "nan":
            return ""
        if text.endswith(".0") and text[:-2].isdigit():
            return text[:-2]
        return text
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        if float(value).is_integer():
            return str(int(value))
        return str(value)
    text = str(value).strip()
    if not text or text.lower() == "nan":
        return ""
    return text


def _dedupe_preserve_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def _format_first_release_date(value: Any) -> str:
    """Return an ISO date for a unix timestamp, ISO string or date value."""

    if value in (None, "", 0):
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            pass
    try:
        timestamp = float(value)
    except (TypeError, ValueError):
        return ""
    if timestamp <= 0:
        return ""
    try:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return dt.date().isoformat()


def _normalize_lookup_name(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if _is_missing(value):
        return ""
    return str(value).strip()


def _parse_iterable(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, numbers.Number):
        return [str(value)]
    if isinstance(value, Mapping):
        value = [value]
    try:
        iterator = iter(value)
    except TypeError:
        return [str(value)]
    items: list[str] = []
    for element in iterator:
        if isinstance(element, Mapping):
            name = element.get("name")
            if isinstance(name, str) and name.strip():
                items.append(name.strip())
            else:
                # RAWG nests platform names one level down.
                nested = element.get("platform")
                if isinstance(nested, Mapping) and isinstance(nested.get("name"), str):
                    items.append(nested["name"].strip())
        else:
            items.append(str(element).strip())
    return [item for item in items if item]
