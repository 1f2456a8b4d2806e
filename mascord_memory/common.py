from __future__ import annotations

import contextlib
import re
from datetime import datetime, timezone

DB_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]

    window = text[:limit]
    cut = max(window.rfind(". "), window.rfind("! "), window.rfind("? "), window.rfind("; "))
    if cut >= int(limit * 0.62):
        return window[: cut + 1].strip()

    cut = window.rfind(" ")
    if cut >= int(limit * 0.7):
        return window[:cut].strip()

    return (window[: limit - 3].rstrip() + "...").strip()


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_timestamp(value: datetime | int | float | str) -> datetime:
    """Accept a datetime, a unix timestamp or a stored/ISO string and return aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        parsed = parse_db_timestamp(value)
        if parsed is not None:
            return parsed
        with contextlib.suppress(ValueError):
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def to_db_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(DB_TIMESTAMP_FORMAT)


def parse_db_timestamp(raw: object) -> datetime | None:
    text = str(raw or "").strip()
    if not text:
        return None
    try:
        naive = datetime.strptime(text[:19], DB_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return naive.replace(tzinfo=timezone.utc)


def estimate_tokens(text: str) -> int:
    # ~4 chars per token for English text when no tokenizer is available.
    return len(text or "") // 4
