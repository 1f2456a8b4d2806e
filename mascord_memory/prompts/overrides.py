"""Operator overrides for prompt templates.

Templates live in code as defaults. Pointing `PROMPTS_DIR` at a directory with
`<name>.json` replaces individual keys without touching the package; edits are
picked up on the next call because entries are keyed by file mtime.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger("mascord_memory.prompts")

_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}


def prompts_dir() -> Path | None:
    raw = os.getenv("PROMPTS_DIR", "").strip()
    return Path(raw).expanduser() if raw else None


def _merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _read_overrides(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("[prompts] failed to parse %s (%s); using defaults", path, exc)
        return {}
    if not isinstance(payload, dict):
        logger.warning("[prompts] %s must hold a JSON object; using defaults", path)
        return {}
    return payload


def load_prompt_overrides(filename: str, defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Return `defaults` with known keys replaced from `$PROMPTS_DIR/<filename>`."""
    directory = prompts_dir()
    if directory is None:
        return dict(defaults)

    path = directory / filename
    try:
        mtime_ns = path.stat().st_mtime_ns
    except FileNotFoundError:
        logger.debug("[prompts] no override file at %s", path)
        return dict(defaults)
    except OSError as exc:
        logger.warning("[prompts] cannot stat %s (%s); using defaults", path, exc)
        return dict(defaults)

    cached = _CACHE.get(path)
    if cached is not None and cached[0] == mtime_ns:
        return dict(cached[1])

    overrides = _read_overrides(path)
    unknown = sorted(set(overrides) - set(defaults))
    if unknown:
        logger.warning("[prompts] %s: ignoring unknown keys %s", path.name, ", ".join(unknown))
    merged = _merge(defaults, {key: value for key, value in overrides.items() if key in defaults})
    _CACHE[path] = (mtime_ns, merged)
    return dict(merged)
