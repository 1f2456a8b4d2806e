from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.prompts.overrides import load_prompt_overrides  # noqa: E402
from mascord_memory.prompts.memory import build_summary_prompt, build_working_memory_block  # noqa: E402


def test_summary_prompt_variants() -> None:
    first = build_summary_prompt(None, [], ["[t] u1: hello"])
    assert "MILESTONES:\n(none)" in first
    assert "PREVIOUS SUMMARY" not in first

    update = build_summary_prompt("Old summary.", ["Chose Postgres"], ["[t] u1: hi"])
    assert "PREVIOUS SUMMARY:\nOld summary." in update
    assert "Chose Postgres" in update

    refresh = build_summary_prompt("Old summary.", [], ["[t] u1: hi"], refresh=True)
    assert "REFRESHED SUMMARY:" in refresh


def test_json_override_is_merged_over_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMPTS_DIR", str(tmp_path))
    (tmp_path / "memory.json").write_text(
        json.dumps({"working_memory_header": "Channel recap:"}),
        encoding="utf-8",
    )
    assert build_working_memory_block(" Deploy on Friday. ") == "Channel recap:\nDeploy on Friday."


def test_broken_json_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMPTS_DIR", str(tmp_path))
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert load_prompt_overrides("broken.json", {"a": {"b": 1}}) == {"a": {"b": 1}}


def test_defaults_are_used_without_override_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PROMPTS_DIR", raising=False)
    assert load_prompt_overrides("memory.json", {"greeting": "hi"}) == {"greeting": "hi"}


def test_unknown_override_keys_are_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMPTS_DIR", str(tmp_path))
    (tmp_path / "extra.json").write_text(
        json.dumps({"greeting": "hello", "typo_key": "x", "nested": {"b": 2}}),
        encoding="utf-8",
    )
    loaded = load_prompt_overrides("extra.json", {"greeting": "hi", "nested": {"a": 1, "b": 1}})
    assert loaded == {"greeting": "hello", "nested": {"a": 1, "b": 2}}
