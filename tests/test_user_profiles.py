from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.common import utc_now  # noqa: E402
from mascord_memory.memory.store import MemoryStore  # noqa: E402
from mascord_memory.memory.user_profiles import (  # noqa: E402
    UserMemoryService,
    format_snippet,
    normalize_memory,
    should_skip_memory,
)


class _FakeLLM:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    async def complete(self, prompt: str, **kwargs: object) -> str:
        self.prompts.append(prompt)
        return self.reply


def test_should_skip_memory_detects_opt_out_phrases() -> None:
    assert should_skip_memory("please don't remember this")
    assert should_skip_memory("Incognito: what is 2+2?")
    assert not should_skip_memory("remember that I like tea")
    assert not should_skip_memory("")


def test_normalize_memory_strips_prefix_and_limits_lines() -> None:
    raw = "UPDATED MEMORY:\n" + "\n".join(f"- fact {idx}" for idx in range(10))
    normalized = normalize_memory(raw, max_chars=1200)
    assert normalized.splitlines() == [f"- fact {idx}" for idx in range(6)]

    assert normalize_memory("NO_UPDATE") == ""
    assert normalize_memory("   ") == ""
    assert normalize_memory("- " + "x" * 50, max_chars=10) == "- xxxxxxxx..."


def test_format_snippet_wraps_and_skips_blank() -> None:
    assert format_snippet("  ") == ""
    snippet = format_snippet("- likes tea")
    assert snippet.endswith("- likes tea")
    assert "read-only" in snippet


def test_expired_profile_is_deleted_on_read(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        service = UserMemoryService(store)
        await store.upsert_user_memory("u1", "- stale", expires_at=utc_now() - timedelta(minutes=1))

        assert await service.get_profile("u1") is None
        assert await store.get_user_memory("u1") is None

    asyncio.run(scenario())


def test_disabled_profile_gives_no_snippet(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        service = UserMemoryService(store)
        await service.remember("u1", "- prefers metric units", ttl_days=30)
        assert "metric units" in await service.snippet_for("u1", "how far is it?")

        await service.set_enabled("u1", False)
        assert await service.snippet_for("u1", "how far is it?") == ""

    asyncio.run(scenario())


def test_auto_update_rewrites_profile_and_keeps_expiry(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        llm = _FakeLLM("MEMORY:\n- prefers metric units\n- works night shifts")
        service = UserMemoryService(store, llm)
        await service.remember("u1", "- prefers metric units", ttl_days=10)
        before = await store.get_user_memory("u1")

        updated = await service.auto_update("u1", "I work night shifts these days", "Noted!")

        assert updated == "- prefers metric units\n- works night shifts"
        after = await store.get_user_memory("u1")
        assert after is not None and before is not None
        assert after.summary_text == updated
        assert after.expires_at == before.expires_at
        assert "I work night shifts these days" in llm.prompts[0]

    asyncio.run(scenario())


def test_auto_update_skips_short_opt_out_and_no_update(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        llm = _FakeLLM("NO_UPDATE")
        service = UserMemoryService(store, llm)

        assert await service.auto_update("u1", "a long enough message here", "ok") is None
        assert llm.prompts == []

        await service.remember("u1", "- likes tea")
        assert await service.auto_update("u1", "hi", "hello") is None
        assert await service.auto_update("u1", "incognito: tell me a joke", "ok") is None
        assert llm.prompts == []

        assert await service.auto_update("u1", "what's the weather like?", "sunny") is None
        assert len(llm.prompts) == 1
        profile = await store.get_user_memory("u1")
        assert profile is not None and profile.summary_text == "- likes tea"

    asyncio.run(scenario())
