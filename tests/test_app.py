from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.app import MemoryRuntime, build_parser, build_provider, main  # noqa: E402
from mascord_memory.config import Settings  # noqa: E402
from mascord_memory.services.ollama_client import OllamaClient  # noqa: E402
from mascord_memory.services.openai_client import OpenAICompatClient  # noqa: E402


def test_parser_subcommands() -> None:
    parser = build_parser()
    args = parser.parse_args(["search", "deploy plan", "--channel", "c1", "--limit", "7"])
    assert (args.query, args.channel, args.limit) == ("deploy plan", "c1", 7)

    args = parser.parse_args(["track", "c1", "--guild", "g1", "--disable"])
    assert args.enable is False

    with pytest.raises(SystemExit):
        parser.parse_args(["track", "c1", "--guild", "g1"])


def test_purge_without_scope_is_rejected() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["purge"])
    assert excinfo.value.code == 2


def test_build_provider_picks_backend() -> None:
    common = dict(base_url="http://localhost:1", model="m", api_key="", timeout_seconds=5, temperature=0.0, retries=1)
    assert isinstance(build_provider("ollama", **common), OllamaClient)
    assert isinstance(build_provider("openai", **common), OpenAICompatClient)


def test_runtime_starts_and_stops_background_tasks(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "memory.db"))
    monkeypatch.setenv("EMBEDDING_INDEXER_INTERVAL_SECONDS", "3600")
    settings = Settings.from_env()

    async def scenario() -> None:
        runtime = MemoryRuntime(settings)
        await runtime.init()

        async def idle() -> None:
            return None

        runtime.indexer.run_once = idle  # type: ignore[method-assign]
        runtime.summarizer.run_once = idle  # type: ignore[method-assign]
        runtime.engine.run_maintenance = idle  # type: ignore[method-assign]
        runtime.start()
        assert {task.get_name() for task in runtime.tasks} >= {"embedding-indexer", "memory-maintenance"}
        await asyncio.sleep(0)
        await runtime.close()
        assert runtime.tasks == []

    asyncio.run(scenario())
