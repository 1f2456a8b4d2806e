from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, List

from .common import coerce_timestamp
from .config import Settings
from .memory.cache import RecencyCache
from .memory.engine import ContextEngine
from .memory.indexer import EmbeddingIndexer
from .memory.models import PurgeScope, SearchFilter
from .memory.retrieval import HybridRetriever
from .memory.store import MemoryStore
from .memory.summarizer import RollingSummarizer, SummarizationPolicy
from .memory.user_profiles import UserMemoryService
from .services.ollama_client import OllamaClient
from .services.openai_client import OpenAICompatClient

logger = logging.getLogger("mascord_memory")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_provider(
    backend: str,
    *,
    base_url: str,
    model: str,
    api_key: str,
    timeout_seconds: int,
    temperature: float,
    retries: int,
) -> OpenAICompatClient | OllamaClient:
    if backend == "ollama":
        return OllamaClient(
            base_url=base_url,
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            retries=retries,
        )
    return OpenAICompatClient(
        base_url=base_url,
        model=model,
        api_key=api_key,
        timeout_seconds=timeout_seconds,
        temperature=temperature,
        retries=retries,
    )


class MemoryRuntime:
    """Owns the store, providers and the indexer, summarizer and maintenance loops."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = MemoryStore(settings.database_path)
        self.cache = RecencyCache(settings.recency_cache_capacity)
        self.llm = build_provider(
            settings.llm_backend,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            timeout_seconds=settings.llm_timeout_seconds,
            temperature=settings.llm_temperature,
            retries=settings.provider_retries,
        )
        self.embedder = build_provider(
            settings.embedding_backend,
            base_url=settings.embedding_base_url,
            model=settings.embedding_model,
            api_key=settings.embedding_api_key,
            timeout_seconds=settings.embedding_timeout_seconds,
            temperature=0.0,
            retries=settings.provider_retries,
        )
        self.retriever = HybridRetriever(
            self.store,
            self.embedder,
            default_results=settings.retrieval_default_results,
            max_results=settings.retrieval_max_results,
            candidate_limit=settings.retrieval_candidate_limit,
            keyword_weight=settings.retrieval_keyword_weight,
            recency_mode=settings.retrieval_recency_mode,
            recency_window_days=settings.retrieval_recency_window_days,
            recency_max_boost=settings.retrieval_recency_max_boost,
            embed_timeout_seconds=settings.embedding_timeout_seconds,
        )
        self.indexer = EmbeddingIndexer(
            self.store,
            self.embedder,
            batch_size=settings.embedding_indexer_batch_size,
            min_content_chars=settings.embedding_min_content_chars,
            dimensions=settings.embedding_dimensions,
            timeout_seconds=settings.embedding_timeout_seconds,
        )
        self.summarizer = RollingSummarizer(
            self.store,
            self.llm,
            SummarizationPolicy.from_settings(settings),
            timeout_seconds=settings.llm_timeout_seconds,
        )
        self.user_memory = UserMemoryService(
            self.store,
            self.llm,
            max_chars=settings.user_memory_max_chars,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        self.engine = ContextEngine(
            self.store,
            self.cache,
            self.retriever,
            self.user_memory,
            context_message_limit=settings.context_message_limit,
            context_retention_hours=settings.context_retention_hours,
            long_term_retention_days=settings.long_term_retention_days,
        )
        self.stop_event = asyncio.Event()
        self.tasks: List[asyncio.Task[None]] = []

    async def init(self) -> None:
        await self.store.init()
        await self.store.ping()

    def start(self) -> None:
        s = self.settings
        self.stop_event.clear()
        if s.embedding_indexer_enabled:
            self.tasks.append(
                asyncio.create_task(
                    self._periodic("memory.index", s.embedding_indexer_interval_seconds, self.indexer.run_once),
                    name="embedding-indexer",
                )
            )
        if s.summarization_enabled:
            self.tasks.append(
                asyncio.create_task(
                    self._periodic("memory.summary", s.summarization_interval_seconds, self.summarizer.run_once),
                    name="rolling-summarizer",
                )
            )
        self.tasks.append(
            asyncio.create_task(
                self._periodic("memory.maintenance", s.maintenance_interval_seconds, self.engine.run_maintenance),
                name="memory-maintenance",
            )
        )
        logger.info("Memory runtime started (%s background tasks)", len(self.tasks))

    async def _periodic(self, label: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        while not self.stop_event.is_set():
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[%s] tick failed", label)
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def close(self) -> None:
        self.stop_event.set()
        pending = [task for task in self.tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.settings.shutdown_grace_seconds)
            for task in still_running:
                logger.warning("Background task did not stop within grace period: %s", task.get_name())
                await self._cancel_task(task)
        self.tasks.clear()

        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("embedder.close", self.embedder.close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: Awaitable[object], *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _cmd_run(runtime: MemoryRuntime, args: argparse.Namespace) -> int:
    runtime.start()
    await runtime.stop_event.wait()
    return 0


async def _cmd_search(runtime: MemoryRuntime, args: argparse.Namespace) -> int:
    search_filter = SearchFilter(limit=args.limit)
    if args.channel:
        search_filter = search_filter.with_channel(args.channel)
    response = await runtime.engine.search(args.query, search_filter)
    if response.notice:
        print(response.notice)
    if not response.available:
        return 1
    if not response.results:
        print("No matches.")
    for item in response.results:
        print(
            f"{item.score:.3f} [{item.timestamp:%Y-%m-%d %H:%M}] #{item.channel_id} "
            f"{item.message.author_id}: {item.message.content}"
        )
    return 0


async def _cmd_summarize(runtime: MemoryRuntime, args: argparse.Namespace) -> int:
    summary = await runtime.summarizer.summarize_now(args.channel_id)
    if summary is None:
        print("Nothing to summarize.")
        return 0
    print(summary.summary_text)
    return 0


async def _cmd_purge(runtime: MemoryRuntime, args: argparse.Namespace) -> int:
    scope = PurgeScope(
        channel_id=args.channel,
        user_id=args.user,
        before=coerce_timestamp(args.before) if args.before else None,
    )
    result = await runtime.engine.purge_data(scope)
    print(
        f"Deleted messages={result.messages_deleted} summaries={result.summaries_deleted} "
        f"milestones={result.milestones_deleted} user_memory={result.user_memory_deleted}"
    )
    return 0


async def _cmd_track(runtime: MemoryRuntime, args: argparse.Namespace) -> int:
    await runtime.engine.set_channel_tracking(args.channel_id, args.guild, args.enable)
    print(f"Channel {args.channel_id} tracking {'enabled' if args.enable else 'disabled'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mascord-memory",
        description="Channel memory engine: recency cache, rolling summaries and hybrid search.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the indexer, summarizer and maintenance loops until interrupted")
    run.set_defaults(handler=_cmd_run)

    search = sub.add_parser("search", help="Hybrid search over stored messages")
    search.add_argument("query")
    search.add_argument("--channel", default=None)
    search.add_argument("--limit", type=int, default=0)
    search.set_defaults(handler=_cmd_search)

    summarize = sub.add_parser("summarize", help="Force a summary cycle for one channel")
    summarize.add_argument("channel_id")
    summarize.set_defaults(handler=_cmd_summarize)

    purge = sub.add_parser("purge", help="Delete stored messages and derived memory")
    purge.add_argument("--channel", default=None)
    purge.add_argument("--user", default=None)
    purge.add_argument("--before", default=None, help="YYYY-MM-DD or ISO timestamp (UTC)")
    purge.set_defaults(handler=_cmd_purge)

    track = sub.add_parser("track", help="Enable or disable memory for a channel")
    track.add_argument("channel_id")
    track.add_argument("--guild", required=True)
    toggle = track.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--enable", dest="enable", action="store_true")
    toggle.add_argument("--disable", dest="enable", action="store_false")
    track.set_defaults(handler=_cmd_track)
    return parser


async def _run_command(settings: Settings, args: argparse.Namespace) -> int:
    runtime = MemoryRuntime(settings)
    try:
        await runtime.init()
        return await args.handler(runtime, args)
    finally:
        await runtime.close()


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "purge" and not (args.channel or args.user or args.before):
        parser.error("purge needs --channel, --user or --before")

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        settings.validate()
    except ValueError as exc:
        parser.error(str(exc))

    try:
        return asyncio.run(_run_command(settings, args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
        return 130
