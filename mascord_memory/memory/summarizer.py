from __future__ import annotations

import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from ..common import collapse_spaces, estimate_tokens, to_db_timestamp, truncate, utc_now
from ..prompts.memory import (
    build_milestone_extract_prompt,
    build_summary_compress_prompt,
    build_summary_prompt,
)
from ..services.base import CompletionProvider, ProviderError
from .models import ChannelSummary, Message

logger = logging.getLogger("mascord_memory.summarizer")

MAX_MILESTONES_PER_CYCLE = 6
MAX_COMPRESSION_PASSES = 2

_NUMBERED_PREFIX_RE = re.compile(r"^\d+\s*[.)]\s*(.*)$")


class SummaryState(str, enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    SUMMARIZING = "summarizing"
    FAILED = "failed"


@dataclass(slots=True)
class SummarizationPolicy:
    active_channels_lookback_days: int = 7
    initial_min_messages: int = 50
    trigger_new_messages: int = 150
    trigger_age_hours: int = 6
    trigger_min_new_messages: int = 20
    max_tokens: int = 1200
    refresh_weeks: int = 6
    refresh_days_lookback: int = 14
    fetch_limit: int = 200
    milestone_limit: int = 20

    @classmethod
    def from_settings(cls, settings) -> "SummarizationPolicy":
        return cls(
            active_channels_lookback_days=settings.summarization_active_channels_lookback_days,
            initial_min_messages=settings.summarization_initial_min_messages,
            trigger_new_messages=settings.summarization_trigger_new_messages,
            trigger_age_hours=settings.summarization_trigger_age_hours,
            trigger_min_new_messages=settings.summarization_trigger_min_new_messages,
            max_tokens=settings.summarization_max_tokens,
            refresh_weeks=settings.summarization_refresh_weeks,
            refresh_days_lookback=settings.summarization_refresh_days_lookback,
            fetch_limit=settings.summarization_fetch_limit,
            milestone_limit=settings.summarization_milestone_limit,
        )

    def refresh_due(self, summary: ChannelSummary | None, now: datetime) -> bool:
        if summary is None or summary.refreshed_at is None:
            return False
        return now - summary.refreshed_at > timedelta(weeks=self.refresh_weeks)

    def should_summarize(
        self,
        *,
        has_summary: bool,
        new_messages: int,
        summary_age_hours: float,
        refresh_due: bool = False,
    ) -> bool:
        if not has_summary:
            return new_messages >= self.initial_min_messages
        if refresh_due and new_messages > 0:
            return True
        if new_messages >= self.trigger_new_messages:
            return True
        return summary_age_hours >= self.trigger_age_hours and new_messages >= self.trigger_min_new_messages


def parse_milestones(raw: str, max_items: int = MAX_MILESTONES_PER_CYCLE) -> List[str]:
    """Pull `- `, `* `, `1.` and `1)` items out of an LLM reply; a bare `None` means no milestones."""
    out: List[str] = []
    seen: set[str] = set()
    for line in (raw or "").splitlines():
        line = line.strip()
        if not line:
            continue
        if line.casefold() in {"none", "none."}:
            if not out:
                return []
            break

        if line.startswith("- ") or line.startswith("* "):
            item = line[2:].strip()
        else:
            match = _NUMBERED_PREFIX_RE.match(line)
            if match is None:
                continue
            item = match.group(1).strip()

        item = collapse_spaces(item)
        if not item:
            continue
        key = item.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
        if len(out) >= max_items:
            break
    return out


def format_message_lines(messages: Sequence[Message]) -> List[str]:
    """Chronological `[timestamp] author: content` lines from newest-first rows."""
    return [
        f"[{to_db_timestamp(m.timestamp)}] {m.author_id}: {collapse_spaces(m.content)}"
        for m in reversed(messages)
        if m.content.strip()
    ]


class RollingSummarizer:
    def __init__(
        self,
        store,
        llm: CompletionProvider,
        policy: SummarizationPolicy | None = None,
        *,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.store = store
        self.llm = llm
        self.policy = policy or SummarizationPolicy()
        self.timeout_seconds = float(timeout_seconds)
        self._states: Dict[str, SummaryState] = {}
        self._in_flight: set[str] = set()

    def state_of(self, channel_id: str) -> SummaryState:
        return self._states.get(channel_id, SummaryState.IDLE)

    async def _complete(self, prompt: str) -> str:
        return await asyncio.wait_for(self.llm.complete(prompt), timeout=self.timeout_seconds)

    async def should_summarize(self, channel_id: str, now: datetime | None = None) -> bool:
        now = now or utc_now()
        record = await self.store.get_channel_summary(channel_id)
        after_id = 0
        if record is None or record.updated_at is None:
            since = now - timedelta(hours=24)
        else:
            since = record.updated_at
            after_id = record.last_message_id
        new_messages = await self.store.count_channel_messages_since(channel_id, since, after_id)

        age_hours = 999.0
        if record is not None and record.updated_at is not None:
            age_hours = (now - record.updated_at).total_seconds() / 3600.0

        return self.policy.should_summarize(
            has_summary=record is not None,
            new_messages=new_messages,
            summary_age_hours=age_hours,
            refresh_due=self.policy.refresh_due(record, now),
        )

    async def run_once(self) -> int:
        """One tick over recently active channels; returns how many summaries were written."""
        channels = await self.store.list_active_channels(self.policy.active_channels_lookback_days)
        written = 0
        for channel_id in channels:
            if channel_id in self._in_flight:
                continue
            if self.state_of(channel_id) == SummaryState.FAILED:
                self._states[channel_id] = SummaryState.IDLE
            try:
                if not await self.should_summarize(channel_id):
                    continue
                self._states[channel_id] = SummaryState.TRIGGERED
                if await self._run_cycle(channel_id) is not None:
                    written += 1
            except asyncio.CancelledError:
                raise
            except (ProviderError, asyncio.TimeoutError) as exc:
                self._states[channel_id] = SummaryState.FAILED
                logger.warning(
                    "[memory.summary] channel=%s cycle aborted (%s); keeping previous summary", channel_id, exc
                )
            except Exception:
                self._states[channel_id] = SummaryState.FAILED
                logger.exception("[memory.summary] channel=%s cycle failed", channel_id)
        return written

    async def summarize_now(self, channel_id: str) -> ChannelSummary | None:
        """Force a cycle regardless of the trigger policy. Errors propagate to the caller."""
        if channel_id in self._in_flight:
            return None
        self._states[channel_id] = SummaryState.TRIGGERED
        try:
            return await self._run_cycle(channel_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._states[channel_id] = SummaryState.FAILED
            raise

    async def _run_cycle(self, channel_id: str) -> ChannelSummary | None:
        self._in_flight.add(channel_id)
        self._states[channel_id] = SummaryState.SUMMARIZING
        try:
            summary = await self._summarize_channel(channel_id)
        finally:
            self._in_flight.discard(channel_id)
        self._states[channel_id] = SummaryState.IDLE
        return summary

    async def _summarize_channel(self, channel_id: str) -> ChannelSummary | None:
        now = utc_now()
        record = await self.store.get_channel_summary(channel_id)
        refresh_due = self.policy.refresh_due(record, now)

        after_id = 0
        if refresh_due:
            since = now - timedelta(days=self.policy.refresh_days_lookback)
        elif record is not None and record.updated_at is not None:
            since = record.updated_at
            after_id = record.last_message_id
        else:
            since = now - timedelta(days=1)

        messages = await self.store.fetch_recent(
            channel_id,
            since=since,
            limit=self.policy.fetch_limit,
            after_id=after_id,
        )
        if not messages:
            logger.debug("[memory.summary] channel=%s nothing new to summarize", channel_id)
            return None

        milestones = await self.store.get_milestones(channel_id, limit=self.policy.milestone_limit)
        prompt = build_summary_prompt(
            record.summary_text if record is not None else None,
            [m.fact_text for m in milestones],
            format_message_lines(messages),
            refresh=refresh_due,
        )
        raw_summary = await self._complete(prompt)
        summary_text = await self.enforce_cap(raw_summary.strip())
        if not summary_text:
            raise ProviderError("LLM returned an empty summary")

        # Rows arrive newest first; ties on the second are broken by row id.
        newest = messages[0]
        await self.store.upsert_channel_summary(
            channel_id,
            summary_text,
            updated_at=min(newest.timestamp, now),
            refreshed=refresh_due or record is None,
            last_message_id=newest.message_id,
        )
        logger.info(
            "[memory.summary] channel=%s messages=%s chars=%s refresh=%s",
            channel_id,
            len(messages),
            len(summary_text),
            refresh_due,
        )

        await self._update_milestones(channel_id, summary_text)
        return await self.store.get_channel_summary(channel_id)

    async def enforce_cap(self, summary: str) -> str:
        cap = self.policy.max_tokens
        tokens = await asyncio.to_thread(estimate_tokens, summary)
        if tokens <= cap:
            return summary

        logger.warning("[memory.summary] summary exceeds cap (approx %s tokens > %s); compressing", tokens, cap)
        current = summary
        for _ in range(MAX_COMPRESSION_PASSES):
            current = (await self._complete(build_summary_compress_prompt(current, cap))).strip()
            tokens = await asyncio.to_thread(estimate_tokens, current)
            if tokens <= cap:
                return current

        return truncate(current, cap * 4)

    async def _update_milestones(self, channel_id: str, summary_text: str) -> None:
        try:
            raw = await self._complete(build_milestone_extract_prompt(summary_text, MAX_MILESTONES_PER_CYCLE))
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning("[memory.summary] channel=%s milestone extraction failed (%s)", channel_id, exc)
            return
        items = parse_milestones(raw, MAX_MILESTONES_PER_CYCLE)
        if not items:
            return
        added = await self.store.append_milestones(channel_id, items, cap=self.policy.milestone_limit)
        logger.debug("[memory.summary] channel=%s milestones added=%s", channel_id, added)
