from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from ..common import coerce_timestamp


@dataclass(frozen=True, slots=True)
class Message:
    external_id: str
    guild_id: str
    channel_id: str
    author_id: str
    content: str
    timestamp: datetime
    embedding: tuple[float, ...] | None = None
    message_id: int = 0

    @classmethod
    def from_event(
        cls,
        external_id: object,
        guild_id: object,
        channel_id: object,
        author_id: object,
        content: str,
        timestamp: datetime | int | float | str,
    ) -> "Message":
        external = str(external_id or "").strip()
        if not external:
            raise ValueError("Message external_id cannot be empty")
        return cls(
            external_id=external,
            guild_id=str(guild_id or "").strip(),
            channel_id=str(channel_id or "").strip(),
            author_id=str(author_id or "").strip(),
            content=str(content or ""),
            timestamp=coerce_timestamp(timestamp),
        )

    def with_embedding(self, vector: tuple[float, ...] | None) -> "Message":
        return replace(self, embedding=vector)


@dataclass(frozen=True, slots=True)
class ChannelSummary:
    channel_id: str
    summary_text: str
    updated_at: datetime | None
    refreshed_at: datetime | None
    char_count: int = 0
    token_estimate: int = 0
    last_message_id: int = 0


@dataclass(frozen=True, slots=True)
class Milestone:
    milestone_id: int
    channel_id: str
    fact_text: str
    created_at: datetime | None


@dataclass(frozen=True, slots=True)
class ChannelSettings:
    channel_id: str
    guild_id: str
    tracking_enabled: bool = True
    memory_start_date: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class GuildSettings:
    guild_id: str
    context_limit: int | None = None
    context_retention_hours: int | None = None


@dataclass(frozen=True, slots=True)
class UserMemoryProfile:
    user_id: str
    summary_text: str
    enabled: bool
    expires_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True, slots=True)
class SearchFilter:
    channel_ids: tuple[str, ...] = ()
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = 0

    def with_channel(self, channel_id: str) -> "SearchFilter":
        return replace(self, channel_ids=(*self.channel_ids, str(channel_id)))

    def with_from_date(self, from_date: datetime) -> "SearchFilter":
        return replace(self, from_date=coerce_timestamp(from_date))

    def with_to_date(self, to_date: datetime) -> "SearchFilter":
        return replace(self, to_date=coerce_timestamp(to_date))


@dataclass(frozen=True, slots=True)
class SearchResult:
    message: Message
    similarity: float
    score: float
    matched_by: str

    @property
    def channel_id(self) -> str:
        return self.message.channel_id

    @property
    def timestamp(self) -> datetime:
        return self.message.timestamp


@dataclass(slots=True)
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)
    available: bool = True
    degraded: bool = False
    notice: str = ""


@dataclass(frozen=True, slots=True)
class PurgeScope:
    channel_id: str | None = None
    user_id: str | None = None
    before: datetime | None = None

    def validate(self) -> None:
        if not (self.channel_id or self.user_id or self.before):
            raise ValueError("PurgeScope needs a channel, a user or a cutoff date")


@dataclass(slots=True)
class PurgeResult:
    messages_deleted: int = 0
    summaries_deleted: int = 0
    milestones_deleted: int = 0
    user_memory_deleted: int = 0
    cache_deleted: int = 0
    affected_channels: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ContextWindow:
    channel_id: str
    working_memory: str | None = None
    messages: list[Message] = field(default_factory=list)
    user_memory: str = ""
    available: bool = True
    notice: str = ""
