from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, Iterator, Set

from ..common import ensure_utc, utc_now
from .models import Message, PurgeScope


class _ChannelSlot:
    __slots__ = ("lock", "messages", "ids")

    def __init__(self, capacity: int) -> None:
        self.lock = threading.Lock()
        # Index 0 is the newest message.
        self.messages: Deque[Message] = deque(maxlen=capacity)
        self.ids: Set[str] = set()


class RecencyCache:
    """Bounded per-channel buffer of verbatim recent messages, newest first.

    Each channel has its own lock; the registry lock is only held while a
    channel slot is created, so traffic in one channel never blocks another.
    """

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("RecencyCache capacity must be >= 1")
        self.capacity = int(capacity)
        self._slots: Dict[str, _ChannelSlot] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, channel_id: str) -> _ChannelSlot | None:
        return self._slots.get(channel_id)

    def _ensure_slot(self, channel_id: str) -> _ChannelSlot:
        slot = self._slots.get(channel_id)
        if slot is not None:
            return slot
        with self._registry_lock:
            slot = self._slots.get(channel_id)
            if slot is None:
                slot = _ChannelSlot(self.capacity)
                self._slots[channel_id] = slot
            return slot

    def record(self, message: Message) -> bool:
        slot = self._ensure_slot(message.channel_id)
        with slot.lock:
            if message.external_id in slot.ids:
                return False
            if len(slot.messages) == slot.messages.maxlen:
                evicted = slot.messages.pop()
                slot.ids.discard(evicted.external_id)
            slot.messages.appendleft(message)
            slot.ids.add(message.external_id)
        return True

    def recent(
        self,
        channel_id: str,
        limit: int,
        max_age_hours: int = 0,
        not_before: datetime | None = None,
    ) -> Iterator[Message]:
        """Yield at most `limit` messages newest first.

        `max_age_hours=0` disables the age filter; `not_before` drops anything stamped
        earlier (a channel's memory start date).
        """
        slot = self._slot(channel_id)
        if slot is None or limit <= 0:
            return
        with slot.lock:
            snapshot = list(slot.messages)

        cutoff = utc_now() - timedelta(hours=max_age_hours) if max_age_hours > 0 else None
        if not_before is not None:
            floor = ensure_utc(not_before)
            cutoff = floor if cutoff is None else max(cutoff, floor)
        emitted = 0
        for message in snapshot:
            if cutoff is not None and message.timestamp < cutoff:
                # Arrival order is newest first, but late deliveries may carry older stamps.
                continue
            yield message
            emitted += 1
            if emitted >= limit:
                return

    def size(self, channel_id: str) -> int:
        slot = self._slot(channel_id)
        if slot is None:
            return 0
        with slot.lock:
            return len(slot.messages)

    def warm(self, channel_id: str, messages: Iterable[Message]) -> int:
        """Append store rows (newest first) behind whatever is already cached."""
        slot = self._ensure_slot(channel_id)
        added = 0
        with slot.lock:
            for message in messages:
                if len(slot.messages) >= self.capacity:
                    break
                if message.external_id in slot.ids:
                    continue
                slot.messages.append(message)
                slot.ids.add(message.external_id)
                added += 1
        return added

    def _remove_where(self, predicate: Callable[[Message], bool], channel_id: str | None = None) -> int:
        if channel_id is not None:
            slot = self._slot(channel_id)
            slots = [slot] if slot is not None else []
        else:
            with self._registry_lock:
                slots = list(self._slots.values())

        removed = 0
        for slot in slots:
            with slot.lock:
                kept = [m for m in slot.messages if not predicate(m)]
                removed += len(slot.messages) - len(kept)
                slot.messages.clear()
                slot.messages.extend(kept)
                slot.ids = {m.external_id for m in kept}
        return removed

    def purge_channel(self, channel_id: str) -> int:
        return self._remove_where(lambda _m: True, channel_id=channel_id)

    def purge_user(self, user_id: str, channel_id: str | None = None) -> int:
        return self._remove_where(lambda m: m.author_id == user_id, channel_id=channel_id)

    def purge_before(self, before: datetime, channel_id: str | None = None) -> int:
        cutoff = ensure_utc(before)
        return self._remove_where(lambda m: m.timestamp < cutoff, channel_id=channel_id)

    def cleanup_old_messages(self, retention_hours: int) -> int:
        if retention_hours <= 0:
            return 0
        return self.purge_before(utc_now() - timedelta(hours=retention_hours))

    def purge(self, scope: PurgeScope) -> int:
        scope.validate()
        cutoff = ensure_utc(scope.before) if scope.before is not None else None

        def matches(message: Message) -> bool:
            if scope.user_id and message.author_id != scope.user_id:
                return False
            if cutoff is not None and message.timestamp >= cutoff:
                return False
            return True

        return self._remove_where(matches, channel_id=scope.channel_id or None)
