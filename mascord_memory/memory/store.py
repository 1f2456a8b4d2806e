from __future__ import annotations

from .storage.messages import MemoryMessagesMixin
from .storage.purge import MemoryPurgeMixin
from .storage.schema import MemorySchemaMixin
from .storage.settings import MemorySettingsMixin
from .storage.summaries import MemorySummariesMixin
from .storage.user_memory import MemoryUserMemoryMixin
from .storage.utils import _sqlite_memory_connection


class MemoryStore(
    MemorySchemaMixin,
    MemoryMessagesMixin,
    MemorySettingsMixin,
    MemorySummariesMixin,
    MemoryUserMemoryMixin,
    MemoryPurgeMixin,
):
    """Durable channel memory: message log with embeddings, channel settings, summaries and user profiles."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("SELECT 1")
