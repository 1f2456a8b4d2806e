from __future__ import annotations

from datetime import datetime
from typing import List

import aiosqlite

from ...common import parse_db_timestamp, to_db_timestamp
from ..models import ChannelSettings, GuildSettings
from .utils import _sqlite_memory_connection


def _row_to_channel_settings(row: aiosqlite.Row) -> ChannelSettings:
    return ChannelSettings(
        channel_id=str(row["channel_id"]),
        guild_id=str(row["guild_id"] or ""),
        tracking_enabled=bool(row["enabled"]),
        memory_start_date=parse_db_timestamp(row["memory_start_date"]),
        updated_at=parse_db_timestamp(row["updated_at"]),
    )


class MemorySettingsMixin:
    async def get_channel_settings(self, channel_id: str) -> ChannelSettings | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT channel_id, guild_id, enabled, memory_start_date, updated_at
                FROM channel_settings
                WHERE channel_id = ?
                """,
                (str(channel_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_channel_settings(row)

    async def is_channel_tracked(self, channel_id: str) -> bool:
        settings = await self.get_channel_settings(channel_id)
        return True if settings is None else settings.tracking_enabled

    async def set_channel_tracking(self, channel_id: str, guild_id: str, enabled: bool) -> None:
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO channel_settings (channel_id, guild_id, enabled, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(channel_id) DO UPDATE SET
                        guild_id = COALESCE(NULLIF(excluded.guild_id, ''), channel_settings.guild_id),
                        enabled = excluded.enabled,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (str(channel_id), str(guild_id or ""), 1 if enabled else 0),
                )
                await db.commit()

    async def set_memory_start_date(self, channel_id: str, guild_id: str, start_date: datetime | None) -> None:
        start_raw = to_db_timestamp(start_date) if start_date is not None else None
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO channel_settings (channel_id, guild_id, memory_start_date, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(channel_id) DO UPDATE SET
                        guild_id = COALESCE(NULLIF(excluded.guild_id, ''), channel_settings.guild_id),
                        memory_start_date = excluded.memory_start_date,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (str(channel_id), str(guild_id or ""), start_raw),
                )
                await db.commit()

    async def list_channel_settings(self, guild_id: str) -> List[ChannelSettings]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT channel_id, guild_id, enabled, memory_start_date, updated_at
                FROM channel_settings
                WHERE guild_id = ?
                ORDER BY channel_id
                """,
                (str(guild_id),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_channel_settings(row) for row in rows]

    async def get_guild_settings(self, guild_id: str) -> GuildSettings | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT guild_id, context_limit, context_retention FROM settings WHERE guild_id = ?",
                (str(guild_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return GuildSettings(
            guild_id=str(row["guild_id"]),
            context_limit=int(row["context_limit"]) if row["context_limit"] is not None else None,
            context_retention_hours=(
                int(row["context_retention"]) if row["context_retention"] is not None else None
            ),
        )

    async def update_guild_settings(
        self,
        guild_id: str,
        *,
        context_limit: int | None = None,
        context_retention_hours: int | None = None,
    ) -> None:
        """Partial update: a field passed as None keeps its stored value."""
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO settings (guild_id, context_limit, context_retention, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(guild_id) DO UPDATE SET
                        context_limit = COALESCE(excluded.context_limit, settings.context_limit),
                        context_retention = COALESCE(excluded.context_retention, settings.context_retention),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        str(guild_id),
                        int(context_limit) if context_limit is not None else None,
                        int(context_retention_hours) if context_retention_hours is not None else None,
                    ),
                )
                await db.commit()
