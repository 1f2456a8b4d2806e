from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable

import aiosqlite

from ...common import to_db_timestamp, utc_now
from ..models import PurgeResult, PurgeScope
from .utils import _sqlite_memory_connection

logger = logging.getLogger("mascord_memory.store")


class MemoryPurgeMixin:
    async def purge(self, scope: PurgeScope) -> PurgeResult:
        """Delete messages matching the scope and cascade to derived channel and user memory.

        - user purge drops summaries and milestones of every channel the user wrote in
          (restricted to `scope.channel_id` when given) and, when not channel-restricted,
          the user's memory profile;
        - a whole-channel purge (no `before`) drops that channel's summary and milestones;
        - any purge drops summaries and milestones of channels left without messages.
        """
        scope.validate()

        clauses: list[str] = []
        params: list[object] = []
        if scope.channel_id:
            clauses.append("channel_id = ?")
            params.append(str(scope.channel_id))
        if scope.user_id:
            clauses.append("author_id = ?")
            params.append(str(scope.user_id))
        if scope.before is not None:
            clauses.append("timestamp < ?")
            params.append(to_db_timestamp(scope.before))
        where = " AND ".join(clauses)

        result = PurgeResult()
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                async with db.execute(
                    f"SELECT DISTINCT channel_id FROM messages WHERE {where}",
                    params,
                ) as cursor:
                    affected = {str(row[0]) for row in await cursor.fetchall()}

                cascade: set[str] = set()
                if scope.user_id:
                    if scope.channel_id:
                        cascade.add(str(scope.channel_id))
                    else:
                        async with db.execute(
                            "SELECT DISTINCT channel_id FROM messages WHERE author_id = ?",
                            (str(scope.user_id),),
                        ) as cursor:
                            cascade.update(str(row[0]) for row in await cursor.fetchall())
                elif scope.channel_id and scope.before is None:
                    cascade.add(str(scope.channel_id))

                cursor = await db.execute(f"DELETE FROM messages WHERE {where}", params)
                result.messages_deleted = max(0, int(cursor.rowcount))

                cascade.update(await self._orphaned_channels(db, affected))
                summaries, milestones = await self._delete_channel_memory(db, cascade)
                result.summaries_deleted = summaries
                result.milestones_deleted = milestones

                if scope.user_id and not scope.channel_id:
                    cursor = await db.execute(
                        "DELETE FROM user_memory WHERE user_id = ?",
                        (str(scope.user_id),),
                    )
                    result.user_memory_deleted = max(0, int(cursor.rowcount))

                await db.commit()

        result.affected_channels = sorted(affected | cascade)
        logger.info(
            "[memory.purge] channel=%s user=%s before=%s messages=%s summaries=%s milestones=%s",
            scope.channel_id,
            scope.user_id,
            scope.before,
            result.messages_deleted,
            result.summaries_deleted,
            result.milestones_deleted,
        )
        return result

    async def cleanup_old_messages(self, retention_days: int) -> PurgeResult:
        if retention_days <= 0:
            return PurgeResult()
        cutoff = utc_now() - timedelta(days=int(retention_days))
        return await self.purge(PurgeScope(before=cutoff))

    async def _orphaned_channels(self, db: aiosqlite.Connection, channels: Iterable[str]) -> set[str]:
        orphans: set[str] = set()
        for channel_id in channels:
            async with db.execute(
                "SELECT 1 FROM messages WHERE channel_id = ? LIMIT 1",
                (channel_id,),
            ) as cursor:
                if await cursor.fetchone() is None:
                    orphans.add(channel_id)
        return orphans

    async def _delete_channel_memory(self, db: aiosqlite.Connection, channels: Iterable[str]) -> tuple[int, int]:
        summaries = 0
        milestones = 0
        for channel_id in sorted(channels):
            cursor = await db.execute("DELETE FROM channel_summaries WHERE channel_id = ?", (channel_id,))
            summaries += max(0, int(cursor.rowcount))
            cursor = await db.execute("DELETE FROM channel_milestones WHERE channel_id = ?", (channel_id,))
            milestones += max(0, int(cursor.rowcount))
        return summaries, milestones
