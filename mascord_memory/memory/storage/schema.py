from __future__ import annotations

import asyncio
import os
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection


class MemorySchemaMixin:
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Serializes write transactions; readers use their own connections.
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def init(self) -> None:
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                async with db.execute("PRAGMA user_version") as cursor:
                    row = await cursor.fetchone()
                version = int(row[0]) if row else 0
                has_tables = await self._has_user_tables(db)

                if version > self.SCHEMA_VERSION:
                    if has_tables and self._allow_destructive_reset_on_mismatch():
                        await self._reset_schema(db)
                        await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                        await db.commit()
                        return
                    raise RuntimeError(
                        "SQLite schema version mismatch detected (database is newer than this build). "
                        f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                        "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                    )

                await self._create_schema(db)
                if version != self.SCHEMA_VERSION:
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                await db.commit()

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        tables = (
            "channel_milestones",
            "channel_summaries",
            "channel_settings",
            "settings",
            "user_memory",
            "messages",
        )
        for table in tables:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT NOT NULL UNIQUE,
                guild_id TEXT NOT NULL DEFAULT '',
                channel_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                embedding BLOB,
                is_indexed INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_messages_channel_ts
            ON messages(channel_id, timestamp DESC);

            CREATE INDEX IF NOT EXISTS idx_messages_author
            ON messages(author_id);

            CREATE INDEX IF NOT EXISTS idx_messages_unindexed
            ON messages(is_indexed, id);

            CREATE INDEX IF NOT EXISTS idx_messages_ts
            ON messages(timestamp DESC);

            CREATE TABLE IF NOT EXISTS settings (
                guild_id TEXT PRIMARY KEY,
                context_limit INTEGER,
                context_retention INTEGER,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS channel_settings (
                channel_id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                memory_start_date TEXT,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_channel_settings_guild
            ON channel_settings(guild_id);

            CREATE TABLE IF NOT EXISTS channel_summaries (
                channel_id TEXT PRIMARY KEY,
                summary TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                refreshed_at TEXT,
                last_message_id INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS channel_milestones (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id TEXT NOT NULL,
                milestone TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_channel_milestones_channel
            ON channel_milestones(channel_id, id DESC);

            CREATE TABLE IF NOT EXISTS user_memory (
                user_id TEXT PRIMARY KEY,
                summary TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                expires_at TEXT,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
