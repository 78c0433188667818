"""SQLite implementation of the stores."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..models import (
    Playlist,
    PlaylistStatus,
    Plugin,
    RunContext,
    Step,
    Strategy,
    generate_slug,
    utcnow,
)


class _SQLiteBase:
    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> sqlite3.Cursor:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(f"SQLite write failed: {e}") from e
        return cur

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    def close(self) -> None:
        self._conn.close()


class SQLiteStore(_SQLiteBase):
    """Persist strategies, plugins and playlists using SQLite."""

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS plugins (
                id INTEGER PRIMARY KEY,
                slug TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                host TEXT NOT NULL,
                port INTEGER NOT NULL,
                plugin_key TEXT UNIQUE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS strategies (
                id INTEGER PRIMARY KEY,
                slug TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                entry_step_id INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                id INTEGER PRIMARY KEY,
                strategy_id INTEGER NOT NULL REFERENCES strategies(id),
                plugin_id INTEGER NOT NULL REFERENCES plugins(id),
                name TEXT,
                metadata TEXT,
                conditions TEXT,
                default_next_step_id INTEGER,
                min_outputs INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS playlists (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                slug TEXT NOT NULL UNIQUE,
                strategy_id INTEGER NOT NULL REFERENCES strategies(id),
                status TEXT NOT NULL,
                current_step_id INTEGER,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    @staticmethod
    def _plugin_from_row(row: sqlite3.Row) -> Plugin:
        return Plugin(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            description=row["description"],
            host=row["host"],
            port=row["port"],
            plugin_key=row["plugin_key"],
        )

    @staticmethod
    def _playlist_from_row(row: sqlite3.Row) -> Playlist:
        return Playlist(
            id=row["id"],
            slug=row["slug"],
            strategy_id=row["strategy_id"],
            status=PlaylistStatus(row["status"]),
            current_step_id=row["current_step_id"],
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _load_steps(self, strategy_id: int) -> list[Step]:
        rows = self._fetchall(
            "SELECT * FROM steps WHERE strategy_id = ? ORDER BY id", strategy_id
        )
        plugins = {
            r["id"]: self._plugin_from_row(r)
            for r in self._fetchall(
                "SELECT * FROM plugins WHERE id IN "
                "(SELECT plugin_id FROM steps WHERE strategy_id = ?)",
                strategy_id,
            )
        }
        return [
            Step(
                id=r["id"],
                strategy_id=r["strategy_id"],
                plugin_id=r["plugin_id"],
                plugin=plugins.get(r["plugin_id"]),
                name=r["name"],
                metadata=json.loads(r["metadata"]) if r["metadata"] else {},
                conditions=json.loads(r["conditions"]) if r["conditions"] else {},
                default_next_step_id=r["default_next_step_id"],
                min_outputs=r["min_outputs"],
                max_retries=r["max_retries"],
            )
            for r in rows
        ]

    def _strategy_from_row(self, row: sqlite3.Row) -> Strategy:
        return Strategy(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            description=row["description"],
            entry_step_id=row["entry_step_id"],
            steps=self._load_steps(row["id"]),
        )

    # ------------------------------------------------------------------
    # Catalog seeding
    async def add_plugin(self, plugin: Plugin) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO plugins (id, slug, name, description, host, port, plugin_key)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            plugin.id,
            plugin.slug,
            plugin.name,
            plugin.description,
            plugin.host,
            plugin.port,
            plugin.plugin_key,
        )

    async def add_strategy(self, strategy: Strategy) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO strategies (id, slug, name, description, entry_step_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            strategy.id,
            strategy.slug,
            strategy.name,
            strategy.description,
            strategy.entry_step_id,
        )
        for step in strategy.steps:
            await asyncio.to_thread(
                self._execute,
                """
                INSERT OR REPLACE INTO steps (
                    id, strategy_id, plugin_id, name, metadata, conditions,
                    default_next_step_id, min_outputs, max_retries
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                step.id,
                strategy.id,
                step.plugin_id,
                step.name,
                json.dumps(step.metadata),
                json.dumps(step.conditions),
                step.default_next_step_id,
                step.min_outputs,
                step.max_retries,
            )

    # ------------------------------------------------------------------
    # Strategy catalog
    async def find_by_slug(self, slug: str) -> Strategy | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM strategies WHERE slug = ?", slug
        )
        if not row:
            return None
        return await asyncio.to_thread(self._strategy_from_row, row)

    async def list_strategies(self) -> list[Strategy]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM strategies ORDER BY id"
        )
        return [await asyncio.to_thread(self._strategy_from_row, r) for r in rows]

    # ------------------------------------------------------------------
    # Plugin registry
    async def find_plugin_by_id(self, plugin_id: int) -> Plugin | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM plugins WHERE id = ?", plugin_id
        )
        return self._plugin_from_row(row) if row else None

    async def find_plugin_by_slug(self, slug: str) -> Plugin | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM plugins WHERE slug = ?", slug
        )
        return self._plugin_from_row(row) if row else None

    async def list_plugins(self) -> list[Plugin]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM plugins ORDER BY id"
        )
        return [self._plugin_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Run store
    async def create_playlist(
        self, strategy_id: int, current_step_id: int | None
    ) -> Playlist:
        now = utcnow().isoformat()
        slug = generate_slug()
        cur = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO playlists (slug, strategy_id, status, current_step_id, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            slug,
            strategy_id,
            PlaylistStatus.CREATED.value,
            current_step_id,
            now,
            now,
        )
        playlist = await self.get_playlist(cur.lastrowid)
        if playlist is None:
            raise PersistenceError(f"Playlist {slug} vanished after insert")
        return playlist

    async def get_playlist(self, playlist_id: int) -> Playlist | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM playlists WHERE id = ?", playlist_id
        )
        return self._playlist_from_row(row) if row else None

    async def get_playlist_by_slug(self, slug: str) -> Playlist | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM playlists WHERE slug = ?", slug
        )
        return self._playlist_from_row(row) if row else None

    async def update_playlist(self, playlist: Playlist) -> Playlist:
        cur = await asyncio.to_thread(
            self._execute,
            """
            UPDATE playlists
            SET status = ?, current_step_id = ?, version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            playlist.status.value,
            playlist.current_step_id,
            utcnow().isoformat(),
            playlist.id,
            playlist.version,
        )
        stored = await self.get_playlist(playlist.id)
        if stored is None:
            raise NotFoundError(f"Playlist {playlist.slug} not found")
        if cur.rowcount == 0:
            raise ConflictError(
                f"Playlist {playlist.slug} changed concurrently "
                f"(expected version {playlist.version}, found {stored.version})"
            )
        return stored

    async def list_playlists(self) -> list[Playlist]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM playlists ORDER BY id"
        )
        return [self._playlist_from_row(r) for r in rows]


class SQLiteContextStore(_SQLiteBase):
    """Persist run context documents as JSON text in SQLite."""

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS contexts (
                playlist_id INTEGER PRIMARY KEY,
                document TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    async def create_context(self, context: RunContext) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO contexts (playlist_id, document) VALUES (?, ?)",
            context.playlist_id,
            context.model_dump_json(),
        )

    async def get_context(self, playlist_id: int) -> RunContext | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM contexts WHERE playlist_id = ?",
            playlist_id,
        )
        return RunContext.model_validate_json(row["document"]) if row else None

    async def save_context(self, context: RunContext) -> None:
        cur = await asyncio.to_thread(
            self._execute,
            "UPDATE contexts SET document = ? WHERE playlist_id = ?",
            context.model_dump_json(),
            context.playlist_id,
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Context for playlist {context.playlist_id} not found")
