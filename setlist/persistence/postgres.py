"""PostgreSQL implementation of the relational stores."""

from __future__ import annotations

import json
from typing import Any

import asyncpg

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..models import Playlist, PlaylistStatus, Plugin, Step, Strategy, generate_slug


class PostgresStore:
    """Persist strategies, plugins and playlists using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"PostgreSQL connection failed: {e}") from e
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plugins (
                id INTEGER PRIMARY KEY,
                slug TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                host TEXT NOT NULL,
                port INTEGER NOT NULL,
                plugin_key TEXT UNIQUE
            );
            CREATE TABLE IF NOT EXISTS strategies (
                id INTEGER PRIMARY KEY,
                slug TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                entry_step_id INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS steps (
                id INTEGER PRIMARY KEY,
                strategy_id INTEGER NOT NULL REFERENCES strategies(id),
                plugin_id INTEGER NOT NULL REFERENCES plugins(id),
                name TEXT,
                metadata JSONB,
                conditions JSONB,
                default_next_step_id INTEGER,
                min_outputs INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS playlists (
                id SERIAL PRIMARY KEY,
                slug VARCHAR(255) NOT NULL UNIQUE,
                strategy_id INTEGER NOT NULL REFERENCES strategies(id),
                status TEXT NOT NULL,
                current_step_id INTEGER,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
        )

    async def _run(self, method: str, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await getattr(conn, method)(query, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"PostgreSQL query failed: {e}") from e
        finally:
            await conn.close()

    @staticmethod
    def _plugin_from_row(row: asyncpg.Record) -> Plugin:
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
    def _playlist_from_row(row: asyncpg.Record) -> Playlist:
        return Playlist(
            id=row["id"],
            slug=row["slug"],
            strategy_id=row["strategy_id"],
            status=PlaylistStatus(row["status"]),
            current_step_id=row["current_step_id"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _strategy_from_row(self, row: asyncpg.Record) -> Strategy:
        step_rows = await self._run(
            "fetch",
            """
            SELECT s.*, p.slug AS p_slug, p.name AS p_name, p.description AS p_description,
                   p.host AS p_host, p.port AS p_port
            FROM steps s LEFT JOIN plugins p ON p.id = s.plugin_id
            WHERE s.strategy_id = $1 ORDER BY s.id
            """,
            row["id"],
        )
        steps = [
            Step(
                id=r["id"],
                strategy_id=r["strategy_id"],
                plugin_id=r["plugin_id"],
                plugin=Plugin(
                    id=r["plugin_id"],
                    slug=r["p_slug"],
                    name=r["p_name"],
                    description=r["p_description"],
                    host=r["p_host"],
                    port=r["p_port"],
                )
                if r["p_slug"] is not None
                else None,
                name=r["name"],
                metadata=json.loads(r["metadata"]) if r["metadata"] else {},
                conditions=json.loads(r["conditions"]) if r["conditions"] else {},
                default_next_step_id=r["default_next_step_id"],
                min_outputs=r["min_outputs"],
                max_retries=r["max_retries"],
            )
            for r in step_rows
        ]
        return Strategy(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            description=row["description"],
            entry_step_id=row["entry_step_id"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Catalog seeding
    async def add_plugin(self, plugin: Plugin) -> None:
        await self._run(
            "execute",
            """
            INSERT INTO plugins (id, slug, name, description, host, port, plugin_key)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO UPDATE SET
                slug = EXCLUDED.slug, name = EXCLUDED.name,
                description = EXCLUDED.description, host = EXCLUDED.host,
                port = EXCLUDED.port, plugin_key = EXCLUDED.plugin_key
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
        await self._run(
            "execute",
            """
            INSERT INTO strategies (id, slug, name, description, entry_step_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                slug = EXCLUDED.slug, name = EXCLUDED.name,
                description = EXCLUDED.description,
                entry_step_id = EXCLUDED.entry_step_id
            """,
            strategy.id,
            strategy.slug,
            strategy.name,
            strategy.description,
            strategy.entry_step_id,
        )
        for step in strategy.steps:
            await self._run(
                "execute",
                """
                INSERT INTO steps (
                    id, strategy_id, plugin_id, name, metadata, conditions,
                    default_next_step_id, min_outputs, max_retries
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (id) DO UPDATE SET
                    plugin_id = EXCLUDED.plugin_id, name = EXCLUDED.name,
                    metadata = EXCLUDED.metadata, conditions = EXCLUDED.conditions,
                    default_next_step_id = EXCLUDED.default_next_step_id,
                    min_outputs = EXCLUDED.min_outputs,
                    max_retries = EXCLUDED.max_retries
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
        row = await self._run(
            "fetchrow", "SELECT * FROM strategies WHERE slug = $1", slug
        )
        if not row:
            return None
        return await self._strategy_from_row(row)

    async def list_strategies(self) -> list[Strategy]:
        rows = await self._run("fetch", "SELECT * FROM strategies ORDER BY id")
        return [await self._strategy_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Plugin registry
    async def find_plugin_by_id(self, plugin_id: int) -> Plugin | None:
        row = await self._run(
            "fetchrow", "SELECT * FROM plugins WHERE id = $1", plugin_id
        )
        return self._plugin_from_row(row) if row else None

    async def find_plugin_by_slug(self, slug: str) -> Plugin | None:
        row = await self._run(
            "fetchrow", "SELECT * FROM plugins WHERE slug = $1", slug
        )
        return self._plugin_from_row(row) if row else None

    async def list_plugins(self) -> list[Plugin]:
        rows = await self._run("fetch", "SELECT * FROM plugins ORDER BY id")
        return [self._plugin_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Run store
    async def create_playlist(
        self, strategy_id: int, current_step_id: int | None
    ) -> Playlist:
        row = await self._run(
            "fetchrow",
            """
            INSERT INTO playlists (slug, strategy_id, status, current_step_id)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            generate_slug(),
            strategy_id,
            PlaylistStatus.CREATED.value,
            current_step_id,
        )
        return self._playlist_from_row(row)

    async def get_playlist(self, playlist_id: int) -> Playlist | None:
        row = await self._run(
            "fetchrow", "SELECT * FROM playlists WHERE id = $1", playlist_id
        )
        return self._playlist_from_row(row) if row else None

    async def get_playlist_by_slug(self, slug: str) -> Playlist | None:
        row = await self._run(
            "fetchrow", "SELECT * FROM playlists WHERE slug = $1", slug
        )
        return self._playlist_from_row(row) if row else None

    async def update_playlist(self, playlist: Playlist) -> Playlist:
        row = await self._run(
            "fetchrow",
            """
            UPDATE playlists
            SET status = $1, current_step_id = $2, version = version + 1, updated_at = now()
            WHERE id = $3 AND version = $4
            RETURNING *
            """,
            playlist.status.value,
            playlist.current_step_id,
            playlist.id,
            playlist.version,
        )
        if row:
            return self._playlist_from_row(row)
        stored = await self.get_playlist(playlist.id)
        if stored is None:
            raise NotFoundError(f"Playlist {playlist.slug} not found")
        raise ConflictError(
            f"Playlist {playlist.slug} changed concurrently "
            f"(expected version {playlist.version}, found {stored.version})"
        )

    async def list_playlists(self) -> list[Playlist]:
        rows = await self._run("fetch", "SELECT * FROM playlists ORDER BY id")
        return [self._playlist_from_row(r) for r in rows]
