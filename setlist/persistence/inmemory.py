"""In-memory implementation of the stores."""

from __future__ import annotations

from typing import Dict

from ..errors import ConflictError, NotFoundError
from ..models import Playlist, Plugin, RunContext, Strategy, generate_slug, utcnow


class InMemoryStore:
    """Keep strategies, plugins and playlists in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._plugins: Dict[int, Plugin] = {}
        self._strategies: Dict[int, Strategy] = {}
        self._playlists: Dict[int, Playlist] = {}
        self._playlist_id = 0

    # ------------------------------------------------------------------
    # Catalog seeding
    async def add_plugin(self, plugin: Plugin) -> None:
        self._plugins[plugin.id] = plugin.model_copy(deep=True)

    async def add_strategy(self, strategy: Strategy) -> None:
        self._strategies[strategy.id] = strategy.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Strategy catalog
    async def find_by_slug(self, slug: str) -> Strategy | None:
        strategy = next(
            (s for s in self._strategies.values() if s.slug == slug), None
        )
        if strategy is None:
            return None
        resolved = strategy.model_copy(deep=True)
        for step in resolved.steps:
            plugin = self._plugins.get(step.plugin_id)
            step.plugin = plugin.model_copy() if plugin else None
        return resolved

    async def list_strategies(self) -> list[Strategy]:
        return [s.model_copy(deep=True) for s in self._strategies.values()]

    # ------------------------------------------------------------------
    # Plugin registry
    async def find_plugin_by_id(self, plugin_id: int) -> Plugin | None:
        plugin = self._plugins.get(plugin_id)
        return plugin.model_copy() if plugin else None

    async def find_plugin_by_slug(self, slug: str) -> Plugin | None:
        plugin = next((p for p in self._plugins.values() if p.slug == slug), None)
        return plugin.model_copy() if plugin else None

    async def list_plugins(self) -> list[Plugin]:
        return [p.model_copy() for p in self._plugins.values()]

    # ------------------------------------------------------------------
    # Run store
    async def create_playlist(
        self, strategy_id: int, current_step_id: int | None
    ) -> Playlist:
        self._playlist_id += 1
        playlist = Playlist(
            id=self._playlist_id,
            slug=generate_slug(),
            strategy_id=strategy_id,
            current_step_id=current_step_id,
        )
        self._playlists[playlist.id] = playlist
        return playlist.model_copy()

    async def get_playlist(self, playlist_id: int) -> Playlist | None:
        playlist = self._playlists.get(playlist_id)
        return playlist.model_copy() if playlist else None

    async def get_playlist_by_slug(self, slug: str) -> Playlist | None:
        playlist = next((p for p in self._playlists.values() if p.slug == slug), None)
        return playlist.model_copy() if playlist else None

    async def update_playlist(self, playlist: Playlist) -> Playlist:
        stored = self._playlists.get(playlist.id)
        if stored is None:
            raise NotFoundError(f"Playlist {playlist.slug} not found")
        if stored.version != playlist.version:
            raise ConflictError(
                f"Playlist {playlist.slug} changed concurrently "
                f"(expected version {playlist.version}, found {stored.version})"
            )
        updated = stored.model_copy(
            update={
                "status": playlist.status,
                "current_step_id": playlist.current_step_id,
                "version": stored.version + 1,
                "updated_at": utcnow(),
            }
        )
        self._playlists[playlist.id] = updated
        return updated.model_copy()

    async def list_playlists(self) -> list[Playlist]:
        return [p.model_copy() for p in self._playlists.values()]


class InMemoryContextStore:
    """Keep run contexts in local memory."""

    def __init__(self) -> None:
        self._contexts: Dict[int, RunContext] = {}

    async def create_context(self, context: RunContext) -> None:
        self._contexts[context.playlist_id] = context.model_copy(deep=True)

    async def get_context(self, playlist_id: int) -> RunContext | None:
        context = self._contexts.get(playlist_id)
        return context.model_copy(deep=True) if context else None

    async def save_context(self, context: RunContext) -> None:
        if context.playlist_id not in self._contexts:
            raise NotFoundError(f"Context for playlist {context.playlist_id} not found")
        self._contexts[context.playlist_id] = context.model_copy(deep=True)
