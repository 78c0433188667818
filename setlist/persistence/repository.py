"""Store abstractions used by the execution engine."""

from __future__ import annotations

from typing import Protocol

from ..models import Playlist, Plugin, RunContext, Strategy


class StrategyCatalog(Protocol):
    """Read-only lookup of strategies."""

    async def find_by_slug(self, slug: str) -> Strategy | None:
        """Return the strategy with its steps and their plugins resolved."""

    async def list_strategies(self) -> list[Strategy]:
        """Return all strategies."""


class PluginRegistry(Protocol):
    """Read-only lookup of worker addresses."""

    async def find_plugin_by_id(self, plugin_id: int) -> Plugin | None:
        """Return the plugin by internal id."""

    async def find_plugin_by_slug(self, slug: str) -> Plugin | None:
        """Return the plugin by slug."""

    async def list_plugins(self) -> list[Plugin]:
        """Return all plugins."""


class RunStore(Protocol):
    """Durable playlist rows."""

    async def create_playlist(
        self, strategy_id: int, current_step_id: int | None
    ) -> Playlist:
        """Insert a CREATED playlist with a fresh id and slug."""

    async def get_playlist(self, playlist_id: int) -> Playlist | None:
        """Retrieve a playlist by internal id."""

    async def get_playlist_by_slug(self, slug: str) -> Playlist | None:
        """Retrieve a playlist by public slug."""

    async def update_playlist(self, playlist: Playlist) -> Playlist:
        """Persist ``status`` and ``current_step_id``.

        The write only applies when the stored version equals
        ``playlist.version``; the returned copy carries the bumped version
        and a fresh ``updated_at``.

        Raises:
            ConflictError: If the stored version moved on.
            NotFoundError: If the playlist does not exist.
        """

    async def list_playlists(self) -> list[Playlist]:
        """Return all playlists."""


class ContextStore(Protocol):
    """Run context documents keyed by playlist id."""

    async def create_context(self, context: RunContext) -> None:
        """Insert the context document."""

    async def get_context(self, playlist_id: int) -> RunContext | None:
        """Retrieve the context document."""

    async def save_context(self, context: RunContext) -> None:
        """Replace the stored context document."""
