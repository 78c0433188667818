"""Execution engine driving playlists through their strategy's steps."""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Tuple

from pydantic import BaseModel

from .config import SetlistConfig, load_config
from .errors import ConflictError, DispatchError, NotFoundError, ValidationError
from .models import ContextStep, Playlist, PlaylistStatus, Plugin, RunContext, Strategy
from .network import host_and_port, talkback_endpoint
from .persistence import (
    ContextStore,
    PluginRegistry,
    RunStore,
    StrategyCatalog,
    get_context_store,
    get_store,
)
from .rpc.client import DispatchResult, RpcClientPool
from .rpc.contracts import CLIENT_SERVICE, WORKER_SERVICE, TaskRequest, TaskResponse

logger = logging.getLogger(__name__)


class TriggerResult(BaseModel):
    slug: str
    status: PlaylistStatus


class SegueResult(BaseModel):
    success: bool


@dataclass
class _Advance:
    playlist: Playlist
    context: RunContext
    advanced: bool = False
    replayed: bool = False


def _decode(raw: Any, what: str) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode()
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed {what}: {e}") from e


class ExecutionEngine:
    """Creates playlists, dispatches their steps and advances them on segue.

    Step invocation and result delivery are best-effort: their failures are
    logged and reported as :class:`DispatchResult` values, never raised.
    Bookkeeping failures in :meth:`trigger` and :meth:`segue` propagate.
    """

    def __init__(
        self,
        catalog: StrategyCatalog,
        plugins: PluginRegistry,
        runs: RunStore,
        contexts: ContextStore,
        clients: RpcClientPool,
        talkback: str,
    ) -> None:
        self._catalog = catalog
        self._plugins = plugins
        self._runs = runs
        self._contexts = contexts
        self._clients = clients
        self._talkback = talkback
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def talkback(self) -> str:
        return self._talkback

    # ------------------------------------------------------------------
    async def trigger(
        self, strategy_slug: str, metadata: Any = None, origin: str = ""
    ) -> TriggerResult:
        """Create a playlist for ``strategy_slug`` and dispatch its first step.

        Args:
            strategy_slug: Slug of the strategy to run.
            metadata: Caller metadata, a dict or its JSON encoding.
            origin: URL that receives ``Deliver`` calls for this run.

        Returns:
            The public slug and the status after the first dispatch attempt.
        """
        data = _decode(metadata, "metadata") if metadata not in (None, "") else {}
        if not isinstance(data, dict):
            raise ValidationError("Metadata must be a JSON object")

        strategy = await self._catalog.find_by_slug(strategy_slug)
        if strategy is None:
            raise NotFoundError(f"Strategy with slug {strategy_slug} not found.")
        await self._resolve_chain(strategy)

        playlist = await self._runs.create_playlist(strategy.id, strategy.entry_step_id)
        context = RunContext.materialize(playlist.id, strategy, data, origin)
        await self._contexts.create_context(context)
        logger.info(
            f"Created playlist {playlist.slug} for strategy {strategy.slug} "
            f"with {len(context.sequence)} steps"
        )

        await self.run(playlist, context)
        return TriggerResult(slug=playlist.slug, status=playlist.status)

    async def run(
        self, playlist: Playlist, context: RunContext
    ) -> DispatchResult[TaskResponse]:
        """Mark ``playlist`` RUNNING and invoke the worker for its current step.

        Raises:
            NotFoundError: If the current step is not part of the context.
        """
        if playlist.status != PlaylistStatus.RUNNING:
            playlist.status = PlaylistStatus.RUNNING
            await self._save(playlist)
            logger.info(f"Playlist {playlist.slug} is RUNNING")

        current = context.find_step(playlist.current_step_id)
        if current is None:
            logger.error(
                f"Current step {playlist.current_step_id} not found "
                f"in playlist {playlist.slug}"
            )
            raise NotFoundError("Current step not found")

        result = await self._invoke_plugin(current, playlist, context)
        if result.ok:
            logger.info(f"Dispatched step {current.id} of playlist {playlist.slug}")
        else:
            logger.error(
                f"Error invoking plugin for step {current.id} "
                f"of playlist {playlist.slug}: {result.error}"
            )
        return result

    async def segue(
        self, run_slug: str, output: Any, step_id: Optional[int] = None
    ) -> SegueResult:
        """Record a worker's output and move the playlist to its next step.

        ``step_id`` names the step the output belongs to. Repeating a segue
        for a step that already has an output is a no-op.
        """
        try:
            if await self._runs.get_playlist_by_slug(run_slug) is None:
                raise NotFoundError(f"Playlist {run_slug} not found")
            async with self._run_lock(run_slug):
                outcome = await self._advance(run_slug, output, step_id)
        except Exception as e:
            logger.error(f"Segue failed for playlist {run_slug}: {e}")
            raise

        if outcome.replayed:
            return SegueResult(success=True)
        if outcome.advanced:
            await self.run(outcome.playlist, outcome.context)
        await self.deliver(outcome.playlist, outcome.context)
        return SegueResult(success=True)

    async def deliver(
        self, playlist: Playlist, context: RunContext
    ) -> TaskResponse | None:
        """Send the playlist snapshot to the run's origin. Never raises."""
        try:
            host, port = host_and_port(context.origin)
        except DispatchError as e:
            logger.error(f"Cannot deliver playlist {playlist.slug}: {e}")
            return None

        result = await self._clients.invoke(
            host,
            port,
            CLIENT_SERVICE,
            "Deliver",
            TaskRequest(payload=playlist.model_dump_json()),
        )
        if not result.ok:
            logger.error(
                f"Delivery of playlist {playlist.slug} to {context.origin} failed: "
                f"{result.error}"
            )
            return None
        logger.debug(f"Delivered playlist {playlist.slug} to {context.origin}")
        return result.value

    async def crash(self, run_slug: str) -> Playlist:
        """Mark a playlist FAILED."""
        if await self._runs.get_playlist_by_slug(run_slug) is None:
            raise NotFoundError(f"Playlist {run_slug} not found")
        async with self._run_lock(run_slug):
            playlist = await self._runs.get_playlist_by_slug(run_slug)
            if playlist is None:
                raise NotFoundError(f"Playlist {run_slug} not found")
            playlist.status = PlaylistStatus.FAILED
            await self._save(playlist)
        logger.warning(f"Playlist {run_slug} marked FAILED")
        return playlist

    async def get_playlist(self, run_slug: str) -> Tuple[Playlist, RunContext | None]:
        playlist = await self._runs.get_playlist_by_slug(run_slug)
        if playlist is None:
            raise NotFoundError(f"Playlist {run_slug} not found")
        return playlist, await self._contexts.get_context(playlist.id)

    async def list_playlists(self) -> list[Playlist]:
        return await self._runs.list_playlists()

    async def get_strategy(self, slug: str) -> Strategy:
        strategy = await self._catalog.find_by_slug(slug)
        if strategy is None:
            raise NotFoundError(f"Strategy with slug {slug} not found.")
        return strategy

    async def list_strategies(self) -> list[Strategy]:
        return await self._catalog.list_strategies()

    async def get_plugin(self, slug: str) -> Plugin:
        plugin = await self._plugins.find_plugin_by_slug(slug)
        if plugin is None:
            raise NotFoundError(f"Plugin with slug {slug} not found.")
        return plugin

    async def list_plugins(self) -> list[Plugin]:
        return await self._plugins.list_plugins()

    async def close(self) -> None:
        await self._clients.aclose()

    # ------------------------------------------------------------------
    async def _advance(
        self, run_slug: str, output: Any, step_id: Optional[int]
    ) -> _Advance:
        playlist = await self._runs.get_playlist_by_slug(run_slug)
        if playlist is None:
            raise NotFoundError(f"Playlist {run_slug} not found")
        context = await self._contexts.get_context(playlist.id)
        if context is None:
            raise NotFoundError(f"Context for playlist {run_slug} not found")
        value = _decode(output, "output")

        if playlist.status == PlaylistStatus.FAILED:
            raise ConflictError(f"Playlist {run_slug} has FAILED")

        if step_id is not None and step_id != playlist.current_step_id:
            done = context.find_step(step_id)
            if done is not None and done.has_output:
                logger.info(
                    f"Ignoring repeated segue for step {step_id} of playlist {run_slug}"
                )
                return _Advance(playlist, context, replayed=True)

        current = context.find_step(playlist.current_step_id)
        if current is None:
            raise NotFoundError("Current step not found")
        if step_id is not None and step_id != current.id:
            raise ConflictError(
                f"Segue for step {step_id} but playlist {run_slug} is at step {current.id}"
            )
        next_step_id = current.default_next_step_id
        if not current.is_terminal and context.find_step(next_step_id) is None:
            raise NotFoundError(f"Next step {next_step_id} not found")

        # Context first, then the run row. A crash in between leaves the
        # output recorded and the pointer unmoved; resending the same segue
        # completes the advance.
        current.output = value
        await self._contexts.save_context(context)

        if current.is_terminal:
            playlist.status = PlaylistStatus.COMPLETE
            playlist.current_step_id = None
            logger.info(f"Playlist {run_slug} finished step {current.id}; COMPLETE")
        else:
            playlist.status = PlaylistStatus.RUNNING
            playlist.current_step_id = next_step_id
            logger.info(
                f"Playlist {run_slug} finished step {current.id}; "
                f"advancing to step {next_step_id}"
            )
        await self._save(playlist)
        return _Advance(playlist, context, advanced=not current.is_terminal)

    async def _save(self, playlist: Playlist) -> Playlist:
        stored = await self._runs.update_playlist(playlist)
        playlist.status = stored.status
        playlist.current_step_id = stored.current_step_id
        playlist.version = stored.version
        playlist.updated_at = stored.updated_at
        return playlist

    @asynccontextmanager
    async def _run_lock(self, run_slug: str) -> AsyncIterator[None]:
        # Entries disappear once no segue or crash holds a reference.
        lock = self._locks.get(run_slug)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_slug] = lock
        async with lock:
            yield

    async def _resolve_chain(self, strategy: Strategy) -> None:
        """Attach a plugin to every step of ``strategy``'s chain.

        Raises:
            NotFoundError: If the chain is broken or a step's plugin is unknown.
        """
        try:
            chain = strategy.chain()
        except ValueError as e:
            raise NotFoundError(str(e)) from e
        for step in chain:
            if step.plugin is None:
                step.plugin = await self._plugins.find_plugin_by_id(step.plugin_id)
            if step.plugin is None:
                raise NotFoundError(
                    f"Plugin {step.plugin_id} for step {step.id} not found"
                )

    async def _invoke_plugin(
        self, step: ContextStep, playlist: Playlist, context: RunContext
    ) -> DispatchResult[TaskResponse]:
        plugin = step.plugin or await self._plugins.find_plugin_by_id(step.plugin_id)
        if plugin is None:
            return DispatchResult.failure(
                DispatchError(f"Plugin {step.plugin_id} not found")
            )

        payload = json.dumps(
            {
                "playlist": playlist.model_dump(mode="json"),
                "context": context.model_dump(mode="json"),
                "talkback": self._talkback,
            }
        )
        result = await self._clients.invoke(
            plugin.host,
            plugin.port,
            WORKER_SERVICE,
            "PerformTask",
            TaskRequest(payload=payload),
        )
        if result.ok and not result.value.success:
            return DispatchResult.failure(
                DispatchError(f"Worker {plugin.slug} rejected task: {result.value.result}")
            )
        return result


def build_engine(
    config: Optional[SetlistConfig] = None,
    clients: Optional[RpcClientPool] = None,
) -> ExecutionEngine:
    """Wire an engine to the configured stores and a fresh client pool."""
    store = get_store(config=config)
    contexts = get_context_store(config=config)
    config = config or load_config()
    clients = clients or RpcClientPool(
        timeout=config.rpc.timeout,
        probe_timeout=config.rpc.probe_timeout,
        max_clients=config.rpc.max_clients,
    )
    return ExecutionEngine(
        catalog=store,
        plugins=store,
        runs=store,
        contexts=contexts,
        clients=clients,
        talkback=talkback_endpoint(config.server.port, config.server.talkback_host),
    )
