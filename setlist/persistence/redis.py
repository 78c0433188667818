"""Redis implementation of the context store."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..errors import NotFoundError, PersistenceError
from ..models import RunContext


class RedisContextStore:
    """Keep run context documents as JSON strings in Redis."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        return self._redis

    @staticmethod
    def _key(playlist_id: int) -> str:
        return f"setlist:context:{playlist_id}"

    async def create_context(self, context: RunContext) -> None:
        try:
            created = await self._client().set(
                self._key(context.playlist_id), context.model_dump_json(), nx=True
            )
        except RedisError as e:
            raise PersistenceError(f"Redis write failed: {e}") from e
        if not created:
            raise PersistenceError(
                f"Context for playlist {context.playlist_id} already exists"
            )

    async def get_context(self, playlist_id: int) -> RunContext | None:
        try:
            document = await self._client().get(self._key(playlist_id))
        except RedisError as e:
            raise PersistenceError(f"Redis read failed: {e}") from e
        return RunContext.model_validate_json(document) if document else None

    async def save_context(self, context: RunContext) -> None:
        try:
            saved = await self._client().set(
                self._key(context.playlist_id), context.model_dump_json(), xx=True
            )
        except RedisError as e:
            raise PersistenceError(f"Redis write failed: {e}") from e
        if not saved:
            raise NotFoundError(f"Context for playlist {context.playlist_id} not found")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
