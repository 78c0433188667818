import pytest

from setlist.errors import ConflictError, NotFoundError
from setlist.models import PlaylistStatus, RunContext
from setlist.persistence import (
    InMemoryContextStore,
    InMemoryStore,
    SQLiteContextStore,
    SQLiteStore,
)
from setlist.persistence.redis import RedisContextStore

ORIGIN = "http://caller:9000"


async def _seeded(store, strategy, plugin_list):
    for plugin in plugin_list:
        await store.add_plugin(plugin)
    await store.add_strategy(strategy)
    return store


async def _check_relational_store(store, strategy, plugin_list):
    await _seeded(store, strategy, plugin_list)

    found = await store.find_by_slug("S")
    assert found is not None
    assert [s.id for s in found.chain()] == [10, 20, 30]
    assert found.steps[0].plugin.host == "worker-a"
    assert found.steps[2].metadata == {"format": "pdf"}
    assert await store.find_by_slug("missing") is None
    assert [s.slug for s in await store.list_strategies()] == ["S"]

    plugin = await store.find_plugin_by_slug("worker-b")
    assert (plugin.host, plugin.port) == ("worker-b", 7002)
    assert (await store.find_plugin_by_id(3)).slug == "worker-c"
    assert await store.find_plugin_by_id(42) is None
    assert len(await store.list_plugins()) == 3

    playlist = await store.create_playlist(strategy.id, strategy.entry_step_id)
    assert playlist.status == PlaylistStatus.CREATED
    assert playlist.current_step_id == 10
    assert playlist.version == 0
    assert (await store.get_playlist_by_slug(playlist.slug)).id == playlist.id

    playlist.status = PlaylistStatus.RUNNING
    playlist.current_step_id = 20
    updated = await store.update_playlist(playlist)
    assert updated.version == 1
    assert updated.status == PlaylistStatus.RUNNING
    assert updated.current_step_id == 20
    assert updated.updated_at >= playlist.updated_at

    # ``playlist`` still carries version 0
    with pytest.raises(ConflictError):
        await store.update_playlist(playlist)
    assert (await store.get_playlist(playlist.id)).current_step_id == 20

    ghost = updated.model_copy(update={"id": 999})
    with pytest.raises(NotFoundError):
        await store.update_playlist(ghost)

    assert [p.slug for p in await store.list_playlists()] == [playlist.slug]


async def _check_context_store(contexts):
    context = RunContext(playlist_id=7, metadata={"a": 1}, origin=ORIGIN)
    await contexts.create_context(context)

    loaded = await contexts.get_context(7)
    assert loaded == context

    loaded.metadata["b"] = 2
    await contexts.save_context(loaded)
    assert (await contexts.get_context(7)).metadata == {"a": 1, "b": 2}

    assert await contexts.get_context(8) is None
    with pytest.raises(NotFoundError):
        await contexts.save_context(context.model_copy(update={"playlist_id": 8}))


@pytest.mark.asyncio
async def test_inmemory_store(strategy, plugin_list):
    await _check_relational_store(InMemoryStore(), strategy, plugin_list)


@pytest.mark.asyncio
async def test_sqlite_store(tmp_path, strategy, plugin_list):
    store = SQLiteStore(tmp_path / "setlist.db")
    await _check_relational_store(store, strategy, plugin_list)

    reopened = SQLiteStore(tmp_path / "setlist.db")
    assert (await reopened.find_by_slug("S")).entry_step_id == 10


@pytest.mark.asyncio
async def test_inmemory_store_returns_copies(strategy, plugin_list):
    store = await _seeded(InMemoryStore(), strategy, plugin_list)
    playlist = await store.create_playlist(1, 10)

    playlist.current_step_id = 30
    assert (await store.get_playlist(playlist.id)).current_step_id == 10

    found = await store.find_by_slug("S")
    found.steps.clear()
    assert len((await store.find_by_slug("S")).steps) == 3


@pytest.mark.asyncio
async def test_inmemory_context_store():
    await _check_context_store(InMemoryContextStore())


@pytest.mark.asyncio
async def test_sqlite_context_store(tmp_path):
    await _check_context_store(SQLiteContextStore(tmp_path / "contexts.db"))


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.closed = False

    async def set(self, key, value, nx=False, xx=False):
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_redis_context_store():
    fake = FakeRedis()
    contexts = RedisContextStore(client=fake)

    await _check_context_store(contexts)
    assert "setlist:context:7" in fake.data

    await contexts.close()
    assert fake.closed
