"""Shared fixtures: a seeded catalog and an in-process fake network."""

import asyncio
import json
from collections import defaultdict

import httpx
import pytest

from setlist.engine import ExecutionEngine
from setlist.models import Plugin, Step, Strategy
from setlist.persistence import InMemoryContextStore, InMemoryStore
from setlist.rpc import RpcClientPool

ORIGIN = "http://caller:9000"
TALKBACK = "http://orchestrator:50051"


class FakeNetwork:
    """Answers worker and caller procedures in-process and records every call."""

    def __init__(self) -> None:
        self.calls = []
        self.down = set()
        self.replies = defaultdict(lambda: {"success": True, "result": "accepted"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/healthz":
            return httpx.Response(200, json={"status": "ok"})
        self.calls.append(
            {
                "host": host,
                "port": request.url.port,
                "path": request.url.path,
                "body": json.loads(request.content),
            }
        )
        return httpx.Response(200, json=self.replies[host])

    def tasks(self, host=None):
        """Decoded PerformTask payloads, optionally for one worker host."""
        return [
            json.loads(call["body"]["payload"])
            for call in self.calls
            if call["path"] == "/worker.WorkerService/PerformTask"
            and (host is None or call["host"] == host)
        ]

    def deliveries(self):
        return [
            json.loads(call["body"]["payload"])
            for call in self.calls
            if call["path"] == "/client.ClientService/Deliver"
        ]


def chain_strategy() -> Strategy:
    """Strategy ``S``: steps 10 -> 20 -> 30, each on its own worker."""
    return Strategy(
        id=1,
        slug="S",
        name="Three step chain",
        entry_step_id=10,
        steps=[
            Step(id=10, strategy_id=1, plugin_id=1, name="A", default_next_step_id=20),
            Step(id=20, strategy_id=1, plugin_id=2, name="B", default_next_step_id=30),
            Step(
                id=30,
                strategy_id=1,
                plugin_id=3,
                name="C",
                metadata={"format": "pdf"},
                conditions={"when": "always"},
                max_retries=2,
            ),
        ],
    )


def plugins() -> list[Plugin]:
    return [
        Plugin(id=1, slug="worker-a", name="A", host="worker-a", port=7001, plugin_key="key-a"),
        Plugin(id=2, slug="worker-b", name="B", host="worker-b", port=7002, plugin_key="key-b"),
        Plugin(id=3, slug="worker-c", name="C", host="worker-c", port=7003, plugin_key="key-c"),
    ]


async def seed(store) -> None:
    for plugin in plugins():
        await store.add_plugin(plugin)
    await store.add_strategy(chain_strategy())


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    asyncio.run(seed(store))
    return store


@pytest.fixture
def contexts() -> InMemoryContextStore:
    return InMemoryContextStore()


@pytest.fixture
def engine(store, contexts, network) -> ExecutionEngine:
    clients = RpcClientPool(
        timeout=5.0, transport=httpx.MockTransport(network.handler)
    )
    return ExecutionEngine(
        catalog=store,
        plugins=store,
        runs=store,
        contexts=contexts,
        clients=clients,
        talkback=TALKBACK,
    )


@pytest.fixture
def strategy() -> Strategy:
    return chain_strategy()


@pytest.fixture
def plugin_list() -> list[Plugin]:
    return plugins()
