"""Pooled JSON-over-HTTP client for calling remote procedures."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, Optional, Tuple, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import DispatchError
from .contracts import ServiceDescriptor

logger = logging.getLogger(__name__)

PROTOCOL_HEADER = "x-setlist-protocol"
HEALTH_PATH = "/healthz"

T = TypeVar("T")


@dataclass
class DispatchResult(Generic[T]):
    """Outcome of a best-effort remote call: a value or the error that stopped it."""

    value: Optional[T] = None
    error: Optional[DispatchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "DispatchResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DispatchError) -> "DispatchResult[T]":
        return cls(error=error)


class RpcClient:
    """Invocable handle bound to one service at ``host:port``."""

    def __init__(
        self,
        host: str,
        port: int,
        service: ServiceDescriptor,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.service = service
        self._http = httpx.AsyncClient(
            base_url=f"http://{host}:{port}",
            timeout=timeout,
            transport=transport,
            headers={PROTOCOL_HEADER: service.version},
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def probe(self, timeout: float) -> bool:
        """Return ``True`` when the remote end answers its health check in time."""
        try:
            response = await self._http.get(HEALTH_PATH, timeout=timeout)
        except httpx.HTTPError as e:
            logger.warning(
                f"Readiness probe for {self.service.full_name} at {self.address} failed: {e}"
            )
            return False
        if response.is_success:
            return True
        logger.warning(
            f"Readiness probe for {self.service.full_name} at {self.address} "
            f"answered {response.status_code}"
        )
        return False

    async def invoke(self, procedure: str, request: BaseModel) -> BaseModel:
        """Call ``procedure`` with ``request`` and return the decoded response.

        Raises:
            DispatchError: If the call cannot be made, the remote end reports an
                error, or the response does not decode.
        """
        try:
            proc = self.service.procedure(procedure)
        except KeyError as e:
            raise DispatchError(
                f"{self.service.full_name} has no procedure {procedure}"
            ) from e
        if not isinstance(request, proc.request):
            raise DispatchError(
                f"{procedure} expects {proc.request.__name__}, got {type(request).__name__}"
            )

        path = self.service.path(procedure)
        try:
            response = await self._http.post(path, content=request.model_dump_json())
        except httpx.HTTPError as e:
            raise DispatchError(
                f"Request to {self.address}{path} failed: {e}"
            ) from e

        if not response.is_success:
            raise DispatchError(
                f"Request to {self.address}{path} failed: {_remote_error(response)}"
            )

        try:
            return proc.response.model_validate_json(response.content)
        except PydanticValidationError as e:
            raise DispatchError(
                f"Malformed {proc.response.__name__} from {self.address}{path}: {e}"
            ) from e

    async def aclose(self) -> None:
        await self._http.aclose()


def _remote_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


class RpcClientPool:
    """Cache of clients keyed by ``(host, port, service)`` with explicit teardown.

    At most ``max_clients`` are kept; the least recently used one is closed
    when a new address would exceed the limit.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        probe_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_clients: int = 128,
    ) -> None:
        self._timeout = timeout
        self._probe_timeout = probe_timeout
        self._transport = transport
        self._max_clients = max_clients
        self._clients: OrderedDict[Tuple[str, int, str], RpcClient] = OrderedDict()

    async def get(
        self, host: str, port: int, service: ServiceDescriptor
    ) -> RpcClient | None:
        """Return the pooled client for ``service`` at ``host:port``.

        Returns ``None`` when the client cannot be constructed. A failed
        readiness probe is logged but the client is still handed out.
        """
        key = (host, port, service.full_name)
        client = self._clients.get(key)
        if client is not None:
            self._clients.move_to_end(key)
            return client

        try:
            client = RpcClient(
                host,
                port,
                service,
                timeout=self._timeout,
                transport=self._transport,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            logger.error(
                f"Failed to create client for {service.full_name} at {host}:{port}: {e}"
            )
            return None

        self._clients[key] = client
        while len(self._clients) > self._max_clients:
            _, evicted = self._clients.popitem(last=False)
            logger.debug(
                f"Evicting client for {evicted.service.full_name} at {evicted.address}"
            )
            await evicted.aclose()
        await client.probe(self._probe_timeout)
        return client

    async def invoke(
        self,
        host: str,
        port: int,
        service: ServiceDescriptor,
        procedure: str,
        request: BaseModel,
    ) -> DispatchResult[BaseModel]:
        """Invoke a procedure without raising; failures come back in the result."""
        client = await self.get(host, port, service)
        if client is None:
            return DispatchResult.failure(
                DispatchError(
                    f"No client for {service.full_name} at {host}:{port}"
                )
            )
        try:
            return DispatchResult.success(await client.invoke(procedure, request))
        except DispatchError as e:
            return DispatchResult.failure(e)

    async def aclose(self) -> None:
        """Close every pooled client."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def __len__(self) -> int:
        return len(self._clients)
