"""Remote procedure calls between the orchestrator, workers and callers."""

from .client import DispatchResult, RpcClient, RpcClientPool
from .contracts import (
    CLIENT_SERVICE,
    ORCHESTRATOR_SERVICE,
    WORKER_SERVICE,
    ServiceDescriptor,
)

__all__ = [
    "DispatchResult",
    "RpcClient",
    "RpcClientPool",
    "ServiceDescriptor",
    "CLIENT_SERVICE",
    "ORCHESTRATOR_SERVICE",
    "WORKER_SERVICE",
]
