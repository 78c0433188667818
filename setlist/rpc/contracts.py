"""Static service stubs shared by the orchestrator, workers and callers.

Every procedure takes and returns a small typed message. Structured data
travels as JSON strings inside those messages so the inner schema can evolve
without touching the wire contract.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Type

from pydantic import BaseModel

PROTOCOL_VERSION = "1.0"


class PlaylistRequest(BaseModel):
    slug: str
    context: str = "{}"
    origin: str = ""


class PlaylistResponse(BaseModel):
    slug: str
    status: str


class PlaylistSegue(BaseModel):
    slug: str
    output: str = "null"
    operation: str = ""
    step_id: Optional[int] = None


class PlaylistSegueResponse(BaseModel):
    success: bool


class TaskRequest(BaseModel):
    payload: str


class TaskResponse(BaseModel):
    success: bool
    result: str = ""


@dataclass(frozen=True)
class Procedure:
    name: str
    request: Type[BaseModel]
    response: Type[BaseModel]


@dataclass(frozen=True)
class ServiceDescriptor:
    """A named set of procedures exposed at one address."""

    package: str
    name: str
    procedures: Dict[str, Procedure] = field(default_factory=dict)
    version: str = PROTOCOL_VERSION

    @property
    def full_name(self) -> str:
        return f"{self.package}.{self.name}"

    def path(self, procedure: str) -> str:
        """Return the HTTP path a procedure is served on."""
        if procedure not in self.procedures:
            raise KeyError(f"{self.full_name} has no procedure {procedure}")
        return f"/{self.full_name}/{procedure}"

    def procedure(self, name: str) -> Procedure:
        return self.procedures[name]


def _service(package: str, name: str, *procedures: Procedure) -> ServiceDescriptor:
    return ServiceDescriptor(
        package=package, name=name, procedures={p.name: p for p in procedures}
    )


ORCHESTRATOR_SERVICE = _service(
    "orchestrator",
    "OrchestratorService",
    Procedure("TriggerPlaylist", PlaylistRequest, PlaylistResponse),
    Procedure("SeguePlaylist", PlaylistSegue, PlaylistSegueResponse),
)

WORKER_SERVICE = _service(
    "worker",
    "WorkerService",
    Procedure("PerformTask", TaskRequest, TaskResponse),
)

CLIENT_SERVICE = _service(
    "client",
    "ClientService",
    Procedure("Deliver", TaskRequest, TaskResponse),
)

__all__ = [
    "PROTOCOL_VERSION",
    "PlaylistRequest",
    "PlaylistResponse",
    "PlaylistSegue",
    "PlaylistSegueResponse",
    "TaskRequest",
    "TaskResponse",
    "Procedure",
    "ServiceDescriptor",
    "ORCHESTRATOR_SERVICE",
    "WORKER_SERVICE",
    "CLIENT_SERVICE",
]
