"""Domain models for strategies, plugins and playlists."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

SLUG_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
SLUG_LENGTH = 21


def generate_slug(length: int = SLUG_LENGTH) -> str:
    """Return an unguessable public identifier."""
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlaylistStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    COMPLETE = "COMPLETE"


class Plugin(BaseModel):
    """A remote worker reachable at ``host:port``."""

    id: int
    slug: str
    name: str = ""
    description: Optional[str] = None
    host: str
    port: int
    plugin_key: Optional[str] = Field(default=None, exclude=True)


class Step(BaseModel):
    """One node of a strategy chain.

    ``conditions``, ``min_outputs`` and ``max_retries`` are stored for
    workers and tooling; the engine does not act on them.
    """

    id: int
    strategy_id: int
    plugin_id: int
    plugin: Optional[Plugin] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    default_next_step_id: Optional[int] = None
    min_outputs: int = 0
    max_retries: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.default_next_step_id is None


class ContextStep(Step):
    """A step copied into a run's context, carrying the step's output."""

    output: Optional[Any] = None

    @property
    def has_output(self) -> bool:
        return self.output is not None


class Strategy(BaseModel):
    """Named chain of steps starting at ``entry_step_id``."""

    id: int
    slug: str
    name: str = ""
    description: Optional[str] = None
    entry_step_id: int
    steps: List[Step] = Field(default_factory=list)

    def chain(self) -> List[Step]:
        """Return the steps reachable from the entry step, in order.

        Raises:
            ValueError: If a ``next`` pointer is dangling or loops back.
        """
        by_id = {step.id: step for step in self.steps}
        ordered: List[Step] = []
        seen: set[int] = set()
        step_id: Optional[int] = self.entry_step_id
        while step_id is not None:
            if step_id in seen:
                raise ValueError(
                    f"Strategy {self.slug} has a cycle at step {step_id}"
                )
            step = by_id.get(step_id)
            if step is None:
                raise ValueError(
                    f"Strategy {self.slug} references unknown step {step_id}"
                )
            seen.add(step_id)
            ordered.append(step)
            step_id = step.default_next_step_id
        return ordered


class Playlist(BaseModel):
    """Durable record of one run of a strategy."""

    id: int
    slug: str
    strategy_id: int
    status: PlaylistStatus = PlaylistStatus.CREATED
    current_step_id: Optional[int] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RunContext(BaseModel):
    """Mutable execution context of a run, keyed by the playlist id."""

    playlist_id: int
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sequence: List[ContextStep] = Field(default_factory=list)
    origin: str

    def find_step(self, step_id: Optional[int]) -> Optional[ContextStep]:
        if step_id is None:
            return None
        return next((step for step in self.sequence if step.id == step_id), None)

    @classmethod
    def materialize(
        cls,
        playlist_id: int,
        strategy: Strategy,
        metadata: Dict[str, Any],
        origin: str,
    ) -> "RunContext":
        """Snapshot ``strategy``'s chain into a new context."""
        sequence = [
            ContextStep.model_validate(step.model_dump()) for step in strategy.chain()
        ]
        return cls(
            playlist_id=playlist_id,
            metadata=metadata,
            sequence=sequence,
            origin=origin,
        )
