"""Typed initialization state for the schema registry.

Internal module providing strongly-typed lifecycle state for
`RegistryManager`. Not exposed outside the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Final


class RegistryInitPhase(Enum):
    """Initialization phase for the registry lifecycle."""

    IDLE = auto()
    STARTING = auto()
    READY = auto()
    FAILED = auto()
    STOPPED = auto()


@dataclass(frozen=True)
class RegistryInitState:
    """Snapshot of initialization state with timestamps and error details."""

    phase: RegistryInitPhase
    started_at: float | None = None
    completed_at: float | None = None
    error_message: str | None = None
    attempts: int = 0
    table_count: int = 0


INIT_NOT_READY_PHASES: Final[set[RegistryInitPhase]] = {
    RegistryInitPhase.IDLE,
    RegistryInitPhase.STARTING,
}
