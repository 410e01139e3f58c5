"""
Core type definitions for bundleforge.

Stage and cycle bookkeeping shared by the coordinator, the CLI and the
development server.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

# Type aliases
ArtifactPath = Path
Fingerprint = str  # SHA-256 hex digest


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stage(str, Enum):
    """Named pipeline stages."""

    VALIDATE = "validate"
    COMPILE = "compile"
    BUNDLE = "bundle"
    COPY = "copy"
    PROMOTE = "promote"


class StageStatus(str, Enum):
    """Status of a pipeline stage."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    REUSED = "reused"


class CycleState(str, Enum):
    """Position of one build cycle in its state machine.

    ``IDLE -> COMPILING -> BUNDLING -> [COPYING] -> COMPLETE``, with ``FAILED``
    reachable from every non-terminal state. Bundling and asset copying run
    together under ``BUNDLING``; ``COPYING`` is entered when the bundle is ready
    while assets are still being copied. ``DISCARDED`` marks a cycle that
    succeeded but was superseded before promotion.
    """

    IDLE = "idle"
    COMPILING = "compiling"
    BUNDLING = "bundling"
    COPYING = "copying"
    COMPLETE = "complete"
    FAILED = "failed"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleState.COMPLETE, CycleState.FAILED, CycleState.DISCARDED)


_TRANSITIONS: dict[CycleState, set[CycleState]] = {
    CycleState.IDLE: {CycleState.COMPILING, CycleState.FAILED},
    CycleState.COMPILING: {CycleState.BUNDLING, CycleState.FAILED},
    CycleState.BUNDLING: {CycleState.COPYING, CycleState.COMPLETE, CycleState.DISCARDED, CycleState.FAILED},
    CycleState.COPYING: {CycleState.COMPLETE, CycleState.DISCARDED, CycleState.FAILED},
}


class StageResult(BaseModel):
    """Result of a pipeline stage execution."""

    stage: Stage = Field(description="Pipeline stage")
    status: StageStatus = Field(default=StageStatus.PENDING, description="Execution status")
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    duration_seconds: float = Field(default=0.0)
    output_hash: Fingerprint = Field(default="", description="Fingerprint of stage output")
    artifacts: list[ArtifactPath] = Field(default_factory=list, description="Produced files")
    error_message: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def mark_running(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = utcnow()

    def mark_completed(
        self,
        output_hash: Fingerprint = "",
        artifacts: list[ArtifactPath] | None = None,
        status: StageStatus = StageStatus.COMPLETED,
    ) -> None:
        """Mark stage as successfully completed (or reused from cache)."""
        self.status = status
        self.completed_at = utcnow()
        self.output_hash = output_hash
        self.artifacts = artifacts or []
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def mark_failed(self, error: str) -> None:
        """Mark stage as failed."""
        self.status = StageStatus.FAILED
        self.completed_at = utcnow()
        self.error_message = error
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()


class BuildCycle(BaseModel):
    """One execution of the pipeline for a build target."""

    cycle_id: str = Field(description="Unique cycle identifier")
    mode: str = Field(description="Build mode")
    state: CycleState = Field(default=CycleState.IDLE)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = Field(default=None)
    stages: list[StageResult] = Field(default_factory=list)
    failed_stage: Stage | None = Field(default=None)
    error: str | None = Field(default=None)

    def transition(self, new_state: CycleState) -> None:
        """Advance the state machine.

        Raises:
            RuntimeError: On a transition the state machine does not allow.
        """
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal cycle transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state.is_terminal:
            self.completed_at = utcnow()

    def stage(self, stage: Stage) -> StageResult:
        """Get (or create) the result record for a stage."""
        for result in self.stages:
            if result.stage == stage:
                return result
        result = StageResult(stage=stage)
        self.stages.append(result)
        return result

    def get_stage(self, stage: Stage) -> StageResult | None:
        for result in self.stages:
            if result.stage == stage:
                return result
        return None

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or utcnow()
        return (end - self.started_at).total_seconds()
