"""
Run Schema - one end-to-end execution of a workflow graph.

An ExecutionRun is owned by the executor while it is active and then kept
in a short history for inspection and export.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class RunStatus(StrEnum):
    """Status of a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


class RunError(BaseModel):
    """An error recorded against a run (and, usually, one node)."""

    message: str
    time: datetime = Field(default_factory=datetime.now)
    node_id: str | None = None

    model_config = {"extra": "allow"}


class NodeRunResult(BaseModel):
    """What a node saw and produced during a run."""

    node_id: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    status: str = "success"
    error: str | None = None
    saved_variables: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class ExecutionRun(BaseModel):
    """A single workflow run."""

    id: str
    graph_id: str = ""
    status: RunStatus = RunStatus.RUNNING
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = None

    results: dict[str, NodeRunResult] = Field(default_factory=dict)
    errors: list[RunError] = Field(default_factory=list)
    created_variables: list[str] = Field(
        default_factory=list, description="Variables first created by this run"
    )

    model_config = {"extra": "allow"}

    @computed_field
    @property
    def duration_ms(self) -> int:
        """Duration of the run in milliseconds."""
        if self.end_time is None:
            return 0
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def record_error(self, message: str, node_id: str | None = None) -> None:
        self.errors.append(RunError(message=message, node_id=node_id))

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.end_time = datetime.now()

    def to_export(self) -> dict[str, Any]:
        """Export in the portable run format (camelCase keys, ISO timestamps)."""
        return {
            "execution": {
                "id": self.id,
                "startTime": self.start_time.isoformat(),
                "endTime": self.end_time.isoformat() if self.end_time else None,
                "status": self.status.value,
                "duration": self.duration_ms,
            },
            "results": {node_id: r.outputs for node_id, r in self.results.items()},
            "errors": [{"message": e.message, "time": e.time.isoformat()} for e in self.errors],
        }
