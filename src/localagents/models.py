"""Pydantic models defining the inter-stage contracts of the pipeline.

Each model represents data exchanged between pipeline stages (probe,
decomposition, slot mapping, execution, review, synthesis). Models are
designed for JSON serialization so every stage output can be persisted as a
self-describing artifact in the run directory.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

BackendName = Literal["worker", "orchestrator"]
RouteTarget = Literal["worker", "orchestrator", "none"]
ThroughputClass = Literal["gpu", "cpu", "unknown"]


class Phase(str, Enum):
    RED = "RED"
    GREEN = "GREEN"
    REFACTOR = "REFACTOR"
    ANALYZE = "ANALYZE"


class BackendStatus(BaseModel):
    name: str
    base_url: str
    reachable: bool = False
    slot_count: int = 0
    total_slots: int = 0
    model_id: str = ""
    models: list[str] = Field(default_factory=list)
    throughput_class: ThroughputClass = "unknown"
    tokens_per_second: float | None = None


class RoutingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    decomposition_target: RouteTarget
    quality_target: RouteTarget

    @property
    def execution_target(self) -> RouteTarget:
        """Agents run on the backend chosen for structured output."""
        return self.decomposition_target


class ProbeReport(BaseModel):
    backends: dict[str, BackendStatus]
    routing: RoutingDecision

    @property
    def ready(self) -> bool:
        return self.routing.decomposition_target != "none"


class Subtask(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    phase: Phase
    description: str = Field(alias="task")
    files: list[str] = Field(default_factory=list)
    agent: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("phase", mode="before")
    @classmethod
    def _normalize_phase(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().upper()
            return "ANALYZE" if key == "REVIEW" else key
        return value


class Group(BaseModel):
    group: int
    description: str = "unnamed"
    tasks: list[Subtask] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _name_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "description" not in data and "name" in data:
            return {**data, "description": data["name"]}
        return data


class DecompositionPlan(BaseModel):
    parallel_groups: list[Group] = Field(min_length=1)
    recovered: bool = False

    @field_validator("parallel_groups")
    @classmethod
    def _unique_ids(cls, groups: list[Group]) -> list[Group]:
        seen: set[str] = set()
        for group in groups:
            for task in group.tasks:
                if task.id in seen:
                    msg = f"duplicate subtask id {task.id!r}"
                    raise ValueError(msg)
                seen.add(task.id)
        return sorted(groups, key=lambda g: g.group)

    @property
    def task_count(self) -> int:
        return sum(len(g.tasks) for g in self.parallel_groups)


class MappedTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtask: Subtask
    slot: int = Field(ge=1)
    agent: str
    original_agent: str = "unknown"

    @property
    def task_id(self) -> str:
        return self.subtask.id

    @property
    def phase(self) -> Phase:
        return self.subtask.phase


class MappedBatch(BaseModel):
    group: int
    description: str
    tasks: list[MappedTask]
    parallelism: int


class ExecutionSummary(BaseModel):
    total_tasks: int
    total_batches: int
    max_parallelism: int


class SlotMapping(BaseModel):
    batches: list[MappedBatch]
    total_groups: int
    available_slots: int
    execution_summary: ExecutionSummary


class ExecutionResult(BaseModel):
    task_id: str
    agent: str
    phase: Phase
    task: str
    status: Literal["success", "failed"]
    state: str
    iterations: int = 0
    result: str = ""
    error: str | None = None


class BatchResult(BaseModel):
    group: int
    description: str
    success: int = 0
    failed: int = 0
    results: list[ExecutionResult] = Field(default_factory=list)


class PipelineResult(BaseModel):
    status: Literal["success", "partial", "failed"]
    total_success: int
    total_failed: int
    batches: list[BatchResult]
    output_dir: str = ""


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class QualityRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str = "needs_review"
    overall_score: int | float = 0
    recovered: bool = False
    error: str | None = None
    raw_content: str | None = None


class SynthesisRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    recovered: bool = False
    error: str | None = None
    execution: dict[str, Any] | None = None
    quality: dict[str, Any] | None = None
