"""Assign agents and worker slots to every subtask of a plan."""

from __future__ import annotations

import logging
from collections.abc import Callable

from localagents.models import (
    DecompositionPlan,
    ExecutionSummary,
    MappedBatch,
    MappedTask,
    SlotMapping,
    Subtask,
)

logger = logging.getLogger(__name__)


def assign_slots(count: int, slot_budget: int) -> list[int]:
    """Round-robin slot numbers (1-based) for *count* tasks."""
    if slot_budget < 1:
        msg = f"slot budget must be positive, got {slot_budget}"
        raise ValueError(msg)
    return [(idx % slot_budget) + 1 for idx in range(count)]


class SlotMapper:
    def __init__(self, select_agent: Callable[[Subtask], str]) -> None:
        self._select_agent = select_agent

    def map(self, plan: DecompositionPlan, slot_budget: int) -> SlotMapping:
        batches: list[MappedBatch] = []
        for group in plan.parallel_groups:
            slots = assign_slots(len(group.tasks), slot_budget)
            tasks = [
                MappedTask(
                    subtask=subtask,
                    slot=slot,
                    agent=self._select_agent(subtask),
                    original_agent=subtask.agent or "unknown",
                )
                for subtask, slot in zip(group.tasks, slots, strict=True)
            ]
            for task in tasks:
                logger.info(
                    "  [%s] Slot %d: %s (%s)",
                    task.task_id,
                    task.slot,
                    task.agent,
                    task.phase.value,
                )
            batches.append(
                MappedBatch(
                    group=group.group,
                    description=group.description,
                    tasks=tasks,
                    parallelism=min(len(tasks), slot_budget),
                )
            )

        return SlotMapping(
            batches=batches,
            total_groups=len(batches),
            available_slots=slot_budget,
            execution_summary=ExecutionSummary(
                total_tasks=plan.task_count,
                total_batches=len(batches),
                max_parallelism=slot_budget,
            ),
        )
