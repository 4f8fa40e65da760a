"""Fork-join execution of mapped batches.

Batches run strictly in order. Every task inside a batch runs at once on a
thread pool with one worker per task, and the pool is joined before the
next batch starts. Slot numbers only label tasks; they never limit
concurrency.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable
from pathlib import Path

from localagents.agent import AgentOutcome, AgentState
from localagents.models import (
    BatchResult,
    ExecutionResult,
    MappedBatch,
    MappedTask,
    PipelineResult,
    SlotMapping,
)

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"

ProgressCallback = Callable[[MappedTask, ExecutionResult], None]


def truncate_output(text: str, limit_bytes: int) -> str:
    """Bound *text* to *limit_bytes* of UTF-8, marking the cut."""
    data = text.encode()
    if len(data) <= limit_bytes:
        return text
    return data[:limit_bytes].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def overall_status(success: int, failed: int) -> str:
    if success == 0:
        return "failed"
    if failed > 0:
        return "partial"
    return "success"


class Scheduler:
    def __init__(
        self,
        run_task: Callable[[MappedTask], AgentOutcome],
        output_dir: Path,
        *,
        output_limit_bytes: int = 4000,
        on_result: ProgressCallback | None = None,
    ) -> None:
        self._run_task = run_task
        self.output_dir = output_dir
        self.output_limit_bytes = output_limit_bytes
        self._on_result = on_result

    def run(self, mapping: SlotMapping) -> PipelineResult:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Executing %d batch(es)...", len(mapping.batches))

        batches = [self.run_batch(batch) for batch in mapping.batches]
        total_success = sum(b.success for b in batches)
        total_failed = sum(b.failed for b in batches)
        return PipelineResult(
            status=overall_status(total_success, total_failed),  # type: ignore[arg-type]
            total_success=total_success,
            total_failed=total_failed,
            batches=batches,
            output_dir=str(self.output_dir),
        )

    def run_batch(self, batch: MappedBatch) -> BatchResult:
        logger.info("=== Batch %d: %s ===", batch.group, batch.description)
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max(len(batch.tasks), 1),
            thread_name_prefix=f"batch-{batch.group}",
        ) as executor:
            futures = [executor.submit(self._execute, task) for task in batch.tasks]
            results = [future.result() for future in futures]

        success = sum(1 for r in results if r.status == "success")
        failed = len(results) - success
        logger.info(
            "Batch %d complete: %d success, %d failed", batch.group, success, failed
        )
        return BatchResult(
            group=batch.group,
            description=batch.description,
            success=success,
            failed=failed,
            results=results,
        )

    def _execute(self, task: MappedTask) -> ExecutionResult:
        try:
            outcome = self._run_task(task)
        except Exception as exc:
            logger.exception("[%s] Task raised unexpectedly", task.task_id)
            error = f"{type(exc).__name__}: {exc}"
            outcome = AgentOutcome(state=AgentState.FAILED, output=f"ERROR: {error}", error=error)

        result = ExecutionResult(
            task_id=task.task_id,
            agent=task.agent,
            phase=task.phase,
            task=task.subtask.description,
            status="success" if outcome.succeeded else "failed",
            state=outcome.state.value,
            iterations=outcome.iterations,
            result=truncate_output(outcome.output, self.output_limit_bytes),
            error=outcome.error,
        )
        try:
            (self.output_dir / f"{task.task_id}.json").write_text(
                result.model_dump_json(indent=2)
            )
        except OSError:
            logger.exception("[%s] Could not write task output", task.task_id)

        if self._on_result is not None:
            try:
                self._on_result(task, result)
            except Exception:
                logger.exception("[%s] Progress callback raised", task.task_id)
        return result
