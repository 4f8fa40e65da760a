from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from localagents.agent import AgentRuntime
from localagents.backend import BackendClient
from localagents.catalog import AgentCatalog
from localagents.config import PipelineConfig
from localagents.decomposer import Decomposer
from localagents.errors import ConnectivityError, DecompositionError
from localagents.health import probe_backends, write_status_snapshot
from localagents.mapper import SlotMapper
from localagents.models import (
    DecompositionPlan,
    ExecutionResult,
    MappedTask,
    PipelineResult,
    ProbeReport,
    QualityRecord,
    RouteTarget,
    SlotMapping,
)
from localagents.prompts import load_prompt
from localagents.review import QualityGate, Synthesizer
from localagents.scheduler import Scheduler
from localagents.selector import AgentSelector
from localagents.tools import ToolExecutor
from localagents.workdir import DECOMPOSED, MAPPED, QUALITY, RESULTS, SYNTHESIS, RunWorkdir

logger = logging.getLogger(__name__)

TOTAL_STEPS = 6


def build_clients(config: PipelineConfig) -> dict[str, BackendClient]:
    return {
        name: BackendClient(backend.base_url, timeout_seconds=config.timeouts.decompose)
        for name, backend in config.backends.items()
    }


def resolve_slot_budget(
    config: PipelineConfig, report: ProbeReport, override: int | None = None
) -> int:
    """CLI override, else the worker's idle slots when positive, else the default."""
    if override is not None and override > 0:
        return override
    worker = report.backends.get("worker")
    if worker is not None and worker.reachable and worker.slot_count > 0:
        return worker.slot_count
    return config.default_slots


@dataclass(frozen=True)
class RunContext:
    """Everything a stage needs, threaded explicitly through the pipeline."""

    config: PipelineConfig
    report: ProbeReport
    clients: Mapping[str, BackendClient]
    slot_budget: int
    workdir: RunWorkdir
    agent_work_dir: Path

    def client_for(self, target: RouteTarget) -> BackendClient | None:
        if target == "none":
            return None
        return self.clients.get(target)

    def model_for(self, target: RouteTarget) -> str:
        status = self.report.backends.get(target)
        if status is None:
            return ""
        return status.model_id or target


@dataclass
class RunOutcome:
    payload: dict[str, Any]
    workdir: Path
    aborted: bool = False
    execution: PipelineResult | None = None
    quality: QualityRecord | None = None


class PipelineRunner:
    def __init__(
        self,
        config: PipelineConfig,
        *,
        agent_work_dir: Path,
        clients: Mapping[str, BackendClient] | None = None,
        console: Console | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.agent_work_dir = agent_work_dir
        self.clients = dict(clients) if clients is not None else build_clients(config)
        self.console = console or Console(stderr=True)
        self._clock = clock
        self._now = now

    def close(self) -> None:
        for client in self.clients.values():
            client.close()

    def _step(self, number: int, title: str) -> None:
        self.console.print(f"[bold blue]Step {number}/{TOTAL_STEPS}:[/bold blue] {title}")

    def probe(self) -> ProbeReport:
        report = probe_backends(self.clients, self.config, clock=self._clock)
        write_status_snapshot(report, self.config.work_root)
        return report

    def run(self, task: str, slot_override: int | None = None) -> RunOutcome:
        """Run every stage in order.

        A failed decomposition (or an unexpected error while mapping or
        executing) aborts the run with a ``{error, stage, work_dir}`` record.
        Review and synthesis always degrade to a fallback record instead.
        """
        self._step(1, "Health check")
        report = self.probe()
        self._render_probe(report)

        ctx = RunContext(
            config=self.config,
            report=report,
            clients=self.clients,
            slot_budget=resolve_slot_budget(self.config, report, slot_override),
            workdir=RunWorkdir.create(self.config.work_root, self._now()),
            agent_work_dir=self.agent_work_dir,
        )
        logger.info("Work directory: %s", ctx.workdir.path)
        self.console.print(f"Available slots: [cyan]{ctx.slot_budget}[/cyan]")

        self._step(2, "TDD decomposition")
        try:
            plan = Decomposer.from_report(report, self.clients, self.config).decompose(
                task, ctx.slot_budget
            )
        except DecompositionError as exc:
            logger.error("Decomposition failed: %s", exc)
            return self._abort(ctx, "decompose", exc)
        ctx.workdir.write(DECOMPOSED, plan)
        self.console.print(
            f"Decomposed into [cyan]{plan.task_count}[/cyan] task(s) "
            f"across [cyan]{len(plan.parallel_groups)}[/cyan] group(s)"
        )

        self._step(3, "Agent mapping")
        try:
            mapping = self._map(ctx, plan)
        except Exception as exc:
            logger.exception("Agent mapping failed")
            return self._abort(ctx, "map", exc)
        ctx.workdir.write(MAPPED, mapping)

        self._step(4, "Parallel execution")
        try:
            execution = self._execute(ctx, mapping)
        except Exception as exc:
            logger.exception("Execution failed")
            return self._abort(ctx, "execute", exc)
        ctx.workdir.write(RESULTS, execution)
        self.console.print(self._render_batches(execution))

        self._step(5, "Quality gate review")
        quality = QualityGate.from_report(report, self.clients, self.config).review(execution)
        ctx.workdir.write(QUALITY, quality)
        self._report_quality(quality)

        self._step(6, "Synthesizing results")
        synthesis = Synthesizer.from_report(report, self.clients, self.config).synthesize(
            execution, quality
        )
        payload = synthesis.model_dump(mode="json", exclude_none=True)
        ctx.workdir.write(SYNTHESIS, payload)

        self.console.print(f"[bold green]Pipeline complete[/bold green] ({ctx.workdir.path})")
        return RunOutcome(
            payload=payload,
            workdir=ctx.workdir.path,
            execution=execution,
            quality=quality,
        )

    def _map(self, ctx: RunContext, plan: DecompositionPlan) -> SlotMapping:
        target = ctx.report.routing.execution_target
        catalog = AgentCatalog(self.config.agent.agents_dir)
        selector = AgentSelector(
            ctx.client_for(target), ctx.model_for(target), catalog, self.config
        )
        return SlotMapper(selector.select).map(plan, ctx.slot_budget)

    def _execute(self, ctx: RunContext, mapping: SlotMapping) -> PipelineResult:
        target = ctx.report.routing.execution_target
        client = ctx.client_for(target)
        if client is None:
            msg = "No backend available for agent execution"
            raise ConnectivityError(msg)
        tools = ToolExecutor.from_config(
            self.config,
            ctx.agent_work_dir,
            extra_roots=(ctx.agent_work_dir, ctx.workdir.path),
        )
        runtime = AgentRuntime(
            client,
            ctx.model_for(target),
            AgentCatalog(self.config.agent.agents_dir),
            tools,
            self.config,
            load_prompt("tool-instructions", self.config.prompts_dir),
            clock=self._clock,
        )
        scheduler = Scheduler(
            lambda task: runtime.run(task, ctx.agent_work_dir, ctx.workdir.outputs),
            ctx.workdir.outputs,
            output_limit_bytes=self.config.output_limit_bytes,
            on_result=self._report_task,
        )
        return scheduler.run(mapping)

    def _abort(self, ctx: RunContext, stage: str, exc: Exception) -> RunOutcome:
        record = {"error": str(exc), "stage": stage, "work_dir": str(ctx.workdir.path)}
        ctx.workdir.write(SYNTHESIS, record)
        self.console.print(f"[bold red]Pipeline aborted at {stage}:[/bold red] {exc}")
        return RunOutcome(payload=record, workdir=ctx.workdir.path, aborted=True)

    # Rendering

    def _render_probe(self, report: ProbeReport) -> None:
        for name, status in report.backends.items():
            if status.reachable:
                speed = (
                    f"~{status.tokens_per_second:.0f} t/s"
                    if status.tokens_per_second is not None
                    else "speed unknown"
                )
                self.console.print(
                    f"  {name}: [green]HEALTHY[/green] "
                    f"({status.model_id}, {status.throughput_class}, {speed})"
                )
            else:
                self.console.print(f"  {name}: [red]DOWN[/red] ({status.base_url})")
        routing = report.routing
        self.console.print(
            f"  Routing: decomposition={routing.decomposition_target} "
            f"quality={routing.quality_target}"
        )

    def _report_task(self, task: MappedTask, result: ExecutionResult) -> None:
        if result.status == "success":
            self.console.print(f"    [{task.task_id}] [green]✓ Completed[/green]")
        else:
            self.console.print(f"    [{task.task_id}] [red]✗ Failed[/red] ({result.state})")

    def _report_quality(self, quality: QualityRecord) -> None:
        score = quality.overall_score
        if quality.status == "pass":
            self.console.print(f"Quality gate: [green]PASS[/green] (score: {score})")
        elif quality.status == "fail":
            self.console.print(f"Quality gate: [red]FAIL[/red] (score: {score})")
        else:
            self.console.print(f"Quality gate: [yellow]NEEDS REVIEW[/yellow] (score: {score})")

    def _render_batches(self, execution: PipelineResult) -> Table:
        table = Table(title=f"Execution ({execution.status})")
        table.add_column("Group", style="cyan", justify="right")
        table.add_column("Description", max_width=50)
        table.add_column("Success", style="green", justify="right")
        table.add_column("Failed", style="red", justify="right")

        for batch in execution.batches:
            table.add_row(
                str(batch.group),
                batch.description,
                str(batch.success),
                str(batch.failed),
            )

        table.caption = (
            f"Total: {execution.total_success} success | {execution.total_failed} failed"
        )
        return table
