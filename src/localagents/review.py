"""Quality review and final synthesis over the execution results.

Both stages degrade instead of failing: whatever the backend does, they
return a record the runner can persist.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Self

from pydantic import ValidationError

from localagents.backend import BackendClient
from localagents.config import PipelineConfig
from localagents.errors import BackendError, ConnectivityError, MalformedOutputError
from localagents.extract import ExtractedDocument, extract_document
from localagents.models import (
    Message,
    PipelineResult,
    ProbeReport,
    QualityRecord,
    RouteTarget,
    SynthesisRecord,
)
from localagents.prompts import load_prompt
from localagents.scheduler import TRUNCATION_MARKER

logger = logging.getLogger(__name__)

REVIEW_TEMPERATURE = 0.3
MAX_TOKENS_BY_TARGET: dict[str, int] = {"orchestrator": 1024, "worker": 2048}
MANUAL_REVIEW_MESSAGE = (
    "No local LLM server available. Quality review requires manual inspection."
)
SYNTHESIS_FAILED = "Synthesis failed, returning raw results"


def _preview(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def condense_results(result: PipelineResult, preview_chars: int = 1000) -> dict[str, Any]:
    """Execution results with every task output cut to a short preview."""
    return {
        "status": result.status,
        "total_success": result.total_success,
        "total_failed": result.total_failed,
        "batches": [
            {
                "group": batch.group,
                "description": batch.description,
                "success": batch.success,
                "failed": batch.failed,
                "results": [
                    {
                        "task_id": r.task_id,
                        "agent": r.agent,
                        "phase": r.phase.value,
                        "task": r.task,
                        "status": r.status,
                        "result": _preview(r.result, preview_chars),
                    }
                    for r in batch.results
                ],
            }
            for batch in result.batches
        ],
    }


def summarize_execution(result: PipelineResult) -> dict[str, Any]:
    """Per-task id, agent, task and status without outputs."""
    return {
        "status": result.status,
        "total_success": result.total_success,
        "total_failed": result.total_failed,
        "batches": [
            {
                "group": batch.group,
                "description": batch.description,
                "success": batch.success,
                "failed": batch.failed,
                "task_summaries": [
                    {
                        "task_id": r.task_id,
                        "agent": r.agent,
                        "task": r.task,
                        "status": r.status,
                    }
                    for r in batch.results
                ],
            }
            for batch in result.batches
        ],
    }


class _RoutedStage:
    """Shared plumbing for a stage that asks one routed backend for JSON."""

    prompt_name = ""
    salvage_key = ""

    def __init__(
        self,
        client: BackendClient | None,
        model: str,
        config: PipelineConfig,
        *,
        target: RouteTarget,
    ) -> None:
        self.client = client
        self.model = model
        self.config = config
        self.target = target
        self.system_prompt = load_prompt(self.prompt_name, config.prompts_dir)

    @classmethod
    def from_report(
        cls,
        report: ProbeReport,
        clients: Mapping[str, BackendClient],
        config: PipelineConfig,
    ) -> Self:
        target = report.routing.quality_target
        if target == "none":
            return cls(None, "", config, target="none")
        status = report.backends[target]
        return cls(clients[target], status.model_id or target, config, target=target)

    @property
    def available(self) -> bool:
        return self.target != "none" and self.client is not None

    def _request(self, user: str) -> ExtractedDocument:
        if self.client is None or self.target == "none":
            msg = f"No LLM server available for {self.prompt_name}"
            raise ConnectivityError(msg)
        response = self.client.chat(
            model=self.model,
            messages=[
                Message(role="system", content=self.system_prompt),
                Message(role="user", content=user),
            ],
            max_tokens=MAX_TOKENS_BY_TARGET.get(self.target, 2048),
            temperature=REVIEW_TEMPERATURE,
            timeout=self.config.timeouts.review,
        )
        return extract_document(response, key=self.salvage_key)


class QualityGate(_RoutedStage):
    prompt_name = "quality-review"
    salvage_key = "overall_score"

    def review(self, result: PipelineResult) -> QualityRecord:
        if not self.available:
            logger.warning("No LLM server available for quality review")
            return QualityRecord(
                status="manual_review_required",
                overall_score=0,
                message=MANUAL_REVIEW_MESSAGE,
                execution_summary=result.model_dump(mode="json"),
            )

        condensed = condense_results(result, self.config.review_preview_chars)
        user = (
            "Review the following execution results:\n\n"
            f"{json.dumps(condensed)}\n\n"
            "Provide a quality assessment in JSON format."
        )
        try:
            document = self._request(user)
            return QualityRecord.model_validate(
                {**document.data, "recovered": document.recovered}
            )
        except BackendError as exc:
            logger.warning("Quality review call failed: %s", exc)
            return QualityRecord(
                status="needs_review",
                overall_score=50,
                error=f"Failed to connect to LLM server: {exc}",
            )
        except MalformedOutputError as exc:
            logger.warning("Quality review unparseable: %s", exc)
            return QualityRecord(
                status="needs_review",
                overall_score=50,
                error="Failed to parse JSON from quality review",
                raw_content=exc.raw_content,
            )
        except ValidationError as exc:
            logger.warning("Quality review has unexpected shape: %s", exc)
            return QualityRecord(
                status="needs_review",
                overall_score=50,
                error=f"Invalid quality review: {exc}",
            )


class Synthesizer(_RoutedStage):
    prompt_name = "synthesize"
    salvage_key = "summary"

    def synthesize(self, result: PipelineResult, quality: QualityRecord) -> SynthesisRecord:
        if self.available:
            combined = {
                "execution": summarize_execution(result),
                "quality_review": quality.model_dump(mode="json"),
            }
            user = (
                "Synthesize the following execution results and quality review:\n\n"
                f"{json.dumps(combined)}\n\n"
                "Produce a final synthesis in JSON format."
            )
            try:
                document = self._request(user)
                return SynthesisRecord.model_validate(
                    {**document.data, "recovered": document.recovered}
                )
            except (BackendError, MalformedOutputError, ValidationError) as exc:
                logger.error("Synthesis failed: %s", exc)
        else:
            logger.error("Synthesis failed: no LLM server available")

        return SynthesisRecord(
            error=SYNTHESIS_FAILED,
            execution=result.model_dump(mode="json"),
            quality=quality.model_dump(mode="json"),
        )
