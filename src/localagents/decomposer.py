"""Turn one free-text task into a validated DecompositionPlan."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from pydantic import ValidationError

from localagents.backend import BackendClient
from localagents.config import PipelineConfig
from localagents.errors import BackendError, DecompositionError, MalformedOutputError
from localagents.extract import extract_document
from localagents.models import (
    DecompositionPlan,
    Message,
    ProbeReport,
    RouteTarget,
    ThroughputClass,
)
from localagents.prompts import load_prompt

logger = logging.getLogger(__name__)

FULL_MAX_TOKENS = 4096
# A CPU-bound fallback backend gets a shorter budget so decomposition stays within its timeout.
FALLBACK_MAX_TOKENS = 1500
TEMPERATURE = 0.3


def build_user_message(task: str, slot_budget: int) -> str:
    return (
        "RESPOND ONLY WITH VALID JSON. No markdown, no explanation, just the JSON object.\n\n"
        f"Task: {task}\n\n"
        f"Available worker slots: {slot_budget}\n\n"
        "Decompose this task into atomic TDD tasks."
    )


class Decomposer:
    def __init__(
        self,
        client: BackendClient | None,
        model: str,
        config: PipelineConfig,
        *,
        target: RouteTarget = "worker",
        fallback: bool = False,
        throughput_class: ThroughputClass = "unknown",
    ) -> None:
        self.client = client
        self.model = model
        self.config = config
        self.target = target
        self.system_prompt = load_prompt("decompose", config.prompts_dir)
        if fallback and throughput_class == "cpu":
            self.max_tokens = FALLBACK_MAX_TOKENS
        else:
            self.max_tokens = FULL_MAX_TOKENS

    @classmethod
    def from_report(
        cls,
        report: ProbeReport,
        clients: Mapping[str, BackendClient],
        config: PipelineConfig,
    ) -> Decomposer:
        target = report.routing.decomposition_target
        if target == "none":
            return cls(None, "", config, target="none")
        status = report.backends[target]
        return cls(
            clients[target],
            status.model_id or target,
            config,
            target=target,
            fallback=target != "worker",
            throughput_class=status.throughput_class,
        )

    def decompose(self, task: str, slot_budget: int) -> DecompositionPlan:
        """Request, extract and validate a plan, re-prompting with the error on failure."""
        if self.target == "none" or self.client is None:
            raise DecompositionError("No LLM server available")

        logger.info(
            "[ROUTING] Using %s for decomposition (model: %s, max_tokens: %d)",
            self.target,
            self.model,
            self.max_tokens,
        )
        messages = [
            Message(role="system", content=self.system_prompt),
            Message(role="user", content=build_user_message(task, slot_budget)),
        ]
        attempts = 1 + self.config.decompose_retries
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = self.client.chat(
                    model=self.model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    temperature=TEMPERATURE,
                    timeout=self.config.timeouts.decompose,
                )
            except BackendError as exc:
                logger.warning("Decomposition attempt %d/%d failed: %s", attempt, attempts, exc)
                last_error = exc
                continue

            try:
                document = extract_document(response, key="parallel_groups")
                plan = DecompositionPlan.model_validate(
                    {**document.data, "recovered": document.recovered}
                )
            except MalformedOutputError as exc:
                last_error = exc
            except ValidationError as exc:
                last_error = MalformedOutputError(
                    f"Plan failed validation: {exc}", raw_content=response.content
                )
            else:
                logger.info(
                    "Decomposed into %d task(s) across %d group(s)%s",
                    plan.task_count,
                    len(plan.parallel_groups),
                    " (recovered)" if plan.recovered else "",
                )
                return plan

            logger.warning(
                "Decomposition attempt %d/%d invalid: %s", attempt, attempts, last_error
            )
            if response.content.strip():
                messages.append(Message(role="assistant", content=response.content))
            messages.append(
                Message(
                    role="user",
                    content=(
                        f"Your output had a validation error: {last_error}. "
                        "Respond again with ONLY the corrected JSON object."
                    ),
                )
            )

        msg = f"Failed to decompose task after {attempts} attempt(s): {last_error}"
        raise DecompositionError(msg) from last_error
