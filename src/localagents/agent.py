"""Per-task ReAct loop: model call, optional tool call, observation, repeat."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from localagents.backend import BackendClient
from localagents.catalog import AgentCatalog
from localagents.config import PipelineConfig
from localagents.errors import (
    AgentEmptyResponseError,
    AgentMaxIterationsError,
    AgentNotFoundError,
    AgentTimeoutError,
    BackendError,
    ToolCallParseError,
)
from localagents.models import MappedTask, Message, Subtask
from localagents.tools import ToolExecutor

logger = logging.getLogger(__name__)

STOP_SEQUENCES = ("Observation:", "\nObservation:")
EMPTY_RESPONSE_FEEDBACK = (
    "Your previous response was empty. "
    "Please try again and provide a complete response."
)

_TOOL_TAG = re.compile(r"<tool>(.*?)</tool>", re.DOTALL)
_ARGS_TAG = re.compile(r"<args>(.*?)</args>", re.DOTALL)


class AgentState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"
    TIMEOUT = "timeout"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"


@dataclass(slots=True)
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


def parse_tool_call(content: str) -> ToolCall | None:
    """Parse ``<tool>NAME</tool><args>{...}</args>``.

    Returns None when the response carries no ``<tool>`` tag (a final
    answer). Raises ToolCallParseError when the markup is present but broken.
    """
    if "<tool>" not in content:
        return None
    tool_match = _TOOL_TAG.search(content)
    if tool_match is None:
        raise ToolCallParseError("Unclosed <tool> tag")
    name = tool_match.group(1).strip()
    if not name or any(ch.isspace() for ch in name):
        raise ToolCallParseError(f"Invalid tool name: {name!r}")

    args_match = _ARGS_TAG.search(content, tool_match.end())
    if args_match is None:
        raise ToolCallParseError(f"Missing <args>...</args> block for tool {name}")
    raw_args = args_match.group(1).strip()
    if not raw_args:
        return ToolCall(name=name)
    try:
        args = json.loads(raw_args)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"Invalid JSON in <args> for tool {name}: {exc}") from exc
    if not isinstance(args, dict):
        raise ToolCallParseError(f"<args> for tool {name} must be a JSON object")
    return ToolCall(name=name, args=args)


class ConversationHistory:
    """Append-only message list for one agent invocation."""

    def __init__(self, system: str, user: str) -> None:
        self._messages: list[Message] = [
            Message(role="system", content=system),
            Message(role="user", content=user),
        ]

    def append(self, role: str, content: str) -> None:
        self._messages.append(Message(role=role, content=content))  # type: ignore[arg-type]

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


@dataclass(slots=True)
class AgentOutcome:
    state: AgentState
    output: str
    iterations: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is AgentState.FINAL_ANSWER


def build_task_prompt(subtask: Subtask, work_dir: Path, output_dir: Path) -> str:
    lines = [
        f"[Phase: {subtask.phase.value}] [WorkDir: {work_dir}] {subtask.description}",
        "",
        f"IMPORTANT: Use absolute paths starting with {work_dir} for all file operations.",
        f"Output directory: {output_dir}",
    ]
    if subtask.files:
        lines.append("Relevant files: " + ", ".join(subtask.files))
    return "\n".join(lines)


class AgentRuntime:
    def __init__(
        self,
        client: BackendClient,
        model: str,
        catalog: AgentCatalog,
        tools: ToolExecutor,
        config: PipelineConfig,
        tool_instructions: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.model = model
        self.catalog = catalog
        self.tools = tools
        self.config = config
        self.tool_instructions = tool_instructions
        self._clock = clock

    def run(self, task: MappedTask, work_dir: Path, output_dir: Path) -> AgentOutcome:
        """Run one mapped task to a terminal state and persist its output text."""
        logger.info("[%s] Starting agent %s (%s)", task.task_id, task.agent, task.phase.value)
        definition = self.catalog.get(task.agent)
        if definition is None:
            error = AgentNotFoundError(f"Agent file not found: {task.agent}")
            outcome = AgentOutcome(
                state=AgentState.FAILED, output=f"ERROR: {error}", error=str(error)
            )
        else:
            history = ConversationHistory(
                system=f"{definition.prompt}\n\n{self.tool_instructions}",
                user=build_task_prompt(task.subtask, work_dir, output_dir),
            )
            outcome = self._loop(task, history)

        logger.info(
            "[%s] Agent %s finished: %s after %d iteration(s)",
            task.task_id,
            task.agent,
            outcome.state.value,
            outcome.iterations,
        )
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / f"{task.task_id}.txt").write_text(outcome.output)
        return outcome

    def _loop(self, task: MappedTask, history: ConversationHistory) -> AgentOutcome:
        limits = self.config.agent
        deadline = self._clock() + self.config.timeouts.agent_total
        iteration = 0
        last_response = ""
        try:
            for iteration in range(1, limits.max_iterations + 1):
                self._check_deadline(deadline, last_response)
                logger.debug("[%s] Iteration %d/%d", task.task_id, iteration, limits.max_iterations)
                content = self._call_with_retry(history, deadline)
                last_response = content

                try:
                    call = parse_tool_call(content)
                except ToolCallParseError as exc:
                    logger.info("[%s] Malformed tool call: %s", task.task_id, exc)
                    history.append("assistant", content)
                    history.append("user", f"Observation: ERROR: {exc}")
                    continue

                if call is None:
                    return AgentOutcome(
                        state=AgentState.FINAL_ANSWER, output=content, iterations=iteration
                    )

                logger.info("[%s] Tool call: %s", task.task_id, call.name)
                result = self.tools.execute(call.name, call.args)
                history.append("assistant", content)
                history.append("user", f"Observation: {result.observation}")

            raise AgentMaxIterationsError(
                f"Agent did not complete within {limits.max_iterations} iterations",
                last_response=last_response,
            )
        except AgentMaxIterationsError as exc:
            logger.warning("[%s] %s", task.task_id, exc)
            output = (
                f"WARNING: Agent did not complete within {limits.max_iterations} "
                f"iterations. Last response:\n{exc.last_response}"
            )
            return AgentOutcome(
                state=AgentState.MAX_ITERATIONS,
                output=output,
                iterations=iteration,
                error=str(exc),
            )
        except AgentTimeoutError as exc:
            logger.warning("[%s] %s", task.task_id, exc)
            return AgentOutcome(
                state=AgentState.TIMEOUT,
                output=f"ERROR: {exc}",
                iterations=iteration,
                error=str(exc),
            )
        except AgentEmptyResponseError as exc:
            logger.warning("[%s] %s", task.task_id, exc)
            return AgentOutcome(
                state=AgentState.FAILED,
                output="ERROR: LLM returned empty response after retries",
                iterations=iteration,
                error=str(exc),
            )

    def _check_deadline(self, deadline: float, last_response: str = "") -> None:
        if self._clock() >= deadline:
            raise AgentTimeoutError(
                "Total execution time exceeded "
                f"{self.config.timeouts.agent_total:g} seconds",
                last_response=last_response,
            )

    def _call_with_retry(self, history: ConversationHistory, deadline: float) -> str:
        limits = self.config.agent
        attempts = 1 + limits.max_retries
        for attempt in range(1, attempts + 1):
            self._check_deadline(deadline)
            remaining = deadline - self._clock()
            try:
                response = self.client.chat(
                    model=self.model,
                    messages=history.messages,
                    max_tokens=limits.max_tokens,
                    temperature=limits.temperature,
                    stop=STOP_SEQUENCES,
                    timeout=min(self.config.timeouts.agent_call, max(remaining, 0.001)),
                )
            except BackendError as exc:
                logger.warning("Agent call failed: %s", exc)
                content = ""
            else:
                content = response.content
            # A reply that lands after the deadline is discarded.
            self._check_deadline(deadline)

            if content.strip():
                return content
            if attempt < attempts:
                logger.info("Retry %d/%d: empty response from LLM", attempt, limits.max_retries)
                history.append("user", EMPTY_RESPONSE_FEEDBACK)

        raise AgentEmptyResponseError(
            f"Empty response from LLM after {limits.max_retries} retries"
        )
