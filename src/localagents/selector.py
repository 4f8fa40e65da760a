"""Choose (or create) the agent that runs each subtask.

Order: ask the execution backend to pick from the catalog, then generate a
specialist when the description names a specialized domain, then fall back
to the phase default.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from localagents.backend import BackendClient
from localagents.catalog import AgentCatalog
from localagents.config import PipelineConfig, resolve_phase_agent
from localagents.defaults import SPECIALIZED_KEYWORDS
from localagents.errors import BackendError
from localagents.models import Message, Subtask

logger = logging.getLogger(__name__)

MIN_DEFINITION_CHARS = 100

_AGENT_TOKEN = re.compile(r"[a-z0-9_-]+")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def normalize_agent_name(raw: str) -> str | None:
    """First ``[a-z0-9_-]+`` token of a reply, with an ``-agent`` suffix."""
    match = _AGENT_TOKEN.match(raw.strip().lower())
    if match is None:
        return None
    name = match.group(0).strip("-_")
    if not name:
        return None
    if not name.endswith(("-agent", "_agent")):
        name = f"{name}-agent"
    return name


def sanitize_generated_name(raw: str) -> str | None:
    """Lowercase-hyphen agent name from free text, or None if nothing is left."""
    collapsed = "-".join(raw.strip().lower().split())
    name = _UNSAFE_NAME_CHARS.sub("", collapsed).strip("-")
    if not name:
        return None
    if not name.endswith("-agent"):
        name = f"{name}-agent"
    return name


def needs_specialist(description: str, keywords: Iterable[str] = SPECIALIZED_KEYWORDS) -> bool:
    text = description.lower()
    return any(keyword in text for keyword in keywords)


def _selection_prompt(subtask: Subtask, listing: str) -> str:
    return (
        "Select the BEST agent for this task. "
        "Reply with ONLY the agent name, nothing else.\n\n"
        f"Task: {subtask.description}\n"
        f"Phase: {subtask.phase.value}\n\n"
        f"Available agents:\n{listing}\n\n"
        "Agent name:"
    )


def _name_prompt(description: str) -> str:
    return (
        "Suggest a short, descriptive agent name for this task. "
        "Use lowercase with hyphens. End with -agent. "
        "Reply with ONLY the name, nothing else.\n\n"
        f"Task: {description}\n\n"
        "Agent name:"
    )


def _definition_prompt(description: str, name: str, examples: str) -> str:
    return (
        "Create a new agent definition for the following task. "
        "Follow the example format exactly.\n\n"
        f"Task requiring new agent: {description}\n"
        f"Agent name: {name}\n\n"
        f"Existing agent examples for format reference:\n{examples}\n\n"
        "Generate a complete agent definition markdown file with:\n"
        "1. # Agent Name header\n"
        "2. Clear description of capabilities\n"
        "3. ## Tools section listing relevant tools\n"
        "4. ## Personality section with communication style\n"
        "5. ## Instructions section with step-by-step guidance\n\n"
        "Output ONLY the markdown content, no explanations:"
    )


class AgentSelector:
    def __init__(
        self,
        client: BackendClient | None,
        model: str,
        catalog: AgentCatalog,
        config: PipelineConfig,
    ) -> None:
        self.client = client
        self.model = model
        self.catalog = catalog
        self.config = config

    def select(self, subtask: Subtask) -> str:
        default = resolve_phase_agent(self.config, subtask.phase.value)
        if not subtask.description.strip():
            return default

        chosen = self._select_with_llm(subtask)
        if chosen is not None:
            logger.debug("[%s] Selected agent %s", subtask.id, chosen)
            return chosen

        if needs_specialist(subtask.description):
            generated = self.generate(subtask.description)
            if generated is not None:
                return generated

        logger.debug("[%s] Using phase default %s", subtask.id, default)
        return default

    def _ask(self, prompt: str, *, max_tokens: int, temperature: float, timeout: float) -> str:
        if self.client is None:
            return ""
        try:
            response = self.client.chat(
                model=self.model,
                messages=[Message(role="user", content=prompt)],
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=timeout,
            )
        except BackendError as exc:
            logger.debug("Selector call failed: %s", exc)
            return ""
        return response.content

    def _select_with_llm(self, subtask: Subtask) -> str | None:
        listing = self.catalog.listing()
        if not listing:
            return None
        reply = self._ask(
            _selection_prompt(subtask, listing),
            max_tokens=50,
            temperature=0.1,
            timeout=self.config.timeouts.select,
        )
        name = normalize_agent_name(reply)
        if name is None:
            return None
        return self.catalog.resolve_name(name)

    def generate(self, description: str) -> str | None:
        """Create and register a specialist agent; returns its name or None."""
        reply = self._ask(
            _name_prompt(description),
            max_tokens=30,
            temperature=0.3,
            timeout=self.config.timeouts.generate,
        )
        name = sanitize_generated_name(reply)
        if name is None:
            return None
        if name in self.catalog:
            return name

        content = self._ask(
            _definition_prompt(description, name, self.catalog.examples()),
            max_tokens=2000,
            temperature=0.4,
            timeout=self.config.timeouts.generate,
        )
        if len(content.strip()) < MIN_DEFINITION_CHARS:
            logger.warning("Failed to generate agent content for %s", name)
            return None

        self.catalog.register(name, content, task=description)
        logger.info("[GENERATED] Created new agent: %s", name)
        return name
