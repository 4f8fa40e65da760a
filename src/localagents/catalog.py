"""On-disk catalog of agent specialization documents.

Each agent is one ``<name>.md`` file in the agents directory. Optional YAML
front matter between ``---`` markers is metadata; the rest is the system
prompt handed to the agent.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Agents whose definitions are shown as format examples when generating new ones.
EXAMPLE_AGENTS = ("code-generator-agent", "test-writer-agent", "security-compliance-agent")

_DESCRIPTION_CHARS = 100
_EXAMPLE_LINES = 50


def split_front_matter(text: str) -> tuple[dict[str, str], str]:
    """Return ``(metadata, body)``; metadata holds simple ``key: value`` pairs."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text
    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            break
    else:
        return {}, text
    meta: dict[str, str] = {}
    for line in lines[1:idx]:
        key, sep, value = line.partition(":")
        if sep and key.strip() and not line.startswith((" ", "\t")):
            meta[key.strip()] = value.strip().strip("\"'")
    return meta, "\n".join(lines[idx + 1 :]).lstrip("\n")


def first_description_line(body: str) -> str:
    for line in body.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith(("#", "<!--")):
            return stripped[:_DESCRIPTION_CHARS]
    return ""


@dataclass(slots=True)
class AgentDefinition:
    name: str
    path: Path
    prompt: str
    description: str


class AgentCatalog:
    """Read-mostly view of the agents directory. Registration is serialized."""

    def __init__(self, agents_dir: Path) -> None:
        self.agents_dir = agents_dir
        self._lock = threading.Lock()

    def names(self) -> list[str]:
        if not self.agents_dir.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.agents_dir.glob("*.md")
            if path.is_file() and ":" not in path.name
        )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and (self.agents_dir / f"{name}.md").is_file()

    def resolve_name(self, name: str) -> str | None:
        """Catalog spelling of *name*, trying the hyphen then the underscore form."""
        for candidate in (name, name.replace("-", "_")):
            if candidate in self:
                return candidate
        return None

    def get(self, name: str) -> AgentDefinition | None:
        path = self.agents_dir / f"{name}.md"
        if not path.is_file():
            return None
        meta, body = split_front_matter(path.read_text())
        description = meta.get("description") or first_description_line(body)
        return AgentDefinition(
            name=name,
            path=path,
            prompt=body.strip(),
            description=description[:_DESCRIPTION_CHARS],
        )

    def listing(self) -> str:
        """One ``- name: description`` line per agent."""
        lines = []
        for name in self.names():
            definition = self.get(name)
            if definition is not None:
                lines.append(f"- {name}: {definition.description}")
        return "\n".join(lines)

    def examples(self) -> str:
        parts = []
        for name in EXAMPLE_AGENTS:
            path = self.agents_dir / f"{name}.md"
            if path.is_file():
                head = "\n".join(path.read_text().splitlines()[:_EXAMPLE_LINES])
                parts.append(f"---\nExample: {name}.md\n{head}")
        return "\n".join(parts)

    def register(
        self,
        name: str,
        content: str,
        *,
        task: str = "",
        now: datetime | None = None,
    ) -> Path:
        """Write a generated agent. An existing definition is never overwritten."""
        stamp = (now or datetime.now().astimezone()).isoformat(timespec="seconds")
        path = self.agents_dir / f"{name}.md"
        with self._lock:
            if path.is_file():
                logger.info("Agent %s already registered at %s", name, path)
                return path
            self.agents_dir.mkdir(parents=True, exist_ok=True)
            task_line = " ".join(task.split())
            path.write_text(
                f"<!-- Auto-generated agent: {stamp} -->\n"
                f"<!-- Task: {task_line} -->\n\n"
                f"{content.strip()}\n"
            )
        logger.info("Registered generated agent %s at %s", name, path)
        return path
