"""Packaged prompt templates.

Each template can be replaced by ``<prompts_dir>/<name>.txt``; the packaged
text is only a default.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

logger = logging.getLogger(__name__)

DECOMPOSE: Final[str] = """\
You are a TDD task decomposer. Split the task into atomic subtasks that
follow the RED -> GREEN -> REFACTOR cycle, plus ANALYZE tasks for review.

Group subtasks that can run at the same time into parallel groups. Groups
run strictly in order; tasks inside one group run concurrently, so they must
not depend on each other. Keep each group no larger than the number of
available worker slots.

Respond with a single JSON object and nothing else:
{
  "parallel_groups": [
    {
      "group": 1,
      "description": "short description of the group",
      "tasks": [
        {
          "id": "1.1",
          "phase": "RED",
          "task": "what to do, in one or two sentences",
          "agent": "test-writer-agent",
          "files": ["relative/path/hint.py"]
        }
      ]
    }
  ]
}

Rules: every id is unique across the whole plan; phase is one of RED,
GREEN, REFACTOR, ANALYZE; every group has at least one task.
"""

TOOL_INSTRUCTIONS: Final[str] = """\
## Tools

You can use these tools to inspect and change files:

- read_file: {"path": "<absolute path>"}
- write_file: {"path": "<absolute path>", "content": "<text>"}
- append_file: {"path": "<absolute path>", "content": "<text>"}
- list_dir: {"path": "<absolute path>"}
- search: {"pattern": "<regular expression>", "path": "<absolute path>"}

To call a tool, reply with exactly one call and then stop:

<tool>read_file</tool>
<args>{"path": "/absolute/path/file.py"}</args>

The result comes back as a message starting with "Observation:". Use one
tool per reply. When the task is done, reply with your final answer and do
not include any <tool> tag.
"""

QUALITY_REVIEW: Final[str] = """\
You are a quality reviewer for work produced by a team of coding agents.
Review the execution results and respond with a single JSON object:
{
  "status": "pass" | "fail" | "needs_review",
  "overall_score": 0-100,
  "task_reviews": [{"task_id": "...", "score": 0-100, "issues": ["..."]}],
  "issues": ["..."],
  "recommendations": ["..."]
}
Respond only with JSON.
"""

SYNTHESIZE: Final[str] = """\
You combine execution results and a quality review into a final report.
Respond with a single JSON object:
{
  "summary": "what was accomplished",
  "status": "complete" | "partial" | "failed",
  "deliverables": ["..."],
  "issues": ["..."],
  "next_steps": ["..."]
}
Respond only with JSON.
"""

_PACKAGED: Final[dict[str, str]] = {
    "decompose": DECOMPOSE,
    "tool-instructions": TOOL_INSTRUCTIONS,
    "quality-review": QUALITY_REVIEW,
    "synthesize": SYNTHESIZE,
}


def load_prompt(name: str, prompts_dir: Path | None = None) -> str:
    """Return the prompt text for *name*, preferring an on-disk override."""
    if name not in _PACKAGED:
        msg = f"Unknown prompt: {name}"
        raise KeyError(msg)
    if prompts_dir is not None:
        path = prompts_dir / f"{name}.txt"
        if path.is_file():
            logger.debug("Using prompt override %s", path)
            return path.read_text()
    return _PACKAGED[name]
