"""Exception taxonomy for the pipeline.

Failures isolate to the smallest enclosing unit (call, task, batch,
pipeline). Only :class:`DecompositionError` aborts a run.
"""

from __future__ import annotations


class LocalAgentsError(Exception):
    """Base class for all localagents errors."""


class BackendError(LocalAgentsError):
    """A single request to an inference backend failed."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")


class ConnectivityError(LocalAgentsError):
    """No reachable backend for a required role."""


class DecompositionError(ConnectivityError):
    """The task could not be decomposed into a valid plan."""


class MalformedOutputError(LocalAgentsError):
    """Structured extraction and repair were exhausted."""

    def __init__(self, message: str, raw_content: str = "") -> None:
        self.raw_content = raw_content
        super().__init__(message)


class ToolError(LocalAgentsError):
    """A tool invocation failed; surfaced to the agent as an observation."""


class ToolAccessError(ToolError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("Access denied - path not in allowed directories")


class ToolTimeoutError(ToolError):
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"Tool execution timed out after {seconds:g} seconds")


class ToolCallParseError(LocalAgentsError):
    """Tool-call markup was present but did not follow the grammar."""


class AgentError(LocalAgentsError):
    """Terminal failure of one agent task."""

    def __init__(self, message: str, last_response: str = "") -> None:
        self.last_response = last_response
        super().__init__(message)


class AgentNotFoundError(AgentError):
    pass


class AgentEmptyResponseError(AgentError):
    pass


class AgentTimeoutError(AgentError):
    pass


class AgentMaxIterationsError(AgentError):
    pass
