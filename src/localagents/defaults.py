"""Compiled-in default configuration values for localagents.

This module is the single source of truth for all default settings.
Other modules should import from here rather than duplicating values.
"""

from __future__ import annotations

from typing import Final

BACKEND_DEFAULTS: Final[dict[str, dict[str, int | str]]] = {
    "worker": {"host": "localhost", "port": 8081},
    "orchestrator": {"host": "localhost", "port": 8083},
}

TIMEOUT_DEFAULTS: Final[dict[str, int]] = {
    "health": 3,
    "probe": 10,
    "decompose": 60,
    "agent_call": 45,
    "agent_total": 180,
    "tool": 30,
    "select": 5,
    "generate": 30,
    "review": 60,
}

AGENT_DEFAULTS: Final[dict[str, int | float | str]] = {
    "max_iterations": 5,
    "max_retries": 2,
    "max_tokens": 4096,
    "temperature": 0.3,
    "agents_dir": "~/.claude/agents",
}

PIPELINE_DEFAULTS: Final[dict[str, int | float | str]] = {
    "default_slots": 6,
    "decompose_retries": 2,
    "gpu_threshold": 30.0,
    "output_limit_bytes": 4000,
    "review_preview_chars": 1000,
    "work_root": "/tmp",
    "prompts_dir": "",
}

TOOL_DEFAULTS: Final[dict[str, int | list[str]]] = {
    "max_read_bytes": 50_000,
    "max_entries": 100,
    "max_matches": 50,
    "allowed_roots": ["~", "/tmp"],
}

PHASE_AGENT_DEFAULTS: Final[dict[str, str]] = {
    "RED": "test-writer-agent",
    "GREEN": "code-generator-agent",
    "REFACTOR": "code-optimization-agent",
    "ANALYZE": "code-review-automation-agent",
}

FALLBACK_AGENT: Final[str] = "code-generator-agent"

# Exact names are tried in order, then the first id with the prefix.
MODEL_PREFERENCES: Final[dict[str, dict[str, list[str] | str]]] = {
    "decomposition": {
        "exact": ["agents-seed-coder", "coding-seed-coder"],
        "prefix": "agents-",
    },
    "quality": {
        "exact": ["agents-qwen3-14b", "agents-nemotron"],
        "prefix": "agents-",
    },
}

SPECIALIZED_KEYWORDS: Final[tuple[str, ...]] = (
    "blockchain",
    "kubernetes",
    "terraform",
    "ansible",
    "graphql",
    "grpc",
    "websocket",
    "mqtt",
    "kafka",
    "elasticsearch",
    "redis",
    "mongodb",
    "postgresql",
    "mysql",
    "docker",
    "nginx",
    "aws",
    "azure",
    "gcp",
    "ci/cd",
    "devops",
    "mlops",
    "data pipeline",
    "etl",
    "scraping",
    "crawling",
    "regex",
    "parsing",
    "compiler",
    "interpreter",
    "dsl",
)


_BARE_KEY_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)


def _quote_key(key: str) -> str:
    if key and all(c in _BARE_KEY_CHARS for c in key):
        return key
    return f'"{key}"'


def _format_toml_value(value: object) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, list):
        return "[" + ", ".join(_format_toml_value(v) for v in value) + "]"
    msg = f"Unsupported type: {type(value)}"
    raise TypeError(msg)


def _section_to_toml(name: str, data: dict[str, object]) -> str:
    lines = [f"[{name}]"]
    for key, value in data.items():
        lines.append(f"{_quote_key(key)} = {_format_toml_value(value)}")
    return "\n".join(lines)


def generate_toml() -> str:
    """Generate a TOML configuration string from compiled-in defaults."""
    sections = [
        _section_to_toml(f"backend.{name}", values)
        for name, values in BACKEND_DEFAULTS.items()
    ]
    sections += [
        _section_to_toml("timeout", TIMEOUT_DEFAULTS),
        _section_to_toml("agent", AGENT_DEFAULTS),
        _section_to_toml("pipeline", PIPELINE_DEFAULTS),
        _section_to_toml("tool", TOOL_DEFAULTS),
        _section_to_toml("phase_agent", PHASE_AGENT_DEFAULTS),
    ]
    return "\n\n".join(sections) + "\n"
