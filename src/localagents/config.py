from __future__ import annotations

import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from localagents.defaults import (
    AGENT_DEFAULTS,
    BACKEND_DEFAULTS,
    FALLBACK_AGENT,
    PHASE_AGENT_DEFAULTS,
    PIPELINE_DEFAULTS,
    TIMEOUT_DEFAULTS,
    TOOL_DEFAULTS,
    generate_toml,
)

CONFIG_FILENAME = "localagents.toml"
CONFIG_DIR = ".localagents"


@dataclass
class BackendConfig:
    name: str
    host: str
    port: int

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class TimeoutConfig:
    health: float
    probe: float
    decompose: float
    agent_call: float
    agent_total: float
    tool: float
    select: float
    generate: float
    review: float


@dataclass
class AgentConfig:
    max_iterations: int
    max_retries: int
    max_tokens: int
    temperature: float
    agents_dir: Path


@dataclass
class ToolConfig:
    max_read_bytes: int
    max_entries: int
    max_matches: int
    allowed_roots: list[Path]


@dataclass
class PipelineConfig:
    backends: dict[str, BackendConfig]
    timeouts: TimeoutConfig
    agent: AgentConfig
    tools: ToolConfig
    default_slots: int = 6
    decompose_retries: int = 2
    gpu_threshold: float = 30.0
    output_limit_bytes: int = 4000
    review_preview_chars: int = 1000
    work_root: Path = Path("/tmp")
    prompts_dir: Path | None = None
    phase_agents: dict[str, str] = field(
        default_factory=lambda: dict(PHASE_AGENT_DEFAULTS),
    )


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build_defaults() -> dict:
    return {
        "backend": {name: dict(values) for name, values in BACKEND_DEFAULTS.items()},
        "timeout": dict(TIMEOUT_DEFAULTS),
        "agent": dict(AGENT_DEFAULTS),
        "pipeline": dict(PIPELINE_DEFAULTS),
        "tool": dict(TOOL_DEFAULTS),
        "phase_agent": dict(PHASE_AGENT_DEFAULTS),
    }


def _path(value: str) -> Path:
    return Path(value).expanduser()


def _config_from_dict(data: dict) -> PipelineConfig:
    backends = {
        name: BackendConfig(name=name, host=str(values["host"]), port=int(values["port"]))
        for name, values in data["backend"].items()
    }
    agent_data = data["agent"]
    tool_data = data["tool"]
    pipeline_data = data["pipeline"]
    prompts_dir = pipeline_data.get("prompts_dir") or ""
    return PipelineConfig(
        backends=backends,
        timeouts=TimeoutConfig(**{k: float(v) for k, v in data["timeout"].items()}),
        agent=AgentConfig(
            max_iterations=int(agent_data["max_iterations"]),
            max_retries=int(agent_data["max_retries"]),
            max_tokens=int(agent_data["max_tokens"]),
            temperature=float(agent_data["temperature"]),
            agents_dir=_path(agent_data["agents_dir"]),
        ),
        tools=ToolConfig(
            max_read_bytes=int(tool_data["max_read_bytes"]),
            max_entries=int(tool_data["max_entries"]),
            max_matches=int(tool_data["max_matches"]),
            allowed_roots=[_path(root) for root in tool_data["allowed_roots"]],
        ),
        default_slots=int(pipeline_data["default_slots"]),
        decompose_retries=int(pipeline_data["decompose_retries"]),
        gpu_threshold=float(pipeline_data["gpu_threshold"]),
        output_limit_bytes=int(pipeline_data["output_limit_bytes"]),
        review_preview_chars=int(pipeline_data["review_preview_chars"]),
        work_root=_path(pipeline_data["work_root"]),
        prompts_dir=_path(prompts_dir) if prompts_dir else None,
        phase_agents={k.upper(): v for k, v in data["phase_agent"].items()},
    )


def default_config() -> PipelineConfig:
    """Config built purely from compiled-in defaults."""
    return _config_from_dict(_build_defaults())


def load_config(project_root: Path) -> PipelineConfig:
    """Load config: source defaults merged with .localagents/localagents.toml overrides."""
    defaults = _build_defaults()
    toml_path = project_root / CONFIG_DIR / CONFIG_FILENAME

    if not toml_path.is_file():
        return _config_from_dict(defaults)

    try:
        raw = toml_path.read_bytes()
        overrides = tomllib.loads(raw.decode())
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        print(f"Warning: failed to parse {toml_path}: {exc}", file=sys.stderr)
        return _config_from_dict(defaults)

    merged = _deep_merge(defaults, overrides)
    return _config_from_dict(merged)


def init_config(project_root: Path) -> Path:
    """Write .localagents/localagents.toml from source defaults. Backup existing."""
    config_dir = project_root / CONFIG_DIR
    config_dir.mkdir(parents=True, exist_ok=True)

    config_path = config_dir / CONFIG_FILENAME
    if config_path.exists():
        backup_path = config_path.with_suffix(".toml.bak")
        backup_path.write_text(config_path.read_text())

    config_path.write_text(generate_toml())
    return config_path


def resolve_phase_agent(config: PipelineConfig, phase: str) -> str:
    """Resolve a phase to its default agent via config.

    Exact phase, then the REVIEW alias, then fallback to the generator agent.
    """
    key = phase.strip().upper()
    if key in config.phase_agents:
        return config.phase_agents[key]
    if key == "REVIEW" and "ANALYZE" in config.phase_agents:
        return config.phase_agents["ANALYZE"]
    return FALLBACK_AGENT
