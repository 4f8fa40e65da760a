from __future__ import annotations

from pathlib import Path

from localagents.config import (
    PipelineConfig,
    default_config,
    init_config,
    load_config,
    resolve_phase_agent,
)
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


class TestLoadConfigDefaults:
    def test_returns_backend_defaults_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert set(cfg.backends) == set(BACKEND_DEFAULTS)
        assert cfg.backends["worker"].port == BACKEND_DEFAULTS["worker"]["port"]
        assert cfg.backends["worker"].base_url == "http://localhost:8081"
        assert cfg.backends["orchestrator"].base_url == "http://localhost:8083"

    def test_returns_timeout_defaults_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert cfg.timeouts.agent_total == TIMEOUT_DEFAULTS["agent_total"]
        assert cfg.timeouts.tool == TIMEOUT_DEFAULTS["tool"]
        assert isinstance(cfg.timeouts.health, float)

    def test_returns_agent_defaults_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert cfg.agent.max_iterations == AGENT_DEFAULTS["max_iterations"]
        assert cfg.agent.max_retries == AGENT_DEFAULTS["max_retries"]
        assert cfg.agent.agents_dir == Path("~/.claude/agents").expanduser()

    def test_returns_pipeline_defaults_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert cfg.default_slots == PIPELINE_DEFAULTS["default_slots"]
        assert cfg.output_limit_bytes == PIPELINE_DEFAULTS["output_limit_bytes"]
        assert cfg.work_root == Path("/tmp")
        assert cfg.prompts_dir is None

    def test_returns_tool_defaults_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert cfg.tools.max_read_bytes == TOOL_DEFAULTS["max_read_bytes"]
        assert cfg.tools.allowed_roots == [Path.home(), Path("/tmp")]

    def test_returns_phase_agents_when_no_toml(self, tmp_path: Path):
        cfg = load_config(tmp_path)
        assert cfg.phase_agents == PHASE_AGENT_DEFAULTS

    def test_default_config_matches_missing_file(self, tmp_path: Path):
        assert default_config() == load_config(tmp_path)


class TestLoadConfigPartialOverrides:
    def _write_toml(self, tmp_path: Path, content: str) -> None:
        d = tmp_path / ".localagents"
        d.mkdir()
        (d / "localagents.toml").write_text(content)

    def test_overrides_backend_port_only(self, tmp_path: Path):
        self._write_toml(tmp_path, "[backend.worker]\nport = 9000\n")
        cfg = load_config(tmp_path)
        assert cfg.backends["worker"].port == 9000
        assert cfg.backends["worker"].host == "localhost"
        assert cfg.backends["orchestrator"].port == 8083

    def test_overrides_single_timeout(self, tmp_path: Path):
        self._write_toml(tmp_path, "[timeout]\nagent_total = 600\n")
        cfg = load_config(tmp_path)
        assert cfg.timeouts.agent_total == 600.0
        assert cfg.timeouts.agent_call == TIMEOUT_DEFAULTS["agent_call"]

    def test_overrides_pipeline_paths_expand_user(self, tmp_path: Path):
        self._write_toml(
            tmp_path,
            '[pipeline]\nwork_root = "~/runs"\nprompts_dir = "~/prompts"\n',
        )
        cfg = load_config(tmp_path)
        assert cfg.work_root == Path.home() / "runs"
        assert cfg.prompts_dir == Path.home() / "prompts"

    def test_phase_agent_keys_are_uppercased(self, tmp_path: Path):
        self._write_toml(tmp_path, '[phase_agent]\nred = "my-tester-agent"\n')
        cfg = load_config(tmp_path)
        assert cfg.phase_agents["RED"] == "my-tester-agent"
        assert cfg.phase_agents["GREEN"] == PHASE_AGENT_DEFAULTS["GREEN"]

    def test_sections_not_overridden_keep_defaults(self, tmp_path: Path):
        self._write_toml(tmp_path, "[agent]\nmax_iterations = 8\n")
        cfg = load_config(tmp_path)
        assert cfg.agent.max_iterations == 8
        assert cfg.default_slots == PIPELINE_DEFAULTS["default_slots"]
        assert cfg.phase_agents == PHASE_AGENT_DEFAULTS


class TestLoadConfigCorruptToml:
    def test_corrupt_toml_returns_defaults(self, tmp_path: Path, capsys):
        d = tmp_path / ".localagents"
        d.mkdir()
        (d / "localagents.toml").write_text("{{{{not valid toml!!!!")
        cfg = load_config(tmp_path)
        assert cfg.default_slots == PIPELINE_DEFAULTS["default_slots"]
        captured = capsys.readouterr()
        assert "Warning" in captured.err

    def test_binary_garbage_returns_defaults(self, tmp_path: Path, capsys):
        d = tmp_path / ".localagents"
        d.mkdir()
        (d / "localagents.toml").write_bytes(b"\x80\x81\x82\x83")
        cfg = load_config(tmp_path)
        assert cfg.phase_agents == PHASE_AGENT_DEFAULTS
        captured = capsys.readouterr()
        assert "Warning" in captured.err


class TestInitConfig:
    def test_creates_config_file(self, tmp_path: Path):
        path = init_config(tmp_path)
        assert path.exists()
        assert path.name == "localagents.toml"
        assert path.read_text() == generate_toml()

    def test_backs_up_existing_file(self, tmp_path: Path):
        d = tmp_path / ".localagents"
        d.mkdir()
        original_content = "# old config\n"
        (d / "localagents.toml").write_text(original_content)

        init_config(tmp_path)

        backup = d / "localagents.toml.bak"
        assert backup.exists()
        assert backup.read_text() == original_content
        assert (d / "localagents.toml").read_text() == generate_toml()

    def test_generated_file_loads_back_to_defaults(self, tmp_path: Path):
        init_config(tmp_path)
        assert load_config(tmp_path) == default_config()


class TestResolvePhaseAgent:
    def _config(self) -> PipelineConfig:
        return default_config()

    def test_exact_phase(self):
        assert resolve_phase_agent(self._config(), "RED") == "test-writer-agent"
        assert resolve_phase_agent(self._config(), "refactor") == "code-optimization-agent"

    def test_review_alias_maps_to_analyze(self):
        assert resolve_phase_agent(self._config(), "REVIEW") == "code-review-automation-agent"

    def test_unknown_phase_falls_back(self):
        assert resolve_phase_agent(self._config(), "DOCS") == FALLBACK_AGENT

    def test_custom_mapping(self):
        cfg = self._config()
        cfg.phase_agents["GREEN"] = "rust-coder-agent"
        assert resolve_phase_agent(cfg, "GREEN") == "rust-coder-agent"
