from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from localagents.models import Subtask
from localagents.workdir import DECOMPOSED, RunWorkdir

NOW = datetime(2026, 3, 4, 5, 6, 7)


class TestRunWorkdir:
    def test_create_layout(self, tmp_path: Path):
        workdir = RunWorkdir.create(tmp_path, NOW)
        assert workdir.path == tmp_path / "local-agents-20260304_050607"
        assert workdir.outputs.is_dir()

    def test_same_second_gets_suffix(self, tmp_path: Path):
        first = RunWorkdir.create(tmp_path, NOW)
        second = RunWorkdir.create(tmp_path, NOW)
        assert first.path != second.path
        assert second.path.name == "local-agents-20260304_050607_1"

    def test_write_model_uses_wire_names(self, tmp_path: Path):
        workdir = RunWorkdir.create(tmp_path, NOW)
        sub = Subtask.model_validate({"id": 1, "phase": "red", "task": "write tests"})
        workdir.write(DECOMPOSED, sub)
        data = workdir.read(DECOMPOSED)
        assert data["task"] == "write tests"
        assert data["id"] == "1"
        assert data["phase"] == "RED"

    def test_write_dict(self, tmp_path: Path):
        workdir = RunWorkdir.create(tmp_path, NOW)
        path = workdir.write("synthesis.json", {"error": "x", "stage": "decompose"})
        assert json.loads(path.read_text()) == {"error": "x", "stage": "decompose"}
