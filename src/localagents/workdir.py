"""Per-run artifact directory."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

RUN_DIR_PREFIX = "local-agents-"

DECOMPOSED = "decomposed.json"
MAPPED = "mapped.json"
RESULTS = "results.json"
QUALITY = "quality.json"
SYNTHESIS = "synthesis.json"


class RunWorkdir:
    """``<work_root>/local-agents-<YYYYmmdd_HHMMSS>`` with an ``outputs/`` subdir."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.outputs = path / "outputs"

    @classmethod
    def create(cls, work_root: Path, now: datetime | None = None) -> RunWorkdir:
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        base = work_root / f"{RUN_DIR_PREFIX}{stamp}"
        path = base
        suffix = 1
        while path.exists():
            path = base.with_name(f"{base.name}_{suffix}")
            suffix += 1
        path.mkdir(parents=True)
        workdir = cls(path)
        workdir.outputs.mkdir()
        return workdir

    def write(self, name: str, data: BaseModel | dict[str, Any]) -> Path:
        target = self.path / name
        if isinstance(data, BaseModel):
            target.write_text(data.model_dump_json(indent=2, by_alias=True))
        else:
            target.write_text(json.dumps(data, indent=2))
        return target

    def read(self, name: str) -> dict[str, Any]:
        return json.loads((self.path / name).read_text())
