"""A scripted llama.cpp server behind httpx.MockTransport."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from localagents.backend import BackendClient
from localagents.config import PipelineConfig, default_config

PRIME_PLAN: dict[str, Any] = {
    "parallel_groups": [
        {
            "group": 1,
            "description": "Write failing tests",
            "tasks": [
                {"id": "1.1", "phase": "RED", "task": "Write tests for is_prime on 0..10"},
                {"id": "1.2", "phase": "RED", "task": "Write tests for negative input"},
            ],
        },
        {
            "group": 2,
            "description": "Implement",
            "tasks": [{"id": "2.1", "phase": "GREEN", "task": "Implement is_prime in prime.py"}],
        },
        {
            "group": 3,
            "description": "Polish",
            "tasks": [
                {"id": "3.1", "phase": "REFACTOR", "task": "Simplify the trial division loop"},
                {"id": "3.2", "phase": "ANALYZE", "task": "Review edge cases"},
            ],
        },
    ]
}

REVIEW: dict[str, Any] = {
    "status": "pass",
    "overall_score": 88,
    "task_reviews": [],
    "issues": [],
    "recommendations": ["Add a property-based test"],
}

SYNTHESIS: dict[str, Any] = {
    "summary": "Primality checker implemented with tests",
    "status": "complete",
    "deliverables": ["prime.py", "test_prime.py"],
    "issues": [],
    "next_steps": [],
}

Responder = Callable[[dict[str, Any]], str]


def _completion(content: str, tokens: int = 40) -> dict[str, Any]:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"completion_tokens": tokens},
    }


def classify_request(payload: dict[str, Any]) -> str:
    """Name the pipeline stage a chat request comes from."""
    messages = payload.get("messages") or []
    first = messages[0]["content"] if messages else ""
    if first.startswith("You are a TDD task decomposer"):
        return "decompose"
    if first.startswith("You are a quality reviewer"):
        return "review"
    if first.startswith("You combine execution results"):
        return "synthesize"
    if first.startswith("Select the BEST agent"):
        return "select"
    if first.startswith("Suggest a short"):
        return "name"
    if first.startswith("Create a new agent definition"):
        return "define"
    if "## Tools" in first:
        return "agent"
    return "probe"


@dataclass
class FakeLlamaServer:
    """Answers /health, /v1/models, /slots and chat completions from a script."""

    models: list[str] = field(default_factory=lambda: ["agents-seed-coder"])
    idle_slots: int = 2
    healthy: bool = True
    responders: dict[str, Responder] = field(default_factory=dict)
    requests: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def stage_calls(self, stage: str) -> list[dict[str, Any]]:
        with self._lock:
            return [payload for name, payload in self.requests if name == stage]

    def _chat(self, payload: dict[str, Any]) -> str:
        stage = classify_request(payload)
        with self._lock:
            self.requests.append((stage, payload))
        responder = self.responders.get(stage)
        if responder is not None:
            return responder(payload)
        defaults = {
            "probe": "Hello! How can I help you today?",
            "decompose": json.dumps(PRIME_PLAN),
            "select": "none",
            "agent": "Task complete.",
            "review": json.dumps(REVIEW),
            "synthesize": json.dumps(SYNTHESIS),
        }
        return defaults.get(stage, "")

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.healthy:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/v1/models":
            return httpx.Response(200, json={"data": [{"id": m} for m in self.models]})
        if path == "/slots":
            slots = [{"id": i, "is_processing": i >= self.idle_slots} for i in range(4)]
            return httpx.Response(200, json=slots)
        if path == "/v1/chat/completions":
            payload = json.loads(request.content)
            return httpx.Response(200, json=_completion(self._chat(payload)))
        return httpx.Response(404)

    def client(self, base_url: str) -> BackendClient:
        return BackendClient(base_url, transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def worker() -> FakeLlamaServer:
    return FakeLlamaServer()


@pytest.fixture()
def orchestrator() -> FakeLlamaServer:
    return FakeLlamaServer(models=["agents-qwen3-14b"], idle_slots=1)


@pytest.fixture()
def agents_dir(tmp_path: Path) -> Path:
    d = tmp_path / "agents"
    d.mkdir()
    for name, title in (
        ("test-writer-agent", "Test Writer"),
        ("code-generator-agent", "Code Generator"),
        ("code-optimization-agent", "Code Optimizer"),
        ("code-review-automation-agent", "Code Reviewer"),
    ):
        (d / f"{name}.md").write_text(f"# {title}\n\nYou are the {title.lower()}.\n")
    return d


@pytest.fixture()
def config(tmp_path: Path, agents_dir: Path) -> PipelineConfig:
    cfg = default_config()
    cfg.work_root = tmp_path / "runs"
    cfg.agent.agents_dir = agents_dir
    cfg.tools.allowed_roots = [tmp_path]
    return cfg


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture()
def prime_plan() -> dict[str, Any]:
    return PRIME_PLAN
