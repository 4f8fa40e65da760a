from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from localagents.catalog import AgentCatalog, first_description_line, split_front_matter

TEST_WRITER = """---
name: test-writer-agent
description: Writes failing tests first
tools: Read, Write
---

# Test Writer

You write focused pytest tests.
"""


@pytest.fixture()
def agents_dir(tmp_path: Path) -> Path:
    d = tmp_path / "agents"
    d.mkdir()
    (d / "test-writer-agent.md").write_text(TEST_WRITER)
    (d / "code_generator_agent.md").write_text("# Generator\n\nImplements code.\n")
    (d / "notes.txt").write_text("ignored")
    return d


class TestFrontMatter:
    def test_split(self):
        meta, body = split_front_matter(TEST_WRITER)
        assert meta["description"] == "Writes failing tests first"
        assert body.startswith("# Test Writer")

    def test_no_front_matter(self):
        assert split_front_matter("# Title\nbody") == ({}, "# Title\nbody")

    def test_unclosed_front_matter_is_body(self):
        text = "---\nname: x\n# Title"
        assert split_front_matter(text) == ({}, text)

    def test_first_description_line_skips_headers(self):
        assert first_description_line("# Title\n\n<!-- c -->\nDoes things.\n") == "Does things."


class TestAgentCatalog:
    def test_names(self, agents_dir: Path):
        assert AgentCatalog(agents_dir).names() == ["code_generator_agent", "test-writer-agent"]

    def test_missing_dir(self, tmp_path: Path):
        catalog = AgentCatalog(tmp_path / "nope")
        assert catalog.names() == []
        assert catalog.listing() == ""

    def test_get_strips_front_matter(self, agents_dir: Path):
        definition = AgentCatalog(agents_dir).get("test-writer-agent")
        assert definition is not None
        assert "tools: Read" not in definition.prompt
        assert definition.prompt.startswith("# Test Writer")
        assert definition.description == "Writes failing tests first"

    def test_get_missing(self, agents_dir: Path):
        assert AgentCatalog(agents_dir).get("ghost-agent") is None

    def test_resolve_name_tries_underscore(self, agents_dir: Path):
        catalog = AgentCatalog(agents_dir)
        assert catalog.resolve_name("test-writer-agent") == "test-writer-agent"
        assert catalog.resolve_name("code-generator-agent") == "code_generator_agent"
        assert catalog.resolve_name("ghost-agent") is None

    def test_listing(self, agents_dir: Path):
        listing = AgentCatalog(agents_dir).listing()
        assert "- test-writer-agent: Writes failing tests first" in listing
        assert "- code_generator_agent: Implements code." in listing

    def test_examples_use_known_agents(self, agents_dir: Path):
        examples = AgentCatalog(agents_dir).examples()
        assert "Example: test-writer-agent.md" in examples
        assert "code_generator_agent" not in examples


class TestRegister:
    def test_writes_header(self, agents_dir: Path):
        catalog = AgentCatalog(agents_dir)
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        path = catalog.register(
            "kafka-agent", "# Kafka Agent\n\nStreams.", task="set up\nkafka", now=now
        )
        text = path.read_text()
        assert text.startswith("<!-- Auto-generated agent: 2026-01-02T03:04:05+00:00 -->")
        assert "<!-- Task: set up kafka -->" in text
        assert "kafka-agent" in catalog
        assert catalog.get("kafka-agent").description == "Streams."

    def test_never_overwrites(self, agents_dir: Path):
        catalog = AgentCatalog(agents_dir)
        catalog.register("test-writer-agent", "replacement")
        assert (agents_dir / "test-writer-agent.md").read_text() == TEST_WRITER

    def test_concurrent_registration_writes_once(self, agents_dir: Path):
        catalog = AgentCatalog(agents_dir)
        paths: list[Path] = []

        def register(i: int) -> None:
            paths.append(catalog.register("redis-agent", f"# Redis {i}\n\nCaches."))

        threads = [threading.Thread(target=register, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(paths)) == 1
        assert catalog.names().count("redis-agent") == 1
