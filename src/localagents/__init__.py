"""Run one task as a swarm of local LLM agents: decompose, map, execute, review."""

__version__ = "0.1.0"
