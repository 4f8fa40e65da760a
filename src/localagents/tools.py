"""Sandboxed file tools available to agents.

Every path is resolved and checked against an allow-list of roots. Failures
come back as :class:`ToolResult` values, never as exceptions, so the agent
sees them as observations and can change its plan.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from localagents.config import PipelineConfig
from localagents.errors import ToolAccessError, ToolError, ToolTimeoutError

logger = logging.getLogger(__name__)

TOOL_NAMES = ("read_file", "write_file", "append_file", "list_dir", "search")


@dataclass(slots=True)
class ToolResult:
    ok: bool
    output: str

    @property
    def observation(self) -> str:
        if self.ok:
            return self.output
        return f"ERROR: {self.output}"


def _require(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if value is None or value == "":
        msg = f"Missing '{key}' parameter"
        raise ToolError(msg)
    return str(value)


class ToolExecutor:
    def __init__(
        self,
        allowed_roots: Iterable[Path],
        *,
        workdir: Path,
        timeout: float = 30.0,
        max_read_bytes: int = 50_000,
        max_entries: int = 100,
        max_matches: int = 50,
    ) -> None:
        self._roots = [Path(root).expanduser().resolve() for root in allowed_roots]
        self.workdir = workdir
        self.timeout = timeout
        self.max_read_bytes = max_read_bytes
        self.max_entries = max_entries
        self.max_matches = max_matches
        self._handlers: dict[str, Callable[[dict[str, Any]], str]] = {
            "read_file": self.read_file,
            "write_file": self.write_file,
            "append_file": self.append_file,
            "list_dir": self.list_dir,
            "search": self.search,
        }

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        workdir: Path,
        extra_roots: Iterable[Path] = (),
    ) -> ToolExecutor:
        return cls(
            [*config.tools.allowed_roots, *extra_roots],
            workdir=workdir,
            timeout=config.timeouts.tool,
            max_read_bytes=config.tools.max_read_bytes,
            max_entries=config.tools.max_entries,
            max_matches=config.tools.max_matches,
        )

    @property
    def allowed_roots(self) -> list[Path]:
        return list(self._roots)

    def resolve(self, raw: str) -> Path:
        """Absolute path for *raw*, or ToolAccessError outside the allow-list."""
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = self.workdir / path
        resolved = path.resolve()
        if self._allowed(resolved):
            return resolved
        raise ToolAccessError(raw)

    def _allowed(self, resolved: Path) -> bool:
        return any(resolved.is_relative_to(root) for root in self._roots)

    def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Run one tool under its own timeout."""
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult(
                ok=False,
                output=f"Unknown tool: {name}\nAvailable tools: {', '.join(TOOL_NAMES)}",
            )
        if not isinstance(args, dict):
            return ToolResult(ok=False, output="Tool arguments must be a JSON object")

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"tool-{name}"
        )
        try:
            future = executor.submit(handler, args)
            output = future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            error = ToolTimeoutError(self.timeout)
            logger.warning("Tool %s timed out after %ss", name, self.timeout)
            return ToolResult(ok=False, output=str(error))
        except ToolError as exc:
            logger.info("Tool %s failed: %s", name, exc)
            return ToolResult(ok=False, output=str(exc))
        except OSError as exc:
            logger.info("Tool %s failed: %s", name, exc)
            return ToolResult(ok=False, output=f"{type(exc).__name__}: {exc}")
        finally:
            executor.shutdown(wait=False)
        return ToolResult(ok=True, output=output)

    # Operations

    def read_file(self, args: dict[str, Any]) -> str:
        path = self.resolve(_require(args, "path"))
        if not path.is_file():
            msg = f"File not found: {path}"
            raise ToolError(msg)
        with path.open("rb") as fh:
            data = fh.read(self.max_read_bytes + 1)
        text = data[: self.max_read_bytes].decode("utf-8", errors="replace")
        if len(data) > self.max_read_bytes:
            limit_kb = self.max_read_bytes // 1000
            text += f"\n\n[TRUNCATED - file exceeds {limit_kb}KB]"
        return text

    def write_file(self, args: dict[str, Any]) -> str:
        path = self.resolve(_require(args, "path"))
        content = str(args.get("content", ""))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return f"SUCCESS: Wrote {len(content.encode())} bytes to {path}"

    def append_file(self, args: dict[str, Any]) -> str:
        path = self.resolve(_require(args, "path"))
        content = str(args.get("content", ""))
        if not path.is_file():
            msg = f"File not found: {path}"
            raise ToolError(msg)
        with path.open("a") as fh:
            fh.write(content)
        return f"SUCCESS: Appended {len(content.encode())} bytes to {path}"

    def list_dir(self, args: dict[str, Any]) -> str:
        path = self.resolve(str(args.get("path") or "."))
        if not path.is_dir():
            msg = f"Directory not found: {path}"
            raise ToolError(msg)
        entries = sorted(path.iterdir(), key=lambda p: p.name)
        lines = [str(path)]
        for entry in entries[: self.max_entries]:
            if entry.is_dir():
                lines.append(f"d {'-':>10} {entry.name}/")
            else:
                lines.append(f"- {entry.stat().st_size:>10} {entry.name}")
        if len(entries) > self.max_entries:
            lines.append(
                f"[TRUNCATED - showing {self.max_entries} of {len(entries)} entries]"
            )
        return "\n".join(lines)

    def search(self, args: dict[str, Any]) -> str:
        raw_pattern = _require(args, "pattern")
        path = self.resolve(str(args.get("path") or "."))
        try:
            pattern = re.compile(raw_pattern)
        except re.error as exc:
            msg = f"Invalid pattern {raw_pattern!r}: {exc}"
            raise ToolError(msg) from exc
        if not path.exists():
            msg = f"Directory not found: {path}"
            raise ToolError(msg)

        matches: list[str] = []
        total = 0
        for file in _iter_files(path):
            # Symlinked files may point outside the allow-list.
            if not self._allowed(file.resolve()):
                continue
            try:
                text = file.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if pattern.search(line):
                    total += 1
                    if len(matches) < self.max_matches:
                        matches.append(f"{file}:{lineno}:{line.rstrip()}")
        if not matches:
            return "No matches found"
        if total > self.max_matches:
            matches.append(f"[TRUNCATED - showing {self.max_matches} of {total} matches]")
        return "\n".join(matches)


def _iter_files(path: Path) -> Iterator[Path]:
    if path.is_file():
        yield path
        return
    for candidate in sorted(path.rglob("*")):
        if candidate.is_file():
            yield candidate
