"""Backend capability probing and role routing."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from localagents.backend import BackendClient
from localagents.config import PipelineConfig
from localagents.defaults import MODEL_PREFERENCES
from localagents.errors import BackendError
from localagents.models import (
    BackendStatus,
    Message,
    ProbeReport,
    RouteTarget,
    RoutingDecision,
    ThroughputClass,
)

logger = logging.getLogger(__name__)

STATUS_FILENAME = "local-agents-status.json"

# Role each backend is probed for: the worker decomposes, the orchestrator reviews.
BACKEND_ROLES: dict[str, str] = {
    "worker": "decomposition",
    "orchestrator": "quality",
}

_PROBE_PROMPT = "Say hello"
_PROBE_MAX_TOKENS = 50


def select_model_for_role(
    role: str,
    models: list[str],
    preferences: Mapping[str, Mapping[str, object]] = MODEL_PREFERENCES,
) -> str:
    """Pick a model id for a role.

    Exact-name preferences in order, then the first id with the role's
    prefix, then the first available id. Empty string if nothing is advertised.
    """
    if not models:
        return ""
    prefs = preferences.get(role, {})
    exact = prefs.get("exact", [])
    for name in exact if isinstance(exact, list) else []:
        if name in models:
            return name
    prefix = prefs.get("prefix")
    if isinstance(prefix, str) and prefix:
        for model in models:
            if model.startswith(prefix):
                return model
    return models[0]


def classify_throughput(
    tokens: int, elapsed_seconds: float, threshold: float = 30.0
) -> tuple[ThroughputClass, float | None]:
    """Classify a backend by generation rate in tokens per second."""
    if tokens <= 0 or elapsed_seconds <= 0:
        return "unknown", None
    rate = tokens / elapsed_seconds
    if rate > threshold:
        return "gpu", rate
    return "cpu", rate


def measure_throughput(
    client: BackendClient,
    model: str,
    *,
    timeout: float,
    threshold: float = 30.0,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[ThroughputClass, float | None]:
    """Issue one short timed generation and classify the result."""
    start = clock()
    try:
        response = client.chat(
            model=model,
            messages=[Message(role="user", content=_PROBE_PROMPT)],
            max_tokens=_PROBE_MAX_TOKENS,
            temperature=0.3,
            timeout=timeout,
        )
    except BackendError as exc:
        logger.warning("Throughput probe on %s failed: %s", client.base_url, exc)
        return "unknown", None
    elapsed = clock() - start
    return classify_throughput(response.completion_tokens, elapsed, threshold)


def probe_backend(
    name: str,
    client: BackendClient,
    config: PipelineConfig,
    clock: Callable[[], float] = time.monotonic,
) -> BackendStatus:
    """Probe one backend. Never raises: unreachable backends report reachable=False."""
    status = BackendStatus(name=name, base_url=client.base_url)
    timeouts = config.timeouts

    if not client.is_healthy(timeout=timeouts.health):
        logger.warning("%s (%s): DOWN", name, client.base_url)
        return status
    logger.info("%s (%s): HEALTHY", name, client.base_url)
    status.reachable = True

    slots = client.available_slots(timeout=timeouts.health)
    if slots is not None:
        status.slot_count, status.total_slots = slots
        logger.info("%s slots: %d/%d available", name, *slots)

    status.models = client.list_models(timeout=timeouts.health)
    role = BACKEND_ROLES.get(name, "decomposition")
    status.model_id = select_model_for_role(role, status.models) or name
    logger.info("%s selected model for %s: %s", name, role, status.model_id)

    status.throughput_class, status.tokens_per_second = measure_throughput(
        client,
        status.model_id,
        timeout=timeouts.probe,
        threshold=config.gpu_threshold,
        clock=clock,
    )
    if status.tokens_per_second is not None:
        logger.info(
            "%s speed: ~%.0f t/s (%s)",
            name,
            status.tokens_per_second,
            status.throughput_class,
        )
    return status


def _reachable(statuses: Mapping[str, BackendStatus], name: str) -> bool:
    status = statuses.get(name)
    return status is not None and status.reachable


def decide_routing(statuses: Mapping[str, BackendStatus]) -> RoutingDecision:
    """Derive the routing decision from probed backend health.

    Decomposition prefers the structured-output worker, quality review the
    reasoning orchestrator; each falls back to the other healthy backend.
    """
    decomposition: RouteTarget = "none"
    if _reachable(statuses, "worker"):
        decomposition = "worker"
    elif _reachable(statuses, "orchestrator"):
        decomposition = "orchestrator"

    quality: RouteTarget = "none"
    if _reachable(statuses, "orchestrator"):
        quality = "orchestrator"
    elif _reachable(statuses, "worker"):
        quality = "worker"

    return RoutingDecision(decomposition_target=decomposition, quality_target=quality)


def probe_backends(
    clients: Mapping[str, BackendClient],
    config: PipelineConfig,
    clock: Callable[[], float] = time.monotonic,
) -> ProbeReport:
    """Probe every configured backend and compute routing."""
    statuses = {
        name: probe_backend(name, client, config, clock=clock)
        for name, client in clients.items()
    }
    routing = decide_routing(statuses)
    logger.info(
        "Routing: decomposition=%s quality=%s",
        routing.decomposition_target,
        routing.quality_target,
    )
    return ProbeReport(backends=statuses, routing=routing)


def write_status_snapshot(report: ProbeReport, work_root: Path) -> Path:
    """Persist the latest probe report. Overwrites the previous snapshot."""
    work_root.mkdir(parents=True, exist_ok=True)
    path = work_root / STATUS_FILENAME
    path.write_text(report.model_dump_json(indent=2))
    return path
