from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict

from .errors import NotFoundError, RadSecurityError, RunTimeoutError
from .models import RunResult, WorkflowRun
from .rad_client import RadSecurityClient

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0
MAX_WAIT_SECONDS = 300.0
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


async def run_and_maybe_wait(
    start_call: Callable[[], Awaitable[Dict[str, Any]]],
    poll_call: Callable[[str], Awaitable[Dict[str, Any]]],
    run_async: bool = True,
    *,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    timeout: float = MAX_WAIT_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    label: str = "Run",
) -> Dict[str, Any]:
    """Start a run, then either return at once or poll until it settles.

    Statuses outside ``TERMINAL_STATUSES`` count as still running. Raises
    ``RunTimeoutError`` once more than ``timeout`` seconds have elapsed.
    """
    response = await start_call()
    started = WorkflowRun.model_validate(response if isinstance(response, dict) else {})
    if not started.id:
        raise RadSecurityError(f"Failed to start {label.lower()}: no id in response")
    run_id = str(started.id)

    if run_async:
        return RunResult(run_id=run_id, status="running", message=f"{label} started asynchronously").model_dump()

    t0 = clock()
    while True:
        details = await poll_call(run_id)
        status = (details or {}).get("status")
        if status in TERMINAL_STATUSES:
            return details

        elapsed = clock() - t0
        if elapsed > timeout:
            raise RunTimeoutError(
                f"{label} {run_id} did not finish within {timeout:g} seconds "
                f"(waited {elapsed:.0f}s). Last status: {status}",
                elapsed=elapsed,
                last_status=status,
            )
        logger.debug("run %s still %s after %.0fs", run_id, status, elapsed)
        await sleep(poll_interval)


def extract_default_values(schema: Dict[str, Any] | None) -> Dict[str, Any]:
    """Collect ``default`` values from a JSON schema's top-level properties."""
    if not schema or not schema.get("properties"):
        return {}
    return {
        key: prop["default"]
        for key, prop in schema["properties"].items()
        if isinstance(prop, dict) and "default" in prop
    }


async def _workflow_path(client: RadSecurityClient, suffix: str = "") -> str:
    tenant_id = await client.get_tenant_id()
    return f"/tenants/{tenant_id}/workflows{suffix}"


async def list_workflows(client: RadSecurityClient) -> Any:
    return await client.request(await _workflow_path(client))


async def list_workflow_runs(client: RadSecurityClient, workflow_id: str) -> Any:
    return await client.request(await _workflow_path(client, f"/{workflow_id}/runs"))


async def get_workflow_run(client: RadSecurityClient, workflow_id: str, run_id: str) -> Any:
    return await client.request(await _workflow_path(client, f"/{workflow_id}/runs/{run_id}"))


async def list_workflow_schedules(client: RadSecurityClient, workflow_id: str) -> Any:
    return await client.request(await _workflow_path(client, f"/{workflow_id}/schedules"))


async def run_workflow(
    client: RadSecurityClient,
    workflow_id: str,
    run_async: bool = True,
    **poll_options: Any,
) -> Dict[str, Any]:
    workflow = await client.request(await _workflow_path(client, f"/{workflow_id}"))
    schema = ((workflow or {}).get("flow") or {}).get("schema")
    if not schema:
        raise NotFoundError(f"Failed to get workflow schema for workflow {workflow_id}")

    workflow_input = extract_default_values(schema)

    async def start() -> Dict[str, Any]:
        path = await _workflow_path(client, f"/{workflow_id}/runs")
        return await client.request(path, method="POST", json=workflow_input)

    async def poll(run_id: str) -> Dict[str, Any]:
        return await get_workflow_run(client, workflow_id, run_id)

    return await run_and_maybe_wait(
        start, poll, run_async, label=f"Workflow {workflow_id} run", **poll_options
    )
