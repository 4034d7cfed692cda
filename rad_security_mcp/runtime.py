"""Container runtime insights: baselines, process trees and analyses.

Baselines and process trees share a two-step lookup. One list call resolves
the requested container ids to runtime insights, then one detail call per
matching insight fetches the payload. A failed or empty detail never aborts
the batch.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
import pydantic

from .errors import NotFoundError, UpstreamError, ValidationError
from .models import Insight, InsightDetail, InsightList, Program, ProcessNode
from .rad_client import RadSecurityClient

log = logging.getLogger(__name__)

INSIGHTS_PATH = "/container_runtime_insights"

ProcessTree = Union[ProcessNode, Dict[str, Any], Sequence[Union[ProcessNode, Dict[str, Any]]]]


# -------------------- Two-step resolution --------------------
async def _list_insights(client: RadSecurityClient, container_ids: List[str]) -> List[Insight]:
    response = await client.request(
        client.account_path(INSIGHTS_PATH), {"container_ids": ",".join(container_ids)}
    )
    return InsightList.model_validate(response or {}).entries


async def _resolve_details(
    client: RadSecurityClient,
    container_ids: List[str],
    logger: logging.Logger,
) -> List[Tuple[Insight, InsightDetail]]:
    if not container_ids:
        raise ValidationError("No container IDs provided")

    wanted = set(container_ids)
    insights = [
        i for i in await _list_insights(client, container_ids)
        if i.id and i.container_id and i.container_id in wanted
    ]

    async def fetch(insight: Insight) -> Optional[Tuple[Insight, InsightDetail]]:
        try:
            data = await client.request(client.account_path(f"{INSIGHTS_PATH}/{insight.id}"))
            detail = InsightDetail.model_validate(data or {})
        except (UpstreamError, httpx.HTTPError, pydantic.ValidationError) as exc:
            logger.warning(
                "Failed to fetch runtime insight %s for container_id %s: %s",
                insight.id, insight.container_id, exc,
                extra={"insight_id": insight.id, "container_id": insight.container_id},
            )
            return None
        return insight, detail

    results = await asyncio.gather(*(fetch(i) for i in insights))
    return [r for r in results if r is not None]


async def get_containers_baselines(
    client: RadSecurityClient,
    container_ids: List[str],
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Map each container id to its runtime baseline.

    Containers without a baseline are skipped with a warning. Raises
    ``NotFoundError`` when no container resolves at all.
    """
    logger = logger or log
    baselines: Dict[str, Any] = {}
    for insight, detail in await _resolve_details(client, container_ids, logger):
        if detail.baseline:
            baselines[insight.container_id] = detail.baseline
        else:
            logger.warning(
                "No baseline found for container_id: %s", insight.container_id,
                extra={"insight_id": insight.id, "container_id": insight.container_id},
            )

    if not baselines:
        raise NotFoundError(
            f"No baselines found for any of the container_ids: {', '.join(container_ids)}"
        )
    return baselines


async def get_containers_process_trees(
    client: RadSecurityClient,
    container_ids: List[str],
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Map each runtime insight id to its first ongoing container.

    Insights without ongoing data map to ``{}``; an empty result is returned
    as-is.
    """
    logger = logger or log
    trees: Dict[str, Any] = {}
    for insight, detail in await _resolve_details(client, container_ids, logger):
        trees[insight.id] = detail.first_container() or {}
    return trees


async def get_container_llm_analysis(client: RadSecurityClient, container_id: str) -> Any:
    response = await client.request(client.account_path(INSIGHTS_PATH), {"container_id": container_id})
    entries = InsightList.model_validate(response or {}).entries
    if not entries:
        raise NotFoundError(f"No container runtime insights found for container_id: {container_id}")
    return entries[0].analysis


async def get_runtime_findings(client: RadSecurityClient, container_id: str) -> Dict[str, Any]:
    findings = await client.request(
        client.account_path("/findings"),
        {"types": "runtime_alert", "source_ids": container_id, "page_size": 10},
    )
    # the second message carries the alert details
    findings["entries"] = [
        f["messages"][1] for f in findings.get("entries") or [] if len(f.get("messages") or []) > 1
    ]
    return findings


# -------------------- Process tree reducer --------------------
def _as_nodes(tree: ProcessTree) -> List[ProcessNode]:
    if isinstance(tree, (ProcessNode, dict)):
        tree = [tree]
    return [n if isinstance(n, ProcessNode) else ProcessNode.model_validate(n) for n in tree]


def count_processes(tree: ProcessTree) -> int:
    return sum(1 + count_processes(n.children) for n in _as_nodes(tree))


def _program_line(program: Program, depth: int) -> str:
    text = " ".join([program.comm, *program.args]).strip() or "<unknown>"
    if program.drift:
        text += " [drift]"
    return "  " * depth + text


def _connection_lines(program: Program, depth: int) -> Iterable[str]:
    for conn in program.connections:
        endpoint = conn.remote_addr or "?"
        if conn.remote_port is not None:
            endpoint += f":{conn.remote_port}"
        parts = [p for p in (conn.direction, conn.protocol, endpoint) if p]
        yield "  " * (depth + 1) + "-> " + " ".join(parts)


def _render(nodes: List[ProcessNode], depth: int, limit: int, lines: List[str]) -> bool:
    """Append lines for ``nodes``; returns True when output was cut short."""
    for node in nodes:
        for program in node.programs:
            for line in (_program_line(program, depth), *_connection_lines(program, depth)):
                if len(lines) >= limit:
                    return True
                lines.append(line)
        if node.children:
            if limit - len(lines) <= 0:
                return True
            if _render(node.children, depth + 1, limit, lines):
                return True
    return False


def render_process_tree(tree: ProcessTree, limit: int) -> List[str]:
    """Flatten a process tree to at most ``limit`` indented lines.

    When lines were dropped a notice is appended that reports the full
    process count of the tree.
    """
    if limit <= 0:
        return []
    nodes = _as_nodes(tree)
    lines: List[str] = []
    if _render(nodes, 0, limit, lines):
        lines.append(
            f"... output truncated at {limit} lines ({count_processes(nodes)} processes in tree)"
        )
    return lines


def process_tree_of(container: Dict[str, Any]) -> ProcessTree:
    return container.get("processes") or container.get("process_tree") or []
