from __future__ import annotations

from typing import Any, Dict, List, Optional

from .errors import NotFoundError, ValidationError
from .rad_client import RadSecurityClient

FINDING_STATUSES = ("open", "closed", "ignored")
FINDING_TYPES = ("k8s_misconfiguration", "threat_vector", "runtime_alert", "k8s_audit_logs_anomaly")
SOURCE_TYPES = ("kubeobject", "k8s_audit_log", "container")
SEVERITIES = ("negligible", "low", "medium", "high", "critical")


def make_filter(filters: Dict[str, Any]) -> str:
    """Render ``{"severity": ["high", "critical"]}`` as ``severity:high,severity:critical``."""
    out: List[str] = []
    for key, value in filters.items():
        if not value:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        out.extend(f"{key}:{v}" for v in values if v)
    return ",".join(out)


# ---- Containers ----
async def list_containers(
    client: RadSecurityClient,
    offset: int = 0,
    limit: int = 20,
    filters: Optional[str] = None,
    q: Optional[str] = None,
) -> Dict[str, Any]:
    response = await client.request(
        client.account_path("/inventory_containers"),
        {"limit": limit, "offset": offset, "filters": filters, "q": q},
    )
    # the inventory row id is not the container id; hide it
    for container in response.get("entries") or []:
        container.pop("id", None)
    return response


async def get_container_details(client: RadSecurityClient, container_id: str) -> Dict[str, Any]:
    response = await client.request(
        client.account_path("/inventory_containers"), {"filters": f"container_id:{container_id}"}
    )
    entries = (response or {}).get("entries") or []
    if not entries:
        raise NotFoundError(f"No container found with ID: {container_id}")
    if len(entries) > 1:
        raise ValidationError(
            f"Found multiple containers with ID: {container_id}. Please provide a more specific container ID."
        )
    result = entries[0]
    result.pop("id", None)
    return result


# ---- Clusters ----
async def list_clusters(client: RadSecurityClient, page_size: int = 50, page: int = 1) -> Any:
    return await client.request(client.account_path("/clusters"), {"page_size": page_size, "page": page})


async def get_cluster_details(client: RadSecurityClient, cluster_id: str) -> Any:
    response = await client.request(client.account_path(f"/clusters/{cluster_id}"))
    if not response:
        raise NotFoundError(f"No cluster found with ID: {cluster_id}")
    return response


# ---- Findings ----
async def list_findings(
    client: RadSecurityClient,
    limit: int = 20,
    types: Optional[List[str]] = None,
    severities: Optional[List[str]] = None,
    source_types: Optional[List[str]] = None,
    source_kinds: Optional[List[str]] = None,
    source_names: Optional[List[str]] = None,
    source_namespaces: Optional[List[str]] = None,
    status: str = "open",
    from_time: str = "now-7d",
    to_time: Optional[str] = None,
) -> Dict[str, Any]:
    filters = make_filter({
        "type": types,
        "severity": severities,
        "source_type": source_types,
        "source_kind": source_kinds,
        "source_name": source_names,
        "source_namespace": source_namespaces,
        "status": status,
    })
    response = await client.request(
        client.account_path("/unified_findings/groups"),
        {"limit": limit, "filters": filters, "from": from_time, "to": to_time},
    )
    entries = response or []
    return {"size": len(entries), "entries": entries, "has_more": len(entries) == limit}


# ---- Inbox ----
async def list_inbox_items(
    client: RadSecurityClient,
    limit: int = 10,
    offset: int = 0,
    filters_query: Optional[str] = None,
) -> Any:
    return await client.request(
        client.account_path("/data/inbox_items"),
        {"limit": limit, "offset": offset, "filters_query": filters_query},
    )


async def get_inbox_item_details(client: RadSecurityClient, inbox_item_id: str) -> Any:
    return await client.request(client.account_path(f"/data/inbox_items/{inbox_item_id}"))
