# rad_security_mcp/server.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Annotated, Any, Awaitable, Dict, List, Literal, Optional

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from . import inventory, radql, runtime, workflows
from .models import FilterCondition, QueryBuilderRequest, RadQLQuery
from .rad_client import RadSecurityClient

logger = logging.getLogger(__name__)

# -------------------- FastMCP server config --------------------
mcp = FastMCP("RAD Security MCP")


# -------------------- Lazy, shared RAD Security HTTP client --------------------
_client: RadSecurityClient | None = None
_client_lock = asyncio.Lock()


async def _get_client() -> RadSecurityClient:
    global _client
    if _client is not None:
        return _client
    async with _client_lock:
        if _client is None:
            c = RadSecurityClient()  # uses settings for base url, account and credentials
            await c.start()
            _client = c
    return _client


async def _run(tool: str, call: Awaitable[Any]) -> Any:
    started = time.monotonic()
    logger.info("tool_invoked tool=%s", tool)
    try:
        result = await call
    except Exception as exc:
        logger.error("tool_failed tool=%s duration_ms=%d error=%s",
                     tool, (time.monotonic() - started) * 1000, exc)
        raise
    logger.info("tool_completed tool=%s duration_ms=%d", tool, (time.monotonic() - started) * 1000)
    return result


# -------------------- RadQL: discovery --------------------
#
# Recommended flow for models:
#   1. radql_list_data_types        -> what can be queried
#   2. radql_get_type_metadata      -> which fields exist, with example queries
#   3. radql_list_filter_values     -> which values a field takes
#   4. radql_build_query (optional) -> structured conditions to RadQL text
#   5. radql_query / radql_batch_query
#
@mcp.tool(
    name="radql_list_data_types",
    description="List all data types available to RadQL queries. ALWAYS call this FIRST to discover what data is available."
)
async def radql_list_data_types() -> Dict[str, Any]:
    """List all available RadQL data types with their descriptions.

    Endpoint:
      GET /accounts/{account_id}/data/types

    Returns:
      {"available_types": [...], "hint": "..."}
    """
    client = await _get_client()
    return await _run("radql_list_data_types", radql.list_data_types(client))


@mcp.tool(
    name="radql_get_type_metadata",
    description="Get the schema of a RadQL data type: available fields, their types, and generated example queries. Call AFTER radql_list_data_types."
)
async def radql_get_type_metadata(
    data_type: Annotated[str, "The data type to describe (e.g. 'containers', 'kubernetes_resources', 'inbox_items'). Call radql_list_data_types first to see available types."],
) -> Dict[str, Any]:
    """Get schema/metadata for a RadQL data type.

    Endpoint:
      GET /accounts/{account_id}/data/{data_type}/meta

    Returns:
      The metadata document plus "radql_examples" with "filter_examples" and
      "stats_examples" built from the type's filterable fields.
    """
    client = await _get_client()
    return await _run("radql_get_type_metadata", radql.get_type_metadata(client, data_type))


@mcp.tool(
    name="radql_list_filter_values",
    description="List the possible values of a filter field (namespaces, clusters, severities, ...). Use when building dynamic filters."
)
async def radql_list_filter_values(
    data_type: Annotated[str, "The data type (e.g. 'containers', 'kubernetes_resources')"],
    filter_name: Annotated[str, "The filter field to list values for (e.g. 'namespace', 'cluster_id', 'severity')"],
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("radql_list_filter_values", radql.list_filter_values(client, data_type, filter_name))


# -------------------- RadQL: queries --------------------
@mcp.tool(
    name="radql_query",
    description="Execute a RadQL query: 'list' to filter and search, 'get_by_id' for a single item, 'stats' for aggregations and grouping."
)
async def radql_query(
    data_type: Annotated[str, "The data type to query (e.g. 'containers', 'kubernetes_resources', 'inbox_items')."],
    operation: Annotated[Literal["list", "get_by_id", "stats"], "'list' for filtering/searching, 'get_by_id' for one item, 'stats' for aggregations."],
    filters_query: Annotated[Optional[str], "RadQL filter query, e.g. 'severity:High AND type:misconfiguration'. Quote dates and hyphenated values: created_at>\"2024-01-01\"."] = None,
    stats_query: Annotated[Optional[str], "RadQL stats query, e.g. 'count() by severity'. Required for 'stats'."] = None,
    id: Annotated[Optional[str], "ID of the item to fetch. Required for 'get_by_id'."] = None,
    limit: Annotated[int, "Maximum number of results to return."] = 20,
    offset: Annotated[int, "Pagination offset."] = 0,
    include_relations: Annotated[Optional[List[str]], "Relations to include, e.g. ['owner'] for containers."] = None,
) -> Dict[str, Any]:
    """Execute a RadQL query against the Data API.

    **Filter syntax (filters_query):**
    - Exact match:      severity:High
    - Wildcards:        image_name:*nginx*
    - Comparison:       cvss_score>7
    - Dates / UUIDs:    created_at>"2024-01-01", id:"abc-123-def"   (MUST be quoted)
    - Boolean logic:    kind:Pod OR kind:Service, NOT archived:true
    - Grouping:         (severity:High OR severity:Critical) AND archived:false

    **Stats syntax (stats_query):**
    - count(), count(field), sum(field), avg(field), min(field), max(field), median(field)
    - Grouping:         count() by severity, type
    - Time buckets:     count() by day(created_at)

    Endpoints:
      list:      GET /accounts/{account_id}/data/{data_type}
      get_by_id: GET /accounts/{account_id}/data/{data_type}/{id}
      stats:     GET /accounts/{account_id}/data/stats/{data_type}

    Returns:
      The results plus a "query_explanation" describing the query in plain words.
      Failures carry guidance on how to fix the query.
    """
    client = await _get_client()
    query = RadQLQuery(
        data_type=data_type,
        operation=operation,
        filters_query=filters_query,
        stats_query=stats_query,
        id=id,
        limit=limit,
        offset=offset,
        include_relations=include_relations,
    )
    return await _run("radql_query", radql.execute_query(client, query))


@mcp.tool(
    name="radql_build_query",
    description="Build RadQL filters_query / stats_query text from structured conditions and aggregation options. Handles quoting of dates, UUIDs and special characters."
)
async def radql_build_query(
    data_type: Annotated[Optional[str], "The data type the query is meant for (informational)."] = None,
    conditions: Annotated[Optional[List[FilterCondition]], "Conditions: {field, operator, value, negate}. Operators: ':', '=', '!=', '!:', '<>', '>', '>=', '<', '<=', 'contains', 'starts_with', 'ends_with'."] = None,
    logic: Annotated[Literal["AND", "OR"], "Logical operator combining the conditions."] = "AND",
    aggregation: Annotated[Optional[Literal["count", "sum", "avg", "min", "max", "median"]], "Aggregation function to apply."] = None,
    aggregate_field: Annotated[Optional[str], "Field to aggregate. Omit for count()."] = None,
    group_by: Annotated[Optional[List[str]], "Fields to group by."] = None,
    time_group: Annotated[Optional[Literal["second", "minute", "hour", "day", "month", "year"]], "Time bucket applied to datetime group-by fields."] = None,
) -> Dict[str, str]:
    """Build RadQL query text without executing it.

    Example:
      conditions=[{"field": "image_name", "operator": "contains", "value": "nginx"}],
      aggregation="count", group_by=["created_at"], time_group="day"
      -> {"filters_query": "image_name:*nginx*", "stats_query": "count() by day(created_at)"}
    """
    async def build() -> Dict[str, str]:
        request = QueryBuilderRequest(
            data_type=data_type,
            conditions=conditions or [],
            logic=logic,
            aggregation=aggregation,
            aggregate_field=aggregate_field,
            group_by=group_by or [],
            time_group=time_group,
        )
        return radql.build_query(request)

    return await _run("radql_build_query", build())


@mcp.tool(
    name="radql_batch_query",
    description="Execute up to 10 RadQL queries in parallel. A failing query yields {error, query} without affecting the others."
)
async def radql_batch_query(
    queries: Annotated[List[RadQLQuery], "Queries to execute in parallel (max 10). Each has the same fields as radql_query."],
) -> List[Dict[str, Any]]:
    client = await _get_client()
    return await _run("radql_batch_query", radql.execute_batch(client, queries))


# -------------------- Container runtime --------------------
@mcp.tool(
    name="get_containers_process_trees",
    description="Get runtime process trees for multiple containers, keyed by runtime insight id."
)
async def get_containers_process_trees(
    container_ids: Annotated[List[str], "Container IDs to get process trees for."],
    max_lines: Annotated[Optional[int], "If set, return each tree flattened to at most this many text lines instead of the raw payload."] = None,
) -> Dict[str, Any]:
    """Get process trees for multiple containers.

    Endpoints:
      GET /accounts/{account_id}/container_runtime_insights?container_ids=a,b,c
      GET /accounts/{account_id}/container_runtime_insights/{insight_id}

    Returns:
      {insight_id: ongoing container payload | {}} or, with max_lines,
      {insight_id: {"lines": [...]}}.
    """
    client = await _get_client()
    trees = await _run("get_containers_process_trees", runtime.get_containers_process_trees(client, container_ids))
    if max_lines is None:
        return trees
    return {
        insight_id: {"lines": runtime.render_process_tree(runtime.process_tree_of(payload), max_lines)}
        for insight_id, payload in trees.items()
    }


@mcp.tool(
    name="get_containers_baselines",
    description="Get runtime baselines for multiple containers, keyed by container id."
)
async def get_containers_baselines(
    container_ids: Annotated[List[str], "Container IDs to get baselines for."],
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("get_containers_baselines", runtime.get_containers_baselines(client, container_ids))


@mcp.tool(
    name="get_container_llm_analysis",
    description="Get the latest LLM analyses of a container's runtime behaviour."
)
async def get_container_llm_analysis(
    container_id: Annotated[str, "Container ID to get the LLM analysis for."],
) -> Any:
    client = await _get_client()
    return await _run("get_container_llm_analysis", runtime.get_container_llm_analysis(client, container_id))


@mcp.tool(
    name="get_runtime_findings",
    description="Get runtime alerts and findings for a container."
)
async def get_runtime_findings(
    container_id: Annotated[str, "Container ID to get runtime findings for."],
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("get_runtime_findings", runtime.get_runtime_findings(client, container_id))


# -------------------- Workflows --------------------
@mcp.tool(
    name="run_workflow",
    description="Run a workflow with its default inputs. With run_async=false, waits (up to 5 minutes) for the run to complete, fail or be cancelled."
)
async def run_workflow(
    workflow_id: Annotated[str, "ID of the workflow to run."],
    run_async: Annotated[bool, "If true, return immediately with the run id. If false, wait for the run to finish."] = True,
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("run_workflow", workflows.run_workflow(client, workflow_id, run_async))


@mcp.tool(name="list_workflows", description="List all workflows.")
async def list_workflows() -> Any:
    client = await _get_client()
    return await _run("list_workflows", workflows.list_workflows(client))


@mcp.tool(name="list_workflow_runs", description="List the runs of a workflow.")
async def list_workflow_runs(
    workflow_id: Annotated[str, "ID of the workflow to list runs for."],
) -> Any:
    client = await _get_client()
    return await _run("list_workflow_runs", workflows.list_workflow_runs(client, workflow_id))


@mcp.tool(name="get_workflow_run", description="Get one run of a workflow, including its status.")
async def get_workflow_run(
    workflow_id: Annotated[str, "ID of the workflow."],
    run_id: Annotated[str, "ID of the workflow run."],
) -> Any:
    client = await _get_client()
    return await _run("get_workflow_run", workflows.get_workflow_run(client, workflow_id, run_id))


@mcp.tool(name="list_workflow_schedules", description="List the schedules of a workflow.")
async def list_workflow_schedules(
    workflow_id: Annotated[str, "ID of the workflow to list schedules for."],
) -> Any:
    client = await _get_client()
    return await _run("list_workflow_schedules", workflows.list_workflow_schedules(client, workflow_id))


# -------------------- Inventory --------------------
@mcp.tool(name="list_containers", description="List inventory containers with optional filters and free-text search.")
async def list_containers(
    filters: Annotated[Optional[str], "Filter string, e.g. 'image_name:nginx' or 'cluster_id:<id>'. Combine with commas."] = None,
    offset: Annotated[int, "Pagination offset."] = 0,
    limit: Annotated[int, "Maximum number of results to return."] = 20,
    q: Annotated[Optional[str], "Free text search query."] = None,
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("list_containers", inventory.list_containers(client, offset, limit, filters, q))


@mcp.tool(name="get_container_details", description="Get details of one container by container ID.")
async def get_container_details(
    container_id: Annotated[str, "ID of the container."],
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("get_container_details", inventory.get_container_details(client, container_id))


@mcp.tool(name="list_clusters", description="List Kubernetes clusters.")
async def list_clusters(
    page_size: Annotated[int, "Number of clusters per page."] = 50,
    page: Annotated[int, "Page number to retrieve."] = 1,
) -> Any:
    client = await _get_client()
    return await _run("list_clusters", inventory.list_clusters(client, page_size, page))


@mcp.tool(name="get_cluster_details", description="Get details of one Kubernetes cluster.")
async def get_cluster_details(
    cluster_id: Annotated[str, "ID of the cluster."],
) -> Any:
    client = await _get_client()
    return await _run("get_cluster_details", inventory.get_cluster_details(client, cluster_id))


@mcp.tool(name="list_findings", description="List security finding groups with type, severity, source and time filters.")
async def list_findings(
    limit: Annotated[int, "Number of findings to return."] = 20,
    types: Annotated[Optional[List[str]], f"Finding types: {', '.join(inventory.FINDING_TYPES)}."] = None,
    severities: Annotated[Optional[List[str]], f"Severities: {', '.join(inventory.SEVERITIES)}."] = None,
    source_types: Annotated[Optional[List[str]], f"Source types: {', '.join(inventory.SOURCE_TYPES)}."] = None,
    source_kinds: Annotated[Optional[List[str]], "Source kinds, e.g. Deployment, Pod, Container, Node."] = None,
    source_names: Annotated[Optional[List[str]], "Source names."] = None,
    source_namespaces: Annotated[Optional[List[str]], "Source namespaces."] = None,
    status: Annotated[str, f"Finding status: {', '.join(inventory.FINDING_STATUSES)}."] = "open",
    from_time: Annotated[str, "Start time, RFC3339 or relative (e.g. now-7d)."] = "now-7d",
    to_time: Annotated[Optional[str], "End time, RFC3339 or relative."] = None,
) -> Dict[str, Any]:
    client = await _get_client()
    return await _run("list_findings", inventory.list_findings(
        client, limit, types, severities, source_types, source_kinds,
        source_names, source_namespaces, status, from_time, to_time,
    ))


@mcp.tool(name="list_inbox_items", description="List inbox items, optionally filtered with a RadQL filters_query.")
async def list_inbox_items(
    limit: Annotated[int, "Number of inbox items per page."] = 10,
    offset: Annotated[int, "Pagination offset."] = 0,
    filters_query: Annotated[Optional[str], "RadQL filter, e.g. 'search:cve-2024-12345 AND severity:high'."] = None,
) -> Any:
    client = await _get_client()
    return await _run("list_inbox_items", inventory.list_inbox_items(client, limit, offset, filters_query))


@mcp.tool(name="get_inbox_item_details", description="Get details of one inbox item.")
async def get_inbox_item_details(
    inbox_item_id: Annotated[str, "ID of the inbox item."],
) -> Any:
    client = await _get_client()
    return await _run("get_inbox_item_details", inventory.get_inbox_item_details(client, inbox_item_id))


# -------------------- Optional MCP resource (not HTTP) --------------------
@mcp.resource("health://ready")
def health_ready() -> str:
    return "ok"


@mcp.resource(
    "radql://cheatsheet",
    name="RadQL cheatsheet",
    description="Quick reference for RadQL filter and stats syntax",
    mime_type="text/markdown",
)
def radql_cheatsheet_resource() -> str:
    return RADQL_CHEATSHEET


RADQL_CHEATSHEET = """
# RadQL quick reference

## Filters (filters_query)
| Goal                 | Syntax                                  |
|----------------------|-----------------------------------------|
| exact match          | `severity:High`                         |
| comparison           | `cvss_score>=7`, `count<10`             |
| not equal            | `status!=closed`                        |
| contains             | `image_name:*nginx*`                    |
| starts / ends with   | `cluster_id:prod*`, `name:*-api`        |
| negation             | `NOT archived:true`                     |
| all / any            | `a:1 AND b:2`, `kind:Pod OR kind:Service` |
| grouping             | `(severity:High OR severity:Critical) AND archived:false` |

Quote anything with spaces, hyphens, colons, parentheses or dates:
`created_at>"2024-01-01"`, `id:"abc-123-def"`, `title:"my value"`.

## Stats (stats_query)
- `count()`, `count(field)`, `sum(field)`, `avg(field)`, `min(field)`, `max(field)`, `median(field)`
- `count() by severity, type`
- `count() by day(created_at)` (second, minute, hour, day, month, year)

## Workflow
1. radql_list_data_types
2. radql_get_type_metadata
3. radql_list_filter_values
4. radql_query / radql_batch_query
"""


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> PlainTextResponse:
    return PlainTextResponse("OK")
