"""RadQL query building, explaining and execution.

RadQL is the filter/stats mini-language of the RAD Security Data API. Filter
queries look like ``severity:High AND NOT archived:true``; stats queries look
like ``count() by severity, day(created_at)``.

The builders here are pure functions: identical input always produces the
same query text. The explainers are best-effort descriptions built from
substring matches. They never parse or modify the query, and they accept any
text, malformed or not.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .enrich import enrich_error
from .errors import ValidationError
from .models import AggregationSpec, FilterCondition, QueryBuilderRequest, RadQLQuery
from .rad_client import RadSecurityClient

logger = logging.getLogger(__name__)

MAX_BATCH_QUERIES = 10

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_COMPARISON_GLYPH = re.compile(r"[<>=!]")
_TIMESTAMP_HINTS = ("_at", "timestamp", "time")


# -------------------- Condition compiler --------------------
def _needs_quoting(value: str) -> bool:
    return (
        any(ch in value for ch in (" ", "-", ":", "(", ")"))
        or bool(_ISO_DATE.match(value))
        or bool(_COMPARISON_GLYPH.search(value))
    )


def _needs_wildcard_quoting(value: str) -> bool:
    return any(ch in value for ch in (" ", "-", ":"))


def _number(value: int | float) -> str:
    # whole floats below 1e21 print as plain digits, not in exponent form
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


def _literal(value: str | int | float | bool) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number(value)
    return f'"{value}"' if _needs_quoting(value) else value


def _wildcard(value: str | int | float | bool, prefix: str, suffix: str) -> str:
    raw = _literal(value) if not isinstance(value, str) else value
    pattern = f"{prefix}{raw}{suffix}"
    if isinstance(value, str) and _needs_wildcard_quoting(value):
        return f'"{pattern}"'
    return pattern


_WILDCARDS = {
    "contains": ("*", "*"),
    "starts_with": ("", "*"),
    "ends_with": ("*", ""),
}


def render_condition(cond: FilterCondition) -> str:
    prefix = "NOT " if cond.negate else ""
    if cond.operator in _WILDCARDS:
        before, after = _WILDCARDS[cond.operator]
        return f"{prefix}{cond.field}:{_wildcard(cond.value, before, after)}"
    return f"{prefix}{cond.field}{cond.operator}{_literal(cond.value)}"


def compile_conditions(conditions: Iterable[FilterCondition], logic: str = "AND") -> Optional[str]:
    """Join rendered conditions with ``AND``/``OR``. Returns None for no conditions."""
    rendered = [render_condition(c) for c in conditions]
    if not rendered:
        return None
    return f" {logic} ".join(rendered)


# -------------------- Aggregation compiler --------------------
def _looks_like_timestamp(field: str) -> bool:
    return any(hint in field for hint in _TIMESTAMP_HINTS)


def compile_aggregation(spec: AggregationSpec) -> str:
    if spec.function == "count":
        query = f"count({spec.field})" if spec.field else "count()"
    else:
        if not spec.field:
            raise ValidationError(f"{spec.function} requires an aggregate_field")
        query = f"{spec.function}({spec.field})"

    if spec.group_by:
        groups = [
            f"{spec.time_group}({field})" if spec.time_group and _looks_like_timestamp(field) else field
            for field in spec.group_by
        ]
        query += f" by {', '.join(groups)}"
    return query


def build_query(request: QueryBuilderRequest) -> Dict[str, str]:
    result: Dict[str, str] = {}
    filters_query = compile_conditions(request.conditions, request.logic)
    if filters_query:
        result["filters_query"] = filters_query
    spec = request.aggregation_spec()
    if spec is not None:
        result["stats_query"] = compile_aggregation(spec)
    return result


# -------------------- Explainers --------------------
_FILTER_PATTERNS = (
    (lambda q: " AND " in q, "All conditions must be true"),
    (lambda q: " OR " in q, "Any condition can be true"),
    (lambda q: "NOT " in q, "Excluding items matching certain conditions"),
    (lambda q: ":" in q, "Filtering by exact field values"),
    (lambda q: "*" in q, "Using wildcard pattern matching"),
    (lambda q: ">" in q or "<" in q, "Comparing numeric or date values"),
    (lambda q: "(" in q and ")" in q, "Using grouped conditions"),
)

_STATS_FUNCTIONS = (
    ("count(", "Counting items"),
    ("sum(", "Summing numeric values"),
    ("avg(", "Calculating average values"),
    ("min(", "Finding minimum values"),
    ("max(", "Finding maximum values"),
    ("median(", "Calculating median values"),
)

TIME_GROUPS = ("second", "minute", "hour", "day", "month", "year")


def explain_filters_query(query: str | None) -> str:
    if not query:
        return "No filters applied - returning all items"
    clauses = [text for matches, text in _FILTER_PATTERNS if matches(query)]
    return "; ".join(clauses) if clauses else "Applying custom filter conditions"


def explain_stats_query(query: str | None) -> str:
    if not query:
        return "No aggregation specified"
    clauses = [text for token, text in _STATS_FUNCTIONS if token in query]
    if " by " in query:
        clauses.append("Grouping results by specified fields")
    # only the first bucket found is reported
    for bucket in TIME_GROUPS:
        if f"{bucket}(" in query:
            clauses.append(f"Grouping by {bucket} intervals")
            break
    return "; ".join(clauses) if clauses else "Applying aggregation functions"


# -------------------- Example generation --------------------
_TYPE_SPECIFIC_EXAMPLES = {
    "containers": (
        ("Find nginx containers in production", "image_name:*nginx* AND cluster_id:prod*"),
        ("Count containers by image", "count() by image_name"),
    ),
    "inbox_items": (
        ("Find high-severity unresolved items", "severity:High AND NOT archived:true"),
        ("Count items by severity and type", "count() by severity, type"),
    ),
    "kubernetes_resources": (
        ("Find Pods or Services", "kind:Pod OR kind:Service"),
        ("Count resources by kind", "count() by kind"),
    ),
}


def generate_examples(data_type: str, fields: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, str]]]:
    """Suggest filter and stats queries from a data type's field metadata."""
    def filterable(kind: str) -> List[str]:
        return [f["name"] for f in fields if f.get("type") == kind and f.get("is_filter") and f.get("name")]

    strings, numbers = filterable("string"), filterable("number")
    booleans, dates = filterable("boolean"), filterable("datetime")

    filters: List[Dict[str, str]] = []
    stats: List[Dict[str, str]] = [{"description": "Count all items", "query": "count()"}]

    def ex(bucket: List[Dict[str, str]], description: str, query: str) -> None:
        bucket.append({"description": description, "query": query})

    if strings:
        ex(filters, "Find items with specific text value", f"{strings[0]}:example_value")
        ex(filters, "Find items containing text (wildcard search)", f"{strings[0]}:*partial*")
        ex(stats, f"Count items grouped by {strings[0]}", f"count() by {strings[0]}")
    if numbers:
        ex(filters, "Find items with number comparison", f"{numbers[0]}>100")
        ex(stats, f"Average {numbers[0]}", f"avg({numbers[0]})")
        if strings:
            ex(stats, f"Sum {numbers[0]} grouped by {strings[0]}", f"sum({numbers[0]}) by {strings[0]}")
    if booleans:
        ex(filters, "Find items by boolean value", f"{booleans[0]}:true")
    if dates:
        ex(filters, "Find items after a specific date", f'{dates[0]}>"2024-01-01"')
        ex(stats, "Count items by day", f"count() by day({dates[0]})")
        ex(stats, "Count items by month", f"count() by month({dates[0]})")
    if len(strings) >= 2:
        ex(filters, "Combine multiple conditions", f"{strings[0]}:value1 AND {strings[1]}:value2")

    specific = _TYPE_SPECIFIC_EXAMPLES.get(data_type)
    if specific:
        (f_desc, f_query), (s_desc, s_query) = specific
        ex(filters, f_desc, f_query)
        ex(stats, s_desc, s_query)

    return {"filter_examples": filters, "stats_examples": stats}


# -------------------- Data API operations --------------------
async def list_data_types(client: RadSecurityClient) -> Dict[str, Any]:
    response = await client.request(client.account_path("/data/types"))
    types = response if isinstance(response, list) else response.get("available_types") or []
    return {
        "available_types": types,
        "hint": "Use radql_get_type_metadata with a specific data_type to see available fields and filtering options",
    }


async def get_type_metadata(client: RadSecurityClient, data_type: str) -> Dict[str, Any]:
    try:
        response = await client.request(client.account_path(f"/data/{data_type}/meta"))
    except Exception as exc:
        enriched = enrich_error(exc, data_type)
        if enriched is exc:
            raise
        raise enriched from exc
    return {**response, "radql_examples": generate_examples(data_type, response.get("fields") or [])}


async def list_filter_values(client: RadSecurityClient, data_type: str, filter_name: str) -> Dict[str, Any]:
    response = await client.request(
        client.account_path(f"/data/{data_type}/filters/{filter_name}/values")
    )
    values = response.get("values") or {}
    return {
        "data_type": data_type,
        "filter_name": filter_name,
        "values": [
            {"value": (item.get("data") or {}).get("value"), "count": (item.get("data") or {}).get("count")}
            for item in values.get("items") or []
        ],
        "total_count": values.get("total_count") or 0,
        "has_more": values.get("has_more") or False,
        "hint": f"Use these values in your filters_query like: {filter_name}:value",
    }


async def _list_items(client: RadSecurityClient, q: RadQLQuery) -> Dict[str, Any]:
    params: Dict[str, Any] = {"limit": q.limit, "offset": q.offset, "filters_query": q.filters_query}
    if q.include_relations:
        params["include_relations"] = q.include_relations
    response = await client.request(client.account_path(f"/data/{q.data_type}"), params)
    items = response.get("items") or []
    return {
        "query_explanation": explain_filters_query(q.filters_query),
        "total_count": response.get("total_count") or 0,
        "returned_count": len(items),
        "data": items,
        "fields": response.get("fields") or [],
        "applied_filters": q.filters_query or "none",
        "pagination": {
            "limit": q.limit,
            "offset": q.offset,
            "has_more": response.get("has_more") or False,
        },
    }


async def _get_item(client: RadSecurityClient, q: RadQLQuery) -> Dict[str, Any]:
    response = await client.request(client.account_path(f"/data/{q.data_type}/{q.id}"))
    return {
        "data": response.get("data"),
        "fields": response.get("fields") or [],
        "data_type": q.data_type,
        "id": q.id,
    }


async def _get_stats(client: RadSecurityClient, q: RadQLQuery) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "stats_query": q.stats_query,
        "filters_query": q.filters_query,
        "limit": q.limit or None,
        "offset": q.offset or None,
    }
    response = await client.request(client.account_path(f"/data/stats/{q.data_type}"), params)
    items = response.get("items") or []
    return {
        "query_explanation": explain_stats_query(q.stats_query),
        "stats_query": q.stats_query,
        "applied_filters": q.filters_query or "none",
        "results": items,
        "fields": response.get("fields") or [],
        "total_count": response.get("total_count") or 0,
        "returned_count": len(items),
        "has_more": response.get("has_more") or False,
    }


async def execute_query(client: RadSecurityClient, query: RadQLQuery) -> Dict[str, Any]:
    if query.operation == "get_by_id" and not query.id:
        raise ValidationError("id is required for get_by_id operation")
    if query.operation == "stats" and not query.stats_query:
        raise ValidationError("stats_query is required for stats operation")

    handler = {"list": _list_items, "get_by_id": _get_item, "stats": _get_stats}[query.operation]
    try:
        return await handler(client, query)
    except Exception as exc:
        enriched = enrich_error(exc, query.data_type)
        if enriched is exc:
            raise
        raise enriched from exc


async def execute_batch(client: RadSecurityClient, queries: List[RadQLQuery]) -> List[Dict[str, Any]]:
    """Run every query concurrently; a failing query yields ``{error, query}``."""
    if len(queries) > MAX_BATCH_QUERIES:
        raise ValidationError(f"At most {MAX_BATCH_QUERIES} queries can be batched, got {len(queries)}")

    async def settle(q: RadQLQuery) -> Dict[str, Any]:
        try:
            return await execute_query(client, q)
        except Exception as exc:
            logger.warning("batch query failed data_type=%s operation=%s: %s", q.data_type, q.operation, exc)
            return {"error": str(exc), "query": q.model_dump(exclude_none=True)}

    return list(await asyncio.gather(*(settle(q) for q in queries)))
