"""Tests for RadQL execution, discovery and batching."""

import asyncio

import pytest

from rad_security_mcp.errors import RadQLError, UpstreamError, ValidationError
from rad_security_mcp.models import RadQLQuery
from rad_security_mcp.radql import (
    execute_batch,
    execute_query,
    generate_examples,
    get_type_metadata,
    list_data_types,
    list_filter_values,
)

DATA = "/accounts/acc-1/data"


class TestExecuteQuery:

    async def test_list_decorates_results(self, make_client):
        client = make_client({
            f"{DATA}/containers": {"items": [{"id": 1}, {"id": 2}], "total_count": 9, "has_more": True},
        })
        query = RadQLQuery(data_type="containers", operation="list",
                           filters_query="image_name:*nginx*", include_relations=["owner"])
        result = await execute_query(client, query)

        assert result["query_explanation"] == "Filtering by exact field values; Using wildcard pattern matching"
        assert result["returned_count"] == 2
        assert result["total_count"] == 9
        assert result["applied_filters"] == "image_name:*nginx*"
        assert result["pagination"] == {"limit": 20, "offset": 0, "has_more": True}
        params = client.calls[0][2]
        assert params["filters_query"] == "image_name:*nginx*"
        assert params["include_relations"] == ["owner"]

    async def test_list_without_filters(self, make_client):
        client = make_client({f"{DATA}/containers": {}})
        result = await execute_query(client, RadQLQuery(data_type="containers", operation="list"))
        assert result["applied_filters"] == "none"
        assert result["data"] == []
        assert result["query_explanation"] == "No filters applied - returning all items"

    async def test_get_by_id(self, make_client):
        client = make_client({f"{DATA}/containers/abc": {"data": {"name": "web"}, "fields": ["name"]}})
        result = await execute_query(client, RadQLQuery(data_type="containers", operation="get_by_id", id="abc"))
        assert result == {"data": {"name": "web"}, "fields": ["name"], "data_type": "containers", "id": "abc"}

    async def test_get_by_id_requires_id(self, make_client):
        client = make_client()
        with pytest.raises(ValidationError, match="id is required"):
            await execute_query(client, RadQLQuery(data_type="containers", operation="get_by_id"))
        assert client.calls == []

    async def test_stats(self, make_client):
        client = make_client({f"{DATA}/stats/inbox_items": {"items": [{"severity": "High", "count": 3}]}})
        query = RadQLQuery(data_type="inbox_items", operation="stats", stats_query="count() by severity")
        result = await execute_query(client, query)
        assert result["query_explanation"] == "Counting items; Grouping results by specified fields"
        assert result["results"] == [{"severity": "High", "count": 3}]
        assert client.calls[0][2]["stats_query"] == "count() by severity"

    async def test_stats_requires_stats_query(self, make_client):
        with pytest.raises(ValidationError, match="stats_query is required"):
            await execute_query(make_client(), RadQLQuery(data_type="x", operation="stats"))

    async def test_upstream_failure_is_enriched(self, make_client):
        client = make_client({f"{DATA}/containers": UpstreamError(400, {"message": 'unexpected token "-01"'})})
        with pytest.raises(RadQLError, match="Unquoted date or hyphenated value"):
            await execute_query(client, RadQLQuery(data_type="containers", operation="list"))

    async def test_unmatched_failure_passes_through(self, make_client):
        err = UpstreamError(500, "boom")
        client = make_client({f"{DATA}/containers": err})
        with pytest.raises(UpstreamError) as exc_info:
            await execute_query(client, RadQLQuery(data_type="containers", operation="list"))
        assert exc_info.value is err


class TestBatch:

    async def test_failures_are_isolated_and_order_kept(self, make_client):
        class SlowClient(make_client):
            async def request(self, endpoint, params=None, method="GET", json=None):
                if endpoint.endswith("/a"):
                    await asyncio.sleep(0.02)
                return await super().request(endpoint, params, method, json)

        client = SlowClient({
            f"{DATA}/a": {"items": [{"n": "a"}]},
            f"{DATA}/c": {"items": [{"n": "c"}]},
        })
        queries = [
            RadQLQuery(data_type="a", operation="list"),
            RadQLQuery(data_type="b", operation="get_by_id"),
            RadQLQuery(data_type="c", operation="list"),
        ]
        results = await execute_batch(client, queries)

        assert len(results) == 3
        assert results[0]["data"] == [{"n": "a"}]
        assert results[2]["data"] == [{"n": "c"}]
        assert set(results[1]) == {"error", "query"}
        assert "id is required" in results[1]["error"]
        assert results[1]["query"]["data_type"] == "b"

    async def test_upstream_failures_are_captured_enriched(self, make_client):
        client = make_client({f"{DATA}/nope": UpstreamError(404, "missing")})
        [result] = await execute_batch(client, [RadQLQuery(data_type="nope", operation="list")])
        assert "Data type 'nope' not found" in result["error"]

    async def test_too_many_queries(self, make_client):
        queries = [RadQLQuery(data_type="a", operation="list")] * 11
        with pytest.raises(ValidationError):
            await execute_batch(make_client(), queries)


class TestDiscovery:

    async def test_list_data_types_accepts_bare_list(self, make_client):
        client = make_client({f"{DATA}/types": ["containers", "inbox_items"]})
        result = await list_data_types(client)
        assert result["available_types"] == ["containers", "inbox_items"]
        assert "radql_get_type_metadata" in result["hint"]

    async def test_list_data_types_accepts_wrapped_list(self, make_client):
        client = make_client({f"{DATA}/types": {"available_types": [{"name": "containers"}]}})
        assert (await list_data_types(client))["available_types"] == [{"name": "containers"}]

    async def test_type_metadata_adds_examples(self, make_client):
        fields = [{"name": "image_name", "type": "string", "is_filter": True}]
        client = make_client({f"{DATA}/containers/meta": {"fields": fields}})
        result = await get_type_metadata(client, "containers")
        assert result["fields"] == fields
        queries = [e["query"] for e in result["radql_examples"]["filter_examples"]]
        assert "image_name:*partial*" in queries
        assert "image_name:*nginx* AND cluster_id:prod*" in queries

    async def test_type_metadata_not_found_is_enriched(self, make_client):
        with pytest.raises(RadQLError, match="radql_list_data_types"):
            await get_type_metadata(make_client(), "widgets")

    async def test_filter_values_are_flattened(self, make_client):
        client = make_client({
            f"{DATA}/containers/filters/namespace/values": {
                "values": {"items": [{"data": {"value": "default", "count": 4}}, {}], "total_count": 2}
            }
        })
        result = await list_filter_values(client, "containers", "namespace")
        assert result["values"] == [{"value": "default", "count": 4}, {"value": None, "count": None}]
        assert result["total_count"] == 2
        assert result["has_more"] is False
        assert result["hint"].endswith("namespace:value")


def test_generate_examples_by_field_type():
    fields = [
        {"name": "severity", "type": "string", "is_filter": True},
        {"name": "kind", "type": "string", "is_filter": True},
        {"name": "score", "type": "number", "is_filter": True},
        {"name": "archived", "type": "boolean", "is_filter": True},
        {"name": "created_at", "type": "datetime", "is_filter": True},
        {"name": "hidden", "type": "string", "is_filter": False},
    ]
    examples = generate_examples("other", fields)
    filters = [e["query"] for e in examples["filter_examples"]]
    stats = [e["query"] for e in examples["stats_examples"]]

    assert filters == [
        "severity:example_value",
        "severity:*partial*",
        "score>100",
        "archived:true",
        'created_at>"2024-01-01"',
        "severity:value1 AND kind:value2",
    ]
    assert stats == [
        "count()",
        "count() by severity",
        "avg(score)",
        "sum(score) by severity",
        "count() by day(created_at)",
        "count() by month(created_at)",
    ]
