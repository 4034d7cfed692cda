"""Tests for the RadQL condition and aggregation compilers."""

import pytest

from rad_security_mcp.errors import ValidationError
from rad_security_mcp.models import AggregationSpec, FilterCondition, QueryBuilderRequest
from rad_security_mcp.radql import build_query, compile_aggregation, compile_conditions, render_condition


def cond(field, operator, value, negate=False):
    return FilterCondition(field=field, operator=operator, value=value, negate=negate)


class TestConditionCompiler:

    def test_contains_wraps_value_in_wildcards(self):
        assert render_condition(cond("image_name", "contains", "nginx")) == "image_name:*nginx*"

    def test_starts_with_and_ends_with(self):
        assert render_condition(cond("cluster_id", "starts_with", "prod")) == "cluster_id:prod*"
        assert render_condition(cond("name", "ends_with", "api")) == "name:*api"

    def test_wildcard_with_hyphen_is_quoted(self):
        assert render_condition(cond("name", "contains", "my-app")) == 'name:"*my-app*"'
        assert render_condition(cond("name", "ends_with", "a b")) == 'name:"*a b"'

    def test_hyphenated_value_is_quoted(self):
        assert render_condition(cond("id", ":", "abc-123-def")) == 'id:"abc-123-def"'

    def test_alphanumeric_value_is_not_quoted(self):
        assert render_condition(cond("image_name", ":", "nginx")) == "image_name:nginx"

    @pytest.mark.parametrize("value", ["my value", "a:b", "f(x)", "2024-01-01", "a>b", "x=y", "wow!"])
    def test_special_characters_are_quoted(self, value):
        assert render_condition(cond("title", "=", value)) == f'title="{value}"'

    def test_numbers_and_booleans_are_never_quoted(self):
        assert render_condition(cond("cvss_score", ">=", 7.5)) == "cvss_score>=7.5"
        assert render_condition(cond("count", "<", 10)) == "count<10"
        assert render_condition(cond("archived", ":", True)) == "archived:true"
        assert render_condition(cond("archived", ":", False)) == "archived:false"

    def test_whole_floats_render_without_exponent(self):
        assert render_condition(cond("n", ">", 1e20)) == "n>100000000000000000000"
        assert render_condition(cond("n", ">", 2.0)) == "n>2"
        assert render_condition(cond("n", "<", 0.25)) == "n<0.25"

    def test_negate_prefixes_not(self):
        assert render_condition(cond("archived", ":", True, negate=True)) == "NOT archived:true"

    def test_not_equal_operators_render_verbatim(self):
        assert render_condition(cond("status", "!=", "closed")) == "status!=closed"
        assert render_condition(cond("kind", "<>", "Pod")) == "kind<>Pod"

    def test_join_with_logic(self):
        conditions = [cond("severity", ":", "High"), cond("kind", ":", "Pod")]
        assert compile_conditions(conditions) == "severity:High AND kind:Pod"
        assert compile_conditions(conditions, "OR") == "severity:High OR kind:Pod"

    def test_empty_conditions_yield_no_filter(self):
        assert compile_conditions([]) is None

    def test_compile_is_deterministic(self):
        conditions = [cond("id", ":", "abc-123"), cond("name", "contains", "x"), cond("n", ">", 3)]
        assert compile_conditions(conditions, "OR") == compile_conditions(list(conditions), "OR")


class TestAggregationCompiler:

    def test_count_without_field(self):
        assert compile_aggregation(AggregationSpec(function="count")) == "count()"

    def test_count_with_field(self):
        assert compile_aggregation(AggregationSpec(function="count", field="id")) == "count(id)"

    def test_function_without_field_is_rejected(self):
        with pytest.raises(ValidationError, match="avg requires an aggregate_field"):
            compile_aggregation(AggregationSpec(function="avg"))

    def test_group_by_with_time_bucket(self):
        spec = AggregationSpec(function="count", group_by=["created_at"], time_group="day")
        assert compile_aggregation(spec) == "count() by day(created_at)"

    def test_only_timestamp_like_fields_are_bucketed(self):
        spec = AggregationSpec(
            function="sum", field="cost", group_by=["severity", "event_timestamp", "updated_at"], time_group="month"
        )
        assert compile_aggregation(spec) == "sum(cost) by severity, month(event_timestamp), month(updated_at)"

    def test_timestamp_fields_stay_bare_without_time_group(self):
        spec = AggregationSpec(function="max", field="score", group_by=["created_at"])
        assert compile_aggregation(spec) == "max(score) by created_at"


class TestBuildQuery:

    def test_builds_both_queries(self):
        request = QueryBuilderRequest(
            conditions=[cond("image_name", "contains", "nginx"), cond("archived", ":", True, negate=True)],
            aggregation="count",
            group_by=["image_name"],
        )
        assert build_query(request) == {
            "filters_query": "image_name:*nginx* AND NOT archived:true",
            "stats_query": "count() by image_name",
        }

    def test_empty_request_yields_empty_result(self):
        assert build_query(QueryBuilderRequest()) == {}
