"""Tests for Data API error enrichment."""

import json

import pytest

from rad_security_mcp.enrich import enrich_error, error_message
from rad_security_mcp.errors import RadQLError, UpstreamError


def upstream(status, message):
    return UpstreamError(status, {"message": message})


class TestParserErrors:

    def test_unquoted_date_gets_quoting_guidance(self):
        err = upstream(400, 'invalid query: unexpected token "-01" at position 14')
        enriched = enrich_error(err, "containers")

        assert isinstance(enriched, RadQLError)
        text = str(enriched)
        assert text.startswith("RadQL Parser Error")
        assert "Unquoted date or hyphenated value" in text
        assert 'created_at>"2024-01-01"' in text
        assert text.endswith('Original error: invalid query: unexpected token "-01" at position 14')

    def test_unknown_field_lists_common_fields(self):
        enriched = enrich_error(upstream(400, "invalid query: unknown field foo"), "finding_groups")
        text = str(enriched)
        assert "Unknown or misspelled field name" in text
        assert 'data_type="finding_groups"' in text
        assert "Common finding_groups fields" in text
        assert "rule_title" in text

    def test_unknown_field_without_type_uses_placeholder(self):
        text = str(enrich_error(upstream(400, "unexpected token: field not found"), None))
        assert 'data_type="your_type"' in text
        assert "Common" not in text

    def test_generic_syntax_lists_four_fixes(self):
        text = str(enrich_error(upstream(400, "unexpected token ')'"), "inbox_items"))
        assert "Invalid query syntax" in text
        for n in ("1.", "2.", "3.", "4."):
            assert f"  {n} " in text


class TestStatusRules:

    def test_unknown_field_outside_parser_errors(self):
        text = str(enrich_error(upstream(400, "field 'foo' not found"), "containers"))
        assert text.startswith("Unknown Field Error")
        assert "image_name" in text
        assert text.endswith("Original error: field 'foo' not found")

    def test_other_400_carries_details_blob(self):
        enriched = enrich_error(upstream(400, "limit too large"), "containers")
        head, blob = str(enriched).split("\n\n", 1)
        assert head == "Invalid RadQL query syntax"
        details = json.loads(blob)
        assert details["original_error"] == "limit too large"
        assert details["data_type"] == "containers"
        assert "radql_get_type_metadata" in details["next_step"]

    def test_404_suggests_listing_types(self):
        text = str(enrich_error(upstream(404, "nope"), "widgets"))
        assert "Data type 'widgets' not found" in text
        assert "radql_list_data_types" in text
        assert "containers, finding_groups, inbox_items" in text

    def test_401(self):
        text = str(enrich_error(upstream(401, "who are you"), "containers"))
        assert text.startswith("Authentication failed")

    def test_403_names_the_data_type(self):
        text = str(enrich_error(upstream(403, "forbidden"), "inbox_items"))
        assert "Access denied to data type 'inbox_items'" in text

    def test_enriched_error_keeps_status_and_original(self):
        err = upstream(403, "forbidden")
        enriched = enrich_error(err, "x")
        assert enriched.status == 403
        assert enriched.original is err


class TestPassThrough:

    @pytest.mark.parametrize("status", [500, 502, 429])
    def test_unmatched_status_is_returned_unchanged(self, status):
        err = upstream(status, "boom")
        assert enrich_error(err, "containers") is err

    def test_non_upstream_errors_are_returned_unchanged(self):
        err = ValueError("bad")
        assert enrich_error(err, "containers") is err

    def test_already_enriched_errors_are_not_rewrapped(self):
        enriched = enrich_error(upstream(401, "x"))
        assert enrich_error(enriched) is enriched


def test_error_message_prefers_payload_message():
    assert error_message(UpstreamError(400, {"message": "m", "error": "e"})) == "m"
    assert error_message(UpstreamError(400, "plain text")) == "plain text"
    assert error_message(RuntimeError("r")) == "r"
