"""Rewrite Data API failures into actionable RadQL guidance.

Classification is table driven: each rule is a ``(predicate, builder)`` pair
tried in order, and the first match produces the rewritten message. New
failure patterns are added by appending a rule. ``enrich_error`` never
raises; when no rule matches it hands back the error it was given.
"""
from __future__ import annotations

import json
import re
from typing import Callable, List, Optional, Tuple

from .errors import RadQLError, UpstreamError

Predicate = Callable[[int, str], bool]
Builder = Callable[[str, Optional[str]], str]

COMMON_DATA_TYPES = ("containers", "finding_groups", "inbox_items", "kubernetes_resources")

# Quick-reference field hints. Used only for messages, never for validation.
COMMON_FIELDS = {
    "containers": (
        "  Filterable: name, image_name, image_repo, owner_kind\n"
        "  All: id, cluster_id, image_tag, created_at\n"
    ),
    "finding_groups": (
        "  Filterable: type, severity, source_kind, source_name, source_namespace, rule_title\n"
        "  All: group_id, severity, rule_id, event_timestamp\n"
    ),
    "inbox_items": (
        "  severity (High|Medium|Low), type, title, archived, false_positive, created_at\n"
    ),
}

_UNQUOTED_HYPHEN = re.compile(r'unexpected token.*"-\d+"')


def error_message(error: BaseException) -> str:
    if isinstance(error, UpstreamError):
        payload = error.payload
        if isinstance(payload, dict):
            for key in ("message", "error", "detail"):
                if isinstance(payload.get(key), str):
                    return payload[key]
            return json.dumps(payload)
        if payload:
            return str(payload)
    return str(error)


def _field_hints(data_type: Optional[str]) -> str:
    hints = COMMON_FIELDS.get(data_type or "")
    if not hints:
        return ""
    return f"Common {data_type} fields (quick reference):\n{hints}\n"


# -------------------- Parser error sub-rules --------------------
def _is_parser_error(status: int, msg: str) -> bool:
    return status == 400 and ("unexpected token" in msg or "invalid query" in msg)


def _mentions_unknown_field(msg: str) -> bool:
    return "unknown field" in msg or "not found" in msg


def _quote_hint(msg: str, data_type: Optional[str]) -> str:
    return (
        "ISSUE: Unquoted date or hyphenated value detected\n"
        "SOLUTION: Dates and values with hyphens MUST be quoted\n\n"
        "Examples:\n"
        "  INCORRECT: created_at>2024-01-01\n"
        '  CORRECT:   created_at>"2024-01-01"\n\n'
        "  INCORRECT: id:abc-123-def\n"
        '  CORRECT:   id:"abc-123-def"\n\n'
    )


def _field_discovery_hint(msg: str, data_type: Optional[str]) -> str:
    return (
        "ISSUE: Unknown or misspelled field name\n"
        f'SOLUTION: Call radql_get_type_metadata with data_type="{data_type or "your_type"}" '
        "to see all available fields\n\n"
        + _field_hints(data_type)
    )


def _generic_syntax_hint(msg: str, data_type: Optional[str]) -> str:
    return (
        "ISSUE: Invalid query syntax\n"
        "COMMON SOLUTIONS:\n"
        '  1. Quote dates: created_at>"2024-01-01"\n'
        '  2. Quote UUIDs: id:"abc-123-def"\n'
        '  3. Quote special chars: title:"my value"\n'
        f'  4. Verify fields: radql_get_type_metadata (data_type="{data_type}")\n\n'
    )


PARSER_RULES: List[Tuple[Callable[[str], bool], Builder]] = [
    (lambda msg: bool(_UNQUOTED_HYPHEN.search(msg)), _quote_hint),
    (_mentions_unknown_field, _field_discovery_hint),
    (lambda msg: True, _generic_syntax_hint),
]


# -------------------- Top-level rules --------------------
def _parser_error(msg: str, data_type: Optional[str]) -> str:
    body = next(build(msg, data_type) for matches, build in PARSER_RULES if matches(msg))
    return f"RadQL Parser Error\n\n{body}Original error: {msg}"


def _unknown_field(msg: str, data_type: Optional[str]) -> str:
    return (
        "Unknown Field Error\n\n"
        f'NEXT STEP: Call radql_get_type_metadata with data_type="{data_type}" for complete field list\n\n'
        + _field_hints(data_type)
        + f"Original error: {msg}"
    )


def _invalid_syntax(msg: str, data_type: Optional[str]) -> str:
    details = {
        "original_error": msg,
        "next_step": f'Call radql_get_type_metadata with data_type="{data_type}" for field list and examples',
        "data_type": data_type,
    }
    return f"Invalid RadQL query syntax\n\n{json.dumps(details, indent=2)}"


def _type_not_found(msg: str, data_type: Optional[str]) -> str:
    return (
        f"Data type '{data_type}' not found\n\n"
        "NEXT STEP: Call radql_list_data_types to see all available types\n\n"
        f"Common types: {', '.join(COMMON_DATA_TYPES)}"
    )


def _auth_failed(msg: str, data_type: Optional[str]) -> str:
    return (
        "Authentication failed\n\n"
        "VERIFY: RAD Security API credentials are set "
        "(RAD_SECURITY_ACCOUNT_ID and RAD_SECURITY_SESSION_TOKEN or an access key pair)"
    )


def _access_denied(msg: str, data_type: Optional[str]) -> str:
    return (
        f"Access denied to data type '{data_type}'\n\n"
        "VERIFY: Account permissions or call radql_list_data_types to confirm type exists"
    )


RULES: List[Tuple[Predicate, Builder]] = [
    (_is_parser_error, _parser_error),
    (
        lambda status, msg: status == 400
        and ("unknown field" in msg or ("field" in msg and "not found" in msg)),
        _unknown_field,
    ),
    (lambda status, msg: status == 400, _invalid_syntax),
    (lambda status, msg: status == 404, _type_not_found),
    (lambda status, msg: status == 401, _auth_failed),
    (lambda status, msg: status == 403, _access_denied),
]


def enrich_error(error: BaseException, data_type: Optional[str] = None) -> BaseException:
    """Return a ``RadQLError`` with guidance, or ``error`` itself when no rule applies."""
    if not isinstance(error, UpstreamError) or isinstance(error, RadQLError):
        return error
    try:
        msg = error_message(error)
        for matches, build in RULES:
            if matches(error.status, msg):
                return RadQLError(build(msg, data_type), error)
    except Exception:  # enrichment is advisory; fall back to the untouched error
        return error
    return error
