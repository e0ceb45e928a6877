"""JSON schemas for the case files this package reads and writes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from jsonschema import Draft202012Validator

DRAFT = "https://json-schema.org/draft/2020-12/schema"

LEDGER_SCHEMA: dict[str, Any] = {
    "$schema": DRAFT,
    "title": "leads.json",
    "type": "object",
    "required": ["leads"],
    "properties": {
        "max_depth": {"type": "integer", "minimum": 0},
        "leads": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "lead": {"type": "string"},
                    "status": {"type": "string"},
                    "priority": {"type": "string"},
                    "depth": {"type": "integer", "minimum": 0},
                    "parent": {"type": ["string", "null"]},
                    "from": {"type": ["string", "null"]},
                    "result": {"type": ["string", "null"]},
                    "sources": {"type": "array", "items": {"type": "string"}},
                    "claimed_by": {"type": ["string", "null"]},
                    "claimed_at": {"type": ["string", "null"]},
                },
            },
        },
    },
}

STATE_SCHEMA: dict[str, Any] = {
    "$schema": DRAFT,
    "title": "state.json",
    "type": "object",
    "properties": {
        "case": {"type": "string"},
        "phase": {"type": "string"},
        "iteration": {"type": "integer", "minimum": 0},
        "gates": {
            "type": "object",
            "additionalProperties": {"type": "boolean"},
        },
    },
}

_SOURCE_RECORD_PROPERTIES: dict[str, Any] = {
    "url": {"type": "string"},
    "captured": {"type": "boolean"},
    "category": {"type": "string"},
}

# Two registry layouts exist in the wild: {"sources": [{"id": ...}]} and {"S001": {...}}.
SOURCES_SCHEMA: dict[str, Any] = {
    "$schema": DRAFT,
    "title": "sources.json",
    "type": "object",
    "anyOf": [
        {
            "required": ["sources"],
            "properties": {
                "sources": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id"],
                        "properties": {
                            "id": {"type": "string", "pattern": "^S\\d{3,}$"},
                            **_SOURCE_RECORD_PROPERTIES,
                        },
                    },
                },
            },
        },
        {
            "not": {"required": ["sources"]},
            "patternProperties": {
                "^S\\d{3,}$": {"type": "object", "properties": _SOURCE_RECORD_PROPERTIES},
            },
        },
    ],
}

SEMANTIC_SUMMARY_FIELDS = (
    "total",
    "verified",
    "unverified",
    "skipped",
    "noSource",
    "sourceMissing",
    "sourceInvalid",
    "noResponse",
    "parseErrors",
    "invalidResponses",
    "citationUrlMismatches",
)

COMPUTE_SUMMARY_FIELDS = (
    "total",
    "verified",
    "discrepancies",
    "dataNotFound",
    "noSource",
    "sourceMissing",
    "sourceInvalid",
    "noResponse",
    "parseErrors",
    "errors",
)


def summary_schema(title: str, fields: tuple[str, ...]) -> dict[str, Any]:
    """Schema for a verification report whose ``summary`` carries numeric counters."""

    return {
        "$schema": DRAFT,
        "title": title,
        "type": "object",
        "required": ["summary"],
        "properties": {
            "summary": {
                "type": "object",
                "required": list(fields),
                "properties": {name: {"type": "number"} for name in fields},
            },
        },
    }


SEMANTIC_VERIFICATION_SCHEMA = summary_schema("semantic-verification.json", SEMANTIC_SUMMARY_FIELDS)
COMPUTE_VERIFICATION_SCHEMA = summary_schema("compute-verification.json", COMPUTE_SUMMARY_FIELDS)


def schema_errors(payload: Mapping[str, Any], schema: dict[str, Any]) -> list[str]:
    """Return human-readable schema violations, ordered by location in the document."""

    validator = Draft202012Validator(schema)
    messages: list[str] = []
    errors = sorted(
        validator.iter_errors(payload),
        key=lambda item: tuple(str(part) for part in item.path),
    )
    for error in errors:
        location = "/".join(str(part) for part in error.path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages
