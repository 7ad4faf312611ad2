"""Schema validation helpers for settings files and backend declarations."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

SCHEMA_VERSION = "1"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    schema_path = resources.files("compilemw").joinpath("schemas").joinpath(name)
    with schema_path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_settings(payload: Mapping[str, Any]) -> None:
    """Validate a settings payload against the schema."""
    schema = _load_schema("settings.schema.json")
    jsonschema.validate(dict(payload), schema)


def validate_backend_declaration(payload: Mapping[str, Any]) -> None:
    """Validate a single external backend declaration."""
    schema = _load_schema("settings.schema.json")
    jsonschema.validate(dict(payload), schema["$defs"]["external_backend"])
