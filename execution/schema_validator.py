"""Schema validation for persisted project snapshots.

Validates serialized projects against the JSON Schema in
config/schemas. All validation is deterministic.
"""

import json
from functools import lru_cache
from pathlib import Path

from jsonschema import Draft202012Validator

from config.settings import PROJECT_STATE_SCHEMA


@lru_cache(maxsize=8)
def load_schema(schema_path: str | Path) -> dict:
    """Load a JSON Schema file.

    Args:
        schema_path: Path to the schema file.

    Returns:
        The schema dictionary.

    Raises:
        FileNotFoundError: If the schema file does not exist.
    """
    path = Path(schema_path)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def get_validation_errors(data: dict, schema_path: str | Path) -> list[str]:
    """Return all validation errors for a data dictionary.

    Args:
        data: The data to validate.
        schema_path: Path to the JSON Schema file.

    Returns:
        List of human-readable error messages. Empty if valid.
    """
    validator = Draft202012Validator(load_schema(schema_path))
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
    return [
        f"{'.'.join(str(p) for p in error.absolute_path) or 'root'}: {error.message}"
        for error in errors
    ]


def get_state_validation_errors(state: dict) -> list[str]:
    """Return all schema errors for a serialized project snapshot."""
    return get_validation_errors(state, PROJECT_STATE_SCHEMA)


def is_valid_project_state(state: dict) -> bool:
    """Check if a serialized project is schema-valid without raising."""
    return not get_state_validation_errors(state)
