"""Document schemas and the structural validator that enforces them."""

from reprovision.schema.documents import get_schema, schema_names
from reprovision.schema.validator import unknown_keys, validate_schema

__all__ = ["get_schema", "schema_names", "unknown_keys", "validate_schema"]
