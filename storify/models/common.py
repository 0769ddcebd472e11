"""Shared pydantic configuration for API-facing models (camelCase JSON)."""

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

# Frozen row snapshots, serialized with camelCase keys.
RECORD_CONFIG = ConfigDict(
    frozen=True,
    from_attributes=True,
    alias_generator=to_camel,
    populate_by_name=True,
)

# Request bodies accept either camelCase or snake_case keys.
REQUEST_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)
