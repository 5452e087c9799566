"""Entity id checks and the guidance shown when the model passes a name instead of an id."""

import re

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def invalid_id_message(value: str) -> str:
    """Explain that entity ids are UUIDs and point the model at search_entities."""
    display_value = value[:47] + "..." if len(value) > 50 else value
    return (
        f'"{display_value}" is not a valid entity ID. Entity IDs are UUIDs '
        f'(e.g., "550e8400-e29b-41d4-a716-446655440000").\n'
        f"To find an entity's ID by name, use the search_entities tool:\n"
        f'  search_entities({{"query": "{display_value}"}})\n'
        f"Then use the returned ID with this tool."
    )
