"""Data backend command boundary.

Tool handlers reach campaign data only through `DataBackend.invoke(command, args)`. Commands follow the
backend's naming: `get_<type>`, `list_<plural>`, `create_<type>`, `update_<type>`, plus `search_entities`,
`get_entity_relationships`, `get_location_children` and `create_relationship`.
"""

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from lorekeeper.models.entities import ENTITY_PLURALS, RICH_TEXT_FIELDS, entity_name
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

_PLURAL_TO_TYPE = {plural: entity_type for entity_type, plural in ENTITY_PLURALS.items()}


class BackendError(Exception):
    """A data backend command failed."""

    def __init__(self, command: str, message: str):
        super().__init__(message)
        self.command = command


class EntityNotFoundError(BackendError):
    """The requested entity does not exist."""


class DataBackend(Protocol):
    """Request/response command interface to the campaign data store."""

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any: ...


class InMemoryBackend:
    """Dictionary-backed campaign store used for development and tests."""

    def __init__(self) -> None:
        self.entities: dict[str, dict[str, dict[str, Any]]] = {entity_type: {} for entity_type in ENTITY_PLURALS}
        self.relationships: dict[str, dict[str, Any]] = {}
        self.commands: list[tuple[str, dict[str, Any]]] = []

    def seed(self, entity_type: str, **fields: Any) -> dict[str, Any]:
        """Insert an entity directly, returning the stored record."""
        if entity_type not in self.entities:
            raise ValueError(f"Unknown entity type: {entity_type}")
        record = {"id": str(uuid.uuid4()), **fields}
        self.entities[entity_type][record["id"]] = record
        return record

    def seed_relationship(self, **fields: Any) -> dict[str, Any]:
        record = {"id": str(uuid.uuid4()), "is_bidirectional": False, "description": None, "strength": None}
        record.update(fields)
        self.relationships[record["id"]] = record
        return record

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any:
        args = args or {}
        self.commands.append((command, args))
        logger.debug(f"Backend command {command} with args {args}")

        special = getattr(self, f"_command_{command}", None)
        if special is not None:
            return special(command, **args)

        verb, _, noun = command.partition("_")
        if verb == "get" and noun in self.entities:
            return dict(self._require(command, noun, args["id"]))
        if verb == "list" and noun in _PLURAL_TO_TYPE:
            return self._list(_PLURAL_TO_TYPE[noun], args.get("campaign_id"))
        if verb == "create" and noun in self.entities:
            return self._create(noun, args["data"])
        if verb == "update" and noun in self.entities:
            return self._update(command, noun, args["id"], args["changes"])

        raise BackendError(command, f"Unknown command: {command}")

    def _require(self, command: str, entity_type: str, entity_id: str) -> dict[str, Any]:
        record = self.entities[entity_type].get(entity_id)
        if record is None:
            raise EntityNotFoundError(command, f"{entity_type} not found: {entity_id}")
        return record

    def _list(self, entity_type: str, campaign_id: str | None) -> list[dict[str, Any]]:
        return [
            dict(record)
            for record in self.entities[entity_type].values()
            if campaign_id is None or record.get("campaign_id") == campaign_id
        ]

    def _create(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        record = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **data}
        self.entities[entity_type][record["id"]] = record
        return dict(record)

    def _update(self, command: str, entity_type: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        record = self._require(command, entity_type, entity_id)
        record.update(changes)
        record["updated_at"] = datetime.now(UTC).isoformat()
        return dict(record)

    def _command_search_entities(
        self,
        command: str,
        campaign_id: str | None = None,
        query: str = "",
        entity_types: list[str] | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        needle = query.strip().lower()
        if not needle:
            return []

        ranked: list[tuple[int, dict[str, Any]]] = []
        for entity_type, records in self.entities.items():
            if entity_type == "campaign" or (entity_types and entity_type not in entity_types):
                continue
            for record in records.values():
                if campaign_id is not None and record.get("campaign_id") != campaign_id:
                    continue
                name = entity_name(record)
                if needle in name.lower():
                    ranked.append((0, self._search_hit(entity_type, record, None)))
                    continue
                for field in sorted(RICH_TEXT_FIELDS):
                    value = record.get(field)
                    if isinstance(value, str) and needle in value.lower():
                        ranked.append((1, self._search_hit(entity_type, record, _snippet(value, needle))))
                        break

        ranked.sort(key=lambda item: item[0])
        return [hit for _, hit in ranked[:limit]]

    @staticmethod
    def _search_hit(entity_type: str, record: dict[str, Any], snippet: str | None) -> dict[str, Any]:
        return {
            "entity_type": entity_type,
            "entity_id": record["id"],
            "name": entity_name(record),
            "snippet": snippet,
        }

    def _command_get_entity_relationships(
        self, command: str, entity_type: str, entity_id: str
    ) -> list[dict[str, Any]]:
        return [
            dict(relationship)
            for relationship in self.relationships.values()
            if (relationship["source_type"] == entity_type and relationship["source_id"] == entity_id)
            or (relationship["target_type"] == entity_type and relationship["target_id"] == entity_id)
        ]

    def _command_get_location_children(
        self, command: str, parent_id: str, campaign_id: str | None = None
    ) -> list[dict[str, Any]]:
        return [record for record in self._list("location", campaign_id) if record.get("parent_id") == parent_id]

    def _command_create_relationship(self, command: str, **fields: Any) -> dict[str, Any]:
        for side in ("source", "target"):
            self._require(command, fields[f"{side}_type"], fields[f"{side}_id"])
        return dict(self.seed_relationship(**fields))


def _snippet(text: str, needle: str, width: int = 60) -> str:
    index = text.lower().find(needle)
    start = max(0, index - width // 2)
    end = min(len(text), index + len(needle) + width // 2)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"


class HttpBackend:
    """Data backend reached over HTTP: POST {base_url}/commands/{command} with {"args": ...}."""

    def __init__(self, base_url: str, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any:
        logger.debug(f"Invoking backend command {command}")
        try:
            response = await self.client.post(f"/commands/{command}", json={"args": args or {}})
        except httpx.HTTPError as e:
            raise BackendError(command, f"Backend request failed: {e}") from e

        if response.status_code == 404:
            raise EntityNotFoundError(command, _error_detail(response))
        if response.is_error:
            raise BackendError(command, f"{command} failed ({response.status_code}): {_error_detail(response)}")

        return response.json()

    async def aclose(self) -> None:
        await self.client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)
