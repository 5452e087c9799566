"""Campaign entity vocabulary shared by tools, proposals and the data backend."""

from typing import Literal

from pydantic import BaseModel

EntityType = Literal[
    "character",
    "location",
    "organization",
    "quest",
    "hero",
    "player",
    "session",
    "timeline_event",
    "secret",
]

# Entities that can be updated also include the campaign itself
UpdatableEntityType = Literal[
    "campaign",
    "character",
    "location",
    "organization",
    "quest",
    "hero",
    "player",
    "session",
    "timeline_event",
    "secret",
]

ENTITY_TYPES: tuple[str, ...] = (
    "character",
    "location",
    "organization",
    "quest",
    "hero",
    "player",
    "session",
    "timeline_event",
    "secret",
)

UPDATABLE_ENTITY_TYPES: tuple[str, ...] = ("campaign", *ENTITY_TYPES)

ENTITY_PLURALS: dict[str, str] = {
    "campaign": "campaigns",
    "character": "characters",
    "location": "locations",
    "organization": "organizations",
    "quest": "quests",
    "hero": "heroes",
    "player": "players",
    "session": "sessions",
    "timeline_event": "timeline_events",
    "secret": "secrets",
}

LOCATION_TYPES: tuple[str, ...] = (
    "world",
    "continent",
    "region",
    "territory",
    "settlement",
    "district",
    "building",
    "room",
    "landmark",
    "wilderness",
)

ORGANIZATION_TYPES: tuple[str, ...] = (
    "government",
    "guild",
    "religion",
    "military",
    "criminal",
    "mercantile",
    "academic",
    "secret_society",
    "family",
    "other",
)

QUEST_PLOT_TYPES: tuple[str, ...] = ("main", "secondary", "side", "background")

QUEST_STATUSES: tuple[str, ...] = ("planned", "available", "active", "completed", "failed", "abandoned")

# Fields holding long-form prose, rendered as sections rather than metadata
RICH_TEXT_FIELDS: frozenset[str] = frozenset(
    {
        "description",
        "personality",
        "motivations",
        "secrets",
        "voice_notes",
        "gm_notes",
        "goals",
        "resources",
        "hook",
        "objectives",
        "complications",
        "resolution",
        "reward",
        "summary",
        "notes",
        "backstory",
        "content",
    }
)

MAX_NAME_LENGTH = 200


def entity_name(entity: dict) -> str:
    """Display name of an entity record (falls back to title, then id)."""
    return entity.get("name") or entity.get("title") or str(entity.get("id", "Unknown"))


class LocationRef(BaseModel):
    """One step of a location hierarchy."""

    id: str
    name: str
    location_type: str | None = None


class RelatedEntityRef(BaseModel):
    """An entity linked from the page the user is viewing."""

    entity_type: str
    entity_id: str
    name: str
    relationship: str | None = None


class PageContext(BaseModel):
    """What the user is currently looking at in the campaign UI."""

    entity_type: str | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    location_hierarchy: list[LocationRef] | None = None
    related_entities: list[RelatedEntityRef] | None = None

    @property
    def has_entity(self) -> bool:
        return bool(self.entity_type and self.entity_id)
