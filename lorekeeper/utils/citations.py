"""Entity citation micro-format: [[entity_type:uuid:Display Name]]."""

import re
from dataclasses import dataclass
from typing import Literal

CITATION_RE = re.compile(r"\[\[(\w+):([a-f0-9-]{36}):([^\]]+)\]\]")


@dataclass
class Citation:
    """A citation found in model text."""

    raw: str
    entity_type: str
    entity_id: str
    display_name: str
    start: int
    end: int


@dataclass
class ContentSegment:
    """A run of plain text or a single citation."""

    type: Literal["text", "citation"]
    content: str
    citation: Citation | None = None


def parse_citations(content: str) -> list[Citation]:
    """Find every citation in the content, in order."""
    return [
        Citation(
            raw=match.group(0),
            entity_type=match.group(1),
            entity_id=match.group(2),
            display_name=match.group(3),
            start=match.start(),
            end=match.end(),
        )
        for match in CITATION_RE.finditer(content)
    ]


def parse_content_segments(content: str) -> list[ContentSegment]:
    """Split content into alternating text and citation segments."""
    segments: list[ContentSegment] = []
    last_index = 0

    for citation in parse_citations(content):
        if citation.start > last_index:
            segments.append(ContentSegment(type="text", content=content[last_index : citation.start]))
        segments.append(ContentSegment(type="citation", content=citation.raw, citation=citation))
        last_index = citation.end

    if last_index < len(content):
        segments.append(ContentSegment(type="text", content=content[last_index:]))

    return segments


def format_citation(entity_type: str, entity_id: str, display_name: str) -> str:
    return f"[[{entity_type}:{entity_id}:{display_name}]]"


def has_citations(content: str) -> bool:
    return CITATION_RE.search(content) is not None


def strip_citations(content: str) -> str:
    """Replace citations with their display names."""
    return CITATION_RE.sub(r"\3", content)


def count_citations(content: str) -> int:
    return len(parse_citations(content))
