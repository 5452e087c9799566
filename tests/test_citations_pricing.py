"""Tests for entity citations and cost estimation."""

import pytest

from lorekeeper.models.llm import LLMUsage
from lorekeeper.utils.citations import (
    count_citations,
    format_citation,
    has_citations,
    parse_citations,
    parse_content_segments,
    strip_citations,
)
from lorekeeper.utils.pricing import calculate_cost, format_cost, get_pricing

ALDRIC_ID = "550e8400-e29b-41d4-a716-446655440000"
GUILD_ID = "6fa459ea-ee8a-3ca4-894e-db77e160355e"

TEXT = (
    f"[[character:{ALDRIC_ID}:Captain Aldric]] owes money to "
    f"[[organization:{GUILD_ID}:Saltwind Guild]]."
)


class TestCitations:
    """Tests for the [[type:uuid:Name]] citation format."""

    def test_parse(self):
        """Test that citations are found in order with their positions."""
        citations = parse_citations(TEXT)

        assert [(c.entity_type, c.entity_id, c.display_name) for c in citations] == [
            ("character", ALDRIC_ID, "Captain Aldric"),
            ("organization", GUILD_ID, "Saltwind Guild"),
        ]
        assert citations[0].start == 0
        assert TEXT[citations[1].start : citations[1].end] == citations[1].raw

    def test_segments(self):
        """Test that text and citations alternate."""
        segments = parse_content_segments(TEXT)

        assert [segment.type for segment in segments] == ["citation", "text", "citation", "text"]
        assert segments[1].content == " owes money to "
        assert segments[3].content == "."

    def test_plain_text(self):
        """Test text without citations."""
        assert not has_citations("Nothing to see")
        assert parse_content_segments("Nothing to see")[0].content == "Nothing to see"
        assert parse_content_segments("") == []

    def test_name_instead_of_uuid_is_not_a_citation(self):
        """Test that malformed ids are left as text."""
        assert count_citations("[[character:Aldric:Captain Aldric]]") == 0

    def test_format_and_strip(self):
        """Test building a citation and reducing citations to names."""
        citation = format_citation("character", ALDRIC_ID, "Captain Aldric")

        assert citation == f"[[character:{ALDRIC_ID}:Captain Aldric]]"
        assert count_citations(TEXT) == 2
        assert strip_citations(TEXT) == "Captain Aldric owes money to Saltwind Guild."


class TestPricing:
    """Tests for cost estimation."""

    def test_known_and_unknown_models(self):
        """Test that unknown models use the default pricing."""
        assert get_pricing("claude-haiku-4-5-20251001").input_per_million == 1.0
        assert get_pricing("some-future-model").output_per_million == 15.0

    def test_calculate_cost(self):
        """Test cost with cache reads and writes."""
        usage = LLMUsage(
            input_tokens=1_000_000,
            output_tokens=100_000,
            cache_read_input_tokens=1_000_000,
            cache_creation_input_tokens=1_000_000,
        )

        # 3.00 input + 0.30 cache read + 3.75 cache write + 1.50 output
        assert calculate_cost("claude-sonnet-4-5-20250929", usage) == pytest.approx(8.55)

    @pytest.mark.parametrize("cost, expected", [(0, "$0.00"), (0.004, "<$0.01"), (1.234, "$1.23")])
    def test_format_cost(self, cost, expected):
        """Test cost formatting."""
        assert format_cost(cost) == expected
