"""Tests for nexus.generation.request and nexus.utils.validator."""

import pytest

from nexus.errors import ValidationError
from nexus.generation.request import GenerationOptions, build_request
from nexus.utils.validator import invalid_choice, missing_fields

from conftest import BASIC, PROFESSIONAL


class TestMissingFields:
    def test_blank_values_count_as_missing(self):
        record = {"name": "  ", "goals": [], "country": None, "organization": "Acme"}
        assert missing_fields(record, ["name", "organization", "country", "goals"]) == [
            "name", "country", "goals",
        ]

    def test_prefix(self):
        assert missing_fields({}, ["name"], prefix="profile.") == ["profile.name"]

    def test_zero_is_not_blank(self):
        assert missing_fields({"count": 0}, ["count"]) == []


class TestInvalidChoice:
    def test_valid(self):
        assert invalid_choice("brief", ["brief", "standard"], "format") is None

    def test_invalid(self):
        assert invalid_choice("epic", ["brief", "standard"], "format") == "format (must be one of: brief, standard)"


class TestBuildRequest:
    def test_builds_from_state(self, small_catalog, basic_state, profile):
        basic_state.complete(1)
        basic_state.complete(2)
        request = build_request(small_catalog, basic_state, profile, GenerationOptions(length="concise"))

        assert request.completed_count == 2
        assert request.total_count == 3
        assert request.completed_titles == ("Context", "Analysis")
        assert request.scores.total == 44
        assert request.options.length == "concise"
        assert request.progress.opportunity == 100

    def test_counts_after_tier_downgrade(self, small_catalog, basic_state, profile):
        basic_state.change_tier(PROFESSIONAL)
        for step_id in (1, 2, 3):
            basic_state.complete(step_id)
        basic_state.change_tier(BASIC)

        request = build_request(small_catalog, basic_state, profile)

        assert (request.completed_count, request.total_count) == (3, 3)
        assert request.completed_count <= request.total_count
        assert request.tier is BASIC

    def test_enumerates_every_missing_field(self, small_catalog, basic_state):
        with pytest.raises(ValidationError) as exc_info:
            build_request(small_catalog, basic_state, {"name": "Ada"}, GenerationOptions(format="epic"))

        missing = exc_info.value.missing
        assert "profile.organization" in missing
        assert "profile.country" in missing
        assert "profile.goals" in missing
        assert "profile.name" not in missing
        assert any(m.startswith("options.format") for m in missing)
        assert "completed_steps" in missing

    def test_none_profile(self, small_catalog, basic_state):
        basic_state.complete(1)
        with pytest.raises(ValidationError) as exc_info:
            build_request(small_catalog, basic_state, None)
        assert exc_info.value.missing == [
            "profile.name", "profile.organization", "profile.country", "profile.goals",
        ]

    def test_request_is_immutable(self, small_catalog, basic_state, profile):
        basic_state.complete(1)
        request = build_request(small_catalog, basic_state, profile)
        with pytest.raises(Exception):
            request.completed_count = 5  # type: ignore[misc]
        with pytest.raises(TypeError):
            request.profile["name"] = "Other"

    def test_profile_copied(self, small_catalog, basic_state, profile):
        basic_state.complete(1)
        request = build_request(small_catalog, basic_state, profile)
        profile["name"] = "Changed"
        assert request.profile["name"] == "Ada Osei"
