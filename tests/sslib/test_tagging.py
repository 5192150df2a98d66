"""
Unit tests for sslib.tagging — component tags and validation resource matching.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
from sslib.tagging import (
    COMPONENT_DATA_LOADER,
    COMPONENT_VALIDATION,
    TAG_COMPONENT,
    as_tag_list,
    component_tags,
    is_validation_resource,
    matches_validation_name,
    tag_list_to_dict,
)


class TestNameMatching:
    @pytest.mark.parametrize("name", [
        "redis-validator-test",
        "simple-validator",
        "MigrationValidationRole",
        "redis-test-function",
        "my-migration-test-stack",
    ])
    def test_matches(self, name):
        assert matches_validation_name(name) is True

    @pytest.mark.parametrize("name", ["redis-production", "source-infrastructure", "", None])
    def test_does_not_match(self, name):
        assert matches_validation_name(name) is False


class TestIsValidationResource:
    def test_tag_match_without_name_match(self):
        tags = component_tags(COMPONENT_VALIDATION)
        assert is_validation_resource("checker-fn", tags, name_fallback=False) is True

    def test_name_fallback_for_untagged(self):
        assert is_validation_resource("redis-validator-test", {}, name_fallback=True) is True

    def test_name_fallback_disabled(self):
        assert is_validation_resource("redis-validator-test", {}, name_fallback=False) is False

    def test_other_component_never_matches_by_name(self):
        tags = component_tags(COMPONENT_DATA_LOADER)
        assert is_validation_resource("redis-test-loader", tags, name_fallback=True) is False

    def test_production_not_matched(self):
        assert is_validation_resource("redis-production", None) is False


class TestTagShapes:
    def test_component_tags_include_extra(self):
        tags = component_tags(COMPONENT_VALIDATION, {"Owner": "ops"})
        assert tags[TAG_COMPONENT] == COMPONENT_VALIDATION
        assert tags["Owner"] == "ops"

    def test_list_dict_conversion(self):
        tags = {"a": "1", "b": "2"}
        assert tag_list_to_dict(as_tag_list(tags)) == tags

    def test_none_tag_list(self):
        assert tag_list_to_dict(None) == {}
