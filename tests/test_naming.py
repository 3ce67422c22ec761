"""Tests for installed-name strategies."""

import pytest

from caf.exceptions import ValidationError
from caf.naming import assign_names, prefixed_name


class TestPrefixedName:
    """Tests for single-resource naming."""

    @pytest.mark.parametrize(
        "strategy,expected",
        [
            ("full-path-prefix", "frontend-react-patterns"),
            ("category-prefix", "react-patterns"),
            ("original-name", "patterns"),
        ],
    )
    def test_strategies(self, strategy, expected):
        assert prefixed_name("patterns", ["frontend", "react"], strategy) == expected

    def test_no_categories_keeps_name(self):
        assert prefixed_name("patterns", [], "full-path-prefix") == "patterns"

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError, match="Unknown naming strategy 'random'"):
            prefixed_name("patterns", [], "random")


class TestAssignNames:
    """Tests for naming a batch of discovered resources."""

    def test_smart_disambiguation_only_prefixes_collisions(self):
        names = assign_names(
            [
                ("patterns", ["frontend", "react"]),
                ("patterns", ["backend"]),
                ("review", ["tools"]),
            ]
        )

        assert names == ["frontend-react-patterns", "backend-patterns", "review"]

    def test_original_name_keeps_duplicates(self):
        names = assign_names([("a", ["x"]), ("a", ["y"])], "original-name")

        assert names == ["a", "a"]

    def test_names_are_sanitized(self):
        assert assign_names([("My Skill", [])]) == ["My-Skill"]
