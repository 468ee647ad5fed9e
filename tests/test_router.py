"""
Tests for tag routing.
"""

from mtd_sync.core.models import RoutingRule, SyncSettings
from mtd_sync.sync.router import TagRouter


class TestTagRouter:

    def test_resolve_is_case_insensitive(self):
        router = TagRouter([RoutingRule("#Work", "W"), RoutingRule("home", "H")])
        assert router.resolve("#WORK").collection_id == "W"
        assert router.resolve("#home").collection_id == "H"
        assert router.resolve("#other") is None
        assert router.resolve(None) is None

    def test_first_rule_wins(self):
        router = TagRouter([RoutingRule("#x", "A"), RoutingRule("#x", "B")])
        assert router.resolve("#x").collection_id == "A"
        assert router.tag_names() == ["#x"]

    def test_incomplete_rules_are_ignored(self):
        router = TagRouter([RoutingRule("", "A"), RoutingRule("#x", "")])
        assert not router
        assert router.rules == []

    def test_tag_for_collection(self):
        router = TagRouter.from_settings(SyncSettings(tag_routes=[RoutingRule("#work", "W")]))
        assert router.tag_for_collection("W") == "#work"
        assert router.tag_for_collection("H") is None
