"""
Tests for hero / back image selection.
"""

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from smartdrafts.agents.lot_reconciliation.hero_selection import pick_hero_and_back
from smartdrafts.agents.lot_reconciliation.reconciliation_types import RoleConfidence


class TestPickHeroAndBack:
    def test_front_and_back(self):
        confidence_map = {
            "a": RoleConfidence("front", 0.7),
            "b": RoleConfidence("front", 0.9),
            "c": RoleConfidence("back", 0.8),
        }
        assert pick_hero_and_back(["a", "b", "c"], confidence_map) == ("b", "c")

    def test_label_used_when_no_back(self):
        confidence_map = {"a": RoleConfidence("front", 0.7), "l": RoleConfidence("label", 0.5)}
        assert pick_hero_and_back(["l", "a"], confidence_map) == ("a", "l")

    def test_second_front_as_back(self):
        confidence_map = {"a": RoleConfidence("front", 0.9), "b": RoleConfidence("front", 0.6)}
        assert pick_hero_and_back(["b", "a"], confidence_map) == ("a", "b")

    def test_sides_only(self):
        confidence_map = {"s1": RoleConfidence("side", 0.5), "s2": RoleConfidence("side", 0.8)}
        assert pick_hero_and_back(["s1", "s2"], confidence_map) == ("s2", "s1")

    def test_unscored_images(self):
        assert pick_hero_and_back(["x", "y"], {}) == ("x", None)

    def test_empty(self):
        assert pick_hero_and_back([], {}) == (None, None)
