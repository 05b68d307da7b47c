"""
Tests for the per-image role-confidence scorer.
"""

import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from smartdrafts.agents.lot_reconciliation.reconciliation_types import ImageInsight
from smartdrafts.agents.lot_reconciliation.role_confidence import (
    compute_role_confidence,
    compute_role_confidence_batch,
    insight_key,
)


URL = "https://cdn.example.com/lot/a.jpg"


def make_insight(**fields) -> ImageInsight:
    return ImageInsight(url=URL, key=URL, **fields)


class TestRoleCorrection:
    def test_front_with_facts_panel_is_corrected_to_back(self):
        result = compute_role_confidence(make_insight(
            role="front", role_score=0.3, evidence_triggers=["Nutrition Facts", "Directions for use"]
        ))
        assert result.confidence < 0.4
        assert result.adjusted_role == "back"
        assert result.role == "back"
        assert "role_corrected_front_to_back" in result.flags
        assert "back_indicators_on_front_label" in result.flags
        assert "low_confidence" in result.flags

    def test_back_with_front_evidence_is_corrected_to_front(self):
        result = compute_role_confidence(make_insight(
            role="back", role_score=0.2, evidence_triggers=["Brand logo"]
        ))
        assert result.adjusted_role == "front"
        assert "role_corrected_back_to_front" in result.flags

    def test_no_correction_at_high_confidence(self):
        result = compute_role_confidence(make_insight(
            role="front", role_score=0.9, evidence_triggers=["Supplement Facts"]
        ))
        assert result.confidence == pytest.approx(0.6)
        assert result.adjusted_role is None
        assert result.role == "front"
        assert "back_indicators_on_front_label" in result.flags
        assert "low_confidence" not in result.flags

    def test_no_correction_without_contradiction(self):
        result = compute_role_confidence(make_insight(role="front", role_score=0.1))
        assert "low_confidence" in result.flags
        assert result.adjusted_role is None
        assert result.role == "front"

    def test_side_is_never_corrected(self):
        result = compute_role_confidence(make_insight(
            role="side", role_score=0.1, evidence_triggers=["ingredients"]
        ))
        assert result.adjusted_role is None


class TestAdjustments:
    def test_base_is_absolute_role_score(self):
        assert compute_role_confidence(make_insight(role="side", role_score=-0.7)).confidence == pytest.approx(0.7)
        assert compute_role_confidence(make_insight(role="side", role_score=2.0)).confidence == 1.0

    def test_missing_role_and_score(self):
        result = compute_role_confidence(make_insight())
        assert result.role == "other"
        assert result.confidence == 0.0

    def test_front_boosts(self):
        result = compute_role_confidence(make_insight(
            role="front",
            role_score=-0.5,
            text="BrandX Protein 30g per serving",
            evidence_triggers=["Brand logo"],
            dominant_color="White",
            visual_description="Centered product shot",
        ))
        # 0.5 + text 0.1 + evidence 0.15 + background 0.05 + symmetry 0.1
        assert result.confidence == pytest.approx(0.9)
        assert result.flags == []

    def test_excessive_text_for_front(self):
        result = compute_role_confidence(make_insight(role="front", role_score=0.8, text="a" * 500))
        assert result.confidence == pytest.approx(0.65)
        assert "excessive_text_for_front" in result.flags

    def test_dense_back(self):
        result = compute_role_confidence(make_insight(
            role="back", role_score=0.5, text="x" * 250, evidence_triggers=["Supplement Facts"]
        ))
        assert result.confidence == pytest.approx(0.85)

    def test_sparse_back(self):
        result = compute_role_confidence(make_insight(role="back", role_score=0.6, text="lot 42"))
        assert result.confidence == pytest.approx(0.5)
        assert "low_text_for_back" in result.flags

    def test_rotated_front(self):
        result = compute_role_confidence(make_insight(
            role="front", role_score=0.6, visual_description="Bottle is angled to the left"
        ))
        assert result.confidence == pytest.approx(0.45)
        assert "rotated_image_marked_as_front" in result.flags

    def test_full_wrap_flag(self):
        side = compute_role_confidence(make_insight(role="side", role_score=0.5, visual_description="full-wrap label"))
        label = compute_role_confidence(make_insight(role="label", role_score=0.5, visual_description="full-wrap label"))
        assert "full_wrap_label_detected" in side.flags
        assert "full_wrap_label_detected" not in label.flags

    def test_confidence_clamped(self):
        result = compute_role_confidence(make_insight(
            role="back", role_score=1.8, text="y" * 300, evidence_triggers=["barcode"]
        ))
        assert result.confidence == 1.0


class TestBatch:
    def test_keys_and_shapes(self):
        results = compute_role_confidence_batch([
            make_insight(role="front", role_score=0.9),
            {"urlKey": "https://cdn.example.com/lot/b.jpg", "role": "back", "roleScore": 0.9},
            {"_key": "https://cdn.example.com/lot/c.jpg", "role": "side", "roleScore": 0.5},
            {"role": "front", "roleScore": 0.9},
        ])
        assert set(results) == {URL, "https://cdn.example.com/lot/b.jpg", "https://cdn.example.com/lot/c.jpg"}
        assert results["https://cdn.example.com/lot/c.jpg"].role == "side"

    def test_insight_key_precedence(self):
        assert insight_key({"key": "k", "_key": "k2", "url": "u"}) == "k"
        assert insight_key({"urlKey": "k3", "url": "u"}) == "k3"
        assert insight_key({"url": ""}) == ""
