"""
End-to-end tests for lot reconciliation.

Scenario: two products from the vision step, a facts panel the vision model
called "front", a lone side shot, and one image nobody grouped.
"""

import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from smartdrafts.agents.lot_reconciliation.pipeline import build_candidates, normalize_groups, reconcile_lot


def url(name: str) -> str:
    return f"https://cdn.example.com/lot/{name}.jpg"


F1 = url("front-01")
B1 = url("panel-01")
F2 = url("side-02")
O1 = url("acme-protein-back")


@pytest.fixture
def analysis():
    return {
        "groups": [
            {"groupId": "g1", "brand": "Acme", "product": "Protein Powder", "images": [F1, B1]},
            {"groupId": "g2", "brand": "Zen", "product": "Green Tea", "images": [{"url": F2}]},
        ],
        "imageInsights": [
            {"url": F1, "role": "front", "roleScore": -0.8, "evidenceTriggers": ["brand logo"]},
            {
                "url": B1,
                "role": "front",
                "roleScore": 0.3,
                "ocrText": "Supplement Facts Serving Size 1 scoop Directions mix with water",
                "evidenceTriggers": ["Supplement Facts", "Directions"],
            },
            {"url": F2, "role": "side", "roleScore": 0.6},
            {
                "url": O1,
                "role": "back",
                "roleScore": 0.9,
                "textBlocks": ["Acme Protein Powder", "Supplement Facts", "Serving Size 1 scoop"],
            },
        ],
    }


class FailingProvider:
    async def embed_text(self, prompt):
        raise RuntimeError("provider unavailable")

    async def embed_image(self, url):
        raise RuntimeError("provider unavailable")


class TestBuildCandidates:
    def test_dedupes_and_orders(self):
        candidates = build_candidates([
            "https://www.dropbox.com/s/a/front.jpg?dl=0",
            "https://dl.dropboxusercontent.com/s/a/front.jpg",
            "",
            None,
            {"url": "https://cdn.example.com/lot1/back.jpg", "name": "back-label.jpg"},
        ])
        assert [c.url for c in candidates] == [
            "https://dl.dropboxusercontent.com/s/a/front.jpg",
            "https://cdn.example.com/lot1/back.jpg",
        ]
        assert [(c.order, c.index) for c in candidates] == [(0, 0), (1, 1)]
        assert (candidates[0].name, candidates[0].folder) == ("front.jpg", "a")
        assert (candidates[1].name, candidates[1].folder) == ("back-label.jpg", "lot1")


class TestNormalizeGroups:
    def test_ids_filled_and_deduplicated(self):
        groups = normalize_groups([
            {"groupId": "g1", "brand": "Acme"},
            {"brand": "Zen"},
            "junk",
            {"groupId": "g1"},
        ])
        assert [g.group_id for g in groups] == ["g1", "group_2", "g1_3"]

    def test_not_a_list(self):
        assert normalize_groups({"groupId": "g1"}) == []


class TestReconcileLot:
    @pytest.mark.asyncio
    async def test_full_flow(self, analysis):
        result = await reconcile_lot(analysis, [F1, B1, F2, O1])
        groups = {g.group_id: g for g in result.groups}

        # assignment keeps the vision grouping, O1 is picked up by the orphan pass
        assert groups["g1"].images == [F1, B1, O1]
        assert groups["g2"].images == [F2]
        assert result.orphans == []
        assert [(r.orphan_key, r.matched_group_id) for r in result.reassignments] == [(O1, "g1")]

        # the facts panel was corrected by the scorer
        assert result.insights[B1].role == "back"
        assert "role_corrected_front_to_back" in result.role_confidence[B1].flags

        # the lone side shot was promoted by the cross-check
        assert result.role_confidence[F2].role == "front"
        assert [c.group_id for c in result.corrections] == ["g2"]

        assert (groups["g1"].hero_url, groups["g1"].back_url) == (F1, O1)
        assert (groups["g2"].hero_url, groups["g2"].back_url) == (F2, None)

    @pytest.mark.asyncio
    async def test_unreachable_provider_degrades_to_heuristics(self, analysis):
        baseline = await reconcile_lot(analysis, [F1, B1, F2, O1])
        degraded = await reconcile_lot(analysis, [F1, B1, F2, O1], provider=FailingProvider())
        assert [g.images for g in degraded.groups] == [g.images for g in baseline.groups]
        assert degraded.orphans == baseline.orphans

    @pytest.mark.asyncio
    async def test_no_image_in_two_groups(self, analysis):
        analysis["groups"][1]["images"].append(F1)
        result = await reconcile_lot(analysis, [F1, B1, F2, O1])
        images = [image for g in result.groups for image in g.images]
        assert len(images) == len(set(images))

    @pytest.mark.asyncio
    async def test_full_group_keeps_orphan(self):
        members = [url(f"m{i:02d}") for i in range(12)]
        analysis = {
            "groups": [{"groupId": "g1", "brand": "Acme", "product": "Protein", "images": members}],
            "imageInsights": [
                {"url": members[0], "ocrText": "acme protein powder vanilla"},
                {"url": url("extra"), "ocrText": "acme protein powder vanilla"},
            ],
        }
        result = await reconcile_lot(analysis, members + [url("extra")])
        assert len(result.groups[0].images) == 12
        assert [c.url for c in result.orphans] == [url("extra")]
        assert result.reassignments == []

    @pytest.mark.asyncio
    async def test_nan_orphan_threshold_keeps_orphans(self, analysis):
        stray = url("unrelated")
        result = await reconcile_lot(analysis, [F1, B1, F2, stray], orphan_threshold=float("nan"))
        assert [c.url for c in result.orphans] == [stray]
        assert result.reassignments == []

    @pytest.mark.asyncio
    async def test_malformed_analysis(self):
        result = await reconcile_lot({"groups": "bad", "imageInsights": 5}, [F1])
        assert result.groups == []
        assert result.orphans == []

        result = await reconcile_lot(None, [])
        assert result.groups == []
