"""
Orphan reassignment.

Second chance for images nobody claimed in the assignment pass. Each orphan
is compared with every group through its members' insights (OCR text, visual
description, colour, evidence triggers), the group prompt (file/folder
tokens) and, when the scan produced them, the cached embeddings. The
acceptance threshold is lower than the main pass: the goal here is fewer
true orphans, not fewer false positives.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .assignment import build_prompt, tokenize
from .config import ReconciliationConfig
from .embeddings import EmbeddingCache, cosine
from .reconciliation_types import Candidate, ImageInsight, OrphanReassignment, ProductGroup
from .url_keys import basename_from, canonical_url, folder_from

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"\W+")

TEXT_SIMILARITY_FLOOR = 0.3
TEXT_WEIGHT = 0.5
VISUAL_SIMILARITY_FLOOR = 0.2
VISUAL_WEIGHT = 0.3
COLOR_CAP = 0.2
TRIGGER_WEIGHT = 0.05
TRIGGER_CAP = 0.15
NAME_TOKEN_WEIGHT = 0.05
NAME_TOKEN_CAP = 3
EMBEDDING_WEIGHT = 0.5


def text_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Jaccard index over lowercase words longer than two characters."""
    words1 = {w for w in _WORD_SPLIT.split((text1 or "").lower()) if len(w) > 2}
    words2 = {w for w in _WORD_SPLIT.split((text2 or "").lower()) if len(w) > 2}
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def color_similarity(color1: Optional[str], color2: Optional[str]) -> float:
    if not color1 or not color2:
        return 0.0
    return 1.0 if color1.strip().lower() == color2.strip().lower() else 0.0


def _orphan_fields(orphan: Any) -> Tuple[str, str, str]:
    """(canonical key, name, folder) for a Candidate, an ImageInsight or a raw mapping."""
    if isinstance(orphan, Candidate):
        return canonical_url(orphan.url), orphan.name, orphan.folder
    if isinstance(orphan, Mapping):
        url = orphan.get("url") or orphan.get("key") or ""
        name, folder = orphan.get("name"), orphan.get("folder")
    else:
        url = getattr(orphan, "url", None) or getattr(orphan, "key", None) or ""
        name, folder = None, None
    return (
        canonical_url(url),
        name if isinstance(name, str) else basename_from(url),
        folder if isinstance(folder, str) else folder_from(url),
    )


def match_orphan_to_group(
    orphan_key: str,
    orphan_insight: Optional[ImageInsight],
    name_text: str,
    group: ProductGroup,
    insight_map: Dict[str, ImageInsight],
    embeddings: Optional[EmbeddingCache] = None,
) -> Tuple[float, List[str]]:
    """
    Confidence in [0, 1] that the orphan belongs to the group, with the reasons behind it.
    """
    confidence = 0.0
    reasons: List[str] = []

    members = [insight_map[key] for key in group.images if key != orphan_key and key in insight_map]

    if orphan_insight is not None and members:
        max_text = max((text_similarity(orphan_insight.text, m.text) for m in members), default=0.0)
        if max_text > TEXT_SIMILARITY_FLOOR:
            confidence += max_text * TEXT_WEIGHT
            reasons.append(f"Text similarity: {max_text * 100:.0f}%")

        max_visual = max(
            (text_similarity(orphan_insight.visual_description, m.visual_description) for m in members),
            default=0.0,
        )
        if max_visual > VISUAL_SIMILARITY_FLOOR:
            confidence += max_visual * VISUAL_WEIGHT
            reasons.append(f"Visual similarity: {max_visual * 100:.0f}%")

        color_matches = sum(
            1 for m in members if color_similarity(orphan_insight.dominant_color, m.dominant_color) > 0.5
        )
        if color_matches:
            confidence += min(color_matches / len(group.images), COLOR_CAP)
            reasons.append(f"Color matches: {color_matches}/{len(group.images)}")

        orphan_triggers = {t.lower() for t in orphan_insight.evidence_triggers}
        member_triggers = {t.lower() for m in members for t in m.evidence_triggers}
        shared = sorted(orphan_triggers & member_triggers)
        if shared:
            confidence += min(len(shared) * TRIGGER_WEIGHT, TRIGGER_CAP)
            reasons.append(f"Shared triggers: {', '.join(shared)}")

    prompt = build_prompt(group)
    if name_text.strip():
        lowered = name_text.lower()
        tokens = sorted(token for token in set(tokenize(prompt)) if token in lowered)
        if tokens:
            confidence += min(len(tokens), NAME_TOKEN_CAP) * NAME_TOKEN_WEIGHT
            reasons.append(f"Name/folder tokens: {', '.join(tokens[:NAME_TOKEN_CAP])}")

    if embeddings is not None:
        similarity = cosine(embeddings.cached_image(orphan_key), embeddings.cached_text(prompt))
        if math.isfinite(similarity) and similarity > 0:
            confidence += similarity * EMBEDDING_WEIGHT
            reasons.append(f"Embedding similarity: {similarity:.2f}")

    confidence = max(0.0, min(confidence, 1.0))
    return confidence, reasons


def reassign_orphans(
    orphans: Sequence[Any],
    groups: Sequence[ProductGroup],
    insight_map: Dict[str, ImageInsight],
    threshold: Optional[float] = None,
    embeddings: Optional[EmbeddingCache] = None,
) -> List[OrphanReassignment]:
    """
    Find a group for each orphan.

    Orphans may be Candidates, ImageInsights or raw {url, name, folder}
    mappings. Only orphans whose best group clears the (relaxed) threshold are
    returned; the rest stay orphaned for manual review.
    """
    threshold = ReconciliationConfig.resolve_orphan_threshold(threshold)
    matches: List[OrphanReassignment] = []

    for orphan in orphans:
        orphan_key, name, folder = _orphan_fields(orphan)
        if not orphan_key:
            continue
        orphan_insight = insight_map.get(orphan_key)
        name_text = f"{name or ''} {folder or ''}"

        best: Optional[OrphanReassignment] = None
        for gi, group in enumerate(groups):
            confidence, reasons = match_orphan_to_group(
                orphan_key, orphan_insight, name_text, group, insight_map, embeddings
            )
            if confidence < threshold:
                continue
            if best is None or confidence > best.confidence:
                best = OrphanReassignment(
                    orphan_key=orphan_key,
                    matched_group_id=group.group_id or f"group_{gi + 1}",
                    confidence=confidence,
                    reason="; ".join(reasons),
                )

        if best is not None:
            matches.append(best)
            logger.info("Reassigned orphan %s to %s (%.2f): %s", orphan_key, best.matched_group_id, best.confidence, best.reason)
        else:
            logger.debug("Orphan %s stays unassigned", orphan_key)

    return matches
