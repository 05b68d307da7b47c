"""
Lot reconciliation pipeline.

Takes the vision service's analysis of one lot ({groups, imageInsights}) and
the lot's image URLs, and runs the passes in order:

1. normalize insights and groups
2. candidate assignment (embeddings + heuristics)
3. per-image role confidence, scorer corrections written back to the insights
4. per-group role cross-check
5. orphan reassignment, then a second cross-check of the groups that grew
6. hero / back picks per group

Nothing here raises on malformed analysis data; the worst case is more
orphans and lower confidences.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from pydantic import ValidationError

from .assignment import assign_candidates
from .config import ReconciliationConfig
from .cross_check import apply_role_corrections, cross_check_group_roles
from .embeddings import EmbeddingCache, EmbeddingProvider
from .hero_selection import pick_hero_and_back
from .insights import build_insight_map
from .orphans import reassign_orphans
from .reconciliation_types import (
    Candidate,
    GroupRoleCorrection,
    ImageInsight,
    OrphanReassignment,
    ProductGroup,
    ReconciliationResult,
    RoleConfidence,
)
from .role_confidence import compute_role_confidence
from .url_keys import basename_from, canonical_url, folder_from

logger = logging.getLogger(__name__)


def build_candidates(entries: Iterable[Any]) -> List[Candidate]:
    """
    Candidates from URL strings or {url, name, folder} mappings.

    Empty and duplicate (by canonical URL) entries are dropped; order and
    index follow the surviving ingestion order.
    """
    candidates: List[Candidate] = []
    seen: Set[str] = set()
    for entry in entries or []:
        if isinstance(entry, Mapping):
            url, name, folder = entry.get("url"), entry.get("name"), entry.get("folder")
        else:
            url, name, folder = entry, None, None
        key = canonical_url(url)
        if not key or key in seen:
            continue
        seen.add(key)
        position = len(candidates)
        candidates.append(Candidate(
            url=key,
            name=name if isinstance(name, str) and name else basename_from(url),
            folder=folder if isinstance(folder, str) and folder else folder_from(url),
            order=position,
            index=position,
        ))
    return candidates


def normalize_groups(raw_groups: Any) -> List[ProductGroup]:
    """Parse the vision groups, dropping malformed ones and filling missing group ids."""
    if not isinstance(raw_groups, (list, tuple)):
        return []
    groups: List[ProductGroup] = []
    seen_ids: Set[str] = set()
    for raw in raw_groups:
        try:
            group = raw.model_copy(deep=True) if isinstance(raw, ProductGroup) else ProductGroup.model_validate(raw)
        except ValidationError as e:
            logger.warning("Dropping malformed group: %s", e)
            continue
        if not group.group_id:
            group.group_id = f"group_{len(groups) + 1}"
        if group.group_id in seen_ids:
            logger.warning("Duplicate group id %s, renaming", group.group_id)
            group.group_id = f"{group.group_id}_{len(groups) + 1}"
        seen_ids.add(group.group_id)
        groups.append(group)
    return groups


def _insert_by_order(images: List[str], url: str, order_by_url: Dict[str, int]) -> List[str]:
    merged = images + [url]
    return sorted(merged, key=lambda u: order_by_url.get(u, len(order_by_url)))


def _cross_check(
    groups: Sequence[ProductGroup],
    confidence_map: Dict[str, RoleConfidence],
    insight_map: Dict[str, ImageInsight],
) -> List[GroupRoleCorrection]:
    results = []
    for group in groups:
        correction = cross_check_group_roles(group.group_id, group.images, confidence_map)
        apply_role_corrections(correction, confidence_map, insight_map)
        if correction.corrections:
            results.append(correction)
    return results


async def reconcile_lot(
    analysis: Mapping[str, Any],
    image_entries: Iterable[Any],
    provider: Optional[EmbeddingProvider] = None,
    min_score: Optional[float] = None,
    orphan_threshold: Optional[float] = None,
    debug: Optional[bool] = None,
    cache: Optional[EmbeddingCache] = None,
) -> ReconciliationResult:
    """
    Reconcile one lot.

    Args:
        analysis: vision output, {"groups": [...], "imageInsights": [...] or {...}}
        image_entries: the lot's verified image URLs (or {url, name, folder} mappings)
        provider: embedding provider; None runs the assignment on heuristics only
        min_score: assignment threshold override
        orphan_threshold: orphan reassignment threshold override
        debug: emit assignment debug logs
        cache: embedding memo to reuse across calls for the same scan

    Returns:
        ReconciliationResult
    """
    analysis = analysis if isinstance(analysis, Mapping) else {}
    cache = cache if cache is not None else EmbeddingCache()
    max_images = ReconciliationConfig.MAX_IMAGES_PER_GROUP

    insight_map = build_insight_map(analysis.get("imageInsights"))
    groups = normalize_groups(analysis.get("groups"))
    candidates = build_candidates(image_entries)
    original_sets = [{canonical_url(url) for url in group.images} for group in groups]

    assignment = await assign_candidates(
        groups,
        candidates,
        insight_map,
        original_sets,
        provider=provider,
        cache=cache,
        min_score=min_score,
        debug=debug,
    )
    groups = assignment.groups

    # role confidence for every known image; scorer corrections become the new role
    confidence_map: Dict[str, RoleConfidence] = {}
    for key, insight in insight_map.items():
        scored = compute_role_confidence(insight)
        if scored.adjusted_role:
            insight.role = scored.adjusted_role
        confidence_map[key] = scored

    corrections = _cross_check(groups, confidence_map, insight_map)

    reassignments: List[OrphanReassignment] = []
    orphans: List[Candidate] = []
    if assignment.orphans:
        order_by_url = {candidate.url: candidate.order for candidate in candidates}
        by_group_id = {group.group_id: group for group in groups}
        proposals = reassign_orphans(
            assignment.orphans, groups, insight_map, threshold=orphan_threshold, embeddings=cache
        )
        accepted: Dict[str, OrphanReassignment] = {}
        for proposal in proposals:
            group = by_group_id.get(proposal.matched_group_id)
            if group is None or len(group.images) >= max_images or proposal.orphan_key in group.images:
                continue
            group.images = _insert_by_order(group.images, proposal.orphan_key, order_by_url)
            accepted[proposal.orphan_key] = proposal
            reassignments.append(proposal)

        orphans = [candidate for candidate in assignment.orphans if candidate.url not in accepted]
        grown = [by_group_id[group_id] for group_id in dict.fromkeys(p.matched_group_id for p in reassignments)]
        corrections.extend(_cross_check(grown, confidence_map, insight_map))

    for group in groups:
        group.hero_url, group.back_url = pick_hero_and_back(group.images, confidence_map)

    logger.info(
        "Reconciled lot: %d groups, %d candidates, %d reassigned, %d orphans, %d role corrections",
        len(groups),
        len(candidates),
        len(reassignments),
        len(orphans),
        sum(len(c.corrections) for c in corrections),
    )
    return ReconciliationResult(
        groups=groups,
        orphans=orphans,
        reassignments=reassignments,
        role_confidence=confidence_map,
        corrections=corrections,
        insights=insight_map,
        debug_logs=assignment.debug_logs,
        overflow=assignment.overflow,
    )
