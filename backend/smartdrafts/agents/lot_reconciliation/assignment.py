"""
Candidate assignment engine.

Re-derives group membership from scratch: every (candidate, group) pair gets
an embedding similarity (image vs. group prompt, when embeddings are available)
plus heuristic adjustments from the vision hints, the original grouping and
the file/folder names. Each candidate goes to its best group when that score
clears the threshold; candidates that clear nothing fall back to groups that
ended up empty, the rest are orphans.

Greedy per candidate, not an optimal bipartite matching.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .config import ReconciliationConfig
from .embeddings import EmbeddingCache, EmbeddingProvider, cosine, gather_limited
from .reconciliation_types import (
    AssignmentResult,
    Candidate,
    DebugLog,
    ImageInsight,
    ProductGroup,
    ScoredCandidate,
)
from .url_keys import canonical_url

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def tokenize(value: Optional[str]) -> List[str]:
    """Lowercase alphanumeric tokens of at least MIN_TOKEN_LENGTH characters."""
    text = _NON_ALNUM.sub(" ", str(value or "").lower())
    return [token for token in text.split() if len(token) >= ReconciliationConfig.MIN_TOKEN_LENGTH]


def build_prompt(group: ProductGroup) -> str:
    """brand, product, variant and claims joined with ", " (or the default prompt)."""
    parts = [part for part in (group.brand, group.product, group.variant) if part]
    parts.extend(claim for claim in group.claims if claim)
    if not parts:
        return ReconciliationConfig.DEFAULT_PROMPT
    return ", ".join(parts)


def heuristic_adjustment(
    candidate: Candidate,
    insight: Optional[ImageInsight],
    in_original_group: bool,
    group_keywords: Set[str],
) -> float:
    """Score added on top of the embedding similarity for one (candidate, group) pair."""
    cfg = ReconciliationConfig
    score = 0.0

    # the vision step's grouping is the only grouping signal when embeddings are down
    if in_original_group:
        score += cfg.ORIGINAL_GROUP_BONUS

    if insight is not None:
        score += cfg.ROLE_WEIGHTS.get(insight.role or "", 0.0)
        if insight.has_visible_text:
            score += cfg.VISIBLE_TEXT_BONUS
        if (insight.dominant_color or "").strip().lower() in cfg.PLAIN_BACKGROUND_COLORS:
            score += cfg.PLAIN_BACKGROUND_PENALTY

    text = f"{candidate.name or ''} {candidate.folder or ''}".lower()
    if text.strip():
        matches = sum(1 for token in group_keywords if token and token in text)
        if matches:
            score += min(matches, cfg.KEYWORD_MATCH_CAP) * cfg.KEYWORD_MATCH_WEIGHT

    if candidate.name:
        lower = candidate.name.lower()
        if any(bad in lower for bad in cfg.BLACKLIST_TOKENS):
            score += cfg.BLACKLIST_PENALTY

    return score


async def _embed_all(
    prompts: List[str],
    candidates: Sequence[Candidate],
    provider: Optional[EmbeddingProvider],
    cache: EmbeddingCache,
    concurrency: int,
):
    if provider is None:
        return [None] * len(prompts), [None] * len(candidates)

    text_embeddings = await gather_limited(
        prompts, concurrency, lambda prompt: cache.text_embedding(provider, prompt)
    )
    if not any(text_embeddings):
        # no text side means no similarity at all, don't spend image calls
        logger.warning("Text embeddings unavailable, assigning on heuristics only")
        return text_embeddings, [None] * len(candidates)

    image_embeddings = await gather_limited(
        list(candidates), concurrency, lambda candidate: cache.image_embedding(provider, candidate.url)
    )
    return text_embeddings, image_embeddings


def _finite(score: float) -> bool:
    return isinstance(score, (int, float)) and math.isfinite(score)


async def assign_candidates(
    groups: Sequence[ProductGroup],
    candidates: Sequence[Candidate],
    insight_map: Dict[str, ImageInsight],
    original_image_sets: Sequence[Iterable[str]],
    provider: Optional[EmbeddingProvider] = None,
    cache: Optional[EmbeddingCache] = None,
    min_score: Optional[float] = None,
    debug: Optional[bool] = None,
    concurrency: Optional[int] = None,
) -> AssignmentResult:
    """
    Assign candidates to groups.

    Args:
        groups: provisional product groups; their images[] is replaced in the output copies
        candidates: images awaiting assignment
        insight_map: canonical url -> ImageInsight (read only)
        original_image_sets: per group, the image URLs the vision step proposed (read only)
        provider: embedding provider; None runs on heuristics alone
        cache: per-scan embedding memo, created if not given
        min_score: acceptance threshold override
        debug: emit per-group top-3 debug logs
        concurrency: max in-flight embedding requests

    Returns:
        AssignmentResult with new group copies, orphans, overflow and debug logs
    """
    cfg = ReconciliationConfig
    if not groups or not candidates:
        return AssignmentResult(groups=list(groups), orphans=[], debug_logs=[])

    cache = cache if cache is not None else EmbeddingCache()
    threshold = cfg.resolve_min_score(min_score)
    debug = cfg.DEBUG if debug is None else debug
    concurrency = concurrency or cfg.EMBEDDING_CONCURRENCY

    prompts = [build_prompt(group) for group in groups]
    group_keywords = [set(tokenize(prompt)) for prompt in prompts]
    original_sets: List[Set[str]] = []
    for gi in range(len(groups)):
        members = original_image_sets[gi] if gi < len(original_image_sets) else ()
        original_sets.append({canonical_url(url) for url in (members or ())})

    text_embeddings, image_embeddings = await _embed_all(prompts, candidates, provider, cache, concurrency)

    assignments: List[List[int]] = [[] for _ in groups]
    scores_by_candidate: List[List[float]] = []
    orphan_indexes: List[int] = []

    for ci, candidate in enumerate(candidates):
        key = canonical_url(candidate.url)
        insight = insight_map.get(key)
        image_embedding = image_embeddings[ci]
        row: List[float] = []
        best_group, best_score = -1, -math.inf

        for gi in range(len(groups)):
            score = 0.0
            if image_embedding and text_embeddings[gi]:
                similarity = cosine(image_embedding, text_embeddings[gi])
                if _finite(similarity):
                    score += similarity
            score += heuristic_adjustment(candidate, insight, key in original_sets[gi], group_keywords[gi])
            row.append(score)

            if _finite(score) and score > best_score:
                best_group, best_score = gi, score

        scores_by_candidate.append(row)
        if best_group >= 0 and best_score >= threshold:
            assignments[best_group].append(ci)
        else:
            orphan_indexes.append(ci)
        logger.debug("Candidate %s best group %d (score %.4f)", key, best_group, best_score)

    # second chance: a group nobody claimed takes its best-scoring orphan
    remaining: List[int] = []
    for ci in orphan_indexes:
        fallback_group, fallback_score = -1, -math.inf
        for gi, score in enumerate(scores_by_candidate[ci]):
            if assignments[gi] or not _finite(score):
                continue
            if score > fallback_score:
                fallback_group, fallback_score = gi, score
        if fallback_group >= 0:
            assignments[fallback_group].append(ci)
        else:
            remaining.append(ci)

    output_groups: List[ProductGroup] = []
    overflow: List[Candidate] = []
    placed: Set[str] = set()
    for gi, group in enumerate(groups):
        images: List[str] = []
        for ci in sorted(assignments[gi], key=lambda i: candidates[i].order):
            url = canonical_url(candidates[ci].url)
            if not url or url in placed:
                continue
            if len(images) >= cfg.MAX_IMAGES_PER_GROUP:
                overflow.append(candidates[ci])
                continue
            placed.add(url)
            images.append(url)
        output_groups.append(group.model_copy(update={"images": images}, deep=True))

    debug_logs: List[DebugLog] = []
    if debug:
        for gi, group in enumerate(groups):
            ranked = sorted(
                (
                    (scores_by_candidate[ci][gi], ci)
                    for ci in range(len(candidates))
                    if _finite(scores_by_candidate[ci][gi])
                ),
                key=lambda entry: entry[0],
                reverse=True,
            )[:3]
            debug_logs.append(DebugLog(
                group_id=group.group_id or f"group_{gi + 1}",
                prompt=prompts[gi],
                top=[ScoredCandidate(url=candidates[ci].url, score=round(score, 4)) for score, ci in ranked],
            ))

    orphans = [candidates[ci] for ci in remaining]
    logger.info(
        "Assigned %d/%d candidates to %d groups (%d orphans, %d over cap, embeddings=%s)",
        len(candidates) - len(orphans) - len(overflow),
        len(candidates),
        len(groups),
        len(orphans),
        len(overflow),
        any(image_embeddings),
    )
    return AssignmentResult(groups=output_groups, orphans=orphans, debug_logs=debug_logs, overflow=overflow)
