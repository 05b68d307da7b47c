"""
Group role cross-checker.

Local, per-group consistency rules on top of the per-image scorer:
- more than one front: keep the most confident, demote the rest to side
- no front: promote the most confident side image (never a back)

Never moves images between groups.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from .reconciliation_types import (
    GroupRoleCorrection,
    ImageInsight,
    RoleConfidence,
    RoleCorrection,
)

logger = logging.getLogger(__name__)


def _ranked(image_keys: Sequence[str], confidence_map: Dict[str, RoleConfidence], role: str):
    members = [
        (key, confidence_map[key])
        for key in dict.fromkeys(image_keys)
        if key in confidence_map and confidence_map[key].role == role
    ]
    # stable: equal confidences keep the group's image order
    return sorted(members, key=lambda item: item[1].confidence, reverse=True)


def cross_check_group_roles(
    group_id: str,
    image_keys: Sequence[str],
    confidence_map: Dict[str, RoleConfidence],
) -> GroupRoleCorrection:
    corrections: List[RoleCorrection] = []

    fronts = _ranked(image_keys, confidence_map, 'front')
    if len(fronts) > 1:
        best_key, best = fronts[0]
        for key, weaker in fronts[1:]:
            corrections.append(RoleCorrection(
                image_key=key,
                original_role='front',
                corrected_role='side',
                reason=(
                    "Multiple fronts detected, keeping highest confidence "
                    f"({best.confidence:.2f} vs {weaker.confidence:.2f})"
                ),
            ))

    if not fronts and image_keys:
        sides = _ranked(image_keys, confidence_map, 'side')
        # backs are never promoted, a group of backs/details stays as it is
        if sides:
            key, candidate = sides[0]
            corrections.append(RoleCorrection(
                image_key=key,
                original_role=candidate.role,
                corrected_role='front',
                reason=f"No front detected in group, promoting best candidate (confidence: {candidate.confidence:.2f})",
            ))

    if corrections:
        logger.info("Group %s: %d role correction(s)", group_id, len(corrections))
    return GroupRoleCorrection(group_id=group_id, corrections=corrections)


def apply_role_corrections(
    correction: GroupRoleCorrection,
    confidence_map: Dict[str, RoleConfidence],
    insight_map: Optional[Dict[str, ImageInsight]] = None,
) -> None:
    """Write a group's corrections into the confidence map (and the insight map, if given)."""
    for item in correction.corrections:
        current = confidence_map.get(item.image_key)
        if current is not None:
            confidence_map[item.image_key] = replace(
                current,
                role=item.corrected_role,
                flags=current.flags + [f'cross_check_{item.original_role}_to_{item.corrected_role}'],
            )
        if insight_map is not None and item.image_key in insight_map:
            insight_map[item.image_key].role = item.corrected_role
