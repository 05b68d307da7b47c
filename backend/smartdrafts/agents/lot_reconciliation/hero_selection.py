"""
Hero / label image selection for a reconciled group.

The listing step wants one hero photo and one label (ingredients / facts
panel) photo per product. Picked from the final roles, most confident first.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from .reconciliation_types import RoleConfidence


def pick_hero_and_back(
    images: Sequence[str],
    confidence_map: Dict[str, RoleConfidence],
) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (hero_url, back_url).

    hero: front > side > other roles > first image
    back: back > label > second front > a side that is not the hero
    """
    if not images:
        return None, None

    by_role: Dict[str, List[str]] = {}
    for url in images:
        entry = confidence_map.get(url)
        role = entry.role if entry else 'other'
        by_role.setdefault(role, []).append(url)

    def ranked(role: str) -> List[str]:
        urls = by_role.get(role, [])
        return sorted(urls, key=lambda u: confidence_map[u].confidence if u in confidence_map else 0.0, reverse=True)

    fronts, sides, backs, labels = ranked('front'), ranked('side'), ranked('back'), ranked('label')
    others = [
        url for url in images
        if url not in fronts and url not in sides and url not in backs and url not in labels
    ]

    hero = (fronts or sides or others or list(images))[0]

    back = None
    for option in (backs, labels, fronts[1:], [s for s in sides if s != hero]):
        if option:
            back = option[0]
            break
    if back == hero:
        back = None
    return hero, back
