"""
Role-confidence scorer.

Turns a single ImageInsight into a confidence-scored role judgement. The vision
model's |roleScore| is the starting point; text density, the evidence lexicon,
background colour and composition cues from the visual description nudge it.
A low-confidence role that the evidence lexicon contradicts gets corrected.

Pure per-image computation, no cross-image state.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import ReconciliationConfig
from .insights import normalize_insight
from .reconciliation_types import ImageInsight, RoleConfidence

logger = logging.getLogger(__name__)

# Text density (characters of consolidated OCR text)
FRONT_TEXT_MIN = 20
FRONT_TEXT_MAX = 200
FRONT_TEXT_EXCESSIVE = 400
BACK_TEXT_DENSE = 200
BACK_TEXT_SPARSE = 30

FRONT_TEXT_BOOST = 0.1
FRONT_TEXT_PENALTY = 0.15
BACK_TEXT_BOOST = 0.15
BACK_TEXT_PENALTY = 0.1

FRONT_EVIDENCE_BOOST = 0.15
BACK_EVIDENCE_BOOST = 0.2
CONTRADICTION_PENALTY = 0.3

PLAIN_BACKGROUND_BOOST = 0.05
SYMMETRY_BOOST = 0.1
ROTATION_PENALTY = 0.15

FULL_WRAP_CUES = ('full-wrap', 'full wrap', '360')
SYMMETRY_CUES = ('centered', 'centred', 'symmetrical', 'symmetric')
ROTATION_CUES = ('rotated', 'angled', 'tilted')
# a full wrap is expected on these roles
FULL_WRAP_EXPECTED_ROLES = ('detail', 'label')


def _matches_any(triggers: Iterable[str], phrases: Iterable[str]) -> bool:
    lowered = [trigger.lower() for trigger in triggers]
    return any(phrase in trigger for trigger in lowered for phrase in phrases)


def compute_role_confidence(insight: ImageInsight) -> RoleConfidence:
    role = insight.role or 'other'
    base = insight.role_score if insight.role_score is not None and math.isfinite(insight.role_score) else 0.0
    confidence = min(1.0, abs(base))
    flags: List[str] = []

    # Text density
    text_length = len(insight.text or '')
    if role == 'front':
        # brand / product name / a few claims
        if FRONT_TEXT_MIN < text_length < FRONT_TEXT_MAX:
            confidence += FRONT_TEXT_BOOST
        # ingredients, directions, warnings...
        if text_length > FRONT_TEXT_EXCESSIVE:
            confidence -= FRONT_TEXT_PENALTY
            flags.append('excessive_text_for_front')
    elif role == 'back':
        if text_length > BACK_TEXT_DENSE:
            confidence += BACK_TEXT_BOOST
        if text_length < BACK_TEXT_SPARSE:
            confidence -= BACK_TEXT_PENALTY
            flags.append('low_text_for_back')

    # Evidence lexicon
    triggers = insight.evidence_triggers or []
    front_evidence = _matches_any(triggers, ReconciliationConfig.FRONT_EVIDENCE_PHRASES)
    back_evidence = _matches_any(triggers, ReconciliationConfig.BACK_EVIDENCE_PHRASES)

    if role == 'front' and front_evidence:
        confidence += FRONT_EVIDENCE_BOOST
    if role == 'back' and back_evidence:
        confidence += BACK_EVIDENCE_BOOST
    if role == 'front' and back_evidence:
        confidence -= CONTRADICTION_PENALTY
        flags.append('back_indicators_on_front_label')
    if role == 'back' and front_evidence:
        confidence -= CONTRADICTION_PENALTY
        flags.append('front_indicators_on_back_label')

    # Background uniformity, studio shots of the front are usually on plain white/black
    if role == 'front' and (insight.dominant_color or '').strip().lower() in ('white', 'black'):
        confidence += PLAIN_BACKGROUND_BOOST

    # Composition cues
    description = (insight.visual_description or '').lower()
    if any(cue in description for cue in FULL_WRAP_CUES) and role not in FULL_WRAP_EXPECTED_ROLES:
        flags.append('full_wrap_label_detected')
    if role == 'front' and any(cue in description for cue in SYMMETRY_CUES):
        confidence += SYMMETRY_BOOST
    if role == 'front' and any(cue in description for cue in ROTATION_CUES):
        confidence -= ROTATION_PENALTY
        flags.append('rotated_image_marked_as_front')

    confidence = max(0.0, min(1.0, confidence))

    low_confidence = confidence < ReconciliationConfig.LOW_CONFIDENCE_THRESHOLD
    if low_confidence:
        flags.append('low_confidence')

    adjusted_role = None
    if low_confidence:
        if role == 'front' and back_evidence:
            adjusted_role = 'back'
        elif role == 'back' and front_evidence:
            adjusted_role = 'front'
    if adjusted_role:
        flags.append(f'role_corrected_{role}_to_{adjusted_role}')
        logger.debug("Corrected role of %s from %s to %s (confidence %.2f)", insight.key or insight.url, role, adjusted_role, confidence)

    return RoleConfidence(
        role=adjusted_role or role,
        confidence=confidence,
        flags=flags,
        adjusted_role=adjusted_role,
    )


def insight_key(insight: Any) -> str:
    """key, _key, urlKey, then url; "" when none is present."""
    if isinstance(insight, Mapping):
        candidates = [insight.get(name) for name in ('key', '_key', 'urlKey', 'url')]
    else:
        candidates = [getattr(insight, name, None) for name in ('key', 'url')]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return ""


def compute_role_confidence_batch(insights: Iterable[Any]) -> Dict[str, RoleConfidence]:
    """
    Score a batch of insights.

    Accepts ImageInsight records or raw vision mappings; entries without a
    derivable key are skipped.
    """
    results: Dict[str, RoleConfidence] = {}
    for raw in insights:
        key = insight_key(raw)
        if not key:
            continue
        insight: Optional[ImageInsight] = raw if isinstance(raw, ImageInsight) else normalize_insight(raw, key)
        if insight is None:
            continue
        results[key] = compute_role_confidence(insight)
    return results
