"""
Signal model: turns the vision service's per-image hints into ImageInsight records.

The vision output is heterogeneous (list or keyed mapping, OCR text spread over
several fields, occasional junk entries). Everything is normalized here once,
so the scoring passes never have to care which field was populated.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .config import ReconciliationConfig
from .reconciliation_types import ImageInsight
from .url_keys import canonical_url

logger = logging.getLogger(__name__)

# Placeholder URLs the vision model sometimes echoes back from its prompt
_PLACEHOLDER_KEYS = {"imgurl", "<imgurl>"}


def _is_usable_key(key: str) -> bool:
    return bool(key) and key.lower() not in _PLACEHOLDER_KEYS and not key.startswith("<")


def extract_insight_text(raw: Mapping[str, Any]) -> str:
    """
    Collapse every OCR-ish field of a raw insight into one string.

    Looks at textExtracted, ocrText, textBlocks, text, ocr.text and ocr.lines,
    in that order, skipping empty and repeated fragments.
    """
    parts: List[str] = []

    def push(value: Any) -> None:
        if isinstance(value, str) and value.strip() and value.strip() not in parts:
            parts.append(value.strip())

    def push_lines(value: Any) -> None:
        if isinstance(value, (list, tuple)):
            push(" ".join(item.strip() for item in value if isinstance(item, str) and item.strip()))

    push(raw.get("textExtracted"))
    push(raw.get("ocrText"))
    push_lines(raw.get("textBlocks"))
    push(raw.get("text"))
    ocr = raw.get("ocr")
    if isinstance(ocr, Mapping):
        push(ocr.get("text"))
        push_lines(ocr.get("lines"))
    return " ".join(parts).strip()


def detect_facts_cues(*texts: Optional[str]) -> List[str]:
    """Facts-panel phrases (supplement facts, directions, ...) found in the given texts."""
    combined = " ".join(text for text in texts if isinstance(text, str)).lower()
    if not combined.strip():
        return []
    return [cue for cue in ReconciliationConfig.FACTS_PANEL_CUES if cue in combined]


def normalize_insight(raw: Any, url: Optional[str] = None) -> Optional[ImageInsight]:
    """
    Build an ImageInsight from one raw vision record.

    Returns None (and logs) for records without a usable URL or that fail
    validation; malformed upstream data never raises from here.
    """
    if isinstance(raw, ImageInsight):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        logger.warning("Skipping non-mapping image insight: %r", type(raw).__name__)
        return None

    key = ""
    for source_url in (raw.get("url"), url):
        key = canonical_url(source_url)
        if _is_usable_key(key):
            break
    else:
        logger.warning("Skipping image insight without a usable url: %r", raw.get("url") or url)
        return None

    payload = dict(raw)
    payload["url"] = key
    payload["key"] = key
    payload["text"] = extract_insight_text(raw)
    try:
        insight = ImageInsight.model_validate(payload)
    except ValidationError as e:
        logger.warning("Dropping malformed image insight %s: %s", key, e)
        return None

    if not insight.evidence_triggers:
        cues = detect_facts_cues(insight.text, insight.visual_description)
        if cues:
            insight.evidence_triggers = cues
    return insight


def _rank(insight: ImageInsight) -> tuple:
    score = abs(insight.role_score) if insight.role_score is not None else -1.0
    return (bool(insight.role), score)


def _pick(preferred: Any, other: Any, tie: bool) -> Any:
    present = [value for value in (preferred, other) if value is not None and value != ""]
    if not present:
        return preferred
    # on a tie neither record outranks the other, so take the larger value to
    # keep the merge independent of argument order
    return max(present) if tie else present[0]


def _union_triggers(first: Iterable[str], second: Iterable[str]) -> List[str]:
    by_lower: Dict[str, str] = {}
    for trigger in list(first) + list(second):
        lowered = trigger.lower()
        by_lower[lowered] = min(by_lower[lowered], trigger) if lowered in by_lower else trigger
    return [by_lower[lowered] for lowered in sorted(by_lower)]


def merge_insights(a: ImageInsight, b: ImageInsight) -> ImageInsight:
    """
    Merge two insights for the same key.

    The preferred record (non-empty role, then larger |roleScore|) wins every
    field it has; gaps are filled from the other record and evidence triggers
    are unioned. The merge is commutative and idempotent.
    """
    rank_a, rank_b = _rank(a), _rank(b)
    tie = rank_a == rank_b
    primary, secondary = (a, b) if rank_a >= rank_b else (b, a)
    return primary.model_copy(
        update={
            "role": _pick(primary.role, secondary.role, tie),
            "role_score": _pick(primary.role_score, secondary.role_score, tie),
            "has_visible_text": _pick(primary.has_visible_text, secondary.has_visible_text, tie),
            "dominant_color": _pick(primary.dominant_color, secondary.dominant_color, tie),
            "visual_description": _pick(primary.visual_description, secondary.visual_description, tie),
            "text": _pick(primary.text, secondary.text, tie),
            "evidence_triggers": _union_triggers(primary.evidence_triggers, secondary.evidence_triggers),
        },
        deep=True,
    )


def build_insight_map(image_insights: Any) -> Dict[str, ImageInsight]:
    """
    Normalize the vision service's imageInsights into {canonical url: ImageInsight}.

    Accepts either a list of records (each carrying its url) or a mapping of
    url -> record. Duplicate keys are merged with merge_insights.
    """
    if isinstance(image_insights, Mapping):
        entries = [(record, url) for url, record in image_insights.items()]
    elif isinstance(image_insights, (list, tuple)):
        entries = [(record, None) for record in image_insights]
    else:
        if image_insights is not None:
            logger.warning("Ignoring imageInsights of type %s", type(image_insights).__name__)
        return {}

    insight_map: Dict[str, ImageInsight] = {}
    duplicates = 0
    for record, url in entries:
        insight = normalize_insight(record, url)
        if insight is None:
            continue
        current = insight_map.get(insight.key)
        if current is None:
            insight_map[insight.key] = insight
        else:
            duplicates += 1
            insight_map[insight.key] = merge_insights(current, insight)

    if duplicates:
        logger.info("Merged %d duplicate image insights", duplicates)
    return insight_map
