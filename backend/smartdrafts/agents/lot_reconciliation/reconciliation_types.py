"""
Shared types for lot reconciliation.

ImageInsight and ProductGroup are pydantic models because they are parsed
from loosely shaped vision-service output (camelCase keys, missing fields).
Everything the reconciliation passes produce is a plain dataclass.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ROLES = ('front', 'back', 'side', 'detail', 'label', 'accessory', 'packaging', 'other')


def _clean_strings(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class ImageInsight(BaseModel):
    """Per-image hints from the vision model, keyed by canonical URL."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    key: Optional[str] = None
    role: Optional[str] = None
    role_score: Optional[float] = Field(default=None, alias="roleScore")
    has_visible_text: Optional[bool] = Field(default=None, alias="hasVisibleText")
    dominant_color: Optional[str] = Field(default=None, alias="dominantColor")
    evidence_triggers: List[str] = Field(default_factory=list, alias="evidenceTriggers")
    visual_description: Optional[str] = Field(default=None, alias="visualDescription")
    # consolidated OCR text, see insights.extract_insight_text
    text: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value.strip():
            return None
        role = value.strip().lower()
        return role if role in ROLES else 'other'

    @field_validator("role_score", mode="before")
    @classmethod
    def _finite_score(cls, value: Any) -> Optional[float]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value) if math.isfinite(value) else None

    @field_validator("has_visible_text", mode="before")
    @classmethod
    def _strict_bool(cls, value: Any) -> Optional[bool]:
        return value if isinstance(value, bool) else None

    @field_validator("dominant_color", "visual_description", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    @field_validator("evidence_triggers", mode="before")
    @classmethod
    def _triggers(cls, value: Any) -> List[str]:
        return _clean_strings(value)

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""


class ProductGroup(BaseModel):
    """A provisional product proposed by the vision step."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    group_id: Optional[str] = Field(default=None, alias="groupId")
    brand: Optional[str] = None
    product: Optional[str] = None
    variant: Optional[str] = None
    claims: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    hero_url: Optional[str] = Field(default=None, alias="heroUrl")
    back_url: Optional[str] = Field(default=None, alias="backUrl")

    @field_validator("group_id", mode="before")
    @classmethod
    def _group_id(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, bool):
            return None
        text = str(value).strip()
        return text or None

    @field_validator("brand", "product", "variant", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    @field_validator("claims", mode="before")
    @classmethod
    def _claims(cls, value: Any) -> List[str]:
        return _clean_strings(value)

    @field_validator("images", mode="before")
    @classmethod
    def _images(cls, value: Any) -> List[str]:
        # the vision step sometimes returns {"url": ...} objects instead of strings
        if not isinstance(value, (list, tuple)):
            return []
        images = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("url")
            if isinstance(item, str) and item.strip():
                images.append(item.strip())
        return images


@dataclass(frozen=True)
class Candidate:
    """An image awaiting group assignment."""
    url: str
    name: str = ""
    folder: str = ""
    order: int = 0  # ingestion order, used for tie-breaks and final ordering
    index: int = 0  # position in the full candidate list


@dataclass
class RoleConfidence:
    role: str
    confidence: float
    flags: List[str] = field(default_factory=list)
    adjusted_role: Optional[str] = None  # only set when the scorer overrode the role


@dataclass
class RoleCorrection:
    image_key: str
    original_role: str
    corrected_role: str
    reason: str


@dataclass
class GroupRoleCorrection:
    group_id: str
    corrections: List[RoleCorrection] = field(default_factory=list)


@dataclass
class OrphanReassignment:
    orphan_key: str
    matched_group_id: str
    confidence: float
    reason: str


@dataclass
class ScoredCandidate:
    url: str
    score: float


@dataclass
class DebugLog:
    group_id: str
    prompt: str
    top: List[ScoredCandidate] = field(default_factory=list)


@dataclass
class AssignmentResult:
    groups: List[ProductGroup]
    orphans: List[Candidate]
    debug_logs: List[DebugLog] = field(default_factory=list)
    # assigned but cut by the per-group image cap
    overflow: List[Candidate] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    groups: List[ProductGroup]
    orphans: List[Candidate]
    reassignments: List[OrphanReassignment] = field(default_factory=list)
    role_confidence: Dict[str, RoleConfidence] = field(default_factory=dict)
    corrections: List[GroupRoleCorrection] = field(default_factory=list)
    insights: Dict[str, ImageInsight] = field(default_factory=dict)
    debug_logs: List[DebugLog] = field(default_factory=list)
    overflow: List[Candidate] = field(default_factory=list)
