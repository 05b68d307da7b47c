"""
Configuration for lot reconciliation.

Thresholds, heuristic weights and lexicons used by the assignment engine,
the role-confidence scorer and the orphan pass. Most thresholds can be
overridden from the environment (or a .env file).
"""

import math
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    # nan/inf from the environment would poison every comparison
    return value if math.isfinite(value) else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "on"}


class ReconciliationConfig:
    """Configuration for the candidate assignment / role reconciliation passes"""

    # Assignment thresholds
    MIN_ASSIGN_SCORE: float = _env_float("SMARTDRAFTS_MIN_ASSIGN_SCORE", 0.18)
    MAX_IMAGES_PER_GROUP: int = 12
    DEFAULT_PROMPT: str = "product photo"

    # In-flight embedding requests per scan
    EMBEDDING_CONCURRENCY: int = _env_int("SMARTDRAFTS_EMBEDDING_CONCURRENCY", 3)

    # Orphan pass, looser than the main pass
    ORPHAN_REASSIGN_THRESHOLD: float = _env_float("SMARTDRAFTS_ORPHAN_THRESHOLD", 0.30)

    # Role scorer
    LOW_CONFIDENCE_THRESHOLD: float = 0.4

    DEBUG: bool = _env_flag("SMARTDRAFTS_VISION_SORT_DEBUG")

    # Heuristic adjustments added on top of the embedding similarity
    ORIGINAL_GROUP_BONUS = 0.35
    ROLE_WEIGHTS = {
        'front': 0.05,
        'side': 0.02,
        'back': -0.04,
    }
    VISIBLE_TEXT_BONUS = 0.02
    PLAIN_BACKGROUND_PENALTY = -0.05
    PLAIN_BACKGROUND_COLORS = ('black', 'white')
    KEYWORD_MATCH_WEIGHT = 0.02
    KEYWORD_MATCH_CAP = 3
    BLACKLIST_PENALTY = -0.08
    BLACKLIST_TOKENS = ['dummy', 'placeholder', 'sample', 'template']
    MIN_TOKEN_LENGTH = 3

    # Evidence lexicons, matched case-insensitively as substrings of each trigger
    FRONT_EVIDENCE_PHRASES = ['brand logo', 'hero text', 'centered', 'large text']
    BACK_EVIDENCE_PHRASES = [
        'supplement facts',
        'nutrition facts',
        'ingredients',
        'barcode',
        'directions',
    ]

    # Cues used to derive evidence triggers from OCR when the vision model gave none
    FACTS_PANEL_CUES = [
        'supplement facts',
        'nutrition facts',
        'drug facts',
        'serving size',
        'other ingredients',
        'ingredients',
        'directions',
        'warnings',
        'allergen',
    ]

    @classmethod
    def get_default_config(cls) -> Dict[str, Any]:
        return {
            'min_assign_score': cls.MIN_ASSIGN_SCORE,
            'max_images_per_group': cls.MAX_IMAGES_PER_GROUP,
            'embedding_concurrency': cls.EMBEDDING_CONCURRENCY,
            'orphan_reassign_threshold': cls.ORPHAN_REASSIGN_THRESHOLD,
            'low_confidence_threshold': cls.LOW_CONFIDENCE_THRESHOLD,
            'debug': cls.DEBUG,
            'blacklist_tokens': list(cls.BLACKLIST_TOKENS),
        }

    @staticmethod
    def _finite_or(value: Optional[float], default: float) -> float:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return float(value)
        return default

    @classmethod
    def resolve_min_score(cls, min_score: Optional[float]) -> float:
        """Caller override if it is a finite number, otherwise the configured default."""
        return cls._finite_or(min_score, cls.MIN_ASSIGN_SCORE)

    @classmethod
    def resolve_orphan_threshold(cls, threshold: Optional[float]) -> float:
        """Same as resolve_min_score, for the orphan pass."""
        return cls._finite_or(threshold, cls.ORPHAN_REASSIGN_THRESHOLD)


class ClipConfig:
    """Settings for the Hugging Face CLIP inference endpoints"""

    HF_API_TOKEN: str = os.getenv("HF_API_TOKEN", "")
    HF_TEXT_ENDPOINT_BASE: str = (os.getenv("HF_TEXT_ENDPOINT_BASE") or "").rstrip("/")
    HF_IMAGE_ENDPOINT_BASE: str = (os.getenv("HF_IMAGE_ENDPOINT_BASE") or "").rstrip("/")
    CLIP_MODEL: str = os.getenv("CLIP_MODEL", "")

    REQUEST_TIMEOUT: float = _env_float("HF_REQUEST_TIMEOUT", 60.0)
    CONNECT_TIMEOUT: float = 15.0

    # No downsampling by default
    MAX_IMAGE_DIMENSION: Optional[int] = None
    JPEG_QUALITY: int = 92

    @classmethod
    def provider_info(cls) -> Dict[str, str]:
        return {
            'provider': 'hf-single-endpoint',
            'model': cls.CLIP_MODEL,
            'base': cls.HF_TEXT_ENDPOINT_BASE,
        }
