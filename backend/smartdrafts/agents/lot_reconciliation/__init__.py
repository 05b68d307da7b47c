"""
Lot Reconciliation Module

Groups a seller lot's product photos into products and settles each photo's
role (front, back, side, ...) from the vision model's noisy per-image hints.
"""

from .reconciliation_types import (
    ImageInsight,
    ProductGroup,
    Candidate,
    RoleConfidence,
    RoleCorrection,
    GroupRoleCorrection,
    OrphanReassignment,
    AssignmentResult,
    ReconciliationResult,
)

from .config import (
    ReconciliationConfig,
    ClipConfig,
)

from .url_keys import canonical_url
from .insights import build_insight_map, merge_insights, extract_insight_text
from .embeddings import EmbeddingCache, EmbeddingProvider, cosine
from .assignment import assign_candidates
from .role_confidence import compute_role_confidence, compute_role_confidence_batch
from .cross_check import cross_check_group_roles, apply_role_corrections
from .orphans import reassign_orphans
from .pipeline import build_candidates, reconcile_lot

__all__ = [
    'ImageInsight',
    'ProductGroup',
    'Candidate',
    'RoleConfidence',
    'RoleCorrection',
    'GroupRoleCorrection',
    'OrphanReassignment',
    'AssignmentResult',
    'ReconciliationResult',
    'ReconciliationConfig',
    'ClipConfig',
    'canonical_url',
    'build_insight_map',
    'merge_insights',
    'extract_insight_text',
    'EmbeddingCache',
    'EmbeddingProvider',
    'cosine',
    'assign_candidates',
    'compute_role_confidence',
    'compute_role_confidence_batch',
    'cross_check_group_roles',
    'apply_role_corrections',
    'reassign_orphans',
    'build_candidates',
    'reconcile_lot',
]

__version__ = '0.1.0'
