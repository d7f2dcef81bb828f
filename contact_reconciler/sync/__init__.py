"""
contact_reconciler.sync - Reconciliation core

Normalizer, similarity matcher, deduplication engine, conflict resolver and
job state machine. The pipeline and the service that drive them live in
sync.pipeline and sync.service.
"""

from contact_reconciler.sync.conflict import (
    Conflict,
    ConflictResolver,
    ConflictSide,
    ConflictStrategy,
    ResolvedConflict,
)
from contact_reconciler.sync.dedup import DeduplicationEngine, DedupSummary
from contact_reconciler.sync.jobs import ImportJob, JobKind, JobStatus
from contact_reconciler.sync.matcher import MatchResult, MatchType, SimilarityMatcher
from contact_reconciler.sync.records import (
    ContactRecord,
    Integration,
    IntegrationLink,
    LocalContact,
)

__all__ = [
    "ContactRecord",
    "LocalContact",
    "Integration",
    "IntegrationLink",
    "SimilarityMatcher",
    "MatchResult",
    "MatchType",
    "DeduplicationEngine",
    "DedupSummary",
    "ConflictResolver",
    "ConflictStrategy",
    "ConflictSide",
    "Conflict",
    "ResolvedConflict",
    "ImportJob",
    "JobKind",
    "JobStatus",
]
