"""
Donor import pipeline: per-row reconciliation and the batch job runner.
"""

from __future__ import annotations

from .reconcile import (
    MISSING_IDENTITY_MESSAGE,
    DonorReconciler,
    ReconcileResult,
    ResolvedIdentity,
    RowOutcome,
    merge_donor_fields,
    resolve_identity,
)
from .runner import DEFAULT_BATCH_SIZE, DonorImportRunner, ImportJob, ImportSummary, compute_progress

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DonorImportRunner",
    "DonorReconciler",
    "ImportJob",
    "ImportSummary",
    "MISSING_IDENTITY_MESSAGE",
    "ReconcileResult",
    "ResolvedIdentity",
    "RowOutcome",
    "compute_progress",
    "merge_donor_fields",
    "resolve_identity",
]
