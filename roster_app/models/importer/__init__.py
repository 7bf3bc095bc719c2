"""
Importer schema models.
"""

from .schema import TERMINAL_OPERATION_STATUSES, ImportOperation, OperationStatus

__all__ = [
    "ImportOperation",
    "OperationStatus",
    "TERMINAL_OPERATION_STATUSES",
]
