"""
SQLAlchemy models backing the shared progress registry for donor imports.

Rows here are observability only: losing them never affects donor or list data.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class OperationStatus(str, enum.Enum):
    """Lifecycle states for a tracked background operation."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OPERATION_STATUSES


TERMINAL_OPERATION_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.ERROR, OperationStatus.CANCELLED}
)


class ImportOperation(BaseModel):
    """Persisted progress record for one import operation."""

    __tablename__ = "import_operations"

    id: Mapped[str] = mapped_column(db.String(64), primary_key=True)
    operation_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default="donor_import", index=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    status: Mapped[OperationStatus] = mapped_column(
        Enum(OperationStatus, name="import_operation_status_enum"),
        nullable=False,
        default=OperationStatus.QUEUED,
        index=True,
    )
    progress: Mapped[int | None] = mapped_column(db.Integer, nullable=True, default=0)
    message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    result_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    source_filename: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True, index=True)

    owner = relationship("User", foreign_keys=[owner_id])

    __table_args__ = (
        CheckConstraint(
            "progress IS NULL OR (progress >= 0 AND progress <= 100)",
            name="ck_import_operation_progress_range",
        ),
        Index("idx_import_operation_owner_status", "owner_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ImportOperation {self.id} status={self.status.value}>"
