"""PermissionAuditLog — immutable trail of denials and field overrides.

Principals are referenced by id only; there is no foreign key so that
audit history survives user deletion.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from permengine.database import Base


class PermissionAuditLog(Base):
    __tablename__ = "permission_audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    principal_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)

    # ── What ───────────────────────────────────────────────────
    # denied | overridden
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(String(50))
    capability: Mapped[str | None] = mapped_column(String(100))

    # ── Context ────────────────────────────────────────────────
    context: Mapped[dict | None] = mapped_column(JSON)

    # ── Timestamp ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
