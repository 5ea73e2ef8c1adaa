import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from permengine.database import Base


class User(Base):
    """User record as written by user management.

    The engine only reads it.  `role` is stored as a plain string so that a
    record with an unknown role is rejected by the resolver instead of
    failing inside the ORM.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="staff")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # {"inventory": {"canAddProducts": true, ...}, "discounts": {...}}
    # null = nothing granted beyond what the role short-circuits.
    feature_permissions: Mapped[dict | None] = mapped_column(JSON, default=None)

    # {"canApplyBillDiscounts": true, "maxDiscountPercent": 10, ...}
    discount_authorization: Mapped[dict | None] = mapped_column(JSON, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
