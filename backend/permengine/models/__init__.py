"""Aggregate model imports so Base.metadata sees every table."""

from permengine.models.audit_log import PermissionAuditLog  # noqa: F401
from permengine.models.user import User  # noqa: F401

__all__ = ["PermissionAuditLog", "User"]
