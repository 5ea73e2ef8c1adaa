"""The authenticated actor evaluated by the engine."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from permengine.auth.catalog import DiscountGrants, FeaturePermissions


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class Principal(BaseModel):
    """Read-only view of a user record.

    `role` only matters for super_admin supremacy and RoleRequirement
    rules; every other capability must be granted explicitly.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str
    role: Role
    feature_permissions: FeaturePermissions = Field(default_factory=FeaturePermissions)
    discount_authorization: DiscountGrants = Field(default_factory=DiscountGrants)
    active: bool = True

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN
