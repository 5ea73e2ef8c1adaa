"""The single permission decision function.

Decision order (first match wins):
  1. super_admin          -> allow, nothing else consulted
  2. explicit grant       -> allow if the flag is True / the limit is > 0
  3. otherwise            -> deny, reason "missing <category>.<capability>"

There are no implicit grants from admin / manager / staff.  A capability
added to the catalog later is denied for every existing account until it
is granted explicitly.

Everything here is pure: same inputs, same decision, no I/O.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Iterable

from permengine.auth.catalog import (
    Capability,
    CapabilityKind,
    FeatureCategory,
    get_capability,
    parse_capability,
)
from permengine.auth.principal import Principal
from permengine.middleware.exceptions import ConfigurationError


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str | None = None
    required_capability: str | None = None
    value: float | None = None


class DiscountKind(str, enum.Enum):
    PRODUCT = "product"
    BILL = "bill"


@dataclass(frozen=True)
class DiscountDecision:
    allowed: bool
    reason: str | None = None


DISCOUNT_TYPE_NOT_PERMITTED = "discount type not permitted"


def _as_capability(item: Capability | str | tuple[str, str]) -> Capability:
    if isinstance(item, Capability):
        return item
    if isinstance(item, tuple):
        return get_capability(*item)
    return parse_capability(item)


class PermissionEvaluator:
    """Stateless; one instance can be shared by every request."""

    def decide(
        self,
        principal: Principal,
        category: FeatureCategory | str,
        capability: str,
    ) -> PermissionDecision:
        cap = get_capability(category, capability)
        return self.decide_capability(principal, cap)

    def decide_capability(self, principal: Principal, cap: Capability) -> PermissionDecision:
        if principal.is_super_admin:
            value = math.inf if cap.kind == CapabilityKind.LIMIT else None
            return PermissionDecision(True, required_capability=cap.key, value=value)

        grants = principal.feature_permissions.grants_for(cap.category)
        granted = getattr(grants, cap.attr)

        if cap.kind == CapabilityKind.LIMIT:
            if granted > 0:
                return PermissionDecision(True, required_capability=cap.key, value=granted)
        elif granted is True:
            return PermissionDecision(True, required_capability=cap.key)

        return PermissionDecision(
            False,
            reason=f"missing {cap.key}",
            required_capability=cap.key,
        )

    def has_permission(
        self,
        principal: Principal,
        category: FeatureCategory | str,
        capability: str,
    ) -> bool:
        return self.decide(principal, category, capability).allowed

    def has_numeric_allowance(
        self,
        principal: Principal,
        category: FeatureCategory | str,
        capability: str,
    ) -> float:
        """Granted limit for a numeric capability (inf for super_admin, 0 if none)."""
        cap = get_capability(category, capability)
        if cap.kind != CapabilityKind.LIMIT:
            raise ConfigurationError(f"{cap.key} is not a numeric capability")
        decision = self.decide_capability(principal, cap)
        return decision.value if decision.allowed else 0

    def has_all_permissions(
        self,
        principal: Principal,
        capabilities: Iterable[Capability | str | tuple[str, str]],
    ) -> bool:
        return not self.missing_permissions(principal, capabilities)

    def has_any_permission(
        self,
        principal: Principal,
        capabilities: Iterable[Capability | str | tuple[str, str]],
    ) -> bool:
        caps = [_as_capability(c) for c in capabilities]
        return any(self.decide_capability(principal, c).allowed for c in caps)

    def missing_permissions(
        self,
        principal: Principal,
        capabilities: Iterable[Capability | str | tuple[str, str]],
    ) -> list[str]:
        # Resolve everything first so a typo fails even when an earlier
        # capability is already missing.
        caps = [_as_capability(c) for c in capabilities]
        return [c.key for c in caps if not self.decide_capability(principal, c).allowed]

    def check_discount_permission(
        self,
        principal: Principal,
        requested_percent: float,
        requested_amount: float,
        kind: DiscountKind | str = DiscountKind.BILL,
    ) -> DiscountDecision:
        try:
            kind = DiscountKind(kind)
        except ValueError:
            raise ConfigurationError(f"Unknown discount kind: {kind!r}") from None

        if math.isnan(requested_percent) or math.isnan(requested_amount):
            return DiscountDecision(False, "invalid discount value")

        # Nothing requested (e.g. removing a discount)
        if requested_percent <= 0 and requested_amount <= 0:
            return DiscountDecision(True)

        auth = principal.discount_authorization
        if principal.is_super_admin or auth.unlimited_discounts:
            return DiscountDecision(True)

        gate = (
            auth.can_apply_product_discounts
            if kind == DiscountKind.PRODUCT
            else auth.can_apply_bill_discounts
        )
        if not gate:
            return DiscountDecision(False, DISCOUNT_TYPE_NOT_PERMITTED)

        if requested_percent > 0 and requested_percent > auth.max_discount_percent:
            return DiscountDecision(
                False,
                f"discount percent {requested_percent:g}% exceeds maximum "
                f"{auth.max_discount_percent:g}%",
            )
        if requested_amount > 0 and requested_amount > auth.max_discount_amount:
            return DiscountDecision(
                False,
                f"discount amount {requested_amount:g} exceeds maximum "
                f"{auth.max_discount_amount:g}",
            )
        return DiscountDecision(True)
