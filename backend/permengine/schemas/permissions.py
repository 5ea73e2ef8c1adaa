from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from permengine.auth.evaluator import DiscountKind

_CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


# ── Capability checks ───────────────────────────────────────

class CheckRequest(BaseModel):
    """Ask whether the caller holds one or more capabilities."""
    capabilities: list[str] = Field(min_length=1)   # "inventory.canEditCostPrices"


class CapabilityDecisionOut(BaseModel):
    capability: str
    allowed: bool
    reason: str | None = None
    value: float | None = None   # granted limit for numeric capabilities
    unlimited: bool = False

    model_config = _CAMEL


class CheckResponse(BaseModel):
    results: list[CapabilityDecisionOut]
    missing: list[str]

    model_config = _CAMEL


# ── Discounts ───────────────────────────────────────────────

class DiscountCheckRequest(BaseModel):
    percent: float = 0
    amount: float = 0
    kind: DiscountKind = DiscountKind.BILL


class DiscountCheckResponse(BaseModel):
    allowed: bool
    reason: str | None = None


# ── Introspection ───────────────────────────────────────────

class RouteRuleOut(BaseModel):
    route: str
    type: str
    requirement: str
    roles: list[str] | None = None
    required_capability: str | None = None

    model_config = _CAMEL


class RouteTableResponse(BaseModel):
    rules: list[RouteRuleOut]
    unguarded: list[str]
    unmatched_policy: str

    model_config = _CAMEL


class PrincipalOut(BaseModel):
    id: str
    role: str
    feature_permissions: dict
    discount_authorization: dict

    model_config = _CAMEL
