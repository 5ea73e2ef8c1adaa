"""Permission introspection and self-check endpoints.

Endpoints:
    GET    /api/permissions/catalog            Capability catalog {category: {capability: kind}}
    GET    /api/permissions/routes             Route-permission table + unguarded routes
    GET    /api/permissions/me                 Caller's role and grants
    POST   /api/permissions/check              Does the caller hold these capabilities?
    POST   /api/permissions/discounts/check    Would this discount be allowed for the caller?

Every endpoint is itself guarded by the route table; handlers only read
the principal the middleware attached.
"""

import math

from fastapi import APIRouter, Depends, HTTPException, Request, status

from permengine.auth.catalog import catalog_as_dict, parse_capability
from permengine.auth.deps import get_current_principal, get_engine
from permengine.auth.principal import Principal
from permengine.engine import PermissionEngine
from permengine.middleware.exceptions import ConfigurationError
from permengine.schemas.permissions import (
    CapabilityDecisionOut,
    CheckRequest,
    CheckResponse,
    DiscountCheckRequest,
    DiscountCheckResponse,
    PrincipalOut,
    RouteTableResponse,
)
from permengine.utils.routes import find_unguarded_routes

router = APIRouter()


@router.get("/catalog")
async def get_catalog(
    _principal: Principal = Depends(get_current_principal),
) -> dict[str, dict[str, str]]:
    return catalog_as_dict()


@router.get("/routes", response_model=RouteTableResponse)
async def get_route_table(
    request: Request,
    engine: PermissionEngine = Depends(get_engine),
    _principal: Principal = Depends(get_current_principal),
):
    return RouteTableResponse(
        rules=engine.registry.describe(),
        unguarded=find_unguarded_routes(
            request.app, engine.registry, engine.settings.public_prefixes
        ),
        unmatched_policy=engine.enforcer.unmatched_policy.value,
    )


@router.get("/me", response_model=PrincipalOut)
async def get_me(principal: Principal = Depends(get_current_principal)):
    return PrincipalOut(
        id=principal.id,
        role=principal.role.value,
        feature_permissions=principal.feature_permissions.model_dump(by_alias=True),
        discount_authorization=principal.discount_authorization.model_dump(by_alias=True),
    )


@router.post("/check", response_model=CheckResponse)
async def check_permissions(
    body: CheckRequest,
    principal: Principal = Depends(get_current_principal),
    engine: PermissionEngine = Depends(get_engine),
):
    try:
        caps = [parse_capability(key) for key in body.capabilities]
    except ConfigurationError as e:
        # Caller input, not a broken rule table
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from None

    results = []
    for cap in caps:
        decision = engine.evaluator.decide_capability(principal, cap)
        unlimited = decision.value is not None and math.isinf(decision.value)
        results.append(CapabilityDecisionOut(
            capability=cap.key,
            allowed=decision.allowed,
            reason=decision.reason,
            value=None if unlimited else decision.value,
            unlimited=unlimited,
        ))
    return CheckResponse(
        results=results,
        missing=[r.capability for r in results if not r.allowed],
    )


@router.post("/discounts/check", response_model=DiscountCheckResponse)
async def check_discount(
    body: DiscountCheckRequest,
    principal: Principal = Depends(get_current_principal),
    engine: PermissionEngine = Depends(get_engine),
):
    decision = engine.evaluator.check_discount_permission(
        principal, body.percent, body.amount, body.kind
    )
    return DiscountCheckResponse(allowed=decision.allowed, reason=decision.reason)
