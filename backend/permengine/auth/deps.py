"""FastAPI dependencies for handlers behind PermissionMiddleware.

Dependencies:
  get_engine                   → the PermissionEngine on app.state
  get_current_principal        → principal attached by the middleware (or 401)
  require_permission(...)      → restrict to one catalog capability
  require_all_permissions(...) → every listed capability
  require_any_permission(...)  → at least one listed capability
  require_feature(...)         → super_admin or a delegated admin feature

Every denial raised here is recorded as a `denied` audit event first.
"""

from typing import Any

from fastapi import Depends, Request

from permengine.auth.audit import AuditEvent, AuditOutcome
from permengine.auth.catalog import Capability, get_capability, parse_capability
from permengine.auth.features import AdminFeature, FeatureAction, feature_capability, feature_config
from permengine.auth.principal import Principal
from permengine.engine import PermissionEngine
from permengine.middleware.exceptions import ConfigurationError, PermissionDenied, Unauthenticated


def get_engine(request: Request) -> PermissionEngine:
    return request.app.state.engine


# ── Core principal dependency ───────────────────────────────

async def get_current_principal(request: Request) -> Principal:
    """Return the principal resolved by the middleware.

    Routes under a public prefix never get one; asking for it there is
    a 401 like any other unauthenticated call.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated()
    return principal


async def _deny(
    request: Request,
    engine: PermissionEngine,
    principal: Principal,
    capability: Capability | None,
    message: str,
    **context: Any,
) -> PermissionDenied:
    await engine.emitter.emit(AuditEvent.for_principal(
        principal,
        AuditOutcome.DENIED,
        capability,
        {"method": request.method, "path": request.url.path, "rule": None, **context},
    ))
    return PermissionDenied(message, required_capability=capability.key if capability else None)


# ── Capability-based access control ─────────────────────────

def require_permission(category: str, capability: str):
    """Dependency factory — restrict to principals holding one capability.

    The pair is checked against the catalog when the route is declared.

    Usage:
        @router.delete("/{id}")
        async def delete(
            principal: Principal = Depends(require_permission("inventory", "canDeleteProducts")),
        ):
            ...
    """
    cap = get_capability(category, capability)

    async def _check(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        engine: PermissionEngine = Depends(get_engine),
    ) -> Principal:
        decision = engine.evaluator.decide_capability(principal, cap)
        if not decision.allowed:
            raise await _deny(
                request, engine, principal, cap,
                f"Access denied: {decision.reason}",
                requirement=cap.key,
            )
        return principal

    return _check


def _parse_all(keys: tuple[str, ...]) -> list[Capability]:
    if not keys:
        raise ConfigurationError("At least one capability is required")
    return [parse_capability(k) for k in keys]


def require_all_permissions(*keys: str):
    """Every listed "category.capability" must be held.

    The first missing one is reported as the required capability.
    """
    caps = _parse_all(keys)

    async def _check(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        engine: PermissionEngine = Depends(get_engine),
    ) -> Principal:
        missing = engine.evaluator.missing_permissions(principal, caps)
        if missing:
            first = parse_capability(missing[0])
            raise await _deny(
                request, engine, principal, first,
                f"Access denied: missing {', '.join(missing)}",
                requirement="all of " + ", ".join(c.key for c in caps),
            )
        return principal

    return _check


def require_any_permission(*keys: str):
    """At least one listed "category.capability" must be held."""
    caps = _parse_all(keys)
    requirement = "any of " + ", ".join(c.key for c in caps)

    async def _check(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        engine: PermissionEngine = Depends(get_engine),
    ) -> Principal:
        if not engine.evaluator.has_any_permission(principal, caps):
            raise await _deny(
                request, engine, principal, None,
                f"Access denied: requires {requirement}",
                requirement=requirement,
            )
        return principal

    return _check


# ── Delegated admin features ────────────────────────────────

def require_feature(feature: AdminFeature | str, action: FeatureAction | str | None = None):
    """super_admin, or a principal the feature's capability was delegated to.

    Without an action the feature's default capability is required.
    Denials use the feature's display name.
    """
    config = feature_config(feature)
    cap = feature_capability(feature, action)

    async def _check(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        engine: PermissionEngine = Depends(get_engine),
    ) -> Principal:
        if not engine.evaluator.decide_capability(principal, cap).allowed:
            raise await _deny(
                request, engine, principal, cap,
                config.denial_message,
                requirement=cap.key,
                feature=AdminFeature(feature).value,
            )
        return principal

    return _check
