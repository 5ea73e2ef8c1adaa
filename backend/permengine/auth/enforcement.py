"""Single decision path for inbound operations.

Flow for `enforce(operation, identity_ref)`:
  1. no identity ref              -> Deny UNAUTHENTICATED (401)
  2. resolve principal            -> any resolution failure is Deny
                                     UNAUTHENTICATED, cause only logged
  3. super_admin                  -> Proceed (registry not consulted)
  4. registry rule
       RoleRequirement            -> role listed?
       CapabilityRequirement      -> evaluator
       AnyCapabilityRequirement   -> evaluator, any one
       CustomPredicate            -> predicate(principal, context)
  5. deny                         -> Deny INSUFFICIENT_PERMISSIONS (403)
                                     + `denied` audit event
  6. no rule                      -> unmatched-route policy (allow | deny)

Handlers must never re-implement role comparisons; they use the
evaluator / guard on the Proceed principal.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from permengine.auth.audit import AuditEmitter, AuditEvent, AuditOutcome
from permengine.auth.catalog import Capability
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.principal import Principal
from permengine.auth.registry import (
    AnyCapabilityRequirement,
    CapabilityRequirement,
    CustomPredicate,
    RoleRequirement,
    RoutePermissionRegistry,
)
from permengine.auth.resolver import PrincipalResolver
from permengine.middleware.exceptions import ConfigurationError, PrincipalResolutionError

logger = logging.getLogger(__name__)


class UnmatchedRoutePolicy(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class OperationDescriptor:
    method: str
    path: str


@dataclass(frozen=True)
class Proceed:
    principal: Principal
    params: dict[str, str] = field(default_factory=dict)

    allowed = True


@dataclass(frozen=True)
class Deny:
    code: str
    message: str
    status_code: int
    required_capability: str | None = None

    allowed = False

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.required_capability:
            error["requiredCapability"] = self.required_capability
        return {"error": error}


EnforcementResult = Union[Proceed, Deny]

UNAUTHENTICATED = "UNAUTHENTICATED"
INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"


def unauthenticated() -> Deny:
    return Deny(UNAUTHENTICATED, "Authentication required", 401)


class Enforcer:
    def __init__(
        self,
        resolver: PrincipalResolver,
        registry: RoutePermissionRegistry,
        evaluator: PermissionEvaluator,
        emitter: AuditEmitter | None = None,
        unmatched_policy: UnmatchedRoutePolicy | str = UnmatchedRoutePolicy.ALLOW,
    ):
        try:
            self.unmatched_policy = UnmatchedRoutePolicy(unmatched_policy)
        except ValueError:
            raise ConfigurationError(
                f"Unknown unmatched route policy: {unmatched_policy!r}"
            ) from None
        self.resolver = resolver
        self.registry = registry
        self.evaluator = evaluator
        self.emitter = emitter

    async def enforce(
        self,
        operation: OperationDescriptor,
        identity_ref: str | None,
        context: dict[str, Any] | None = None,
    ) -> EnforcementResult:
        if not identity_ref:
            return unauthenticated()

        try:
            principal = await self.resolver.resolve(identity_ref)
        except PrincipalResolutionError as e:
            logger.info(
                f"Principal resolution failed: {type(e).__name__}",
                extra={"path": operation.path, "method": operation.method},
            )
            return unauthenticated()

        if principal.is_super_admin:
            return Proceed(principal)

        found = self.registry.match(operation.method, operation.path)
        if found is None:
            return await self._unmatched(operation, principal)

        requirement = found.rule.requirement
        missing: Capability | None = None
        detail: str

        if isinstance(requirement, RoleRequirement):
            allowed = principal.role in requirement.roles
            detail = f"Requires {requirement.describe()}"
        elif isinstance(requirement, CapabilityRequirement):
            decision = self.evaluator.decide_capability(principal, requirement.capability)
            allowed = decision.allowed
            missing = requirement.capability
            detail = f"Access denied: {decision.reason}"
        elif isinstance(requirement, AnyCapabilityRequirement):
            allowed = self.evaluator.has_any_permission(principal, requirement.capabilities)
            detail = f"Access denied: requires {requirement.describe()}"
        elif isinstance(requirement, CustomPredicate):
            predicate_context = {
                **(context or {}),
                "method": operation.method.upper(),
                "path": operation.path,
                "params": found.params,
            }
            try:
                outcome = await requirement.evaluate(principal, predicate_context)
                allowed = outcome.allowed
                missing = outcome.missing
            except Exception:
                logger.exception(
                    f"Permission predicate failed for {found.rule.method_and_pattern}"
                )
                allowed = False
            detail = f"Access denied: requires {requirement.describe()}"
        else:  # registry validates requirement types on registration
            raise ConfigurationError(f"Unsupported requirement: {type(requirement).__name__}")

        if allowed:
            return Proceed(principal, found.params)

        deny = Deny(
            INSUFFICIENT_PERMISSIONS,
            detail,
            403,
            required_capability=missing.key if missing else None,
        )
        logger.info(
            f"Denied {operation.method} {operation.path}: {detail}",
            extra={"principal_id": principal.id, "rule": found.rule.method_and_pattern},
        )
        await self._audit_denial(principal, missing, {
            "method": operation.method.upper(),
            "path": operation.path,
            "rule": found.rule.method_and_pattern,
            "requirement": requirement.describe(),
        })
        return deny

    async def _audit_denial(
        self,
        principal: Principal,
        missing: Capability | None,
        context: dict[str, Any],
    ) -> None:
        if self.emitter is not None:
            await self.emitter.emit(
                AuditEvent.for_principal(principal, AuditOutcome.DENIED, missing, context)
            )

    async def _unmatched(self, operation: OperationDescriptor, principal: Principal) -> EnforcementResult:
        logger.warning(
            f"No permission rule for {operation.method} {operation.path} "
            f"(policy: {self.unmatched_policy.value})",
            extra={"path": operation.path, "method": operation.method},
        )
        if self.unmatched_policy == UnmatchedRoutePolicy.ALLOW:
            return Proceed(principal)
        await self._audit_denial(principal, None, {
            "method": operation.method.upper(),
            "path": operation.path,
            "rule": None,
            "requirement": "unmatched route policy: deny",
        })
        return Deny(INSUFFICIENT_PERMISSIONS, "No permission rule for this operation", 403)
