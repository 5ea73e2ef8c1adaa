"""PermissionEngine: the explicitly constructed service bundle.

One instance per application, built by `create_app()` (or by tests) and
shared through `app.state.engine`.  Nothing in the auth package keeps a
module-level instance, so tests can wire any store, sink or rule table.
"""

from __future__ import annotations

from dataclasses import dataclass

from permengine.auth.audit import AuditEmitter, AuditSink, LoggingAuditSink
from permengine.auth.enforcement import Enforcer
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.guard import PRODUCT_SENSITIVE_FIELDS, SensitiveFieldGuard
from permengine.auth.registry import RoutePermissionRegistry
from permengine.auth.resolver import PrincipalResolver
from permengine.auth.rules import build_default_registry
from permengine.auth.stores import EntitySnapshotStore, PrincipalStore
from permengine.config import Settings


@dataclass
class PermissionEngine:
    settings: Settings
    evaluator: PermissionEvaluator
    resolver: PrincipalResolver
    registry: RoutePermissionRegistry
    emitter: AuditEmitter
    enforcer: Enforcer
    product_guard: SensitiveFieldGuard

    @classmethod
    def build(
        cls,
        settings: Settings,
        principal_store: PrincipalStore,
        *,
        audit_sink: AuditSink | None = None,
        registry: RoutePermissionRegistry | None = None,
        product_snapshots: EntitySnapshotStore | None = None,
        transaction_snapshots: EntitySnapshotStore | None = None,
    ) -> "PermissionEngine":
        evaluator = PermissionEvaluator()
        resolver = PrincipalResolver(principal_store, timeout=settings.principal_store_timeout_seconds)
        if registry is None:
            registry = build_default_registry(evaluator, transaction_snapshots)
        emitter = AuditEmitter(
            audit_sink or LoggingAuditSink(),
            timeout=settings.audit_write_timeout_seconds,
        )
        enforcer = Enforcer(
            resolver,
            registry,
            evaluator,
            emitter,
            unmatched_policy=settings.unmatched_route_policy,
        )
        product_guard = SensitiveFieldGuard(
            "product",
            "inventory",
            PRODUCT_SENSITIVE_FIELDS,
            evaluator=evaluator,
            emitter=emitter,
            snapshots=product_snapshots,
        )
        return cls(
            settings=settings,
            evaluator=evaluator,
            resolver=resolver,
            registry=registry,
            emitter=emitter,
            enforcer=enforcer,
            product_guard=product_guard,
        )
