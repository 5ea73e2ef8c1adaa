"""Sensitive-field guard — field-level checks inside an allowed update.

A principal allowed to edit a product in general may still lack the
stricter capability for some of its fields (cost price, stock).  For each
such field that the update would actually change, the guard:

  1. reverts the field (and any linked fields) to the existing value,
  2. emits one `overridden` audit event for that field,
  3. lets every other field through untouched.

The update as a whole is never rejected.  The caller's payload is not
mutated; the guarded copy is returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from permengine.auth.audit import AuditEmitter, AuditEvent, AuditOutcome
from permengine.auth.catalog import Capability, FeatureCategory, get_capability, to_category
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.principal import Principal
from permengine.auth.stores import EntitySnapshotStore
from permengine.middleware.exceptions import EntityNotFound

_MISSING = object()


@dataclass(frozen=True)
class SensitiveField:
    capability: str
    # Fields reverted together with this one (e.g. stock counters)
    linked: tuple[str, ...] = ()


FieldCapabilityMap = Mapping[str, "str | SensitiveField"]


PRODUCT_SENSITIVE_FIELDS: dict[str, SensitiveField] = {
    "costPrice": SensitiveField("canEditCostPrices"),
    "currentStock": SensitiveField("canManageStock", linked=("quantity", "totalQuantity")),
}


@dataclass(frozen=True)
class GuardResult:
    reverted_fields: frozenset[str]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _CompiledField:
    name: str
    capability: Capability
    linked: tuple[str, ...]


def _compile_fields(category: FeatureCategory | str, fields: FieldCapabilityMap) -> tuple[_CompiledField, ...]:
    cat = to_category(category)
    compiled = []
    for name, entry in fields.items():
        if isinstance(entry, str):
            entry = SensitiveField(entry)
        compiled.append(_CompiledField(name, get_capability(cat, entry.capability), entry.linked))
    return tuple(compiled)


async def guard_sensitive_fields(
    principal: Principal,
    category: FeatureCategory | str,
    field_capability_map: FieldCapabilityMap,
    existing: Mapping[str, Any],
    proposed: Mapping[str, Any],
    *,
    evaluator: PermissionEvaluator,
    emitter: AuditEmitter | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> GuardResult:
    return await _guard(
        principal,
        _compile_fields(category, field_capability_map),
        existing,
        proposed,
        evaluator=evaluator,
        emitter=emitter,
        entity_type=entity_type,
        entity_id=entity_id,
    )


async def _guard(
    principal: Principal,
    fields: tuple[_CompiledField, ...],
    existing: Mapping[str, Any],
    proposed: Mapping[str, Any],
    *,
    evaluator: PermissionEvaluator,
    emitter: AuditEmitter | None,
    entity_type: str | None,
    entity_id: str | None,
) -> GuardResult:
    payload = dict(proposed)
    reverted: set[str] = set()

    for gated in fields:
        if gated.name not in proposed:
            continue
        before = existing.get(gated.name, _MISSING)
        if before is not _MISSING and before == proposed[gated.name]:
            continue
        if evaluator.decide_capability(principal, gated.capability).allowed:
            continue

        for name in (gated.name, *gated.linked):
            if name not in payload:
                continue
            if name in existing:
                payload[name] = existing[name]
            else:
                del payload[name]
        reverted.add(gated.name)

        if emitter is not None:
            await emitter.emit(AuditEvent.for_principal(
                principal,
                AuditOutcome.OVERRIDDEN,
                gated.capability,
                {
                    "entityType": entity_type,
                    "entityId": entity_id,
                    "field": gated.name,
                    "attemptedValue": proposed[gated.name],
                    "keptValue": None if before is _MISSING else before,
                    "linkedFields": list(gated.linked),
                },
            ))

    return GuardResult(frozenset(reverted), payload)


class SensitiveFieldGuard:
    """Guard bound to one entity type.

    The field map is validated against the catalog at construction, so a
    typo in a capability name fails at startup.
    """

    def __init__(
        self,
        entity_type: str,
        category: FeatureCategory | str,
        fields: FieldCapabilityMap,
        *,
        evaluator: PermissionEvaluator,
        emitter: AuditEmitter | None = None,
        snapshots: EntitySnapshotStore | None = None,
    ):
        self.entity_type = entity_type
        self.category = to_category(category)
        self._fields = _compile_fields(self.category, fields)
        self._evaluator = evaluator
        self._emitter = emitter
        self._snapshots = snapshots

    @property
    def gated_fields(self) -> dict[str, str]:
        return {f.name: f.capability.key for f in self._fields}

    async def guard(
        self,
        principal: Principal,
        existing: Mapping[str, Any],
        proposed: Mapping[str, Any],
        entity_id: str | None = None,
    ) -> GuardResult:
        return await _guard(
            principal,
            self._fields,
            existing,
            proposed,
            evaluator=self._evaluator,
            emitter=self._emitter,
            entity_type=self.entity_type,
            entity_id=entity_id,
        )

    async def guard_update(
        self,
        principal: Principal,
        entity_id: str,
        proposed: Mapping[str, Any],
    ) -> GuardResult:
        """Load the current state through the snapshot store, then guard."""
        if self._snapshots is None:
            raise RuntimeError(f"No snapshot store configured for {self.entity_type} guard")
        existing = await self._snapshots.get_current_state(entity_id)
        if existing is None:
            raise EntityNotFound(self.entity_type, entity_id)
        return await self.guard(principal, existing, proposed, entity_id=entity_id)
