"""Tests for the sensitive-field guard."""

import pytest

from conftest import PRODUCTS, make_principal
from permengine.auth.audit import AuditOutcome
from permengine.auth.guard import (
    PRODUCT_SENSITIVE_FIELDS,
    SensitiveFieldGuard,
    guard_sensitive_fields,
)
from permengine.middleware.exceptions import ConfigurationError, EntityNotFound

EXISTING = PRODUCTS["p-1"]


@pytest.fixture
def product_guard(evaluator, emitter, product_snapshots) -> SensitiveFieldGuard:
    return SensitiveFieldGuard(
        "product",
        "inventory",
        PRODUCT_SENSITIVE_FIELDS,
        evaluator=evaluator,
        emitter=emitter,
        snapshots=product_snapshots,
    )


@pytest.fixture
def editor():
    """Can edit products, but not cost prices or stock."""
    return make_principal(
        "manager",
        "editor-1",
        feature_permissions={"inventory": {"canEditProducts": True}},
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestSensitiveFieldGuard:
    """Partial revert inside an otherwise allowed update."""

    async def test_partial_revert(self, product_guard, editor, audit_sink):
        """costPrice is reverted, name persists, one overridden event is emitted."""
        proposed = {"name": "Amoxicillin 250mg", "costPrice": 1.0}

        result = await product_guard.guard(editor, EXISTING, proposed, entity_id="p-1")

        assert result.reverted_fields == frozenset({"costPrice"})
        assert result.payload == {"name": "Amoxicillin 250mg", "costPrice": 7.0}

        events = audit_sink.by_outcome(AuditOutcome.OVERRIDDEN)
        assert len(events) == 1
        assert events[0].capability == "canEditCostPrices"
        assert events[0].context["field"] == "costPrice"
        assert events[0].context["attemptedValue"] == 1.0
        assert events[0].context["keptValue"] == 7.0
        assert events[0].context["entityId"] == "p-1"

    async def test_input_not_mutated(self, product_guard, editor):
        proposed = {"costPrice": 1.0}
        await product_guard.guard(editor, EXISTING, proposed)
        assert proposed == {"costPrice": 1.0}

    async def test_linked_stock_fields(self, product_guard, editor, audit_sink):
        """Reverting currentStock also reverts its quantity counters."""
        proposed = {"currentStock": 100, "quantity": 100, "totalQuantity": 100, "price": 13.0}

        result = await product_guard.guard(editor, EXISTING, proposed)

        assert result.reverted_fields == frozenset({"currentStock"})
        assert result.payload == {"currentStock": 40, "quantity": 40, "totalQuantity": 40, "price": 13.0}
        assert len(audit_sink.events) == 1
        assert audit_sink.events[0].context["linkedFields"] == ["quantity", "totalQuantity"]

    async def test_unchanged_value_passes(self, product_guard, editor, audit_sink):
        """Sending the current value back is not an attempt to change it."""
        result = await product_guard.guard(editor, EXISTING, {"costPrice": 7.0, "name": "x"})
        assert result.reverted_fields == frozenset()
        assert audit_sink.events == []

    async def test_granted_capability_passes(self, product_guard, audit_sink):
        buyer = make_principal(
            "manager",
            feature_permissions={"inventory": {"canEditProducts": True, "canEditCostPrices": True}},
        )
        result = await product_guard.guard(buyer, EXISTING, {"costPrice": 6.5})
        assert result.payload == {"costPrice": 6.5}
        assert audit_sink.events == []

    async def test_super_admin_passes(self, product_guard):
        result = await product_guard.guard(make_principal("super_admin"), EXISTING, {"currentStock": 0})
        assert result.payload == {"currentStock": 0}

    async def test_field_missing_from_existing_is_dropped(self, product_guard, editor):
        """With nothing to revert to, the gated field is removed from the payload."""
        result = await product_guard.guard(editor, {"name": "new"}, {"name": "new", "costPrice": 3.0})
        assert result.payload == {"name": "new"}
        assert result.reverted_fields == frozenset({"costPrice"})

    async def test_guard_update_reads_snapshot(self, product_guard, editor):
        result = await product_guard.guard_update(editor, "p-1", {"costPrice": 0.5, "price": 11.0})
        assert result.payload == {"costPrice": 7.0, "price": 11.0}

        with pytest.raises(EntityNotFound):
            await product_guard.guard_update(editor, "p-404", {"price": 1.0})

    async def test_functional_form(self, evaluator, editor):
        """guard_sensitive_fields works without a bound guard or emitter."""
        result = await guard_sensitive_fields(
            editor,
            "patients",
            {"medicalHistory": "canViewMedicalHistory"},
            {"medicalHistory": "none"},
            {"medicalHistory": "asthma", "phone": "555"},
            evaluator=evaluator,
        )
        assert result.payload == {"medicalHistory": "none", "phone": "555"}

    async def test_bad_field_map_rejected(self, evaluator):
        """Field maps are checked against the catalog at construction."""
        with pytest.raises(ConfigurationError):
            SensitiveFieldGuard("product", "inventory", {"costPrice": "canEditCostPrice"}, evaluator=evaluator)
