"""Pytest configuration and fixtures for permengine tests.

Provides principals, in-memory stores, an audit sink that keeps events,
and an app wired to them (httpx over ASGITransport, no server).
"""

from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends, Request
from httpx import ASGITransport, AsyncClient

from permengine.auth.audit import AuditEmitter, MemoryAuditSink
from permengine.auth.deps import (
    get_current_principal,
    get_engine,
    require_all_permissions,
    require_any_permission,
    require_feature,
    require_permission,
)
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.jwt import create_access_token
from permengine.auth.principal import Principal
from permengine.auth.stores import InMemoryPrincipalStore, InMemorySnapshotStore
from permengine.config import Settings
from permengine.main import create_app

# ── Principal records ────────────────────────────────────────────

PRINCIPAL_RECORDS: dict[str, dict[str, Any]] = {
    "super-1": {"role": "super_admin"},
    "admin-1": {"role": "admin"},
    "manager-1": {
        "role": "manager",
        "featurePermissions": {
            "inventory": {"canEditProducts": True, "canAddProducts": True},
            "transactions": {"canEditTransactions": True},
        },
        "discountAuthorization": {
            "canApplyBillDiscounts": True,
            "maxDiscountPercent": 10,
            "maxDiscountAmount": 50,
        },
    },
    "staff-1": {
        "role": "staff",
        "featurePermissions": {
            "inventory": {"canAddProducts": True},
            "transactions": {"canEditDrafts": True},
        },
    },
    "auditor-1": {
        "role": "manager",
        "featurePermissions": {"security": {"canViewAuditTrails": True}},
    },
    "inactive-1": {
        "role": "manager",
        "active": False,
        "featurePermissions": {"inventory": {"canAddProducts": True}},
    },
    "broken-1": {"role": "owner"},
}

PRODUCTS = {
    "p-1": {
        "name": "Amoxicillin 500mg",
        "price": 12.5,
        "costPrice": 7.0,
        "currentStock": 40,
        "quantity": 40,
        "totalQuantity": 40,
    },
}

TRANSACTIONS = {
    "t-draft": {"status": "draft", "createdBy": "staff-1"},
    "t-other-draft": {"status": "draft", "createdBy": "manager-1"},
    "t-done": {"status": "completed", "createdBy": "staff-1"},
}


def make_principal(role: str = "staff", principal_id: str = "p-test", **grants) -> Principal:
    """Principal straight from camelCase grant dicts."""
    return Principal.model_validate({
        "id": principal_id,
        "role": role,
        "featurePermissions": grants.get("feature_permissions", {}),
        "discountAuthorization": grants.get("discount_authorization", {}),
    })


# ── Engine fixtures ──────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        debug=False,
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret-key",
        principal_cache_ttl_seconds=0,
        principal_store_timeout_seconds=0.5,
        audit_write_timeout_seconds=0.5,
    )


@pytest.fixture
def evaluator() -> PermissionEvaluator:
    return PermissionEvaluator()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def emitter(audit_sink: MemoryAuditSink) -> AuditEmitter:
    return AuditEmitter(audit_sink, timeout=0.5)


@pytest.fixture
def principal_store() -> InMemoryPrincipalStore:
    return InMemoryPrincipalStore(PRINCIPAL_RECORDS)


@pytest.fixture
def product_snapshots() -> InMemorySnapshotStore:
    return InMemorySnapshotStore(PRODUCTS)


@pytest.fixture
def transaction_snapshots() -> InMemorySnapshotStore:
    return InMemorySnapshotStore(TRANSACTIONS)


# ── App / client ─────────────────────────────────────────────────

def _business_router() -> APIRouter:
    """Stand-in handlers for routes the rule table guards."""
    router = APIRouter()

    @router.post("/api/inventory/products", status_code=201)
    async def create_product(principal: Principal = Depends(get_current_principal)):
        return {"createdBy": principal.id}

    @router.put("/api/inventory/products/{product_id}")
    async def update_product(product_id: str, request: Request):
        engine = get_engine(request)
        result = await engine.product_guard.guard_update(
            request.state.principal, product_id, await request.json()
        )
        return {"saved": result.payload, "reverted": sorted(result.reverted_fields)}

    @router.put("/api/transactions/{transaction_id}")
    async def update_transaction(transaction_id: str):
        return {"id": transaction_id}

    @router.delete("/api/inventory/products/{product_id}")
    async def delete_product(
        product_id: str,
        principal: Principal = Depends(require_permission("inventory", "canDeleteProducts")),
    ):
        return {"deleted": product_id}

    @router.get("/api/unruled/report")
    async def unruled(principal: Principal = Depends(get_current_principal)):
        return {"principal": principal.id}

    @router.get("/api/unruled/stock")
    async def unruled_stock(
        principal: Principal = Depends(require_permission("inventory", "canManageStock")),
    ):
        return {"principal": principal.id}

    @router.post("/api/unruled/restock")
    async def unruled_restock(
        principal: Principal = Depends(require_all_permissions(
            "inventory.canManageStock", "inventory.canCreateRestockOrders",
        )),
    ):
        return {"principal": principal.id}

    @router.get("/api/unruled/pricing")
    async def unruled_pricing(
        principal: Principal = Depends(require_any_permission(
            "bundles.canSetPricing", "bundles.canManageBundlePricing",
        )),
    ):
        return {"principal": principal.id}

    @router.put("/api/unruled/cost-prices")
    async def unruled_cost_prices(
        principal: Principal = Depends(require_feature("cost_price_edit")),
    ):
        return {"principal": principal.id}


    return router


@pytest.fixture
def app(test_settings, principal_store, audit_sink, product_snapshots, transaction_snapshots):
    application = create_app(
        test_settings,
        principal_store=principal_store,
        audit_sink=audit_sink,
        product_snapshots=product_snapshots,
        transaction_snapshots=transaction_snapshots,
    )
    application.include_router(_business_router())
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers(test_settings):
    """Factory: Authorization header for a stored principal id."""

    def _headers(principal_id: str) -> dict[str, str]:
        token = create_access_token(principal_id, settings=test_settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP-level tests through the middleware")
    config.addinivalue_line("markers", "integration: Tests against SQL / Redis adapters")
