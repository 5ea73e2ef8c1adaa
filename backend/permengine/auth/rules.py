"""Production route-permission table.

Order matters for pattern rules: more specific patterns first.  Literal
routes always win over patterns regardless of position.

New sensitive routes must get an explicit rule here.  Routes without one
fall through to the unmatched-route policy (allow by default) and are
reported as unguarded at startup.
"""

from __future__ import annotations

from typing import Any

from permengine.auth.catalog import get_capability
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.principal import Principal, Role
from permengine.auth.registry import (
    AnyCapabilityRequirement,
    CapabilityRequirement,
    CustomPredicate,
    PredicateOutcome,
    Requirement,
    RoleRequirement,
    RoutePermissionRegistry,
)
from permengine.auth.stores import EntitySnapshotStore


def cap(key: str) -> CapabilityRequirement:
    return CapabilityRequirement.parse(key)


ADMINS = RoleRequirement([Role.ADMIN, Role.SUPER_ADMIN])
# Any resolved, active principal
ANY_ROLE = RoleRequirement(list(Role))

DEFAULT_ROUTE_RULES: list[tuple[str, Requirement]] = [
    # User management
    ("GET /api/users", cap("userManagement.canViewAuditLogs")),
    ("POST /api/users", cap("userManagement.canCreateUsers")),
    ("GET /api/users/audit-logs", cap("userManagement.canViewAuditLogs")),
    ("POST /api/users/{id}/reset-password", cap("userManagement.canResetPasswords")),
    ("PATCH /api/users/{id}/role", cap("userManagement.canAssignRoles")),
    ("PUT /api/users/{id}/permissions", cap("userManagement.canManagePermissions")),
    ("PUT /api/users/{id}", cap("userManagement.canEditUsers")),
    ("DELETE /api/users/{id}", cap("userManagement.canDeleteUsers")),

    # Inventory
    ("GET /api/inventory/products", cap("inventory.canAddProducts")),
    ("POST /api/inventory/products", cap("inventory.canAddProducts")),
    ("POST /api/inventory/products/add-stock", cap("inventory.canManageStock")),
    ("POST /api/inventory/products/bulk-delete", cap("inventory.canBulkOperations")),
    ("PUT /api/inventory/products/{id}", cap("inventory.canEditProducts")),
    ("DELETE /api/inventory/products/{id}", cap("inventory.canDeleteProducts")),
    ("POST /api/inventory/restock", cap("inventory.canCreateRestockOrders")),
    ("POST /api/inventory/restock/bulk", cap("inventory.canBulkOperations")),

    # Transactions (PUT /api/transactions/{id} is added by build_default_registry)
    ("GET /api/transactions", cap("transactions.canCreateTransactions")),
    ("POST /api/transactions", cap("transactions.canCreateTransactions")),
    ("GET /api/transactions/{id}/invoice", cap("transactions.canCreateTransactions")),
    ("POST /api/transactions/{id}/refund", cap("transactions.canRefundTransactions")),
    ("DELETE /api/transactions/{id}", cap("transactions.canDeleteTransactions")),

    # Patients / customers
    ("GET /api/patients", cap("patients.canAccessAllPatients")),
    ("POST /api/patients", cap("patients.canCreatePatients")),
    ("POST /api/patients/bulk-delete", cap("patients.canDeletePatients")),
    ("GET /api/patients/{id}/medical-history", cap("patients.canViewMedicalHistory")),
    ("PUT /api/patients/{id}", cap("patients.canEditPatients")),
    ("DELETE /api/patients/{id}", cap("patients.canDeletePatients")),
    ("GET /api/customers", cap("patients.canAccessAllPatients")),
    ("POST /api/customers", cap("patients.canCreatePatients")),

    # Bundles
    ("GET /api/bundles", cap("bundles.canCreateBundles")),
    ("POST /api/bundles", cap("bundles.canCreateBundles")),
    ("POST /api/bundles/calculate-pricing", cap("bundles.canSetPricing")),
    ("GET /api/bundles/stats", cap("bundles.canCreateBundles")),
    ("PUT /api/bundles/{id}", cap("bundles.canEditBundles")),
    ("DELETE /api/bundles/{id}", cap("bundles.canDeleteBundles")),

    # Suppliers / brands
    ("POST /api/suppliers", ADMINS),
    ("PUT /api/suppliers/{id}", ADMINS),
    ("DELETE /api/suppliers/{id}", ADMINS),
    ("POST /api/brands", ADMINS),
    ("PUT /api/brands/{id}", ADMINS),
    ("DELETE /api/brands/{id}", ADMINS),

    # Reports
    ("GET /api/reports/item-sales", cap("reports.canViewFinancialReports")),
    ("GET /api/reports/sales-trends", cap("reports.canViewFinancialReports")),
    ("GET /api/reports/inventory-analysis", cap("reports.canViewInventoryReports")),
    ("GET /api/dashboard/stats", cap("reports.canViewInventoryReports")),
    ("GET /api/reports/{report}/export", cap("reports.canExportReports")),

    # Security / admin
    ("GET /api/admin/security-metrics", AnyCapabilityRequirement([
        "security.canViewSecurityLogs",
        "reports.canViewSecurityMetrics",
    ])),

    # Appointments
    ("GET /api/appointments", cap("appointments.canViewAllAppointments")),
    ("POST /api/appointments", cap("appointments.canCreateAppointments")),
    ("PUT /api/appointments/{id}", cap("appointments.canEditAppointments")),
    ("DELETE /api/appointments/{id}", cap("appointments.canDeleteAppointments")),

    # Auth management
    ("POST /api/auth/create-admin", RoleRequirement([Role.SUPER_ADMIN])),
    ("POST /api/auth/create-temp-user", RoleRequirement([Role.ADMIN])),
    ("POST /api/auth/switch-user", ADMINS),

    # Permission engine surface
    ("GET /api/permissions/catalog", ANY_ROLE),
    ("GET /api/permissions/me", ANY_ROLE),
    ("POST /api/permissions/check", ANY_ROLE),
    ("POST /api/permissions/discounts/check", ANY_ROLE),
    ("GET /api/permissions/routes", cap("security.canViewAuditTrails")),
]


def draft_or_edit_predicate(
    evaluator: PermissionEvaluator,
    transactions: EntitySnapshotStore,
) -> CustomPredicate:
    """Drafts: canEditDrafts and authorship.  Everything else: canEditTransactions.

    A denial names the capability the branch needed.
    """
    edit_drafts = get_capability("transactions", "canEditDrafts")
    edit_transactions = get_capability("transactions", "canEditTransactions")

    async def check(principal: Principal, context: dict[str, Any]) -> PredicateOutcome:
        transaction_id = context.get("params", {}).get("id")
        state = await transactions.get_current_state(transaction_id) if transaction_id else None

        if state is not None and state.get("status") == "draft":
            is_owner = str(state.get("createdBy")) == principal.id
            allowed = is_owner and evaluator.decide_capability(principal, edit_drafts).allowed
            return PredicateOutcome(allowed, None if allowed else edit_drafts)
        # Unknown ids fall through to the handler (404) for editors
        allowed = evaluator.decide_capability(principal, edit_transactions).allowed
        return PredicateOutcome(allowed, None if allowed else edit_transactions)

    return CustomPredicate(check, "draft owner with transactions.canEditDrafts, "
                                  "otherwise transactions.canEditTransactions")


def build_default_registry(
    evaluator: PermissionEvaluator | None = None,
    transactions: EntitySnapshotStore | None = None,
) -> RoutePermissionRegistry:
    registry = RoutePermissionRegistry(DEFAULT_ROUTE_RULES)
    if transactions is not None:
        registry.add_route_permission(
            "PUT /api/transactions/{id}",
            draft_or_edit_predicate(evaluator or PermissionEvaluator(), transactions),
        )
    else:
        registry.add_route_permission(
            "PUT /api/transactions/{id}", cap("transactions.canEditTransactions")
        )
    return registry
