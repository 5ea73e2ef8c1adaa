"""Tests for the route-permission registry and the default rule table."""

import pytest

from permengine.auth.registry import (
    AnyCapabilityRequirement,
    CapabilityRequirement,
    CustomPredicate,
    RoleRequirement,
    RoutePermissionRegistry,
    split_path,
)
from permengine.auth.rules import DEFAULT_ROUTE_RULES, build_default_registry
from permengine.auth.stores import InMemorySnapshotStore
from permengine.middleware.exceptions import ConfigurationError


@pytest.mark.unit
class TestPatternMatching:
    """Exact-then-pattern lookup with {name} placeholders."""

    def test_placeholder_matches_one_segment(self):
        """/products/{id} matches /products/abc123 and nothing deeper or shallower."""
        registry = RoutePermissionRegistry([
            ("PUT /api/inventory/products/{id}", CapabilityRequirement("inventory", "canEditProducts")),
        ])

        found = registry.match("PUT", "/api/inventory/products/abc123")
        assert found is not None
        assert found.params == {"id": "abc123"}

        assert registry.match("PUT", "/api/inventory/products/abc123/extra") is None
        assert registry.match("PUT", "/api/inventory/products") is None
        assert registry.match("GET", "/api/inventory/products/abc123") is None

    def test_exact_beats_pattern(self):
        """A literal rule wins even when a pattern was registered first."""
        registry = RoutePermissionRegistry([
            ("POST /api/inventory/products/{id}", CapabilityRequirement("inventory", "canEditProducts")),
            ("POST /api/inventory/products/add-stock", CapabilityRequirement("inventory", "canManageStock")),
        ])
        found = registry.match("POST", "/api/inventory/products/add-stock")
        assert found.rule.requirement.capability.key == "inventory.canManageStock"
        assert found.params == {}

    def test_patterns_first_registered_wins(self):
        """Overlapping patterns are tried in registration order."""
        registry = RoutePermissionRegistry([
            ("GET /api/reports/{report}/export", CapabilityRequirement("reports", "canExportReports")),
            ("GET /api/reports/{kind}/{format}", CapabilityRequirement("reports", "canViewUserReports")),
        ])
        found = registry.match("GET", "/api/reports/sales/export")
        assert found.rule.method_and_pattern == "GET /api/reports/{report}/export"

    def test_query_and_trailing_slash_ignored(self):
        """Query strings and a trailing slash do not change the match."""
        registry = RoutePermissionRegistry([
            ("GET /api/users", CapabilityRequirement("userManagement", "canViewAuditLogs")),
        ])
        assert registry.lookup("get", "/api/users/?page=2") is not None

    def test_split_path(self):
        assert split_path("/") == []
        assert split_path("") == []
        assert split_path("/api/users/") == ["api", "users"]
        assert split_path("/api/users?x=1") == ["api", "users"]


@pytest.mark.unit
class TestRegistration:
    """Configuration-time validation and mutation."""

    def test_unknown_capability_fails_at_registration(self):
        with pytest.raises(ConfigurationError):
            RoutePermissionRegistry([
                ("GET /api/things", CapabilityRequirement("inventory", "canDoThings")),
            ])

    def test_unknown_role_fails(self):
        with pytest.raises(ConfigurationError):
            RoleRequirement(["owner"])

    def test_bad_patterns_fail(self):
        """Malformed rules are rejected before any request is served."""
        registry = RoutePermissionRegistry()
        requirement = RoleRequirement(["admin"])
        for bad in ("/api/no-method", "FETCH /api/x", "GET api/x", "GET /api/item-{id}", "GET /api/{}"):
            with pytest.raises(ConfigurationError):
                registry.add_route_permission(bad, requirement)

    def test_requirement_type_checked(self):
        with pytest.raises(ConfigurationError):
            RoutePermissionRegistry().add_route_permission("GET /api/x", "inventory.canAddProducts")

    def test_reregistration_keeps_position(self):
        """Replacing a rule keeps its place in match order."""
        registry = RoutePermissionRegistry([
            ("GET /api/a/{x}", RoleRequirement(["admin"])),
            ("GET /api/{y}/{z}", RoleRequirement(["manager"])),
        ])
        registry.add_route_permission("GET /api/a/{x}", RoleRequirement(["staff"]))

        assert len(registry) == 2
        assert [r.method_and_pattern for r in registry.rules()] == ["GET /api/a/{x}", "GET /api/{y}/{z}"]
        assert registry.match("GET", "/api/a/1").rule.requirement.describe() == "role in staff"

    def test_update_and_remove(self):
        registry = RoutePermissionRegistry([("DELETE /api/x/{id}", RoleRequirement(["admin"]))])

        registry.update_route_permission("DELETE /api/x/{id}", RoleRequirement(["super_admin"]))
        assert registry.get("DELETE /api/x/{id}").requirement.roles == RoleRequirement(["super_admin"]).roles

        with pytest.raises(KeyError):
            registry.update_route_permission("DELETE /api/y/{id}", RoleRequirement(["admin"]))

        registry.remove_route_permission("delete /api/x/{id}")
        assert registry.match("DELETE", "/api/x/1") is None

    def test_describe(self):
        registry = RoutePermissionRegistry([
            ("POST /api/suppliers", RoleRequirement(["admin", "super_admin"])),
            ("POST /api/users", CapabilityRequirement("userManagement", "canCreateUsers")),
            ("GET /api/x", AnyCapabilityRequirement(["security.canViewSecurityLogs"])),
        ])
        rows = {row["route"]: row for row in registry.describe()}
        assert rows["POST /api/suppliers"]["roles"] == ["admin", "super_admin"]
        assert rows["POST /api/users"]["requiredCapability"] == "userManagement.canCreateUsers"
        assert rows["GET /api/x"]["type"] == "AnyCapabilityRequirement"


@pytest.mark.unit
class TestDefaultRules:
    """Production rule table."""

    def test_default_table_compiles(self):
        """Every default rule references real capabilities and roles."""
        registry = build_default_registry()
        assert len(registry) == len(DEFAULT_ROUTE_RULES) + 1

    def test_add_stock_not_shadowed(self):
        registry = build_default_registry()
        rule = registry.lookup("POST", "/api/inventory/products/add-stock")
        assert rule.requirement.capability.key == "inventory.canManageStock"

    def test_transaction_edit_predicate_wired(self):
        """With a transaction store the edit route uses the draft-aware predicate."""
        registry = build_default_registry(transactions=InMemorySnapshotStore())
        rule = registry.lookup("PUT", "/api/transactions/t-1")
        assert isinstance(rule.requirement, CustomPredicate)

        plain = build_default_registry()
        assert isinstance(plain.lookup("PUT", "/api/transactions/t-1").requirement, CapabilityRequirement)
