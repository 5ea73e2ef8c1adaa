"""Delegable admin features.

Some admin screens are super_admin territory unless the super_admin has
delegated the matching capability.  Each feature maps to a default
capability and a display name for denial messages; a few features map
individual actions (create / read / update / delete) to a more specific
capability.

    cost_price_edit       inventory.canEditCostPrices
    package_pricing       bundles.canManageBundlePricing
    inventory_management  inventory.canManageStock
    product_management    inventory.canAddProducts
    reports               reports.canViewFinancialReports
    supplier_management   suppliers.canAddSuppliers
    fixed_blends          blends.canCreateFixedBlends
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from permengine.auth.catalog import Capability, get_capability
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.principal import Principal
from permengine.middleware.exceptions import ConfigurationError


class AdminFeature(str, enum.Enum):
    COST_PRICE_EDIT = "cost_price_edit"
    PACKAGE_PRICING = "package_pricing"
    INVENTORY_MANAGEMENT = "inventory_management"
    PRODUCT_MANAGEMENT = "product_management"
    REPORTS = "reports"
    SUPPLIER_MANAGEMENT = "supplier_management"
    FIXED_BLENDS = "fixed_blends"


class FeatureAction(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class FeatureConfig:
    capability: Capability
    display_name: str

    @property
    def denial_message(self) -> str:
        return f"{self.display_name} requires Super Admin access or delegated permissions."


FEATURE_PERMISSION_MAP: dict[AdminFeature, FeatureConfig] = {
    AdminFeature.COST_PRICE_EDIT: FeatureConfig(
        get_capability("inventory", "canEditCostPrices"), "Cost Price Editing"
    ),
    AdminFeature.PACKAGE_PRICING: FeatureConfig(
        get_capability("bundles", "canManageBundlePricing"), "Package Price Setup"
    ),
    AdminFeature.INVENTORY_MANAGEMENT: FeatureConfig(
        get_capability("inventory", "canManageStock"), "Inventory Management"
    ),
    AdminFeature.PRODUCT_MANAGEMENT: FeatureConfig(
        get_capability("inventory", "canAddProducts"), "Product Management"
    ),
    AdminFeature.REPORTS: FeatureConfig(
        get_capability("reports", "canViewFinancialReports"), "Reports Access"
    ),
    AdminFeature.SUPPLIER_MANAGEMENT: FeatureConfig(
        get_capability("suppliers", "canAddSuppliers"), "Supplier Management"
    ),
    AdminFeature.FIXED_BLENDS: FeatureConfig(
        get_capability("blends", "canCreateFixedBlends"), "Fixed Blend Management"
    ),
}

# Actions not listed fall back to the feature's default capability
ACTION_CAPABILITIES: dict[AdminFeature, dict[FeatureAction, Capability]] = {
    AdminFeature.INVENTORY_MANAGEMENT: {
        FeatureAction.CREATE: get_capability("inventory", "canAddProducts"),
        FeatureAction.UPDATE: get_capability("inventory", "canManageStock"),
        FeatureAction.DELETE: get_capability("inventory", "canDeleteProducts"),
    },
    AdminFeature.PRODUCT_MANAGEMENT: {
        FeatureAction.CREATE: get_capability("inventory", "canAddProducts"),
        FeatureAction.UPDATE: get_capability("inventory", "canEditProducts"),
        FeatureAction.DELETE: get_capability("inventory", "canDeleteProducts"),
    },
    AdminFeature.SUPPLIER_MANAGEMENT: {
        FeatureAction.CREATE: get_capability("suppliers", "canAddSuppliers"),
        FeatureAction.READ: get_capability("suppliers", "canViewSuppliers"),
        FeatureAction.UPDATE: get_capability("suppliers", "canEditSuppliers"),
        FeatureAction.DELETE: get_capability("suppliers", "canDeleteSuppliers"),
    },
    AdminFeature.FIXED_BLENDS: {
        FeatureAction.CREATE: get_capability("blends", "canCreateFixedBlends"),
        FeatureAction.READ: get_capability("blends", "canViewFixedBlends"),
        FeatureAction.UPDATE: get_capability("blends", "canEditFixedBlends"),
        FeatureAction.DELETE: get_capability("blends", "canDeleteFixedBlends"),
    },
}


def feature_config(feature: AdminFeature | str) -> FeatureConfig:
    try:
        return FEATURE_PERMISSION_MAP[AdminFeature(feature)]
    except ValueError:
        raise ConfigurationError(f"Unknown admin feature: {feature!r}") from None


def feature_capability(
    feature: AdminFeature | str,
    action: FeatureAction | str | None = None,
) -> Capability:
    """Capability guarding `feature`, narrowed by `action` where one is mapped."""
    config = feature_config(feature)
    if action is None:
        return config.capability
    try:
        action = FeatureAction(action)
    except ValueError:
        raise ConfigurationError(f"Unknown feature action: {action!r}") from None
    return ACTION_CAPABILITIES.get(AdminFeature(feature), {}).get(action, config.capability)


def has_feature_access(
    evaluator: PermissionEvaluator,
    principal: Principal,
    feature: AdminFeature | str,
    action: FeatureAction | str = FeatureAction.READ,
) -> bool:
    return evaluator.decide_capability(principal, feature_capability(feature, action)).allowed
