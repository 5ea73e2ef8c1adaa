"""Compiled permission catalog.

Design:
  - A fixed set of feature categories, each a pydantic model with a closed
    field set.  Fields are either flags (bool) or limits (float).
  - Wire names are camelCase (`inventory.canEditCostPrices`), matching what
    user management stores on each user record.
  - `FeaturePermissions` is the per-principal grant structure: one model per
    category, every capability defaulting to False / 0.  Absent grants can
    therefore never allow anything.
  - Asking about a (category, capability) pair outside the catalog raises
    ConfigurationError.  It is never a silent deny.

Unknown keys inside stored grant documents are ignored on load.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from permengine.middleware.exceptions import ConfigurationError


class FeatureCategory(str, enum.Enum):
    INVENTORY = "inventory"
    TRANSACTIONS = "transactions"
    PATIENTS = "patients"
    BUNDLES = "bundles"
    SUPPLIERS = "suppliers"
    BLENDS = "blends"
    USER_MANAGEMENT = "userManagement"
    REPORTS = "reports"
    SECURITY = "security"
    SETTINGS = "settings"
    PRESCRIPTIONS = "prescriptions"
    APPOINTMENTS = "appointments"
    CONTAINERS = "containers"
    BRANDS = "brands"
    DOSAGE_FORMS = "dosageForms"
    CATEGORIES = "categories"
    UNITS = "units"
    DOCUMENTS = "documents"
    DISCOUNTS = "discounts"


class CapabilityKind(str, enum.Enum):
    FLAG = "flag"
    LIMIT = "limit"


# ── Category grant models ───────────────────────────────────

class CategoryGrants(BaseModel):
    """Base for one category's capability set."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class InventoryGrants(CategoryGrants):
    can_add_products: bool = False
    can_edit_products: bool = False
    can_delete_products: bool = False
    can_manage_stock: bool = False
    can_create_restock_orders: bool = False
    can_bulk_operations: bool = False
    can_edit_cost_prices: bool = False


class TransactionGrants(CategoryGrants):
    can_create_transactions: bool = False
    can_edit_transactions: bool = False
    can_delete_transactions: bool = False
    can_apply_discounts: bool = False
    can_refund_transactions: bool = False
    can_view_financial_details: bool = False
    can_edit_drafts: bool = False


class PatientGrants(CategoryGrants):
    can_create_patients: bool = False
    can_edit_patients: bool = False
    can_delete_patients: bool = False
    can_view_medical_history: bool = False
    can_manage_prescriptions: bool = False
    can_access_all_patients: bool = False


class BundleGrants(CategoryGrants):
    can_create_bundles: bool = False
    can_edit_bundles: bool = False
    can_delete_bundles: bool = False
    can_set_pricing: bool = False
    can_manage_bundle_pricing: bool = False


class SupplierGrants(CategoryGrants):
    can_manage_suppliers: bool = False
    can_view_suppliers: bool = False
    can_add_suppliers: bool = False
    can_create_suppliers: bool = False
    can_edit_suppliers: bool = False
    can_delete_suppliers: bool = False


class BlendGrants(CategoryGrants):
    can_view_fixed_blends: bool = False
    can_create_fixed_blends: bool = False
    can_edit_fixed_blends: bool = False
    can_delete_fixed_blends: bool = False
    can_create_custom_blends: bool = False


class UserManagementGrants(CategoryGrants):
    can_create_users: bool = False
    can_edit_users: bool = False
    can_delete_users: bool = False
    can_assign_roles: bool = False
    can_manage_permissions: bool = False
    can_view_security_logs: bool = False
    can_view_audit_logs: bool = False
    can_reset_passwords: bool = False


class ReportGrants(CategoryGrants):
    can_view_financial_reports: bool = False
    can_view_inventory_reports: bool = False
    can_view_user_reports: bool = False
    can_view_security_metrics: bool = False
    can_export_reports: bool = False


class SecurityGrants(CategoryGrants):
    can_view_security_logs: bool = False
    can_manage_security: bool = False
    can_view_audit_trails: bool = False
    can_manage_api_keys: bool = False


class SettingsGrants(CategoryGrants):
    can_view_settings: bool = False
    can_edit_settings: bool = False
    can_manage_integrations: bool = False
    can_configure_system: bool = False


class PrescriptionGrants(CategoryGrants):
    can_create_prescriptions: bool = False
    can_edit_prescriptions: bool = False
    can_delete_prescriptions: bool = False
    can_view_all_prescriptions: bool = False
    can_print_prescriptions: bool = False
    can_manage_templates: bool = False


class AppointmentGrants(CategoryGrants):
    can_create_appointments: bool = False
    can_edit_appointments: bool = False
    can_delete_appointments: bool = False
    can_view_all_appointments: bool = False
    can_manage_schedules: bool = False
    can_override_bookings: bool = False


class ContainerGrants(CategoryGrants):
    can_manage_container_types: bool = False
    can_create_types: bool = False
    can_edit_types: bool = False
    can_delete_types: bool = False


class BrandGrants(CategoryGrants):
    can_manage_brands: bool = False
    can_create_brands: bool = False
    can_edit_brands: bool = False
    can_delete_brands: bool = False


class DosageFormGrants(CategoryGrants):
    can_manage_dosage_forms: bool = False
    can_create_forms: bool = False
    can_edit_forms: bool = False
    can_delete_forms: bool = False


class ProductCategoryGrants(CategoryGrants):
    can_manage_categories: bool = False
    can_create_categories: bool = False
    can_edit_categories: bool = False
    can_delete_categories: bool = False


class UnitGrants(CategoryGrants):
    can_manage_units: bool = False
    can_create_units: bool = False
    can_edit_units: bool = False
    can_delete_units: bool = False


class DocumentGrants(CategoryGrants):
    can_upload_documents: bool = False
    can_view_documents: bool = False
    can_delete_documents: bool = False
    can_manage_folders: bool = False


class DiscountGrants(CategoryGrants):
    """Discount authorization.  Also used as `Principal.discount_authorization`."""

    can_apply_product_discounts: bool = False
    can_apply_bill_discounts: bool = False
    max_discount_percent: float = 0
    max_discount_amount: float = 0
    unlimited_discounts: bool = False


class FeaturePermissions(BaseModel):
    """Closed per-principal grant structure, one model per category."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    inventory: InventoryGrants = Field(default_factory=InventoryGrants)
    transactions: TransactionGrants = Field(default_factory=TransactionGrants)
    patients: PatientGrants = Field(default_factory=PatientGrants)
    bundles: BundleGrants = Field(default_factory=BundleGrants)
    suppliers: SupplierGrants = Field(default_factory=SupplierGrants)
    blends: BlendGrants = Field(default_factory=BlendGrants)
    user_management: UserManagementGrants = Field(default_factory=UserManagementGrants)
    reports: ReportGrants = Field(default_factory=ReportGrants)
    security: SecurityGrants = Field(default_factory=SecurityGrants)
    settings: SettingsGrants = Field(default_factory=SettingsGrants)
    prescriptions: PrescriptionGrants = Field(default_factory=PrescriptionGrants)
    appointments: AppointmentGrants = Field(default_factory=AppointmentGrants)
    containers: ContainerGrants = Field(default_factory=ContainerGrants)
    brands: BrandGrants = Field(default_factory=BrandGrants)
    dosage_forms: DosageFormGrants = Field(default_factory=DosageFormGrants)
    categories: ProductCategoryGrants = Field(default_factory=ProductCategoryGrants)
    units: UnitGrants = Field(default_factory=UnitGrants)
    documents: DocumentGrants = Field(default_factory=DocumentGrants)
    discounts: DiscountGrants = Field(default_factory=DiscountGrants)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def grants_for(self, category: FeatureCategory) -> CategoryGrants:
        return getattr(self, _CATEGORY_ATTRS[category])


# ── Catalog index ───────────────────────────────────────────

@dataclass(frozen=True)
class Capability:
    """One (category, capability) pair from the compiled catalog."""
    category: FeatureCategory
    name: str           # wire name, e.g. "canEditCostPrices"
    kind: CapabilityKind
    attr: str           # attribute on the category model

    @property
    def key(self) -> str:
        return f"{self.category.value}.{self.name}"

    def __str__(self) -> str:
        return self.key


_CATEGORY_ATTRS: dict[FeatureCategory, str] = {
    FeatureCategory(info.alias or to_camel(attr)): attr
    for attr, info in FeaturePermissions.model_fields.items()
}


def _build_catalog() -> dict[FeatureCategory, dict[str, Capability]]:
    catalog: dict[FeatureCategory, dict[str, Capability]] = {}
    for category, attr in _CATEGORY_ATTRS.items():
        model = FeaturePermissions.model_fields[attr].annotation
        entries: dict[str, Capability] = {}
        for field_name, info in model.model_fields.items():
            kind = CapabilityKind.LIMIT if info.annotation is float else CapabilityKind.FLAG
            name = info.alias or to_camel(field_name)
            entries[name] = Capability(category, name, kind, field_name)
        catalog[category] = entries
    return catalog


CATALOG: dict[FeatureCategory, dict[str, Capability]] = _build_catalog()

if set(CATALOG) != set(FeatureCategory):
    raise ConfigurationError("Every feature category needs a grant model")


def to_category(category: FeatureCategory | str) -> FeatureCategory:
    if isinstance(category, FeatureCategory):
        return category
    try:
        return FeatureCategory(category)
    except ValueError:
        raise ConfigurationError(f"Unknown feature category: {category!r}") from None


def get_capability(category: FeatureCategory | str, capability: str) -> Capability:
    """Return the catalog entry or raise ConfigurationError."""
    cat = to_category(category)
    entry = CATALOG[cat].get(capability)
    if entry is None:
        raise ConfigurationError(f"Unknown capability: {cat.value}.{capability}")
    return entry


def parse_capability(key: str) -> Capability:
    """Parse "category.capability" into a catalog entry."""
    category, sep, capability = key.partition(".")
    if not sep or not capability:
        raise ConfigurationError(f"Malformed capability key: {key!r}")
    return get_capability(category, capability)


def iter_capabilities():
    for entries in CATALOG.values():
        yield from entries.values()


def catalog_as_dict() -> dict[str, dict[str, str]]:
    """{category: {capability: kind}} for the admin UI and CLI."""
    return {
        category.value: {name: cap.kind.value for name, cap in entries.items()}
        for category, entries in CATALOG.items()
    }
