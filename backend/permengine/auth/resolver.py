"""Principal resolution: identity ref -> Principal.

Input is an already-authenticated identity reference (the verified `sub`
claim).  No authentication happens here.

Failure modes (all PrincipalResolutionError, all fail closed):
  PrincipalNotFound       ref empty or unknown to the store
  PrincipalInactive       record exists but is deactivated
  PrincipalRecordInvalid  record fails validation (unknown role, bad grants)
  PrincipalStoreTimeout   store read exceeded the configured timeout
  PrincipalStoreError     store raised
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from permengine.auth.principal import Principal
from permengine.auth.stores import PrincipalRecord, PrincipalStore
from permengine.middleware.exceptions import (
    PrincipalInactive,
    PrincipalNotFound,
    PrincipalRecordInvalid,
    PrincipalStoreError,
    PrincipalStoreTimeout,
)

logger = logging.getLogger(__name__)


def principal_from_record(principal_id: str, record: PrincipalRecord) -> Principal:
    """Validate a store record into a Principal.

    Discount grants may live in `discountAuthorization`,
    `featurePermissions.discounts` or both.  They are merged into one set
    (`discountAuthorization` wins per key) and that set is used for both
    views, so the discount check and the `discounts.*` capabilities always
    agree.
    """
    features = record.get("featurePermissions") or {}
    discounts = record.get("discountAuthorization") or {}
    nested = features.get("discounts") if isinstance(features, dict) else None
    if isinstance(discounts, dict) and isinstance(nested or {}, dict):
        # Null means "not set here", not "revoke"
        merged = {**(nested or {}), **{k: v for k, v in discounts.items() if v is not None}}
        features = {**features, "discounts": merged}
        discounts = merged

    return Principal.model_validate({
        "id": str(record.get("id") or principal_id),
        "role": record.get("role"),
        "featurePermissions": features,
        "discountAuthorization": discounts,
        "active": record.get("active", True),
    })


class PrincipalResolver:
    def __init__(self, store: PrincipalStore, timeout: float = 2.0):
        self._store = store
        self._timeout = timeout

    async def resolve(self, identity_ref: str | None) -> Principal:
        if not identity_ref:
            raise PrincipalNotFound("Empty identity reference")

        try:
            record = await asyncio.wait_for(
                self._store.get_principal_by_id(identity_ref),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Principal store timed out after {self._timeout}s",
                extra={"principal_id": identity_ref},
            )
            raise PrincipalStoreTimeout("Principal store timed out") from None
        except Exception as e:
            logger.error(
                f"Principal store read failed: {e}",
                extra={"principal_id": identity_ref},
            )
            raise PrincipalStoreError("Principal store unavailable") from e

        if record is None:
            raise PrincipalNotFound("Principal not found")

        try:
            principal = principal_from_record(identity_ref, record)
        except ValidationError as e:
            logger.error(
                f"Invalid principal record: {e.error_count()} error(s)",
                extra={"principal_id": identity_ref, "errors": e.errors()},
            )
            raise PrincipalRecordInvalid("Principal record is invalid") from e

        if not principal.active:
            raise PrincipalInactive("Principal is inactive")

        return principal
