"""External collaborators the engine reads from.

PrincipalStore.get_principal_by_id(id) returns a mapping:

    {
        "id": "...",
        "role": "manager",
        "featurePermissions": {"inventory": {"canEditProducts": true}},
        "discountAuthorization": {"canApplyBillDiscounts": true, ...},
        "active": true,
    }

or None when the id does not resolve.  EntitySnapshotStore returns the
current field map of a business entity, used only to diff updates.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from permengine.models.user import User

PrincipalRecord = Mapping[str, Any]


class PrincipalStore(Protocol):
    async def get_principal_by_id(self, principal_id: str) -> PrincipalRecord | None:
        ...


class EntitySnapshotStore(Protocol):
    async def get_current_state(self, entity_id: str) -> dict[str, Any] | None:
        ...


# ── In-memory adapters (dev, tests, fixtures) ───────────────

class InMemoryPrincipalStore:
    def __init__(self, records: Mapping[str, PrincipalRecord] | None = None):
        self._records: dict[str, dict[str, Any]] = {}
        for principal_id, record in (records or {}).items():
            self.put(principal_id, record)

    def put(self, principal_id: str, record: PrincipalRecord) -> None:
        self._records[principal_id] = {"id": principal_id, **copy.deepcopy(dict(record))}

    def remove(self, principal_id: str) -> None:
        self._records.pop(principal_id, None)

    async def get_principal_by_id(self, principal_id: str) -> PrincipalRecord | None:
        record = self._records.get(principal_id)
        # Hand out copies so callers can never mutate the stored record
        return copy.deepcopy(record) if record is not None else None


class InMemorySnapshotStore:
    def __init__(self, entities: Mapping[str, dict[str, Any]] | None = None):
        self._entities = {k: dict(v) for k, v in (entities or {}).items()}

    def put(self, entity_id: str, state: dict[str, Any]) -> None:
        self._entities[entity_id] = dict(state)

    async def get_current_state(self, entity_id: str) -> dict[str, Any] | None:
        state = self._entities.get(entity_id)
        return dict(state) if state is not None else None


# ── SQL adapter (users table) ───────────────────────────────

def user_to_record(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "role": user.role,
        "featurePermissions": user.feature_permissions,
        "discountAuthorization": user.discount_authorization,
        "active": bool(user.is_active),
    }


class SqlPrincipalStore:
    """Reads principals from the `users` table, one query per resolution."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_principal_by_id(self, principal_id: str) -> PrincipalRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id == principal_id))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return user_to_record(user)
