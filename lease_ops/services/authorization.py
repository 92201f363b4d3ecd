from __future__ import annotations

from typing import List, Optional

from ..core.errors import AuthorizationError, NotFoundError
from ..models.models import User
from .records import LeaseRecord
from .store import LeaseStore

ADMIN_ROLE = "ADMIN"
OWNER_ROLE = "OWNER"


def is_admin(user: Optional[User]) -> bool:
    return bool(user) and user.has_role(ADMIN_ROLE)


def owns_lease(user: Optional[User], lease: LeaseRecord) -> bool:
    if not user or lease.owner_id is None:
        return False
    return user.has_role(OWNER_ROLE) and lease.owner_id == user.id


def ensure_can_reconcile_lease(user: Optional[User], lease: LeaseRecord) -> None:
    if is_admin(user) or owns_lease(user, lease):
        return
    raise AuthorizationError(
        f"Not allowed to reconcile lease {lease.id}.",
        context={"lease_id": lease.id, "user_id": getattr(user, "id", None)},
    )


def ensure_admin(user: Optional[User], action: str) -> None:
    if is_admin(user):
        return
    raise AuthorizationError(f"{action} is restricted to administrators.")


def visible_lease_ids(user: Optional[User], store: LeaseStore) -> Optional[List[int]]:
    """Lease ids the user may inspect; ``None`` means every lease."""
    if is_admin(user):
        return None
    if user and user.has_role(OWNER_ROLE):
        return store.list_lease_ids_for_owner(user.id)
    raise AuthorizationError("Only owners and administrators can review delinquent invoices.")


def load_lease_for(user: Optional[User], store: LeaseStore, lease_id: int) -> LeaseRecord:
    """Fetch a lease the user may reconcile.

    Non-admins get ``AuthorizationError`` for missing and foreign leases alike,
    so lease ids cannot be enumerated; admins still see ``NotFoundError``.
    """
    try:
        lease = store.get_lease(lease_id)
    except NotFoundError:
        if is_admin(user):
            raise
        raise AuthorizationError(f"Not allowed to reconcile lease {lease_id}.") from None
    ensure_can_reconcile_lease(user, lease)
    return lease
