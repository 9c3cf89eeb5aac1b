"""
Minimal identity contract.

Authentication happens upstream: the identity provider (or the proxy in front
of this service) puts the authenticated user id in a trusted header. Roles come
from the user_roles table. The resulting Principal is passed explicitly into
every engine call.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional

from classifieds.config import settings
from classifieds.repositories import PersistenceGateway


@dataclass(frozen=True)
class Principal:
    id: Optional[str] = None
    roles: FrozenSet[str] = frozenset()

    @property
    def is_anonymous(self) -> bool:
        return self.id is None

    def has_role(self, role: str) -> bool:
        return role in self.roles


ANONYMOUS = Principal()


class HeaderIdentityProvider:
    def __init__(self, gateway: PersistenceGateway, header: str = settings.IDENTITY_HEADER):
        self.gateway = gateway
        self.header = header

    def current_user(self, headers) -> Principal:
        user_id = (headers.get(self.header) or "").strip()
        if not user_id:
            return ANONYMOUS
        roles = frozenset(r["role"] for r in self.gateway.query("user_roles", {"user_id": user_id}))
        return Principal(id=user_id, roles=roles)
