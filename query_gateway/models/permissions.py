from enum import Enum
from typing import FrozenSet

from query_gateway.models.base import Document


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    READONLY = "readonly"


WILDCARD = "*"


class RoleGrant(Document):
    """Resolved permissions for a subject. ``role`` keeps the declared name, known or not."""

    role: str
    allowed_collections: FrozenSet[str] = frozenset()


class Claims(Document):
    """What the identity collaborator vouches for after verifying a token."""

    subject_id: str
    role: str


class Principal(Document):
    subject_id: str
    grant: RoleGrant

    @property
    def role(self) -> str:
        return self.grant.role
