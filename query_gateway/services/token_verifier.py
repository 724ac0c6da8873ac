import time
from typing import Any, Dict, List, Optional, Protocol

import jwt

from query_gateway.errors import ExpiredTokenError, InvalidTokenError
from query_gateway.models.permissions import Claims


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Claims: ...


class JwtTokenVerifier:
    """
    Verify signed bearer tokens issued by the identity service.

    The subject is read from ``userId`` (falling back to ``sub``) and the
    declared role from ``role``. Expiry is enforced by PyJWT.
    """

    def __init__(self, secret: str, algorithms: Optional[List[str]] = None):
        self.secret = secret
        self.algorithms = algorithms or ["HS256"]

    def verify(self, token: str) -> Claims:
        if not token:
            raise InvalidTokenError("No token provided")
        try:
            payload: Dict[str, Any] = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
            )
        except jwt.ExpiredSignatureError as e:
            raise ExpiredTokenError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError("Invalid token") from e

        subject_id = payload.get("userId") or payload.get("sub")
        role = payload.get("role")
        if not subject_id or not role:
            raise InvalidTokenError("Token is missing subject or role claims")
        return Claims(subject_id=str(subject_id), role=str(role))

    def issue(self, subject_id: str, role: str, expires_in_seconds: int = 3600) -> str:
        """Mint a token for local tooling and tests."""
        now = int(time.time())
        return jwt.encode(
            {"userId": subject_id, "role": role, "iat": now, "exp": now + expires_in_seconds},
            self.secret,
            algorithm=self.algorithms[0],
        )
