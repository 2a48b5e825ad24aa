"""Authentication helpers and FastAPI security dependencies.

Access tokens are issued by the external OIDC provider. This module
verifies them with PyJWT, either against the provider's JWKS endpoint
(`OIDC_JWKS_URL`) or, in development and tests, against the shared
`JWT_SECRET`. The dependencies below build an `Identity` from the token
and enforce registration and role requirements; failures raise
`errors.CatError` subclasses.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import repositories, services
from .config import settings
from .database import get_session
from .errors import BadRequestError, ForbiddenError, NotAuthenticatedError

logger = logging.getLogger("cat.auth")

bearer_scheme = HTTPBearer(auto_error=False)
_jwks_client: Optional[jwt.PyJWKClient] = None

NOT_REGISTERED_MESSAGE = (
    "User has not been registered on CAT service. "
    "User registration is a prerequisite for accessing this API resource."
)


@dataclass
class Identity:
    """The caller as described by a verified access token."""
    id: str
    roles: List[str] = field(default_factory=list)
    claims: Dict[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(settings.ADMIN_ROLE)


def _signing_key(token: str):
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(settings.OIDC_JWKS_URL)
    return _jwks_client.get_signing_key_from_jwt(token).key


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT access token.

    Returns the decoded claims on success or raises
    `NotAuthenticatedError` (401) on any verification failure.
    """
    kwargs: Dict[str, Any] = {"options": {"verify_aud": bool(settings.OIDC_AUDIENCE)}}
    if settings.OIDC_AUDIENCE:
        kwargs["audience"] = settings.OIDC_AUDIENCE
    if settings.OIDC_ISSUER:
        kwargs["issuer"] = settings.OIDC_ISSUER
    try:
        if settings.OIDC_JWKS_URL:
            return jwt.decode(token, _signing_key(token), algorithms=["RS256"], **kwargs)
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM], **kwargs)
    except jwt.PyJWTError as exc:
        logger.info("rejected access token: %s", exc)
        raise NotAuthenticatedError() from exc


def token_roles(claims: Dict[str, Any]) -> List[str]:
    """Collect realm, client and top-level roles from Keycloak-style claims."""
    roles = set(claims.get("roles") or [])
    roles.update((claims.get("realm_access") or {}).get("roles") or [])
    for client in (claims.get("resource_access") or {}).values():
        roles.update((client or {}).get("roles") or [])
    return sorted(roles)


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> Identity:
    """FastAPI dependency returning the authenticated caller.

    Roles are the union of the token roles and those granted by this
    service (e.g. on validation approval). A registered user's stored
    `user_type` is brought in line with them.
    """
    if credentials is None or not credentials.credentials:
        raise NotAuthenticatedError()
    claims = decode_token(credentials.credentials)
    user_id = claims.get(settings.OIDC_USER_ID_CLAIM)
    if not user_id:
        raise BadRequestError(
            f"The User's unique identifier {{{settings.OIDC_USER_ID_CLAIM}}} is missing from the access token."
        )
    user_repo = repositories.UserRepository(session)
    granted = user_repo.roles_for(str(user_id))
    roles = sorted(set(token_roles(claims)) | set(granted))
    user = user_repo.get(str(user_id))
    if user is not None:
        services.UserService(session).sync_user_type(user, roles)
    return Identity(id=str(user_id), roles=roles, claims=claims)


def get_registered_identity(
    identity: Identity = Depends(get_identity),
    session: Session = Depends(get_session),
) -> Identity:
    """Like `get_identity`, but the caller must have registered first."""
    if not repositories.UserRepository(session).get(identity.id):
        raise ForbiddenError(NOT_REGISTERED_MESSAGE)
    return identity


def require_role(role: str):
    """Dependency factory: registered caller holding `role`."""
    def dependency(identity: Identity = Depends(get_registered_identity)) -> Identity:
        if not identity.has_role(role):
            raise ForbiddenError()
        return identity
    return dependency


def require_admin(identity: Identity = Depends(get_registered_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError()
    return identity
