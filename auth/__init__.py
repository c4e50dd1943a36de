"""Authentication of API callers.

Sign-in and session management belong to an external service. This module
only resolves a bearer token to a user id:

1. ``SessionVerifier`` turns a token into a user id
2. ``JWTSessionVerifier`` checks tokens signed by the session service
3. ``get_current_user`` is the FastAPI dependency protecting routes

The verifier in use is read from ``app.state.session_verifier``.
"""

import logging
from typing import Dict, Optional

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, ExpiredSignatureError, JWTError

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base exception for authentication errors."""
    pass


class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass


class SessionVerifier:
    """Resolves session tokens to user ids."""

    async def verify_session(self, token: str) -> str:
        """Return the user id of a valid token.

        Raises:
            SessionExpiredError: If the session has expired
            AuthError: For any other invalid token
        """
        raise NotImplementedError


class JWTSessionVerifier(SessionVerifier):
    """Accepts JWTs whose ``sub`` claim is the user id."""

    def __init__(self, secret: str, algorithm: str = 'HS256'):
        self.secret = secret
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Optional[Dict] = None) -> 'JWTSessionVerifier':
        if settings is None:
            from config import settings_conf
            settings = settings_conf
        return cls(settings.get('jwt_secret') or '', settings.get('jwt_algorithm') or 'HS256')

    async def verify_session(self, token: str) -> str:
        if not self.secret:
            raise AuthError("No session secret configured")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except JWTError as e:
            raise AuthError(f"Invalid session token: {e}")

        user_id = payload.get('sub')
        if not user_id:
            raise AuthError("Session token has no subject")
        return user_id


def create_session_token(user_id: str, secret: str, algorithm: str = 'HS256', **claims) -> str:
    """Sign a token the way the session service does. Used by tools and tests."""
    return jwt.encode({'sub': user_id, **claims}, secret, algorithm=algorithm)


# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Reject requests without a bearer header
    description="Bearer token issued by the session service"
)


async def authenticate(verifier: Optional[SessionVerifier], token: Optional[str]) -> str:
    """Resolve ``token`` with ``verifier``, mapping failures to HTTP 401."""
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication is not configured"
        )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session token"
        )
    try:
        return await verifier.verify_session(token)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        logger.info(f"Rejected session token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> str:
    """FastAPI dependency for getting the authenticated user id.

    Raises:
        HTTPException: If authentication fails
    """
    verifier = getattr(request.app.state, 'session_verifier', None)
    return await authenticate(verifier, credentials.credentials)


__all__ = [
    'SessionVerifier', 'JWTSessionVerifier', 'create_session_token',
    'get_current_user', 'authenticate', 'auth_scheme',
    'AuthError', 'SessionExpiredError'
]
