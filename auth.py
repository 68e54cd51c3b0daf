"""
SealDeal - Authentication & Roles
Firebase ID token verification, push-sender verification and role checks
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import cachecontrol
import requests
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from exceptions import PermissionDeniedError, UnauthenticatedError
from models import UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    uid: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def cached_auth_request() -> google_requests.Request:
    """Transport that honours Cache-Control on Google's signing certificates"""
    return google_requests.Request(session=cachecontrol.CacheControl(requests.Session()))


class FirebaseTokenVerifier:
    """Verifies Firebase-issued ID tokens for one project"""

    def __init__(self, project_id: str, request: Optional[google_requests.Request] = None):
        self.project_id = project_id
        self._request = request or cached_auth_request()

    def verify_sync(self, token: str) -> Dict[str, Any]:
        return id_token.verify_firebase_token(token, self._request, audience=self.project_id)

    async def verify(self, token: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.verify_sync, token)


class PushTokenVerifier:
    """Verifies the Google-signed OIDC token attached to Pub/Sub and Eventarc push deliveries"""

    def __init__(
        self,
        audience: str,
        service_account: Optional[str] = None,
        request: Optional[google_requests.Request] = None,
    ):
        self.audience = audience
        self.service_account = service_account
        self._request = request or cached_auth_request()

    def verify_sync(self, token: str) -> Dict[str, Any]:
        claims = id_token.verify_oauth2_token(token, self._request, audience=self.audience)
        if self.service_account:
            if claims.get("email") != self.service_account or not claims.get("email_verified"):
                raise ValueError(f"Push token was issued to {claims.get('email')}")
        return claims

    async def verify(self, token: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.verify_sync, token)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None:
        raise UnauthenticatedError()

    verifier = request.app.state.services.token_verifier
    try:
        claims = await verifier.verify(credentials.credentials)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
        logger.warning(f"[Auth] Token verification failed: {e}")
        raise UnauthenticatedError("Could not validate credentials.") from e

    uid = (claims or {}).get("user_id") or (claims or {}).get("sub")
    if not uid:
        raise UnauthenticatedError("Could not validate credentials.")
    return CurrentUser(uid=uid, email=claims.get("email"), claims=claims)


async def verify_push_sender(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Storage events are accepted only from the configured push identity"""
    if credentials is None:
        raise UnauthenticatedError()

    verifier = request.app.state.services.push_verifier
    if verifier is None:
        logger.warning("[Auth] Storage event refused: PUSH_AUDIENCE is not configured")
        raise UnauthenticatedError("Push authentication is not configured.")

    try:
        return await verifier.verify(credentials.credentials)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
        logger.warning(f"[Auth] Push token verification failed: {e}")
        raise UnauthenticatedError("Could not validate push credentials.") from e


async def ensure_has_role(store, uid: str, required: UserRole):
    """Admins pass every check; everyone else needs the exact role"""
    role = await store.get_user_role(uid)
    if role != UserRole.ADMIN and role != required:
        raise PermissionDeniedError(
            f"You must have the '{required.value}' or 'admin' role to perform this action."
        )


async def bootstrap_admin(store, uid: str):
    """Grant the first admin; later grants go through the role endpoint"""
    await store.set_user_role(uid, UserRole.ADMIN, set_by="bootstrap")
    logger.info(f"[Auth] User {uid} has been made an admin.")


if __name__ == "__main__":
    from config import get_settings
    from database import DealStore
    from dependencies import build_firestore_client
    from logging_config import setup_logging

    if len(sys.argv) != 2:
        print("Usage: python auth.py <uid>")
        sys.exit(1)

    setup_logging()
    store = DealStore(build_firestore_client(get_settings()))
    asyncio.run(bootstrap_admin(store, sys.argv[1]))
