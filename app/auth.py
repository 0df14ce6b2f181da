"""
Identity and role boundary.

Identity comes from Firebase ID tokens (RS256, verified against Google's
published certificates). Role checks happen here and nowhere else: routers
declare the roles they accept with ``require_role``.
"""

import base64
import json
import logging
import time

import httpx
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import FIREBASE_PROJECT_ID
from .database import get_db
from .models import Role, User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)
CLOCK_SKEW_SECONDS = 60

# Cache for Google's public keys
_cached_keys = None


async def get_google_public_keys(force_refresh: bool = False):
    """Fetch Google's public keys for Firebase token verification"""
    global _cached_keys
    if _cached_keys and not force_refresh:
        return _cached_keys

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(GOOGLE_CERTS_URL)
        if response.status_code == 200:
            _cached_keys = response.json()
            logger.info(f"Fetched {len(_cached_keys)} Google public keys")
            return _cached_keys
        logger.error(f"Failed to fetch Google public keys: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"Error fetching Google public keys: {e}")
    return None


def _decode_segment(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _validate_claims(claims: dict) -> None:
    if claims.get("aud") != FIREBASE_PROJECT_ID:
        raise HTTPException(status_code=401, detail="Invalid token audience")
    if claims.get("iss") != f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}":
        raise HTTPException(status_code=401, detail="Invalid token issuer")

    now = time.time()
    if claims.get("exp", 0) < now:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        )
    if claims.get("iat", 0) > now + CLOCK_SKEW_SECONDS:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token claims")


async def verify_firebase_token(token: str) -> dict:
    """Verify signature and claims of a Firebase ID token, return its claims"""
    if not FIREBASE_PROJECT_ID:
        logger.error("FIREBASE_PROJECT_ID not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    parts = token.split(".")
    if len(parts) != 3:
        raise HTTPException(status_code=401, detail="Invalid token format")
    header_b64, payload_b64, signature_b64 = parts

    try:
        header = json.loads(_decode_segment(header_b64))
        claims = json.loads(_decode_segment(payload_b64))
        signature = _decode_segment(signature_b64)
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=401, detail="Malformed token") from e

    kid = header.get("kid")
    if header.get("alg") != "RS256" or not kid:
        raise HTTPException(status_code=401, detail="Invalid token header")

    public_keys = await get_google_public_keys()
    if not public_keys or kid not in public_keys:
        # Google rotates keys; refresh once before giving up
        public_keys = await get_google_public_keys(force_refresh=True)
        if not public_keys or kid not in public_keys:
            raise HTTPException(status_code=401, detail="Unable to verify token signature")

    cert = load_pem_x509_certificate(public_keys[kid].encode(), default_backend())
    try:
        cert.public_key().verify(
            signature,
            f"{header_b64}.{payload_b64}".encode(),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except Exception as e:
        logger.warning(f"Token signature verification failed for kid={kid}")
        raise HTTPException(status_code=401, detail="Invalid token signature") from e

    _validate_claims(claims)
    return claims


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a local user, creating the account on first sight"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    claims = await verify_firebase_token(credentials.credentials)
    firebase_uid = claims["sub"]

    user = db.query(User).filter(User.firebase_uid == firebase_uid).first()
    if user:
        return user

    logger.info(f"Creating local account for firebase uid {firebase_uid}")
    user = User(
        firebase_uid=firebase_uid,
        email=claims.get("email") or f"{firebase_uid}@users.invalid",
        full_name=claims.get("name"),
        role=Role.USER.value,
    )
    db.add(user)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return user


def role_of(user: User) -> Role:
    try:
        return Role(user.role)
    except ValueError as e:
        logger.error(f"User {user.id} has unrecognised role '{user.role}'")
        raise HTTPException(status_code=403, detail="Account role not recognised") from e


def is_allowed(role: Role, allowed: frozenset) -> bool:
    """One branch per role; a new role fails loudly here until it is handled"""
    if role is Role.ADMIN:
        return Role.ADMIN in allowed
    elif role is Role.WASHER:
        return Role.WASHER in allowed
    elif role is Role.USER:
        return Role.USER in allowed
    raise AssertionError(f"Unhandled role {role!r}")


def require_role(*roles: Role):
    """
    Dependency factory guarding a route by role.

    Example:
        @router.get("/payouts/balance")
        async def balance(user: User = Depends(require_role(Role.WASHER))):
            ...
    """
    allowed = frozenset(roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        role = role_of(user)
        if not is_allowed(role, allowed):
            logger.warning(f"User {user.id} with role {role.value} denied (needs {sorted(r.value for r in allowed)})")
            raise HTTPException(status_code=403, detail="You do not have access to this resource")
        return user

    return dependency
