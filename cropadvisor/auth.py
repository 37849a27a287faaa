import binascii
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

JWT_ALG = "HS256"
PBKDF2_ROUNDS = 100_000


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    """Return `salt$hash` (both hex) for storage in `User.password`."""
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    return f"{binascii.hexlify(salt).decode('ascii')}${binascii.hexlify(dk).decode('ascii')}"


def verify_password(password: str, stored: str) -> bool:
    try:
        salt_hex, hash_hex = stored.split("$", 1)
        salt = binascii.unhexlify(salt_hex)
        expected = binascii.unhexlify(hash_hex)
    except (ValueError, binascii.Error):
        # seeded demo users carry a placeholder, not a hash
        return False
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    return hmac.compare_digest(dk, expected)


def create_access_token(user: Dict[str, Any], secret: str, expires_days: int = 7) -> str:
    payload = {
        "sub": user["id"],
        "username": user["username"],
        "exp": datetime.now(timezone.utc) + timedelta(days=expires_days),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


def decode_access_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        return None


def user_from_authorization(authorization: Optional[str], secret: str) -> Optional[Dict[str, Any]]:
    """Resolve a `Bearer <token>` header (or a bare token) to `{id, username}`."""
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1]
    else:
        token = authorization
    data = decode_access_token(token, secret)
    if not data:
        return None
    return {"id": data.get("sub"), "username": data.get("username")}
