"""
Credential security for the marketplace API
Provides HMAC-signed bearer tokens and PBKDF2 password hashes
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import Config

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Bearer token could not be verified"""

    def __init__(self, message: str, expired: bool = False):
        self.message = message
        self.expired = expired
        super().__init__(message)


@dataclass
class TokenClaims:
    user_id: int
    email: str
    role: str
    issued_at: int
    expires_at: int


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class CredentialSecurity:
    """Token issuance/verification and password hashing"""

    PASSWORD_SCHEME = "pbkdf2_sha256"

    @classmethod
    def _get_secret_key(cls) -> bytes:
        """Secret key for HMAC signing from config"""
        return Config.TOKEN_SECRET.encode("utf-8")

    @classmethod
    def _sign(cls, message: str) -> str:
        digest = hmac.new(cls._get_secret_key(), message.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest)

    @classmethod
    def issue_token(cls, user_id: int, email: str, role: str, remember_me: bool = False,
                    now: Optional[datetime] = None) -> str:
        """
        Issue a bearer token: base64url(JSON claims) + '.' + base64url(HMAC-SHA256).

        Lifetime is TOKEN_TTL_HOURS, or TOKEN_REMEMBER_ME_DAYS with remember_me.
        """
        now = now or datetime.now(timezone.utc)
        ttl = timedelta(days=Config.TOKEN_REMEMBER_ME_DAYS) if remember_me else timedelta(hours=Config.TOKEN_TTL_HOURS)
        claims = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        payload = _b64encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        return f"{payload}.{cls._sign(payload)}"

    @classmethod
    def verify_token(cls, token: str, now: Optional[datetime] = None) -> TokenClaims:
        """
        Verify signature and expiry.

        Raises:
            TokenError: malformed, tampered or expired token
        """
        try:
            payload, signature = token.split(".", 1)
        except (AttributeError, ValueError):
            raise TokenError("Malformed token")

        # Constant-time comparison
        if not hmac.compare_digest(signature, cls._sign(payload)):
            raise TokenError("Invalid token signature")

        try:
            claims = json.loads(_b64decode(payload))
        except (ValueError, json.JSONDecodeError):
            raise TokenError("Malformed token payload")

        now_ts = int((now or datetime.now(timezone.utc)).timestamp())
        if int(claims.get("exp", 0)) <= now_ts:
            raise TokenError("Token expired", expired=True)

        try:
            return TokenClaims(
                user_id=int(claims["sub"]),
                email=claims.get("email", ""),
                role=claims.get("role", ""),
                issued_at=int(claims.get("iat", 0)),
                expires_at=int(claims["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            raise TokenError("Malformed token payload")

    @classmethod
    def hash_password(cls, password: str, iterations: Optional[int] = None) -> str:
        """Hash as pbkdf2_sha256$<iterations>$<salt>$<hash>"""
        iterations = iterations or Config.PASSWORD_HASH_ITERATIONS
        salt = secrets.token_hex(16)
        derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
        return f"{cls.PASSWORD_SCHEME}${iterations}${salt}${_b64encode(derived)}"

    @classmethod
    def verify_password(cls, password: str, stored_hash: Optional[str]) -> bool:
        if not stored_hash or not password:
            return False
        try:
            scheme, iterations, salt, expected = stored_hash.split("$", 3)
            if scheme != cls.PASSWORD_SCHEME:
                logger.warning(f"⚠️ Unknown password scheme: {scheme}")
                return False
            derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
        except ValueError:
            logger.warning("⚠️ Malformed stored password hash")
            return False
        return hmac.compare_digest(_b64encode(derived), expected)
