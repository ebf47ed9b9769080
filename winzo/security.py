import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from winzo import config
from winzo.errors import InvalidToken
from winzo.schemas import Role, TokenClaims

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _is_legacy_hash(hashed: str) -> bool:
    # Old device data stores "salt:sha256(password + salt)"
    return not hashed.startswith("$") and ":" in hashed


def legacy_hash(password: str, salt: str) -> str:
    digest = hashlib.sha256((password + salt).encode("utf-8")).hexdigest()
    return f"{salt}:{digest}"


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    if _is_legacy_hash(hashed):
        salt = hashed.split(":", 1)[0]
        return hmac.compare_digest(legacy_hash(plain, salt), hashed)
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def issue_token(
    user_id: int,
    email: str,
    role: str,
    issued_at: Optional[datetime] = None,
    secret: str = config.JWT_SECRET,
    expire_days: int = config.TOKEN_EXPIRE_DAYS,
) -> str:
    issued_at = issued_at or datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user_id),
        "user_id": user_id,
        "email": email,
        "role": Role(role).value,
        "iat": issued_at,
        "exp": issued_at + timedelta(days=expire_days),
    }
    return jwt.encode(to_encode, secret, algorithm=config.JWT_ALG)


def verify_token(token: str, secret: str = config.JWT_SECRET) -> TokenClaims:
    """Decode a token, failing with InvalidToken when malformed, expired or tampered"""
    try:
        payload = jwt.decode(token, secret, algorithms=[config.JWT_ALG])
        return TokenClaims(
            user_id=payload["user_id"],
            email=payload["email"],
            role=payload["role"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except JWTError as e:
        logger.warning("Token rejected: %s", e)
        raise InvalidToken() from e
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Token payload incomplete: %s", e)
        raise InvalidToken() from e
