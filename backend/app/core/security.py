from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.core.config import settings

# CryptContext handles password hashing using bcrypt
# bcrypt embeds a random salt in every hash, so equal passwords hash differently
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash using constant-time comparison"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password using bcrypt"""
    if rounds is not None:
        return pwd_context.handler("bcrypt").using(rounds=rounds).hash(password)
    return pwd_context.hash(password)


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """Create a JWT access token with expiration"""
    # Copy data to avoid mutating the original dict
    to_encode = data.copy()

    if expires_delta is not None:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(
            timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    # Standard 'exp' claim - jose rejects the token once it has passed
    to_encode.update({"exp": expire})

    encoded_jwt = jwt.encode(
        to_encode,
        secret_key or settings.SECRET_KEY,
        algorithm=algorithm or settings.ALGORITHM,
    )
    return encoded_jwt


def decode_access_token(
    token: str,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        # Verify signature and expiration automatically
        payload = jwt.decode(token, secret_key or settings.SECRET_KEY,
                             algorithms=[algorithm or settings.ALGORITHM])
        return payload
    except JWTError:
        # Token is invalid - expired, tampered, or signed with another key
        return None
