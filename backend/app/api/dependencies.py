import logging
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import Settings
from app.core.database import get_db
from app.core.exceptions import UserBlockedError, UserNotFoundError
from app.core.security import decode_access_token
from app.services.broadcaster import RosterBroadcaster
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

# Bearer scheme - extracts token from the Authorization header
# auto_error=False so a missing header reaches our own 401 message
bearer_scheme = HTTPBearer(auto_error=False)

NO_TOKEN_MESSAGE = "Access denied. No token provided."
INVALID_TOKEN_MESSAGE = "Invalid token."


@dataclass(frozen=True)
class TokenIdentity:
    """Identity carried by a verified token."""
    id: int
    email: Optional[str]


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_broadcaster(request: Request) -> RosterBroadcaster:
    return request.app.state.broadcaster


def get_user_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserService:
    """UserService bound to the request-scoped DB session."""
    return UserService(db, settings)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> TokenIdentity:
    """
    Verify the bearer token.

    A missing token is a 401; a token that is present but expired, tampered
    with or malformed is a 403. The store is not consulted here.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NO_TOKEN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    invalid_token = HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=INVALID_TOKEN_MESSAGE,
    )

    payload = decode_access_token(
        credentials.credentials,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    if payload is None:
        raise invalid_token

    # Token stores ID as string in the standard 'sub' claim
    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        raise invalid_token

    return TokenIdentity(id=user_id, email=payload.get("email"))


async def get_active_identity(
    identity: TokenIdentity = Depends(get_current_identity),
    service: UserService = Depends(get_user_service),
) -> TokenIdentity:
    """
    Require a valid token AND a caller who is not blocked right now.

    Status is re-read from the store on every request, so a token issued
    before the caller was blocked stops working immediately.
    """
    try:
        await run_in_threadpool(service.ensure_not_blocked, identity.id)
    except UserBlockedError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are blocked. Action not allowed.",
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found.",
        )
    except SQLAlchemyError:
        logger.exception("Error checking block status")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error.",
        )
    return identity
