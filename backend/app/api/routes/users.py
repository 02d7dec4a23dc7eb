import logging
from datetime import datetime, timezone
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel, ConfigDict, field_serializer
from app.api.schemas import MessageResponse
from app.api.dependencies import (
    TokenIdentity,
    get_active_identity,
    get_broadcaster,
    get_user_service,
)
from app.core.exceptions import UserNotFoundError
from app.models.user import UserStatus
from app.services.broadcaster import ROSTER_CHANGED_EVENT, RosterBroadcaster
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

USER_NOT_FOUND_MESSAGE = "User not found."


class UserResponse(BaseModel):
    # hashed_password is deliberately absent
    id: int
    name: str
    email: str
    last_login: datetime
    status: UserStatus

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('last_login')
    def serialize_last_login(self, value: datetime, _info):
        # SQLite hands back naive datetimes; they were written as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()


class UserListResponse(BaseModel):
    users: List[UserResponse]


@router.get("", response_model=UserListResponse)
async def list_users(
    _: TokenIdentity = Depends(get_active_identity),
    service: UserService = Depends(get_user_service),
):
    """List all users, most recent login first"""
    try:
        users = await run_in_threadpool(service.list_users)
    except SQLAlchemyError:
        logger.exception("Error fetching users")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not fetch users."
        )
    return {"users": users}


async def _change_status(
    user_id: int,
    new_status: UserStatus,
    verb: str,
    service: UserService,
    broadcaster: RosterBroadcaster,
) -> dict:
    try:
        await run_in_threadpool(service.set_status, user_id, new_status)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND_MESSAGE)
    except SQLAlchemyError:
        logger.exception(f"Error trying to {verb} user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Could not {verb} user."
        )

    await broadcaster.broadcast(ROSTER_CHANGED_EVENT)
    return {"message": f"User has been {verb}ed."}


@router.put("/block/{user_id}", response_model=MessageResponse)
async def block_user(
    user_id: int,
    identity: TokenIdentity = Depends(get_active_identity),
    service: UserService = Depends(get_user_service),
    broadcaster: RosterBroadcaster = Depends(get_broadcaster),
):
    """Block a user and notify connected clients"""
    logger.info(f"User {identity.id} blocking user {user_id}")
    return await _change_status(user_id, UserStatus.BLOCKED, "block", service, broadcaster)


@router.put("/unblock/{user_id}", response_model=MessageResponse)
async def unblock_user(
    user_id: int,
    identity: TokenIdentity = Depends(get_active_identity),
    service: UserService = Depends(get_user_service),
    broadcaster: RosterBroadcaster = Depends(get_broadcaster),
):
    """Unblock a user and notify connected clients"""
    logger.info(f"User {identity.id} unblocking user {user_id}")
    return await _change_status(user_id, UserStatus.ACTIVE, "unblock", service, broadcaster)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    identity: TokenIdentity = Depends(get_active_identity),
    service: UserService = Depends(get_user_service),
    broadcaster: RosterBroadcaster = Depends(get_broadcaster),
):
    """Permanently delete a user and notify connected clients"""
    logger.info(f"User {identity.id} deleting user {user_id}")
    try:
        await run_in_threadpool(service.delete_user, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND_MESSAGE)
    except SQLAlchemyError:
        logger.exception(f"Error deleting user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not delete user."
        )

    await broadcaster.broadcast(ROSTER_CHANGED_EVENT)
    return {"message": "User has been deleted."}
