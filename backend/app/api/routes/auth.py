import logging
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel, Field
from app.core.exceptions import InvalidCredentialsError, UserAlreadyExistsError, UserBlockedError
from app.api.dependencies import get_user_service
from app.api.schemas import MessageResponse
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class UserCreate(BaseModel):
    # No format or strength rules, only presence
    name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, service: UserService = Depends(get_user_service)):
    """Register a new user"""
    try:
        await run_in_threadpool(service.register, user_data.name, user_data.email, user_data.password)
    except UserAlreadyExistsError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already exists."
        )
    except SQLAlchemyError:
        logger.exception("Registration error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not register user."
        )

    return {"message": "User registered successfully!"}


@router.post("/login", response_model=LoginResponse)
async def login(credentials: LoginRequest, service: UserService = Depends(get_user_service)):
    """Login and get access token"""
    try:
        user = await run_in_threadpool(service.authenticate, credentials.email, credentials.password)
        token = service.issue_token(user)
    except InvalidCredentialsError:
        # Same message for unknown email and wrong password
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except UserBlockedError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is blocked."
        )
    except SQLAlchemyError:
        logger.exception("Login failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed."
        )

    return LoginResponse(message="Login successful!", token=token)
