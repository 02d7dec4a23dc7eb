import logging
from datetime import timedelta
from typing import List
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import Settings
from app.core.exceptions import (
    InvalidCredentialsError,
    UserAlreadyExistsError,
    UserBlockedError,
    UserNotFoundError,
)
from app.core.security import create_access_token, get_password_hash, verify_password
from app.models.user import User, UserStatus, utcnow

logger = logging.getLogger(__name__)


class UserService:
    """
    Store operations for the user directory.

    Every mutation is a single statement followed by a commit, so a failed
    call never leaves partial state behind. SQLAlchemy errors are rolled back
    and re-raised for the route to turn into a 500.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def register(self, name: str, email: str, password: str) -> User:
        """Create a new active user. Raises UserAlreadyExistsError on a taken email."""
        existing_user = self.db.query(User).filter(User.email == email).first()
        if existing_user:
            raise UserAlreadyExistsError(email)

        user = User(
            name=name,
            email=email,
            hashed_password=get_password_hash(password, rounds=self.settings.BCRYPT_ROUNDS),
            status=UserStatus.ACTIVE.value,
            last_login=utcnow(),
        )
        try:
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            # Two registrations raced past the pre-check; the unique index decides
            self.db.rollback()
            raise UserAlreadyExistsError(email)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(user)
        logger.info(f"Registered user {user.id} ({user.email})")
        return user

    def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials and record the login.

        The password is verified before the blocked check so the blocked
        message is only shown to someone who knows the password.
        """
        user = self.db.query(User).filter(User.email == email).first()
        if user is None or not verify_password(password, user.hashed_password):
            raise InvalidCredentialsError("Invalid email or password")
        if user.is_blocked:
            raise UserBlockedError(user.id)

        try:
            user.last_login = utcnow()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(user)
        logger.info(f"User {user.id} logged in")
        return user

    def issue_token(self, user: User) -> str:
        return create_access_token(
            data={"sub": str(user.id), "email": user.email},
            expires_delta=timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            secret_key=self.settings.SECRET_KEY,
            algorithm=self.settings.ALGORITHM,
        )

    def list_users(self) -> List[User]:
        """All users, most recent login first."""
        return (
            self.db.query(User)
            .order_by(User.last_login.desc(), User.id.desc())
            .all()
        )

    def get_status(self, user_id: int) -> UserStatus:
        status = (
            self.db.query(User.status)
            .filter(User.id == user_id)
            .scalar()
        )
        if status is None:
            raise UserNotFoundError(user_id)
        return UserStatus(status)

    def ensure_not_blocked(self, user_id: int) -> None:
        """Re-read the acting user's status from the store."""
        if self.get_status(user_id) is UserStatus.BLOCKED:
            raise UserBlockedError(user_id)

    def set_status(self, user_id: int, status: UserStatus) -> None:
        """Set a user's status. Setting the current status again is a no-op success."""
        try:
            updated = (
                self.db.query(User)
                .filter(User.id == user_id)
                .update({User.status: status.value}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        if updated == 0:
            raise UserNotFoundError(user_id)
        logger.info(f"User {user_id} status set to {status.value}")

    def delete_user(self, user_id: int) -> None:
        """Hard-delete a user row."""
        try:
            deleted = (
                self.db.query(User)
                .filter(User.id == user_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        if deleted == 0:
            raise UserNotFoundError(user_id)
        logger.info(f"User {user_id} deleted")
