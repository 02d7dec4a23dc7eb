import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime
from app.core.database import Base


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    User model representing directory accounts.

    Passwords are stored as bcrypt hashes (never plaintext). Status is a plain
    string column holding a UserStatus value so the table stays portable
    between PostgreSQL and SQLite.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # Email is unique and indexed for fast lookups during login
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    # Set at registration and refreshed on every successful login
    last_login = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_blocked(self) -> bool:
        return self.status == UserStatus.BLOCKED.value

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"
