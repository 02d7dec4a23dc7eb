"""Domain exceptions raised by the user service.

Route handlers translate these into HTTP responses; the service layer never
imports FastAPI.
"""


class UserManagementError(Exception):
    """Base exception for all user management errors."""

    pass


class UserAlreadyExistsError(UserManagementError):
    """Raised when registering an email that is already taken."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email '{email}' already exists")


class InvalidCredentialsError(UserManagementError):
    """Raised when the email is unknown or the password does not match."""

    pass


class UserBlockedError(UserManagementError):
    """Raised when a blocked user tries to log in or act."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} is blocked")


class UserNotFoundError(UserManagementError):
    """Raised when no user row matches the given id."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")
