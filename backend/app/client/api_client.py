"""
HTTP client for the user admin API.

Mirrors what the browser front end does: log in, keep the bearer token,
fetch the roster, run an action over a selection of users, and log out as
soon as the server says the caller is blocked.
"""
from typing import Any, Dict, Iterable, List, Optional

import requests

ACTIONS = ("block", "unblock", "delete")


class RosterAPIError(Exception):
    """Base error for non-2xx API responses."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class ValidationFailedError(RosterAPIError):
    """Missing or invalid request fields (400)."""

    pass


class AuthenticationError(RosterAPIError):
    """Bad credentials or missing token (401)."""

    pass


class BlockedError(RosterAPIError):
    """Caller is blocked or the token was rejected (403)."""

    pass


class NotFoundError(RosterAPIError):
    """Target user does not exist (404)."""

    pass


class ConflictError(RosterAPIError):
    """Email already registered (409)."""

    pass


class ServerError(RosterAPIError):
    """Server-side failure (5xx)."""

    pass


_ERRORS_BY_STATUS = {
    400: ValidationFailedError,
    401: AuthenticationError,
    403: BlockedError,
    404: NotFoundError,
    409: ConflictError,
}


class RosterClient:
    """Client for the user admin API."""

    def __init__(self, base_url: str = "http://localhost:5000", session: Optional[Any] = None):
        """
        Args:
            base_url: Server root, without the /api prefix.
            session: Anything with requests.Session's get/post/put/delete
                signature. Defaults to a new requests.Session.
        """
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.token: Optional[str] = None

    @property
    def is_logged_in(self) -> bool:
        return self.token is not None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = getattr(self.session, method)(
            f"{self.base_url}/api{path}", headers=self._headers(), **kwargs
        )
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            message = data.get("detail") or data.get("error") or "Request failed"
            if response.status_code >= 500:
                raise ServerError(response.status_code, message)
            error_class = _ERRORS_BY_STATUS.get(response.status_code, RosterAPIError)
            raise error_class(response.status_code, message)
        return data

    def register(self, name: str, email: str, password: str) -> str:
        data = self._request("post", "/register", json={"name": name, "email": email, "password": password})
        return data["message"]

    def login(self, email: str, password: str) -> str:
        data = self._request("post", "/login", json={"email": email, "password": password})
        self.token = data["token"]
        return self.token

    def logout(self) -> None:
        self.token = None

    def fetch_users(self) -> List[Dict[str, Any]]:
        """Fetch the roster. A 403 means we were blocked: log out and re-raise."""
        try:
            data = self._request("get", "/users")
        except BlockedError:
            self.logout()
            raise
        return data["users"]

    def apply_action(self, action: str, user_ids: Iterable[int]) -> Dict[int, RosterAPIError]:
        """
        Run block/unblock/delete for each selected user id, in order.

        Stops at the first 403 (the caller has been blocked, possibly by their
        own action), logs out and re-raises. Other per-user failures are
        collected and returned keyed by user id.
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown action '{action}', expected one of {ACTIONS}")

        failures: Dict[int, RosterAPIError] = {}
        for user_id in user_ids:
            if action == "delete":
                method, path = "delete", f"/users/{user_id}"
            else:
                method, path = "put", f"/users/{action}/{user_id}"
            try:
                self._request(method, path)
            except BlockedError:
                self.logout()
                raise
            except RosterAPIError as e:
                failures[user_id] = e
        return failures
