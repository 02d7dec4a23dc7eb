import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect

from app.client.api_client import BlockedError, RosterAPIError, RosterClient
from app.services.broadcaster import ROSTER_CHANGED_EVENT

logger = logging.getLogger(__name__)

RosterCallback = Callable[[List[Dict[str, Any]]], None]


class RosterListener:
    """
    Listens on the broadcast channel and re-fetches the roster on every
    change signal.

    The signal carries no data; the fresh roster always comes from the
    authenticated list endpoint, so the view is never a pushed snapshot.
    """

    def __init__(
        self,
        client: RosterClient,
        ws_url: str = "ws://localhost:5000/ws",
        on_update: Optional[RosterCallback] = None,
    ):
        self.client = client
        self.ws_url = ws_url
        self.on_update = on_update

    def handle_message(self, raw: str) -> Optional[List[Dict[str, Any]]]:
        """Process one frame. Returns the re-fetched roster, or None if nothing was fetched."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed frame: {raw!r}")
            return None
        if not isinstance(message, dict) or message.get("event") != ROSTER_CHANGED_EVENT:
            return None
        # The channel is open to logged-out clients, but there is nothing to fetch
        if not self.client.is_logged_in:
            return None

        try:
            users = self.client.fetch_users()
        except BlockedError:
            logger.warning("Blocked while refreshing roster; client logged out")
            return None
        except RosterAPIError as e:
            logger.error(f"Could not refresh roster: {e}")
            return None
        except requests.RequestException as e:
            # Transport failure: the view stays stale until the next signal
            logger.error(f"Could not reach server to refresh roster: {e}")
            return None

        if self.on_update is not None:
            self.on_update(users)
        return users

    def listen(self, connection: Optional[Any] = None) -> None:
        """
        Block, processing frames until the server closes the connection.

        Args:
            connection: An open websockets connection; one is opened to
                ws_url when omitted.
        """
        if connection is None:
            connection = connect(self.ws_url)
        with connection:
            try:
                for raw in connection:
                    self.handle_message(raw)
            except ConnectionClosed:
                logger.info("Broadcast channel closed")
