"""
Matrix chat client implementation for PoolWatch.
Handles login, session restore, room joins and message sending using matrix-nio.

Only three chat operations are used: login, join room and send message.
Every failure is classified as transient or permanent at this boundary.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

import structlog
from aiohttp import ClientError
from nio import (
    AsyncClient,
    AsyncClientConfig,
    ErrorResponse,
    JoinResponse,
    LoginResponse,
    RoomSendResponse,
    WhoamiResponse,
)

from poolwatch.common.errors import ChatError, PermanentChatError, TransientChatError

logger = structlog.get_logger(__name__)

PERMANENT_ERROR_CODES = frozenset({
    "M_FORBIDDEN",
    "M_NOT_FOUND",
    "M_UNKNOWN_TOKEN",
    "M_MISSING_TOKEN",
    "M_INVALID_PARAM",
    "M_BAD_JSON",
    "M_NOT_JSON",
    "M_UNRECOGNIZED",
    "M_USER_DEACTIVATED",
    "M_UNSUPPORTED_ROOM_VERSION",
})


def classify_response(response: ErrorResponse, action: str) -> ChatError:
    """Turn a matrix-nio error response into a classified chat error."""
    code = response.status_code
    message = f"Matrix {action} failed: {code or 'unknown'} {response.message or ''}".strip()
    if code in PERMANENT_ERROR_CODES:
        return PermanentChatError(message, code=code)
    retry_after = response.retry_after_ms / 1000 if response.retry_after_ms else None
    return TransientChatError(message, code=code, retry_after=retry_after)


class SessionStore(Protocol):
    """Persistence of the chat login session."""

    async def get_session(self, user_id: str) -> Optional[Tuple[str, str]]:
        ...

    async def save_session(self, user_id: str, access_token: str, device_id: str) -> None:
        ...


class ChatClient(ABC):
    """Chat operations consumed by the relay."""

    @abstractmethod
    async def login(self) -> None:
        """Authenticate with the chat server."""

    @abstractmethod
    async def join_room(self, room_id: str) -> str:
        """Join a room and return its canonical id."""

    @abstractmethod
    async def send_message(
        self,
        room_id: str,
        text: str,
        html: Optional[str] = None,
        txn_id: Optional[str] = None,
    ) -> None:
        """Send a message to a room."""

    async def connect(self, rooms: Sequence[str]) -> None:
        """Log in and join all rooms."""
        await self.login()
        for room_id in rooms:
            await self.join_room(room_id)

    async def close(self) -> None:
        """Release the connection."""


class MatrixChatClient(ChatClient):
    """Matrix client with session persistence and failure classification."""

    def __init__(
        self,
        homeserver_url: str,
        user_id: str,
        password: Optional[str] = None,
        access_token: Optional[str] = None,
        device_id: Optional[str] = None,
        device_name: str = "PoolWatch Bot",
        display_name: Optional[str] = None,
        proxy: Optional[str] = None,
        request_timeout: float = 30.0,
        session_store: Optional[SessionStore] = None,
        client: Optional[AsyncClient] = None,
        max_retries: int = 5,
        retry_delay: float = 5.0,
    ) -> None:
        """Initialize the Matrix client.

        Args:
            homeserver_url: Homeserver base URL
            user_id: Fully qualified user id (@bot:example.org)
            password: Password for a fresh login
            access_token: Access token to reuse instead of logging in
            device_id: Device id belonging to ``access_token``
            device_name: Device name used for password logins
            display_name: Display name to set after login
            proxy: Optional proxy URL
            request_timeout: Timeout of a single request in seconds
            session_store: Optional persistence of the login session
            client: Optional preconfigured nio client
            max_retries: Connection attempts at startup
            retry_delay: Delay between startup connection attempts in seconds
        """
        self.homeserver_url = homeserver_url
        self.user_id = user_id
        self.password = password
        self.access_token = access_token
        self.device_id = device_id
        self.device_name = device_name
        self.display_name = display_name
        self.session_store = session_store

        # Retries belong to the notifier; nio must return errors immediately
        config = AsyncClientConfig(
            max_limit_exceeded=0,
            max_timeouts=0,
            request_timeout=request_timeout,
            encryption_enabled=False,
            store_sync_tokens=False,
        )
        self.client = client or AsyncClient(
            homeserver_url,
            user_id,
            device_id=device_id or "",
            config=config,
            proxy=proxy,
        )
        self._logged_in = False
        self._rooms: Dict[str, str] = {}
        self._connection_attempts = 0
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    @property
    def is_logged_in(self) -> bool:
        return self._logged_in

    async def _call(self, action: str, coro: Any) -> Any:
        """Await a nio request, turning transport failures into transient errors."""
        try:
            response = await coro
        except asyncio.TimeoutError as e:
            raise TransientChatError(f"Matrix {action} timed out") from e
        except ClientError as e:
            raise TransientChatError(f"Matrix {action} failed: {e}") from e
        if isinstance(response, ErrorResponse):
            raise classify_response(response, action)
        return response

    def _restore(self, access_token: str, device_id: str) -> None:
        self.client.user_id = self.user_id
        self.client.device_id = device_id
        self.client.access_token = access_token

    async def _restore_session(self) -> bool:
        """Try to reuse a configured or persisted access token."""
        token, device_id = self.access_token, self.device_id
        if not token and self.session_store is not None:
            stored = await self.session_store.get_session(self.user_id)
            if stored:
                token, device_id = stored
        if not token:
            logger.debug("session_not_found", user_id=self.user_id)
            return False

        self._restore(token, device_id or "")
        try:
            response = await self._call("whoami", self.client.whoami())
        except PermanentChatError as e:
            logger.warning("session_restore_rejected", user_id=self.user_id, code=e.code)
            self.client.access_token = ""
            return False

        if isinstance(response, WhoamiResponse) and response.device_id:
            self.client.device_id = response.device_id
        logger.debug("session_restored", user_id=self.user_id)
        return True

    async def _password_login(self) -> None:
        if not self.password:
            raise PermanentChatError(
                f"No valid session and no password for {self.user_id}", code="M_MISSING_TOKEN"
            )
        response = await self._call(
            "login",
            self.client.login(password=self.password, device_name=self.device_name),
        )
        if not isinstance(response, LoginResponse):
            raise TransientChatError("Matrix login returned an unexpected response")

        logger.info("matrix_logged_in", user_id=self.user_id, device_id=response.device_id)
        if self.session_store is not None:
            try:
                await self.session_store.save_session(
                    self.user_id, response.access_token, response.device_id
                )
                logger.debug("session_saved", user_id=self.user_id)
            except Exception as e:
                logger.warning(
                    "session_save_failed",
                    user_id=self.user_id,
                    error=str(e),
                )

    async def login(self) -> None:
        """Restore a session if possible, otherwise log in with the password.

        Raises:
            PermanentChatError: Credentials rejected
            TransientChatError: Homeserver unreachable
        """
        if not await self._restore_session():
            await self._password_login()
        self._logged_in = True

        if self.display_name:
            try:
                await self._call("set_displayname", self.client.set_displayname(self.display_name))
            except ChatError as e:
                logger.warning("display_name_not_set", error=str(e))

    async def connect(self, rooms: Sequence[str]) -> None:
        """Log in and join rooms, retrying transient failures at startup."""
        while True:
            try:
                await super().connect(rooms)
                self._connection_attempts = 0
                logger.info("matrix_connected", user_id=self.user_id, rooms=list(self._rooms.values()))
                return
            except TransientChatError as e:
                self._connection_attempts += 1
                logger.error(
                    "connection_failed",
                    error=str(e),
                    attempt=self._connection_attempts,
                    max_retries=self._max_retries,
                )
                if self._connection_attempts >= self._max_retries:
                    raise
                await asyncio.sleep(self._retry_delay)

    async def join_room(self, room_id: str) -> str:
        """Join a room (id or alias) and remember its canonical id.

        Returns:
            str: Canonical room id
        """
        response = await self._call("join", self.client.join(room_id))
        joined_id = response.room_id if isinstance(response, JoinResponse) else room_id
        self._rooms[room_id] = joined_id
        logger.info("room_joined", room=room_id, room_id=joined_id)
        return joined_id

    async def send_message(
        self,
        room_id: str,
        text: str,
        html: Optional[str] = None,
        txn_id: Optional[str] = None,
    ) -> None:
        """Send a notice to a room.

        Args:
            room_id: Room id or alias as configured
            text: Plain text body
            html: Optional HTML body
            txn_id: Transaction id; resending with the same id is idempotent

        Raises:
            TransientChatError: Retry-eligible failure
            PermanentChatError: The room or credentials refuse the message
        """
        if not self._logged_in:
            await self.login()

        content: Dict[str, Any] = {"msgtype": "m.notice", "body": text}
        if html:
            content["format"] = "org.matrix.custom.html"
            content["formatted_body"] = html

        target = self._rooms.get(room_id, room_id)
        try:
            response = await self._call(
                "send",
                self.client.room_send(
                    target,
                    "m.room.message",
                    content,
                    tx_id=txn_id,
                    ignore_unverified_devices=True,
                ),
            )
        except PermanentChatError as e:
            if e.code == "M_UNKNOWN_TOKEN" and self.password:
                # Session expired; log in again on the next attempt
                self._logged_in = False
                self.access_token = None
                raise TransientChatError(str(e), code=e.code) from e
            raise

        if isinstance(response, RoomSendResponse):
            logger.debug("message_sent", room_id=target, matrix_event_id=response.event_id)

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.client.close()
        self._logged_in = False
        logger.info("matrix_client_closed")
