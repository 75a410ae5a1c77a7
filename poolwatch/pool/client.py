"""Pool API client.

This module implements the PoolClient class which handles:
- Authenticated HTTP requests to the pool status endpoints
- Merging the profile, worker list and found blocks bodies
- Request timeouts
- Classification of failures as transient or permanent

The client never retries; the scheduler's next tick is the retry.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from poolwatch.common.errors import (
    MalformedSnapshotError,
    PermanentFetchError,
    TransientFetchError,
)
from .models import Account, Snapshot
from .parser import parse_snapshot

logger = structlog.get_logger(__name__)

TOKEN_PLACEHOLDER = "{token}"


def classify_status(status: int) -> Optional[type]:
    """Map an HTTP status to the error class it should raise.

    Returns:
        None for success, otherwise TransientFetchError or PermanentFetchError
    """
    if 200 <= status < 300:
        return None
    if status == 429 or status == 408 or status >= 500:
        return TransientFetchError
    return PermanentFetchError


class PoolClient:
    """Fetches account snapshots from the pool status API."""

    def __init__(
        self,
        status_url: str,
        timeout_seconds: float = 15.0,
        auth_header: Optional[str] = None,
        proxy: Optional[str] = None,
        session: Optional[ClientSession] = None,
        workers_url: Optional[str] = None,
        blocks_url: Optional[str] = None,
    ) -> None:
        """Initialize the pool client.

        Args:
            status_url: Endpoint URL template, may contain ``{token}``
            timeout_seconds: Total timeout per request
            auth_header: Optional header name that also carries the token
            proxy: Optional HTTP proxy URL
            session: Optional shared aiohttp session (created lazily otherwise)
            workers_url: Optional worker list endpoint template
            blocks_url: Optional found blocks endpoint template
        """
        self.status_url = status_url
        self.workers_url = workers_url
        self.blocks_url = blocks_url
        self.timeout = ClientTimeout(total=timeout_seconds)
        self.auth_header = auth_header
        self.proxy = proxy
        self._session = session
        self._owns_session = session is None

    def build_request(
        self, account: Account, template: Optional[str] = None
    ) -> Tuple[str, Dict[str, str], Dict[str, str]]:
        """Build URL, query parameters and headers for an account.

        Args:
            account: Account to build the request for
            template: URL template, defaults to the account's status URL

        Raises:
            PermanentFetchError: If the account has no token
        """
        if not account.token:
            raise PermanentFetchError(f"Account {account.account_id} has no pool token")

        template = template or account.status_url or self.status_url
        params: Dict[str, str] = {}
        headers: Dict[str, str] = {"Accept": "application/json"}

        if TOKEN_PLACEHOLDER in template:
            url = template.replace(TOKEN_PLACEHOLDER, quote(account.token, safe=""))
        else:
            url = template
            params["token"] = account.token

        if self.auth_header:
            headers[self.auth_header] = account.token

        return url, params, headers

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _get_json(self, account: Account, template: Optional[str] = None) -> Any:
        """GET one endpoint for an account and decode its JSON body."""
        url, params, headers = self.build_request(account, template)
        session = await self._get_session()

        try:
            async with session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
                proxy=self.proxy,
            ) as response:
                error_class = classify_status(response.status)
                if error_class is not None:
                    body = await response.text(errors="replace")
                    raise error_class(
                        f"Pool API returned {response.status} for account "
                        f"{account.account_id}: {body[:200]}"
                    )
                raw = await response.read()
        except asyncio.TimeoutError as e:
            raise TransientFetchError(
                f"Pool API request timed out for account {account.account_id}"
            ) from e
        except ClientError as e:
            raise TransientFetchError(
                f"Pool API request failed for account {account.account_id}: {e}"
            ) from e

        try:
            return json.loads(raw)
        except ValueError as e:
            # UnicodeDecodeError is a ValueError too
            raise MalformedSnapshotError(
                f"Pool API returned invalid JSON for account {account.account_id}"
            ) from e

    async def fetch(self, account: Account) -> Snapshot:
        """Fetch the current snapshot of an account.

        The profile endpoint is always requested. When a worker list or a
        found blocks endpoint is configured, their bodies are merged into
        the same snapshot.

        Args:
            account: Account to fetch

        Returns:
            Snapshot: Parsed pool state

        Raises:
            TransientFetchError: Network error, timeout, 5xx, rate limit or bad body
            PermanentFetchError: Authentication failure or unknown account
        """
        taken_at = datetime.now(tz=timezone.utc)
        payload = await self._get_json(account)

        workers_payload = None
        workers_url = account.workers_url or self.workers_url
        if workers_url:
            workers_payload = await self._get_json(account, workers_url)

        blocks_payload = None
        blocks_url = account.blocks_url or self.blocks_url
        if blocks_url:
            blocks_payload = await self._get_json(account, blocks_url)

        snapshot = parse_snapshot(
            payload,
            account,
            taken_at=taken_at,
            workers_payload=workers_payload,
            blocks_payload=blocks_payload,
        )
        logger.debug(
            "snapshot_fetched",
            account_id=account.account_id,
            total_hashrate=snapshot.total_hashrate,
            workers=len(snapshot.workers),
        )
        return snapshot

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.info("pool_client_closed")
