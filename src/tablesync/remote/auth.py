"""
OAuth bearer tokens for the remote query service.

The provider issues tokens through a password grant: HTTP Basic with the
OAuth client id/secret, and the service-account key pair as
username/password. A token is reused until five minutes before the
provider's `expires_in`, after which the next caller refreshes it.

get_token_cache() returns the one TokenCache shared by every client in a
process. Refreshes are single-flight: concurrent callers that find the cache
cold wait on the same request instead of each issuing their own. A rejected
or failed token request is retried once before the error surfaces.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from tablesync.config import Settings, get_settings
from tablesync.errors import AuthError
from tablesync.remote.credentials import Credentials, load_credentials
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)

EXPIRY_MARGIN = timedelta(seconds=300)


@dataclass(frozen=True)
class Token:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def __repr__(self) -> str:
        return f"Token(expires_at={self.expires_at.isoformat()})"


class TokenCache:
    """
    Usage:
        cache = TokenCache(credentials)
        token = await cache.get_token()
        headers = {"Authorization": f"Bearer {token.value}"}
    """

    def __init__(
        self,
        credentials: Credentials,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 30.0,
    ):
        """
        Args:
            credentials: Resolved service credentials.
            http: Client used for the token request. A private client is
                  opened per refresh when omitted.
            clock: Returns the current naive-UTC time; injectable for tests.
            timeout: Per-request timeout when no client is injected.
        """
        self._credentials = credentials
        self._http = http
        self._clock = clock
        self._timeout = timeout
        self._token: Optional[Token] = None
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def invalidate(self) -> None:
        self._token = None

    async def get_token(self, force_refresh: bool = False) -> Token:
        """
        Return a valid bearer token, requesting one only when needed.

        Args:
            force_refresh: Bypass a cached token (used after a 401). Callers
                that arrive while another refresh is in flight still share it.

        Raises:
            AuthError: incomplete credentials, or a token request that failed twice.
        """
        stale = self._token
        if not force_refresh and stale is not None and stale.is_valid(self._clock()):
            return stale

        async with self._lock:
            current = self._token
            if current is not None and current.is_valid(self._clock()):
                # A forced refresh still reuses a token another caller fetched while we waited
                if not force_refresh or current is not stale:
                    return current

            self._check_credentials()
            try:
                self._token = await self._request_token()
            except AuthError as exc:
                logger.warning("Token request failed, retrying once: %s", exc)
                self._token = await self._request_token()
            return self._token

    def _check_credentials(self) -> None:
        creds = self._credentials
        missing = creds.missing_fields()
        if missing:
            raise AuthError(f"Incomplete credentials, missing: {', '.join(missing)}")
        if not creds.sso_base_url:
            raise AuthError("Incomplete credentials, missing: sso_base_url")

    async def _request_token(self) -> Token:
        creds = self._credentials
        url = f"{creds.sso_base_url}token.oauth2"
        data = {
            "grant_type": "password",
            "username": creds.key_id,
            "password": creds.key_secret,
            "scope": "openid",
        }
        logger.info("Requesting access token for tenant %s", creds.tenant)

        try:
            if self._http is not None:
                response = await self._http.post(
                    url, data=data, auth=(creds.client_id, creds.client_secret)
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as http:
                    response = await http.post(
                        url, data=data, auth=(creds.client_id, creds.client_secret)
                    )
        except httpx.HTTPError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc

        if response.status_code >= 300:
            raise AuthError(
                f"Token request rejected with status {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
            value = body["access_token"]
            expires_in = int(body.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError(f"Malformed token response: {exc}") from exc
        if not value:
            raise AuthError("Malformed token response: empty access_token")

        expires_at = self._clock() + timedelta(seconds=expires_in) - EXPIRY_MARGIN
        logger.info("Access token obtained, valid until %s", expires_at.isoformat())
        return Token(value=value, expires_at=expires_at)


_token_cache: Optional[TokenCache] = None


def get_token_cache(settings: Optional[Settings] = None) -> TokenCache:
    """
    Return the process-wide TokenCache, loading credentials on first call.

    Raises:
        CredentialsNotFoundError: if no complete credentials are configured.
    """
    global _token_cache
    if _token_cache is None:
        settings = settings or get_settings()
        credentials = load_credentials(settings.credentials_path, settings=settings)
        _token_cache = TokenCache(credentials, timeout=settings.http_timeout_seconds)
    return _token_cache
