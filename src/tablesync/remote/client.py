"""
Async client for the remote SQL query service (submit, poll, fetch).

The service runs queries asynchronously: a POST of raw SQL returns a query
id, the status endpoint reports progress, and the result endpoint serves
the rows in offset/limit pages once the query has completed.

Provider status strings are normalised here into QueryStatus; nothing above
this module compares raw status text.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from tablesync.config import Settings, get_settings
from tablesync.errors import RemoteQueryError
from tablesync.remote.auth import TokenCache, get_token_cache
from tablesync.remote.credentials import Credentials

logger = logging.getLogger(__name__)


class QueryStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.COMPLETED, QueryStatus.FAILED)


_STATUS_SYNONYMS = {
    "COMPLETED": QueryStatus.COMPLETED,
    "COMPLETE": QueryStatus.COMPLETED,
    "FINISHED": QueryStatus.COMPLETED,
    "DONE": QueryStatus.COMPLETED,
    "SUCCEEDED": QueryStatus.COMPLETED,
    "SUCCESS": QueryStatus.COMPLETED,
    "FAILED": QueryStatus.FAILED,
    "FAILURE": QueryStatus.FAILED,
    "ERROR": QueryStatus.FAILED,
    "CANCELLED": QueryStatus.FAILED,
    "CANCELED": QueryStatus.FAILED,
    "ABORTED": QueryStatus.FAILED,
    "RUNNING": QueryStatus.RUNNING,
    "IN_PROGRESS": QueryStatus.RUNNING,
    "EXECUTING": QueryStatus.RUNNING,
    "PENDING": QueryStatus.PENDING,
    "SUBMITTED": QueryStatus.PENDING,
    "QUEUED": QueryStatus.PENDING,
    "ACCEPTED": QueryStatus.PENDING,
    "CREATED": QueryStatus.PENDING,
}


def normalize_status(raw: Optional[str]) -> QueryStatus:
    """Map a provider status string onto QueryStatus, case-insensitively.

    Unrecognised values are treated as running so polling keeps going.
    """
    key = (raw or "").strip().upper().replace(" ", "_").replace("-", "_")
    status = _STATUS_SYNONYMS.get(key)
    if status is None:
        logger.warning("Unrecognised remote query status %r, treating as running", raw)
        return QueryStatus.RUNNING
    return status


@dataclass
class StatusDetail:
    status: QueryStatus
    raw_status: Optional[str] = None
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class RemoteQueryClient:
    """
    Usage:
        async with RemoteQueryClient.from_settings() as client:
            query_id = await client.submit("SELECT ...")
            await wait_for_completion(client, query_id, policy)
            rows = await client.fetch_page(query_id, 0, 1000)
    """

    def __init__(
        self,
        credentials: Credentials,
        token_cache: TokenCache,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            credentials: Resolved service credentials (tenant and API base URL).
            token_cache: Shared bearer token source.
            http: Optional client to issue requests on. When omitted the
                  instance opens its own and closes it in aclose().
            timeout: Request timeout for an owned client.
        """
        self._credentials = credentials
        self._tokens = token_cache
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RemoteQueryClient":
        """Build a client on the process-wide token cache."""
        settings = settings or get_settings()
        tokens = get_token_cache(settings)
        return cls(tokens.credentials, tokens, timeout=settings.http_timeout_seconds)

    async def __aenter__(self) -> "RemoteQueryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ── Endpoints ─────────────────────────────────────────────────────────────

    @property
    def jobs_url(self) -> str:
        c = self._credentials
        return f"{c.api_base_url}/{c.tenant}/DATAFABRIC/compass/v2/jobs/"

    async def submit(self, sql: str) -> str:
        """Submit a query and return its remote query id."""
        logger.info("Submitting query: %s", _preview(sql))
        response = await self._request(
            "POST",
            self.jobs_url,
            content=sql.encode("utf-8"),
            headers={"Content-Type": "text/plain", "Accept": "application/json"},
        )
        body = _json(response)
        query_id = (body.get("queryId") or body.get("id")) if isinstance(body, dict) else None
        if not query_id:
            raise RemoteQueryError(f"Submit response carried no query id: {str(body)[:200]}")
        logger.info("Query submitted: %s", query_id)
        return str(query_id)

    async def status(self, query_id: str) -> QueryStatus:
        return (await self.status_detail(query_id)).status

    async def status_detail(self, query_id: str) -> StatusDetail:
        response = await self._request("GET", f"{self.jobs_url}{query_id}/status/")
        body = _json(response)
        if not isinstance(body, dict):
            raise RemoteQueryError(f"Unexpected status response: {str(body)[:200]}")
        raw = body.get("status")
        message = body.get("message") or body.get("error")
        return StatusDetail(
            status=normalize_status(raw),
            raw_status=raw,
            message=str(message) if message else None,
            payload=body,
        )

    async def fetch_page(self, query_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """Fetch one result page. A page shorter than `limit` is the last one."""
        response = await self._request(
            "GET",
            f"{self.jobs_url}{query_id}/result/",
            params={"offset": offset, "limit": limit},
        )
        rows = parse_result_rows(_json(response))
        logger.debug("Fetched %d rows for %s at offset %d", len(rows), query_id, offset)
        return rows

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue an authorised request, refreshing the token once on a 401."""
        extra_headers = kwargs.pop("headers", {})
        force_refresh = False
        for attempt in range(2):
            token = await self._tokens.get_token(force_refresh=force_refresh)
            headers = {"Accept": "application/json", **extra_headers}
            headers["Authorization"] = f"Bearer {token.value}"
            try:
                response = await self._http.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as exc:
                raise RemoteQueryError(f"{method} {url} failed: {exc}") from exc

            if response.status_code == 401 and attempt == 0:
                logger.info("Token rejected for %s %s, refreshing and retrying once", method, url)
                force_refresh = True
                continue
            break

        if response.status_code >= 300:
            raise RemoteQueryError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response


def parse_result_rows(body: Any) -> List[Dict[str, Any]]:
    """
    Normalise a result payload into a list of row dicts.

    Accepts `{"results": [{...}]}`, `{"rows": [[...]], "columns": [{"name": ...}]}`
    or a bare list of dicts.
    """
    if isinstance(body, list):
        rows, columns = body, None
    elif isinstance(body, dict):
        rows = body.get("results")
        if rows is None:
            rows = body.get("rows")
        columns = body.get("columns")
        if rows is None:
            raise RemoteQueryError(f"Unexpected result response: {str(body)[:200]}")
    else:
        raise RemoteQueryError(f"Unexpected result response: {str(body)[:200]}")

    if not rows or isinstance(rows[0], dict):
        return list(rows)

    if not columns:
        raise RemoteQueryError("Result rows are positional but no columns were returned")
    names = [c.get("name") if isinstance(c, dict) else str(c) for c in columns]
    return [dict(zip(names, row)) for row in rows]


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteQueryError(
            f"Non-JSON response ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        ) from exc


def _preview(sql: str, limit: int = 100) -> str:
    flat = " ".join(sql.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."
