"""EventLogClient — typed wrapper around the xAPI Learning Record Store.

The only component that talks to the backing store. Exposes three primitives:
- append an immutable statement,
- query statements by filter (lazy, bounded by ``limit``),
- read / write a keyed blob in the agent-profile or activity-state namespace.

Transient failures (transport errors, 429, 5xx) are retried with exponential
backoff; everything else is mapped onto the portal error taxonomy.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urljoin

import httpx
import structlog

from src.config.settings import Settings
from src.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from src.models.common import ensure_utc, new_entity_id, utc_now
from src.models.statement import Agent, Statement, StatementQuery
from src.models.vocabulary import BlobNamespace

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_JSON = "application/json"


@dataclass(frozen=True)
class Blob:
    """A keyed document read from the LRS."""

    content: bytes
    etag: str | None = None

    def json(self) -> object:
        return json.loads(self.content)


def _iso(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def _agent_param(email: str) -> str:
    return Agent.from_email(email).model_dump_json(by_alias=True, include={"object_type", "mbox"})


class EventLogClient:
    """Async xAPI client with retry, paging and error mapping."""

    def __init__(
        self,
        *,
        endpoint: str,
        username: str = "",
        password: str = "",
        version: str = "1.0.3",
        timeout_s: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 0.5,
        page_size: int = 500,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint if endpoint.endswith("/") else endpoint + "/"
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.page_size = page_size
        auth = httpx.BasicAuth(username, password) if username else None
        self._http = httpx.AsyncClient(
            base_url=self._endpoint,
            auth=auth,
            timeout=timeout_s,
            transport=transport,
            headers={"X-Experience-API-Version": version},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "EventLogClient":
        return cls(
            endpoint=settings.LRS_ENDPOINT,
            username=settings.LRS_USERNAME,
            password=settings.LRS_PASSWORD,
            version=settings.LRS_VERSION,
            timeout_s=settings.LRS_TIMEOUT_S,
            max_retries=settings.LRS_MAX_RETRIES,
            base_delay=settings.LRS_BACKOFF_BASE_S,
            page_size=settings.LRS_PAGE_SIZE,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "EventLogClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def append(self, statement: Statement) -> str:
        """Append one statement; returns its id.

        Uses PUT with the statement id so an at-least-once retry with the same
        id does not create a duplicate ledger entry.
        """
        stamped = self._stamp(statement)
        await self._request(
            "PUT",
            "statements",
            params={"statementId": stamped.id},
            json=stamped.to_wire(),
        )
        logger.debug("statement_appended", statement_id=stamped.id, verb=stamped.verb.id)
        return stamped.id

    async def append_many(self, statements: Sequence[Statement]) -> list[str]:
        """Append a batch of statements in one request."""
        if not statements:
            return []
        stamped = [self._stamp(s) for s in statements]
        await self._request("POST", "statements", json=[s.to_wire() for s in stamped])
        return [s.id for s in stamped]

    async def query(self, query: StatementQuery) -> AsyncIterator[Statement]:
        """Yield statements matching ``query``, newest first unless ascending.

        Lazy, finite and non-restartable: pages are fetched as the caller
        iterates and iteration stops after ``query.limit`` statements. The
        ``[since, until)`` window is re-applied to ``timestamp`` client-side.
        """
        remaining = query.limit
        params: dict[str, str] | None = self._query_params(query, min(remaining, self.page_size))
        url: str = "statements"

        while remaining > 0:
            resp = await self._request("GET", url, params=params)
            body = resp.json()
            for raw in body.get("statements", []):
                statement = Statement.model_validate(raw)
                if not self._in_window(statement, query):
                    continue
                yield statement
                remaining -= 1
                if remaining == 0:
                    return
            more = body.get("more") or ""
            if not more:
                return
            url = urljoin(self._endpoint, more)
            params = None

    async def collect(self, query: StatementQuery) -> list[Statement]:
        """Materialise ``query`` into a list."""
        return [s async for s in self.query(query)]

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    async def get_blob(
        self,
        agent: str,
        namespace: BlobNamespace,
        key: str,
        *,
        activity_id: str | None = None,
    ) -> Blob:
        """Read a blob. Raises NotFoundError when absent."""
        path, params = self._blob_address(agent, namespace, key, activity_id)
        resp = await self._request("GET", path, params=params)
        return Blob(content=resp.content, etag=resp.headers.get("ETag"))

    async def put_blob(
        self,
        agent: str,
        namespace: BlobNamespace,
        key: str,
        content: bytes,
        *,
        activity_id: str | None = None,
        if_match: str | None = None,
    ) -> None:
        """Overwrite a blob.

        Unconditional unless ``if_match`` carries the ETag of a previous read,
        in which case a concurrent write in between raises ConflictError.
        """
        path, params = self._blob_address(agent, namespace, key, activity_id)
        headers = {"Content-Type": _JSON}
        if if_match is not None:
            headers["If-Match"] = if_match
        await self._request("PUT", path, params=params, content=content, headers=headers)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def check_connectivity(self) -> dict:
        """GET ``about``; raises UpstreamError when the LRS is unreachable."""
        resp = await self._request("GET", "about")
        return resp.json()

    async def health_check(self) -> dict:
        try:
            about = await self.check_connectivity()
        except UpstreamError as exc:
            return {"status": "unhealthy", "error": exc.message, "timestamp": _iso(utc_now())}
        return {"status": "healthy", "version": about.get("version"), "timestamp": _iso(utc_now())}

    # ------------------------------------------------------------------
    # Retry / backoff
    # ------------------------------------------------------------------

    def compute_backoff_delays(self) -> list[float]:
        """Exponential backoff delays for retries."""
        return [self.base_delay * (2**i) for i in range(self.max_retries)]

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        delays = self.compute_backoff_delays()
        attempt = 0
        while True:
            try:
                resp = await self._http.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt < len(delays):
                    logger.warning(
                        "lrs_transport_retry", method=method, url=str(url),
                        attempt=attempt + 1, error=str(exc),
                    )
                    await asyncio.sleep(delays[attempt])
                    attempt += 1
                    continue
                logger.error("lrs_unreachable", method=method, url=str(url), error=str(exc))
                raise UpstreamError(f"LRS unreachable: {exc}", method=method, url=url) from exc

            if resp.status_code in _RETRYABLE_STATUS and attempt < len(delays):
                logger.warning(
                    "lrs_status_retry", method=method, url=str(url),
                    status=resp.status_code, attempt=attempt + 1,
                )
                await asyncio.sleep(delays[attempt])
                attempt += 1
                continue
            return self._check(resp, method, url)

    @staticmethod
    def _check(resp: httpx.Response, method: str, url: str) -> httpx.Response:
        status = resp.status_code
        if status < 400:
            return resp
        detail = resp.text[:500]
        if status == 400:
            raise ValidationError(f"LRS rejected request: {detail}", method=method, url=url)
        if status == 404:
            raise NotFoundError(f"LRS resource not found: {url}", method=method, url=url)
        if status in (409, 412):
            raise ConflictError(f"LRS write conflict ({status}): {detail}", method=method, url=url)
        if status in (401, 403):
            raise UpstreamError(
                f"LRS authentication failed ({status})",
                upstream_status=status, retryable=False, method=method, url=url,
            )
        logger.error("lrs_request_failed", method=method, url=str(url), status=status)
        raise UpstreamError(
            f"LRS request failed ({status}): {detail}",
            upstream_status=status, method=method, url=url,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _stamp(statement: Statement) -> Statement:
        updates: dict = {}
        if not statement.id:
            updates["id"] = new_entity_id()
        if statement.timestamp is None:
            updates["timestamp"] = utc_now()
        return statement.model_copy(update=updates) if updates else statement

    @staticmethod
    def _query_params(query: StatementQuery, page_limit: int) -> dict[str, str]:
        params: dict[str, str] = {
            "limit": str(page_limit),
            "ascending": "true" if query.ascending else "false",
            "format": "exact",
        }
        if query.agent:
            params["agent"] = _agent_param(query.agent)
        if query.verb:
            params["verb"] = query.verb
        if query.activity:
            params["activity"] = query.activity
        if query.since is not None:
            params["since"] = _iso(query.since)
        if query.until is not None:
            params["until"] = _iso(query.until)
        if query.related_activities:
            params["related_activities"] = "true"
        if query.related_agents:
            params["related_agents"] = "true"
        return params

    @staticmethod
    def _in_window(statement: Statement, query: StatementQuery) -> bool:
        ts = statement.timestamp
        if ts is None:
            return query.since is None and query.until is None
        if query.since is not None and ts < ensure_utc(query.since):
            return False
        if query.until is not None and ts >= ensure_utc(query.until):
            return False
        return True

    @staticmethod
    def _blob_address(
        agent: str,
        namespace: BlobNamespace,
        key: str,
        activity_id: str | None,
    ) -> tuple[str, dict[str, str]]:
        if namespace == BlobNamespace.AGENT_PROFILE:
            return "agents/profile", {"agent": _agent_param(agent), "profileId": key}
        if activity_id is None:
            raise ValidationError("activity-state blobs need an activity_id", key=key)
        return "activities/state", {
            "agent": _agent_param(agent),
            "activityId": activity_id,
            "stateId": key,
        }
