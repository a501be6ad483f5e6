"""In-memory LRS serving the xAPI subset used by EventLogClient.

Wired in through ``httpx.MockTransport`` so the client's real request/response
handling (paging, ETags, status mapping) is exercised. For tests and local
development; production points EventLogClient at a real LRS.
"""

from __future__ import annotations

import hashlib
import json
import threading
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx

from src.models.common import mbox_from_email, new_entity_id

_SERVER_MAX_PAGE = 1000


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_response(status: int, payload: object, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=payload, headers=headers)


def _comparable(raw: dict) -> dict:
    return {k: v for k, v in raw.items() if k != "stored"}


class InMemoryLRS:
    """Statements plus keyed documents, all held in process memory."""

    def __init__(self) -> None:
        self._statements: list[dict] = []
        self._by_id: dict[str, dict] = {}
        self._documents: dict[tuple[str, str, str | None, str], bytes] = {}
        self._lock = threading.Lock()
        self._scripted_failures: list[int] = []
        self.requests: list[httpx.Request] = []

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail_next(self, *statuses: int) -> None:
        """Answer the next requests with these status codes, in order."""
        with self._lock:
            self._scripted_failures.extend(statuses)

    @property
    def statement_count(self) -> int:
        with self._lock:
            return len(self._statements)

    def raw_statements(self) -> list[dict]:
        with self._lock:
            return [dict(s) for s in self._statements]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        with self._lock:
            if self._scripted_failures:
                return httpx.Response(self._scripted_failures.pop(0), text="scripted failure")

        path = request.url.path.rstrip("/")
        if path.endswith("/about"):
            return _json_response(200, {"version": ["1.0.3"]})
        if path.endswith("/statements"):
            return self._statements_resource(request)
        if path.endswith("/agents/profile"):
            return self._document_resource(request, "agent-profile")
        if path.endswith("/activities/state"):
            return self._document_resource(request, "activity-state")
        return httpx.Response(404, text=f"unknown resource {path}")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _statements_resource(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return self._get_statements(request)
        if request.method == "PUT":
            statement_id = request.url.params.get("statementId")
            if not statement_id:
                return httpx.Response(400, text="statementId required")
            raw = json.loads(request.content)
            raw["id"] = statement_id
            return self._store_statements([raw], status=204)
        if request.method == "POST":
            body = json.loads(request.content)
            batch = body if isinstance(body, list) else [body]
            return self._store_statements(batch, status=200)
        return httpx.Response(405)

    def _store_statements(self, batch: list[dict], *, status: int) -> httpx.Response:
        stored_at = datetime.now(tz=timezone.utc).isoformat()
        ids: list[str] = []
        with self._lock:
            for raw in batch:
                raw.setdefault("id", new_entity_id())
                existing = self._by_id.get(raw["id"])
                if existing is not None:
                    if _comparable(existing) != _comparable(raw):
                        return httpx.Response(409, text=f"statement {raw['id']} conflicts")
                    ids.append(raw["id"])
                    continue
                raw.setdefault("timestamp", stored_at)
                raw["stored"] = stored_at
                self._statements.append(raw)
                self._by_id[raw["id"]] = raw
                ids.append(raw["id"])
        if status == 204:
            return httpx.Response(204)
        return _json_response(200, ids)

    def _get_statements(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        statement_id = params.get("statementId")
        if statement_id:
            with self._lock:
                found = self._by_id.get(statement_id)
            return _json_response(200, found) if found else httpx.Response(404)

        agent_mbox = None
        if params.get("agent"):
            agent_mbox = mbox_from_email(json.loads(params["agent"])["mbox"])
        verb = params.get("verb")
        activity = params.get("activity")
        since = _parse_ts(params.get("since"))
        until = _parse_ts(params.get("until"))
        related_agents = params.get("related_agents") == "true"
        related_activities = params.get("related_activities") == "true"
        ascending = params.get("ascending") == "true"
        limit = int(params.get("limit") or 0) or _SERVER_MAX_PAGE
        limit = min(limit, _SERVER_MAX_PAGE)
        cursor = int(params.get("cursor") or 0)

        with self._lock:
            indexed = list(enumerate(self._statements))

        matches = []
        for position, raw in indexed:
            if agent_mbox and agent_mbox not in self._agents_of(raw, related_agents):
                continue
            if verb and raw["verb"]["id"] != verb:
                continue
            if activity and activity not in self._activities_of(raw, related_activities):
                continue
            ts = _parse_ts(raw.get("timestamp"))
            if since is not None and (ts is None or ts < since):
                continue
            if until is not None and (ts is None or ts > until):
                continue
            matches.append((ts, position, raw))

        matches.sort(key=lambda m: (m[0], m[1]), reverse=not ascending)
        page = [raw for _, _, raw in matches[cursor:cursor + limit]]

        more = ""
        if cursor + limit < len(matches):
            next_params = {k: v for k, v in params.items() if k != "cursor"}
            next_params["cursor"] = str(cursor + limit)
            more = f"{request.url.path}?{urlencode(next_params)}"
        return _json_response(200, {"statements": page, "more": more})

    @staticmethod
    def _agents_of(raw: dict, related: bool) -> set[str]:
        agents = {raw["actor"].get("mbox")}
        if related:
            context = raw.get("context") or {}
            agents.update(m.get("mbox") for m in context.get("team") or [])
            if context.get("instructor"):
                agents.add(context["instructor"].get("mbox"))
        return agents

    @staticmethod
    def _activities_of(raw: dict, related: bool) -> set[str]:
        activities = {raw["object"]["id"]}
        if related:
            ctx_acts = (raw.get("context") or {}).get("contextActivities") or {}
            for kind in ("parent", "grouping", "category", "other"):
                activities.update(a["id"] for a in ctx_acts.get(kind) or [])
        return activities

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _document_resource(self, request: httpx.Request, namespace: str) -> httpx.Response:
        params = request.url.params
        if "agent" not in params:
            return httpx.Response(400, text="agent required")
        mbox = mbox_from_email(json.loads(params["agent"])["mbox"])
        if namespace == "agent-profile":
            key = (namespace, mbox, None, params.get("profileId", ""))
        else:
            key = (namespace, mbox, params.get("activityId"), params.get("stateId", ""))
        if not key[3]:
            return httpx.Response(400, text="document id required")

        with self._lock:
            current = self._documents.get(key)
            if request.method == "GET":
                if current is None:
                    return httpx.Response(404)
                return httpx.Response(
                    200,
                    content=current,
                    headers={"Content-Type": "application/json", "ETag": self._etag(current)},
                )
            if request.method == "PUT":
                if_match = request.headers.get("If-Match")
                if if_match is not None and (current is None or self._etag(current) != if_match):
                    return httpx.Response(412, text="ETag mismatch")
                if request.headers.get("If-None-Match") == "*" and current is not None:
                    return httpx.Response(412, text="document exists")
                self._documents[key] = bytes(request.content)
                return httpx.Response(204)
        return httpx.Response(405)

    @staticmethod
    def _etag(content: bytes) -> str:
        return '"' + hashlib.sha1(content).hexdigest() + '"'
