"""
Root conftest.py for the notes webapp tests.

This file contains shared fixtures and pytest configuration that applies to
all test modules, including ``FakeBackend``: an in-memory stand-in for the
hosted REST + auth service, served through ``httpx.MockTransport``.
"""

import json
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

# Ensure the webapp root is in the path
webapp_root = Path(__file__).parent.parent
if str(webapp_root) not in sys.path:
    sys.path.insert(0, str(webapp_root))

from api.app_config import BackendSettings
from api.autosave import NoteField
from api.backend import BackendClient
from api.gateway import DataGateway

BACKEND_URL = "http://backend.test"
ANON_KEY = "anon-key"
USER_EMAIL = "ada@example.com"
USER_PASSWORD = "correct horse"

# short debounce so API tests do not crawl
FAST_DELAYS = {NoteField.TITLE: 0.05, NoteField.BODY: 0.1}


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )
    config.addinivalue_line(
        "markers",
        "api: mark test as going through the HTTP API",
    )


def pytest_collection_modifyitems(config, items):
    """
    Automatically mark tests based on their location or name.

    - Tests in test_api.py are marked with 'api'
    - Tests with 'websocket' in name are marked with 'websocket'
    """
    for item in items:
        if item.path.name == "test_api.py":
            item.add_marker(pytest.mark.api)

        if "websocket" in item.name.lower():
            item.add_marker(pytest.mark.websocket)


# ============================================================================
# Fake hosted backend
# ============================================================================


class FakeBackend:
    """In-memory PostgREST tables and GoTrue auth.

    Understands the subset of the query syntax the gateway emits: ``select``
    with ``notes(count)`` / ``links(count)`` / ``tag:tags(*)`` embeds,
    ``col=eq.value`` and ``col=is.null`` filters, ``order`` and ``limit``.

    Attributes:
        tables: table name -> list of row dicts.
        requests: (method, path, params) of every request received.
        fail_patch_ids: row ids whose PATCH answers 500.
        fail_next: (method, table) -> status for the next matching request.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "projects": [],
            "notes": [],
            "links": [],
            "tags": [],
        }
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.requests: List[Tuple[str, str, Dict[str, str]]] = []
        self.fail_patch_ids: set = set()
        self.fail_next: Dict[Tuple[str, str], int] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.transport = httpx.MockTransport(self.handle)

    # ------------------------------------------------------------ helpers

    def add_user(self, email: str, password: str, **metadata: Any) -> Dict[str, Any]:
        user = {"id": str(uuid.uuid4()), "email": email, "user_metadata": metadata}
        self.users[email] = {"password": password, "user": user}
        return user

    def _now(self) -> str:
        # strictly increasing so "most recently modified" is deterministic
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def count_requests(self, method: str, table: str) -> int:
        return sum(1 for m, path, _ in self.requests if m == method and path == f"/rest/v1/{table}")

    def _issue_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        access = uuid.uuid4().hex
        refresh = uuid.uuid4().hex
        self.tokens[access] = user["id"]
        self.refresh_tokens[refresh] = user["id"]
        return {
            "access_token": access,
            "refresh_token": refresh,
            "token_type": "bearer",
            "expires_in": 3600,
            "user": user,
        }

    def _user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        for record in self.users.values():
            if record["user"]["id"] == user_id:
                return record["user"]
        return None

    def _token_user(self, request: httpx.Request) -> Optional[str]:
        header = request.headers.get("authorization", "")
        token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        return self.tokens.get(token)

    # ------------------------------------------------------------ dispatch

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params.multi_items())
        self.requests.append((request.method, path, params))

        if path.startswith("/auth/v1/"):
            return self._handle_auth(request, path[len("/auth/v1/"):], params)
        if path.startswith("/rest/v1/"):
            table = path[len("/rest/v1/"):]
            status = self.fail_next.pop((request.method, table), None)
            if status is not None:
                return httpx.Response(status, json={"message": f"injected failure on {table}", "code": "XX000"})
            user_id = self._token_user(request)
            if user_id is None:
                return httpx.Response(401, json={"message": "JWT expired", "code": "PGRST301"})
            return self._handle_rest(request, table, params, user_id)
        return httpx.Response(404, json={"message": "not found"})

    def _handle_auth(self, request: httpx.Request, endpoint: str, params: Dict[str, str]) -> httpx.Response:
        if endpoint == "token":
            payload = json.loads(request.content or b"{}")
            if params.get("grant_type") == "password":
                record = self.users.get(payload.get("email"))
                if record is None or record["password"] != payload.get("password"):
                    return httpx.Response(
                        400,
                        json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
                    )
                return httpx.Response(200, json=self._issue_session(record["user"]))
            if params.get("grant_type") == "refresh_token":
                user_id = self.refresh_tokens.pop(payload.get("refresh_token"), None)
                if user_id is None:
                    return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid Refresh Token"})
                return httpx.Response(200, json=self._issue_session(self._user_by_id(user_id)))
            return httpx.Response(400, json={"error": "unsupported_grant_type"})

        if endpoint == "user":
            user_id = self._token_user(request)
            if user_id is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=self._user_by_id(user_id))

        if endpoint == "logout":
            header = request.headers.get("authorization", "")
            self.tokens.pop(header[len("Bearer "):], None)
            return httpx.Response(204)

        return httpx.Response(404, json={"message": "not found"})

    # ------------------------------------------------------------ tables

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Dict[str, str]) -> bool:
        for column, expr in filters.items():
            value = row.get(column)
            if expr == "is.null":
                if value is not None:
                    return False
            elif expr.startswith("eq."):
                expected = expr[3:]
                actual = str(value).lower() if isinstance(value, bool) else str(value)
                if value is None or actual != expected:
                    return False
        return True

    @staticmethod
    def _order(rows: List[Dict[str, Any]], order: Optional[str]) -> List[Dict[str, Any]]:
        if not order:
            return rows
        for part in reversed(order.split(",")):
            column, _, direction = part.partition(".")
            descending = direction == "desc"
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=descending)
            # nulls last ascending, first descending
            rows = missing + present if descending else present + missing
        return rows

    def _project(self, row: Dict[str, Any], select: str) -> Dict[str, Any]:
        parts = [p.strip() for p in select.split(",") if p.strip()] or ["*"]
        out: Dict[str, Any] = {}
        for part in parts:
            if part == "*":
                out.update(row)
            elif part in ("notes(count)", "links(count)"):
                child = part.split("(")[0]
                count = sum(1 for r in self.tables[child] if r["project_id"] == row["id"])
                out[child] = [{"count": count}]
            elif part == "tag:tags(*)":
                tag = next((t for t in self.tables["tags"] if t["id"] == row.get("tag_id")), None)
                out["tag"] = dict(tag) if tag else None
            else:
                out[part] = row.get(part)
        return out

    def _handle_rest(self, request: httpx.Request, table: str, params: Dict[str, str], user_id: str) -> httpx.Response:
        if table not in self.tables:
            return httpx.Response(404, json={"message": f"relation {table} does not exist", "code": "42P01"})

        select = params.pop("select", "*")
        order = params.pop("order", None)
        limit = params.pop("limit", None)
        filters = params
        rows = [r for r in self.tables[table] if r["user_id"] == user_id and self._matches(r, filters)]

        if request.method == "GET":
            rows = self._order(rows, order)
            if limit is not None:
                rows = rows[: int(limit)]
            return httpx.Response(200, json=[self._project(r, select) for r in rows])

        if request.method == "HEAD":
            total = len(rows)
            content_range = f"0-{total - 1}/{total}" if total else "*/0"
            return httpx.Response(200, headers={"content-range": content_range})

        payload = json.loads(request.content or b"null")

        if request.method == "POST":
            row = self._insert(table, payload, user_id)
            return httpx.Response(201, json=[self._project(row, select)])

        if request.method == "PATCH":
            if any(r["id"] in self.fail_patch_ids for r in rows):
                return httpx.Response(500, json={"message": "injected patch failure"})
            for r in rows:
                r.update(payload)
                r["updated_at"] = self._now()
                self._touch_project(table, r)
            return httpx.Response(200, json=[self._project(r, select) for r in rows])

        if request.method == "DELETE":
            ids = {r["id"] for r in rows}
            self.tables[table] = [r for r in self.tables[table] if r["id"] not in ids]
            if table == "projects":
                for child in ("notes", "links"):
                    self.tables[child] = [r for r in self.tables[child] if r["project_id"] not in ids]
            return httpx.Response(204)

        return httpx.Response(405, json={"message": "method not allowed"})

    def _touch_project(self, table: str, row: Dict[str, Any]) -> None:
        now = row["updated_at"]
        if table == "projects":
            row["last_modified"] = now
            return
        if table in ("notes", "links"):
            for project in self.tables["projects"]:
                if project["id"] == row["project_id"]:
                    project["last_modified"] = now

    def _insert(self, table: str, payload: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        now = self._now()
        defaults: Dict[str, Any] = {
            "projects": {"description": None, "is_starred": False, "last_modified": now},
            "notes": {"title": None, "encrypted_content": "", "order_index": 0},
            "links": {
                "title": None,
                "description": None,
                "favicon_url": None,
                "preview_image_url": None,
                "tag_id": None,
                "order_index": 0,
            },
            "tags": {},
        }[table]
        row = {
            **defaults,
            **payload,
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "created_at": now,
            "updated_at": now,
        }
        self.tables[table].append(row)
        self._touch_project(table, row)
        return row

    # ------------------------------------------------------------ seeding

    def seed(self, table: str, user_id: str, **values: Any) -> Dict[str, Any]:
        """Insert a row directly, bypassing the HTTP layer."""
        return self._insert(table, values, user_id)


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def fake_backend() -> FakeBackend:
    backend = FakeBackend()
    backend.add_user(USER_EMAIL, USER_PASSWORD, full_name="Ada Lovelace")
    return backend


@pytest.fixture
def user_id(fake_backend) -> str:
    return fake_backend.users[USER_EMAIL]["user"]["id"]


@pytest.fixture
def settings() -> BackendSettings:
    return BackendSettings(url=BACKEND_URL, anon_key=ANON_KEY)


@pytest_asyncio.fixture
async def backend_client(fake_backend, settings):
    """A backend client signed in as the test user."""
    client = BackendClient(settings, transport=fake_backend.transport)
    await client.sign_in_with_password(USER_EMAIL, USER_PASSWORD)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def gateway(backend_client) -> DataGateway:
    return DataGateway(backend_client)


@pytest.fixture
def config_dir(tmp_path: Path):
    """Point the persisted app settings at a temporary folder."""
    config_dir = tmp_path / "app_config"
    config_dir.mkdir()
    old_env = os.environ.get("EXP02_CONFIG")
    os.environ["EXP02_CONFIG"] = str(config_dir)
    try:
        from api.app_config import app_config
        app_config.__init__()
        yield config_dir
    finally:
        if old_env is None:
            os.environ.pop("EXP02_CONFIG", None)
        else:
            os.environ["EXP02_CONFIG"] = old_env
