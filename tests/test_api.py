"""
HTTP API tests through FastAPI's TestClient against the in-memory backend.

Run tests:
    pytest tests/test_api.py -v
"""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api.context import SessionRegistry
from api.system import clear_error_log

from conftest import FAST_DELAYS, USER_EMAIL, USER_PASSWORD

# longer than the slowest debounce in FAST_DELAYS
SETTLE = 0.5


@pytest.fixture
def client(fake_backend, settings, config_dir):
    """Test client whose sessions talk to the fake backend."""
    from main import app

    previous = app.state.registry
    app.state.registry = SessionRegistry(settings, transport=fake_backend.transport, autosave_delays=FAST_DELAYS)
    clear_error_log()
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.state.registry = previous


@pytest.fixture
def signed_in(client):
    response = client.post("/api/auth/sign-in", json={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert response.status_code == 200
    return response.json()


def create_project(client, name="Research", **extra):
    response = client.post("/api/projects", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def current_and_editor(client, index=None):
    """Current note (optionally selecting ``index`` first); the editor must be bound to it."""
    if index is not None:
        client.put("/api/notes/current", json={"index": index})
    current = client.get("/api/notes/current").json()
    assert current["note"]["id"] == current["editor"]["note_id"]
    return current


class TestSystem:
    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "healthy"

    def test_status_masks_key(self, client, signed_in):
        status = client.get("/api/system/status").json()["status"]
        assert status["backend"]["anon_key"] == "***"
        assert status["backend_configured"] is True
        assert status["sessions"] == 1


class TestAuth:
    def test_routes_need_a_session(self, client):
        response = client.get("/api/projects")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "not_authenticated"

    def test_wrong_password(self, client):
        response = client.post("/api/auth/sign-in", json={"email": USER_EMAIL, "password": "nope"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid login credentials"
        assert len(client.app.state.registry) == 0

    def test_profile(self, client, signed_in):
        assert signed_in["user"]["display_name"] == "Ada Lovelace"
        me = client.get("/api/auth/me").json()
        assert me["email"] == USER_EMAIL

    def test_oauth_url_and_callback(self, client, fake_backend):
        response = client.get("/api/auth/oauth/google", params={"redirect_to": "http://app.test/"})
        assert response.status_code == 200
        assert "provider=google" in response.json()["url"]

        # tokens the provider redirect would hand back
        tokens = fake_backend._issue_session(fake_backend.users[USER_EMAIL]["user"])
        response = client.post(
            "/api/auth/callback",
            json={"access_token": tokens["access_token"], "refresh_token": tokens["refresh_token"]},
        )
        assert response.status_code == 200
        assert client.get("/api/auth/me").json()["email"] == USER_EMAIL

    def test_sign_out(self, client, signed_in):
        assert client.post("/api/auth/sign-out").json() == {"success": True}
        assert client.get("/api/auth/me").status_code == 401
        assert len(client.app.state.registry) == 0


class TestProjects:
    def test_create_list_search(self, client, signed_in):
        create_project(client, "Research", description="papers")
        create_project(client, "Garden")

        listing = client.get("/api/projects").json()
        assert listing["total"] == 2
        assert {p["name"] for p in listing["unstarred"]} == {"Research", "Garden"}

        filtered = client.get("/api/projects", params={"search": "PAPER"}).json()
        assert [p["name"] for p in filtered["projects"]] == ["Research"]
        assert filtered["search"] == "PAPER"

    def test_star_and_update(self, client, signed_in):
        project = create_project(client)
        starred = client.post(f"/api/projects/{project['id']}/star").json()
        assert starred["is_starred"] is True

        listing = client.get("/api/projects").json()
        assert [p["id"] for p in listing["starred"]] == [project["id"]]

        renamed = client.patch(f"/api/projects/{project['id']}", json={"name": "Renamed"}).json()
        assert renamed["name"] == "Renamed"
        assert client.get(f"/api/projects/{project['id']}").json()["name"] == "Renamed"

    def test_validation_and_not_found(self, client, signed_in):
        assert client.post("/api/projects", json={"name": "   "}).status_code == 422
        assert client.get("/api/projects/missing").status_code == 404
        assert client.patch("/api/projects/missing", json={"name": "x"}).status_code == 404

    def test_delete_needs_confirmation(self, client, signed_in):
        project = create_project(client)
        response = client.delete(f"/api/projects/{project['id']}")
        assert response.status_code == 409

        response = client.delete(f"/api/projects/{project['id']}", params={"confirm": True})
        assert response.status_code == 200
        assert client.get("/api/projects").json()["total"] == 0


class TestNotes:
    def test_draft_is_autosaved(self, client, signed_in):
        project = create_project(client)
        opened = client.post(f"/api/projects/{project['id']}/open").json()
        assert opened["notes"] == []

        note = client.post(f"/api/projects/{project['id']}/notes").json()
        assert note["title"] == "Note 1"
        current = client.get("/api/notes/current").json()
        assert current["note"]["id"] == note["id"]

        edit = client.post("/api/notes/current/edit", json={"field": "body", "value": "draft"}).json()
        assert edit["scheduled"] is True
        assert edit["editor"]["pending"]["body"] is True

        time.sleep(SETTLE)
        notes = client.get(f"/api/projects/{project['id']}/notes").json()["notes"]
        assert [n["body"] for n in notes] == ["draft"]

    def test_select_clamps_index(self, client, signed_in):
        project = create_project(client)
        client.post(f"/api/projects/{project['id']}/open")
        for _ in range(2):
            client.post(f"/api/projects/{project['id']}/notes")

        selected = client.put("/api/notes/current", json={"index": 9}).json()
        assert selected["index"] == 1
        assert selected["note"]["title"] == "Note 2"

    def test_edit_needs_selected_note(self, client, signed_in):
        response = client.post("/api/notes/current/edit", json={"field": "title", "value": "x"})
        assert response.status_code == 409

    def test_partial_reorder_lists_failed_ids(self, client, signed_in, fake_backend):
        project = create_project(client)
        a = client.post(f"/api/projects/{project['id']}/notes").json()
        b = client.post(f"/api/projects/{project['id']}/notes").json()
        fake_backend.fail_patch_ids.add(b["id"])

        response = client.put(
            f"/api/projects/{project['id']}/notes/order",
            json=[{"id": a["id"], "order_index": 2}, {"id": b["id"], "order_index": 1}],
        )

        assert response.status_code == 502
        assert response.json()["error"]["failed_ids"] == [b["id"]]
        errors = client.get("/api/system/errors").json()["errors"]
        assert errors[0]["endpoint"].endswith("/notes/order")

    def test_delete_note(self, client, signed_in):
        project = create_project(client)
        note = client.post(f"/api/projects/{project['id']}/notes").json()
        assert client.delete(f"/api/notes/{note['id']}").status_code == 409
        assert client.delete(f"/api/notes/{note['id']}", params={"confirm": "true"}).status_code == 200
        assert client.get(f"/api/notes/{note['id']}").status_code == 404

    def test_editor_follows_note_after_earlier_delete(self, client, signed_in):
        project = create_project(client)
        client.post(f"/api/projects/{project['id']}/open")
        a, b, c = [client.post(f"/api/projects/{project['id']}/notes").json() for _ in range(3)]
        assert current_and_editor(client, index=1)["note"]["id"] == b["id"]

        client.delete(f"/api/notes/{a['id']}", params={"confirm": True})

        current = current_and_editor(client)
        assert current["note"]["id"] == c["id"]
        client.post("/api/notes/current/edit", json={"field": "title", "value": "Renamed"})
        time.sleep(SETTLE)
        assert client.get(f"/api/notes/{c['id']}").json()["title"] == "Renamed"
        assert client.get(f"/api/notes/{b['id']}").json()["title"] == "Note 2"

    def test_editor_follows_note_after_reorder(self, client, signed_in):
        project = create_project(client)
        client.post(f"/api/projects/{project['id']}/open")
        a, b, c = [client.post(f"/api/projects/{project['id']}/notes").json() for _ in range(3)]
        assert current_and_editor(client, index=0)["note"]["id"] == a["id"]

        response = client.put(
            f"/api/projects/{project['id']}/notes/order",
            json=[
                {"id": c["id"], "order_index": 1},
                {"id": a["id"], "order_index": 2},
                {"id": b["id"], "order_index": 3},
            ],
        )
        assert response.status_code == 200

        assert current_and_editor(client)["note"]["id"] == c["id"]
        assert current_and_editor(client, index=2)["note"]["id"] == b["id"]

    def test_reorder_rejects_notes_of_other_projects(self, client, signed_in):
        research = create_project(client, "Research")
        garden = create_project(client, "Garden")
        mine = client.post(f"/api/projects/{research['id']}/notes").json()
        other = client.post(f"/api/projects/{garden['id']}/notes").json()

        response = client.put(
            f"/api/projects/{research['id']}/notes/order",
            json=[{"id": mine["id"], "order_index": 2}, {"id": other["id"], "order_index": 1}],
        )

        assert response.status_code == 422
        assert response.json()["detail"]["ids"] == [other["id"]]
        assert client.get(f"/api/notes/{other['id']}").json()["order_index"] == 1


class TestLinksAndTags:
    def test_link_metadata_tag_filter_and_move(self, client, signed_in):
        research = create_project(client, "Research")
        garden = create_project(client, "Garden")
        tag = client.post("/api/tags", json={"name": "Docs", "color": "#00ffff"}).json()
        assert tag["color"] == "#00FFFF"

        link = client.post(
            f"/api/projects/{research['id']}/links",
            json={"url": "https://www.example.com/x", "tag_id": tag["id"]},
        ).json()
        assert link["title"] == "example.com"
        assert link["tag"]["name"] == "Docs"
        client.post(f"/api/projects/{research['id']}/links", json={"url": "https://b.test"})

        tagged = client.get(f"/api/projects/{research['id']}/links", params={"tag_id": tag["id"]}).json()
        assert [entry["id"] for entry in tagged["links"]] == [link["id"]]
        assert client.get(f"/api/tags/{tag['id']}/usage").json()["count"] == 1

        moved = client.patch(f"/api/links/{link['id']}", json={"project_id": garden["id"], "tag_id": None}).json()
        assert moved["project_id"] == garden["id"]
        assert moved["tag_id"] is None
        assert client.get(f"/api/projects/{research['id']}/links").json()["total"] == 1
        assert client.get(f"/api/projects/{garden['id']}/links").json()["total"] == 1

    def test_tag_palette_and_delete(self, client, signed_in):
        assert len(client.get("/api/tags/colors").json()["colors"]) == 10
        assert client.post("/api/tags", json={"name": "Bad", "color": "#123456"}).status_code == 422

        project = create_project(client)
        tag = client.post("/api/tags", json={"name": "Docs"}).json()
        client.post(f"/api/projects/{project['id']}/links", json={"url": "https://a.test", "tag_id": tag["id"]})

        assert client.delete(f"/api/tags/{tag['id']}", params={"confirm": True}).status_code == 200
        assert client.get("/api/tags").json()["tags"] == []
        links = client.get(f"/api/projects/{project['id']}/links").json()["links"]
        assert [entry["tag_id"] for entry in links] == [None]

    def test_link_reorder_is_scoped_to_project(self, client, signed_in):
        research = create_project(client, "Research")
        garden = create_project(client, "Garden")
        first = client.post(f"/api/projects/{research['id']}/links", json={"url": "https://a.test"}).json()
        second = client.post(f"/api/projects/{research['id']}/links", json={"url": "https://b.test"}).json()
        other = client.post(f"/api/projects/{garden['id']}/links", json={"url": "https://c.test"}).json()

        response = client.put(f"/api/projects/{garden['id']}/links/order", json=[{"id": first["id"], "order_index": 5}])
        assert response.status_code == 422
        assert response.json()["detail"]["ids"] == [first["id"]]

        response = client.put(
            f"/api/projects/{research['id']}/links/order",
            json=[{"id": second["id"], "order_index": 1}, {"id": first["id"], "order_index": 2}],
        )
        assert response.status_code == 200
        listing = client.get(f"/api/projects/{research['id']}/links").json()["links"]
        assert [entry["id"] for entry in listing] == [second["id"], first["id"]]
        assert client.get(f"/api/projects/{garden['id']}/links").json()["links"][0]["id"] == other["id"]

    def test_metadata_preview(self, client):
        preview = client.post("/api/links/metadata", json={"url": "https://docs.python.org/3/"}).json()
        assert preview["title"] == "docs.python.org"


class TestUiState:
    def test_mobile_panes(self, client, signed_in):
        panes = client.get("/api/ui/panes", params={"viewport_width": 400}).json()
        assert panes["viewport"] == "mobile"
        assert (panes["show_left"], panes["show_right"]) == (True, False)

        panes = client.post("/api/ui/panes/links", json={"viewport_width": 600}).json()
        assert panes["viewport"] == "tablet"
        assert (panes["show_left"], panes["show_right"]) == (False, True)

    def test_desktop_panes(self, client, signed_in):
        panes = client.post("/api/ui/panes/notes", json={"viewport_width": 1200}).json()
        assert (panes["show_left"], panes["show_right"]) == (False, True)
        panes = client.post("/api/ui/panes/links", json={"is_desktop": True}).json()
        assert panes["toggles"] == {"left": False, "right": False}
        assert (panes["show_left"], panes["show_right"]) == (True, True)

    def test_search_is_kept_in_state(self, client, signed_in):
        client.put("/api/ui/search", json={"query": "garden"})
        assert client.get("/api/ui/state").json()["search_query"] == "garden"

    def test_theme_defaults_from_browser_hint(self, client):
        response = client.get("/api/ui/theme", headers={"Sec-CH-Prefers-Color-Scheme": '"dark"'})
        assert response.json() == {"dark_mode": True}

        client.put("/api/ui/theme", json={"dark_mode": False})
        response = client.get("/api/ui/theme", headers={"Sec-CH-Prefers-Color-Scheme": "dark"})
        assert response.json() == {"dark_mode": False}


class TestWebSocket:
    def test_session_websocket_receives_query_events(self, client, signed_in):
        session_id = signed_in["session_id"]
        with client.websocket_connect(f"/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "connected"
            assert ws.receive_json()["type"] == "subscribed"

            create_project(client)
            message = ws.receive_json()
            assert message["type"].startswith("query_")
            assert message["channel"] == f"session:{session_id}"

    def test_unknown_session_websocket_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/session/bogus") as ws:
                ws.receive_json()

    def test_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping", "channel": "system"})
            assert ws.receive_json()["type"] == "pong"
