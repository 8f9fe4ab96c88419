import json
import sys

import httpx
import pytest

# Ensure project root is importable (so `import hca` / `import cli` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from hca.branding import BoardSettings, BrandingConfig, Credentials, EntryTile  # noqa: E402
from hca.docker_ops import RuntimeUnavailable  # noqa: E402
from hca.homarr import HomarrClient  # noqa: E402
from hca.state import StateStore  # noqa: E402


def _trpc_error(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(
        status,
        json={"error": {"json": {"message": message, "code": -32000, "data": {"code": code, "httpStatus": status}}}},
    )


class FakeHomarr:
    """In-memory Homarr speaking just enough tRPC for the adapter."""

    def __init__(self, steps=("start", "user", "settings", "finish")):
        self.steps = list(steps)
        self.step_index = 0
        self.calls: list[str] = []
        self.users: list[dict] = []
        self.server_settings: dict | None = None
        self.boards: dict[str, dict] = {}
        self.apps: list[dict] = []
        self.home_board: str | None = None
        self.color_scheme: str | None = None
        self.logins: list[dict] = []
        self.password = None
        # procedure -> (status, trpc code)
        self.fail: dict[str, tuple[int, str]] = {}
        # app names app.create rejects with a server error
        self.reject_apps: set[str] = set()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, procedure: str) -> int:
        return self.calls.count(procedure)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/auth/csrf":
            self.calls.append("auth.csrf")
            return httpx.Response(200, json={"csrfToken": "csrf-123"})
        if path == "/api/auth/callback/credentials":
            self.calls.append("auth.credentials")
            form = dict(httpx.QueryParams(request.content.decode()))
            self.logins.append(form)
            wrong_password = self.password is not None and form.get("password") != self.password
            if "auth.credentials" in self.fail or wrong_password:
                return httpx.Response(401, text="CredentialsSignin")
            return httpx.Response(302, headers={"location": "/"})

        procedure = path[len("/api/trpc/"):]
        self.calls.append(procedure)
        if procedure in self.fail:
            status, code = self.fail[procedure]
            return _trpc_error(status, code, f"{procedure} failed")

        if request.method == "GET":
            raw = request.url.params.get("input")
            payload = json.loads(raw)["json"] if raw else None
        else:
            payload = json.loads(request.content)["json"]

        result = getattr(self, "_" + procedure.replace(".", "_"))(payload)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"result": {"data": {"json": result}}})

    def _advance(self):
        self.step_index = min(self.step_index + 1, len(self.steps) - 1)

    def _onboard_currentStep(self, payload):
        prev = self.steps[self.step_index - 1] if self.step_index else None
        return {"current": self.steps[self.step_index], "previous": prev}

    def _onboard_nextStep(self, payload):
        self._advance()
        return None

    def _user_initUser(self, payload):
        self.users.append(payload)
        self.password = payload["password"]
        self._advance()
        return None

    def _serverSettings_initSettings(self, payload):
        self.server_settings = payload
        self._advance()
        return None

    def _board_getBoardByName(self, payload):
        board = self.boards.get(payload["name"])
        if board is None:
            return _trpc_error(404, "NOT_FOUND", "Board not found")
        return board

    def _board_createBoard(self, payload):
        board_id = f"board-{len(self.boards) + 1}"
        self.boards[payload["name"]] = {
            "id": board_id,
            "name": payload["name"],
            "sections": [{"id": "section-1", "kind": "empty", "yOffset": 0, "xOffset": 0}],
            "layouts": [{"id": "layout-1", "name": "Base", "columnCount": payload["columnCount"], "breakpoint": 0}],
            "items": [],
            "integrations": [],
        }
        return {"boardId": board_id}

    def _app_all(self, payload):
        return [dict(app) for app in self.apps]

    def _app_create(self, payload):
        if payload["name"] in self.reject_apps:
            return _trpc_error(500, "INTERNAL_SERVER_ERROR", "database is locked")
        app_id = f"app-{len(self.apps) + 1}"
        self.apps.append(dict(payload, id=app_id))
        return {"appId": app_id, "id": app_id}

    def _board_saveBoard(self, payload):
        for board in self.boards.values():
            if board["id"] == payload["id"]:
                board["sections"] = payload["sections"]
                board["items"] = payload["items"]
                return None
        return _trpc_error(404, "NOT_FOUND", "Board not found")

    def _board_setHomeBoard(self, payload):
        self.home_board = payload["id"]
        return None

    def _user_changeColorScheme(self, payload):
        self.color_scheme = payload["colorScheme"]
        return None


class FakeSource:
    """Container source over a dict of running containers and a fixed event list."""

    def __init__(self):
        self.containers: dict[str, dict[str, str]] = {}
        self.events: list = []
        self.unavailable = False
        self.closed = False
        self.list_calls = 0

    def list_eligible(self):
        self.list_calls += 1
        if self.unavailable:
            raise RuntimeUnavailable("Failed to list containers: connection refused")
        return [(cid, dict(labels)) for cid, labels in self.containers.items()]

    def watch(self):
        for event in list(self.events):
            yield event

    def close(self):
        self.closed = True


@pytest.fixture
def fake_homarr():
    return FakeHomarr()


@pytest.fixture
def homarr_client(fake_homarr):
    client = HomarrClient("http://homarr.test", timeout_s=5, transport=fake_homarr.transport())
    yield client
    client.close()


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def branding():
    return BrandingConfig(
        credentials=Credentials(admin_username="admin", admin_password="halos-secret"),
        board=BoardSettings(
            name="HaLOS",
            column_count=12,
            cockpit=EntryTile(
                enabled=True,
                name="Cockpit",
                description="System administration",
                icon_url="https://cdn.example/cockpit.svg",
                href="https://halos.local:9090",
                width=2,
                height=1,
            ),
        ),
    )


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state.json"))
