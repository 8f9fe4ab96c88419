from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TRPC_PREFIX = "/api/trpc"


class HomarrApiError(Exception):
    """A Homarr request failed or returned something we could not read."""

    def __init__(self, procedure: str, status_code: int | None, detail: str):
        super().__init__(f"{procedure} failed ({status_code if status_code is not None else 'no response'}): {detail}")
        self.procedure = procedure
        self.status_code = status_code
        self.detail = detail
        self.code = _trpc_error_code(detail)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 or self.code == "NOT_FOUND"

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409 or self.code == "CONFLICT"


def _trpc_error_code(detail: str) -> str | None:
    try:
        body = json.loads(detail)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    err = body.get("error")
    if isinstance(err, dict):
        err = err.get("json", err)
        data = err.get("data") if isinstance(err, dict) else None
        if isinstance(data, dict):
            return data.get("code")
    return None


@dataclass(frozen=True)
class OnboardingStep:
    current: str
    previous: str | None = None


class HomarrClient:
    """Thin wrapper over Homarr's tRPC and auth endpoints.

    One instance holds one session: the cookie jar of the underlying
    httpx.Client carries the login across calls.
    """

    def __init__(self, base_url: str, timeout_s: float = 30.0, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_s,
            follow_redirects=False,
            transport=transport,
        )
        self.logged_in = False

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "HomarrClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- transport -----------------------------------------------------

    def _send(self, procedure: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise HomarrApiError(procedure, None, f"{type(e).__name__}: {e}") from e
        logger.debug("%s %s -> %s", method, url, resp.status_code)
        return resp

    def _unwrap(self, procedure: str, resp: httpx.Response) -> Any:
        if not resp.is_success:
            if resp.status_code == 401:
                # Session expired; the next ensure_login() logs in again.
                self.logged_in = False
            raise HomarrApiError(procedure, resp.status_code, resp.text)
        try:
            body = resp.json()
        except ValueError as e:
            raise HomarrApiError(procedure, resp.status_code, f"Invalid JSON: {e}") from e
        try:
            return body["result"]["data"]["json"]
        except (KeyError, TypeError):
            # Mutations without a return value come back as {"result": {}}.
            if isinstance(body, dict) and "result" in body:
                return None
            raise HomarrApiError(procedure, resp.status_code, f"Unexpected payload: {body!r}")

    def query(self, procedure: str, payload: dict[str, Any] | None = None) -> Any:
        params = None
        if payload is not None:
            params = {"input": json.dumps({"json": payload}, separators=(",", ":"))}
        resp = self._send(procedure, "GET", f"{TRPC_PREFIX}/{procedure}", params=params)
        return self._unwrap(procedure, resp)

    def mutate(self, procedure: str, payload: dict[str, Any] | None = None) -> Any:
        resp = self._send(procedure, "POST", f"{TRPC_PREFIX}/{procedure}", json={"json": payload or {}})
        return self._unwrap(procedure, resp)

    # -- onboarding ----------------------------------------------------

    def current_step(self) -> OnboardingStep:
        data = self.query("onboard.currentStep")
        if not isinstance(data, dict) or not data.get("current"):
            raise HomarrApiError("onboard.currentStep", 200, f"Unexpected step payload: {data!r}")
        return OnboardingStep(current=data["current"], previous=data.get("previous"))

    def next_step(self) -> None:
        self.mutate("onboard.nextStep")

    def init_user(self, username: str, password: str) -> None:
        self.mutate(
            "user.initUser",
            {"username": username, "password": password, "confirmPassword": password},
        )

    def init_settings(self, analytics: dict[str, bool], crawling: dict[str, bool]) -> None:
        self.mutate("serverSettings.initSettings", {"analytics": analytics, "crawlingAndIndexing": crawling})

    # -- auth ------------------------------------------------------------

    def csrf_token(self) -> str:
        resp = self._send("auth.csrf", "GET", "/api/auth/csrf")
        if not resp.is_success:
            raise HomarrApiError("auth.csrf", resp.status_code, resp.text)
        try:
            return resp.json()["csrfToken"]
        except (ValueError, KeyError, TypeError) as e:
            raise HomarrApiError("auth.csrf", resp.status_code, f"No csrfToken in response: {e}") from e

    def login(self, username: str, password: str) -> None:
        token = self.csrf_token()
        resp = self._send(
            "auth.credentials",
            "POST",
            "/api/auth/callback/credentials",
            data={"csrfToken": token, "name": username, "password": password},
        )
        # NextAuth answers a successful form login with a redirect.
        if not (resp.is_success or resp.status_code == 302):
            raise HomarrApiError("auth.credentials", resp.status_code, "Login failed")
        self.logged_in = True
        logger.info("Logged in to Homarr as %s", username)

    def ensure_login(self, username: str, password: str) -> None:
        if not self.logged_in:
            self.login(username, password)

    # -- boards and apps -----------------------------------------------

    def get_board_by_name(self, name: str) -> dict[str, Any] | None:
        try:
            return self.query("board.getBoardByName", {"name": name})
        except HomarrApiError as e:
            if e.is_not_found:
                return None
            raise

    def list_apps(self) -> list[dict[str, Any]]:
        data = self.query("app.all")
        if not isinstance(data, list):
            raise HomarrApiError("app.all", 200, f"Unexpected app list: {data!r}")
        return data

    def find_app(self, name: str, href: str) -> str | None:
        """Id of an existing app with this name and link, if Homarr has one."""
        for app in self.list_apps():
            if app.get("name") == name and app.get("href") == href and app.get("id"):
                return app["id"]
        return None

    def create_board(self, name: str, column_count: int, is_public: bool) -> str:
        data = self.mutate("board.createBoard", {"name": name, "columnCount": column_count, "isPublic": is_public})
        try:
            return data["boardId"]
        except (KeyError, TypeError):
            raise HomarrApiError("board.createBoard", 200, f"No boardId in response: {data!r}")

    def create_app(
        self,
        name: str,
        href: str,
        description: str | None = None,
        icon_url: str | None = None,
        ping_url: str | None = None,
    ) -> str:
        data = self.mutate(
            "app.create",
            {
                "name": name,
                "description": description or "",
                "iconUrl": icon_url or "",
                "href": href,
                "pingUrl": ping_url,
            },
        )
        try:
            return data.get("appId") or data["id"]
        except (AttributeError, KeyError, TypeError):
            raise HomarrApiError("app.create", 200, f"No appId in response: {data!r}")

    def save_board(self, board: dict[str, Any]) -> None:
        self.mutate("board.saveBoard", board)

    def set_home_board(self, board_id: str) -> None:
        self.mutate("board.setHomeBoard", {"id": board_id})

    def change_color_scheme(self, scheme: str) -> None:
        self.mutate("user.changeColorScheme", {"colorScheme": scheme})
