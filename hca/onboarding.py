from __future__ import annotations

import logging
import re
from typing import Any

from .branding import BrandingConfig
from .homarr import HomarrApiError, HomarrClient

logger = logging.getLogger(__name__)

STEP_START = "start"
STEP_USER = "user"
STEP_SETTINGS = "settings"
STEP_FINISH = "finish"


class OnboardingError(RuntimeError):
    """First-boot setup did not complete; it is safe to run again."""


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "tile"


class Onboarder:
    """Drives Homarr through onboarding and creates the branded home board.

    Homarr reports the current onboarding step itself, so nothing about
    progress is tracked here: every iteration asks again. All phases after
    login check before they create, so the whole run can be repeated.
    """

    def __init__(self, client: HomarrClient, branding: BrandingConfig, max_steps: int = 20):
        self.client = client
        self.branding = branding
        self.max_steps = max(1, int(max_steps))

    def run(self) -> None:
        self.complete_steps()
        self.setup_board()

    # -- step machine --------------------------------------------------

    def complete_steps(self) -> None:
        for _ in range(self.max_steps):
            try:
                step = self.client.current_step()
            except HomarrApiError as e:
                raise OnboardingError(f"Could not read onboarding step: {e}") from e
            logger.info("Onboarding step: %s", step.current)

            if step.current == STEP_FINISH:
                return
            try:
                if step.current == STEP_USER:
                    self._create_admin()
                elif step.current == STEP_SETTINGS:
                    self._configure_settings()
                elif step.current == STEP_START:
                    self.client.next_step()
                else:
                    logger.info("Advancing past unhandled step '%s'", step.current)
                    self.client.next_step()
            except HomarrApiError as e:
                raise OnboardingError(f"Onboarding step '{step.current}' failed: {e}") from e

        raise OnboardingError(f"Onboarding did not reach '{STEP_FINISH}' after {self.max_steps} steps")

    def _create_admin(self) -> None:
        creds = self.branding.credentials
        logger.info("Creating administrator '%s'", creds.admin_username)
        self.client.init_user(creds.admin_username, creds.admin_password)

    def _configure_settings(self) -> None:
        s = self.branding.settings
        analytics = {
            "enableGeneral": s.analytics.enable_general,
            "enableWidgetData": s.analytics.enable_widget_data,
            "enableIntegrationData": s.analytics.enable_integration_data,
            "enableUserData": s.analytics.enable_user_data,
        }
        crawling = {
            "noIndex": s.crawling.no_index,
            "noFollow": s.crawling.no_follow,
            "noTranslate": s.crawling.no_translate,
            "noSiteLinksSearchBox": s.crawling.no_sitelinks_search_box,
        }
        logger.info("Submitting server settings")
        self.client.init_settings(analytics, crawling)

    # -- board setup ---------------------------------------------------

    def setup_board(self) -> None:
        creds = self.branding.credentials
        try:
            self.client.login(creds.admin_username, creds.admin_password)
        except HomarrApiError as e:
            raise OnboardingError(f"Login failed: {e}") from e

        failed: list[str] = []

        board_id: str | None = None
        try:
            board_id = self.ensure_board()
        except HomarrApiError as e:
            logger.error("Could not ensure board '%s': %s", self.branding.board.name, e)
            failed.append("board")

        if board_id is None:
            logger.warning("Skipping entry tile and home board: no board")
            failed.append("home board")
        else:
            if self.branding.board.cockpit.enabled:
                try:
                    self.ensure_entry_tile(board_id)
                except HomarrApiError as e:
                    logger.error("Could not ensure entry tile: %s", e)
                    failed.append("entry tile")
            try:
                self.client.set_home_board(board_id)
            except HomarrApiError as e:
                logger.error("Could not set home board: %s", e)
                failed.append("home board")

        scheme = self.branding.theme.default_color_scheme
        try:
            self.client.change_color_scheme(scheme)
        except HomarrApiError as e:
            logger.error("Could not set color scheme '%s': %s", scheme, e)
            failed.append("color scheme")

        if failed:
            raise OnboardingError(f"Board setup incomplete: {', '.join(failed)}")

    def ensure_board(self) -> str:
        board_cfg = self.branding.board
        board = self.client.get_board_by_name(board_cfg.name)
        if board is not None:
            logger.info("Board '%s' already exists", board_cfg.name)
            if not isinstance(board, dict) or not board.get("id"):
                raise HomarrApiError("board.getBoardByName", 200, f"No id in board payload: {board!r}")
            return board["id"]
        logger.info("Creating board '%s'", board_cfg.name)
        return self.client.create_board(board_cfg.name, board_cfg.column_count, board_cfg.is_public)

    def entry_item_id(self) -> str:
        return f"entry-{_slug(self.branding.board.cockpit.name)}"

    def ensure_entry_tile(self, board_id: str) -> None:
        tile = self.branding.board.cockpit
        item_id = self.entry_item_id()

        board = self.client.get_board_by_name(self.branding.board.name)
        if board is None:
            raise HomarrApiError("board.getBoardByName", 404, f"Board '{self.branding.board.name}' disappeared")
        items: list[dict[str, Any]] = list(board.get("items") or [])
        if any(item.get("id") == item_id for item in items):
            logger.info("Entry tile '%s' already on board", tile.name)
            return

        # An earlier run may have created the app but failed to save the board.
        app_id = self.client.find_app(tile.name, tile.href)
        if app_id is not None:
            logger.info("Reusing existing app '%s' for entry tile", tile.name)
        else:
            try:
                app_id = self.client.create_app(
                    name=tile.name,
                    href=tile.href,
                    description=tile.description,
                    icon_url=tile.icon_url,
                )
            except HomarrApiError as e:
                if not e.is_conflict:
                    raise
                app_id = self.client.find_app(tile.name, tile.href)
                if app_id is None:
                    logger.info("Entry tile app '%s' already exists", tile.name)
                    return

        sections = board.get("sections") or []
        layouts = board.get("layouts") or []
        items.append(
            {
                "id": item_id,
                "kind": "app",
                "appId": app_id,
                "options": {},
                "layouts": [
                    {
                        "layoutId": layouts[0]["id"] if layouts else "",
                        "sectionId": sections[0]["id"] if sections else "",
                        "width": tile.width,
                        "height": tile.height,
                        "xOffset": tile.x_offset,
                        "yOffset": tile.y_offset,
                    }
                ],
                "integrationIds": [],
                "advancedOptions": {"customCssClasses": []},
            }
        )
        self.client.save_board(
            {
                "id": board_id,
                "sections": sections,
                "items": items,
                "integrations": board.get("integrations") or [],
            }
        )
        logger.info("Placed entry tile '%s' on board", tile.name)
