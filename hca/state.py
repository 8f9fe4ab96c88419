from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
DEFAULT_FILENAME = "state.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrackedApp(BaseModel):
    """An app the adapter added to Homarr for a running container."""

    name: str
    url: str
    added_at: datetime = Field(default_factory=utc_now)


class ReconciliationState(BaseModel):
    version: str = SCHEMA_VERSION
    first_boot_completed: bool = False
    # Container ids the user deleted from Homarr; never re-added.
    removed_apps: set[str] = Field(default_factory=set)
    last_sync: datetime | None = None
    discovered_apps: dict[str, TrackedApp] = Field(default_factory=dict)

    def mark_removed(self, container_id: str) -> None:
        self.removed_apps.add(container_id)
        self.discovered_apps.pop(container_id, None)

    def restore(self, container_id: str) -> bool:
        if container_id not in self.removed_apps:
            return False
        self.removed_apps.discard(container_id)
        return True

    def is_removed(self, container_id: str) -> bool:
        return container_id in self.removed_apps

    def update_sync_time(self) -> None:
        self.last_sync = utc_now()


def _resolve_state_path(path: str) -> str:
    """Return a file path for the state document.

    A bind mount of a missing file makes Docker create a directory at that
    location; in that case the state file goes inside it.
    """
    p = os.path.abspath(path)
    if os.path.isdir(p):
        p = os.path.join(p, DEFAULT_FILENAME)
    return p


class StateStore:
    """Loads and atomically saves the adapter's JSON state file."""

    def __init__(self, path: str):
        self.path = _resolve_state_path(path)

    def load(self) -> ReconciliationState:
        if not os.path.exists(self.path):
            return ReconciliationState()
        try:
            with open(self.path, "rb") as fh:
                raw = fh.read()
            return ReconciliationState.model_validate_json(raw)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read state file %s, using defaults: %s", self.path, e)
            return ReconciliationState()

    def save(self, state: ReconciliationState) -> None:
        """Write the state so that readers see either the old or the new file."""
        parent = os.path.dirname(self.path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)

        payload = state.model_dump_json(indent=2)
        fd, tmp = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=parent or None)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Saved state to %s", self.path)
