from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator

import docker
import requests
from docker.errors import DockerException, NotFound

logger = logging.getLogger(__name__)

STARTED = "started"
STOPPED = "stopped"

# Docker actions mapped to the two events reconciliation cares about.
ACTIONS: dict[str, str] = {
    "start": STARTED,
    "stop": STOPPED,
    "die": STOPPED,
}

_TRANSPORT_ERRORS = (DockerException, requests.exceptions.RequestException)


class RuntimeUnavailable(RuntimeError):
    """The container runtime could not be reached."""


@dataclass(frozen=True)
class ContainerEvent:
    kind: str  # started|stopped
    container_id: str
    labels: dict[str, str] = field(default_factory=dict)


def connect(base_url: str | None = None, timeout: int = 120) -> docker.DockerClient:
    try:
        if base_url:
            return docker.DockerClient(base_url=base_url, timeout=timeout)
        return docker.from_env(timeout=timeout)
    except DockerException as e:
        raise RuntimeUnavailable(f"Failed to connect to Docker: {e}") from e


class ContainerSource:
    """Running containers and their lifecycle events, as seen by the adapter."""

    def __init__(self, client: Any, label_prefix: str = "homarr"):
        self.client = client
        self.label_prefix = label_prefix
        self._lock = threading.Lock()
        self._stream: Any = None

    def available(self) -> bool:
        try:
            self.client.ping()
            return True
        except _TRANSPORT_ERRORS:
            return False

    def list_eligible(self) -> list[tuple[str, dict[str, str]]]:
        """Return (container id, labels) for running containers that opted in.

        One list call; labels come from the list response, no per-container
        inspection.
        """
        filters = {"label": [f"{self.label_prefix}.enable=true"]}
        try:
            rows = self.client.api.containers(all=False, filters=filters)
        except _TRANSPORT_ERRORS as e:
            raise RuntimeUnavailable(f"Failed to list containers: {e}") from e

        out: list[tuple[str, dict[str, str]]] = []
        for row in rows or []:
            cid = row.get("Id")
            if not cid:
                continue
            out.append((cid, dict(row.get("Labels") or {})))
        return out

    def inspect(self, container_id: str) -> dict[str, str] | None:
        """Labels of a single container, or None if it no longer exists."""
        try:
            cont = self.client.containers.get(container_id)
        except NotFound:
            return None
        except _TRANSPORT_ERRORS as e:
            raise RuntimeUnavailable(f"Failed to inspect container {container_id[:12]}: {e}") from e
        return dict(cont.labels or {})

    def watch(self) -> Iterator[ContainerEvent]:
        """Yield started/stopped events until the subscription ends.

        Malformed events are logged and skipped. A lost connection ends the
        iterator; the caller decides whether to resubscribe.
        """
        filters = {"type": "container", "event": list(ACTIONS)}
        try:
            stream = self.client.events(decode=False, filters=filters)
        except _TRANSPORT_ERRORS as e:
            logger.warning("Could not subscribe to Docker events: %s", e)
            return

        with self._lock:
            self._stream = stream
        try:
            for line in _split_lines(stream):
                event = self._decode(line)
                if event is None:
                    continue
                if event.kind == STARTED:
                    try:
                        labels = self.inspect(event.container_id)
                    except RuntimeUnavailable as e:
                        logger.warning("Docker event stream ended: %s", e)
                        return
                    if labels is None:
                        logger.debug("Container %s vanished before inspection", event.container_id[:12])
                        continue
                    event = ContainerEvent(STARTED, event.container_id, labels)
                yield event
        except _TRANSPORT_ERRORS as e:
            logger.warning("Docker event stream ended: %s", e)
        finally:
            with self._lock:
                self._stream = None
            _close_quietly(stream)

    def close(self) -> None:
        """Close the active event subscription, if any; safe from another thread."""
        with self._lock:
            stream = self._stream
            self._stream = None
        if stream is not None:
            _close_quietly(stream)

    def _decode(self, line: bytes) -> ContainerEvent | None:
        try:
            raw = json.loads(line)
        except ValueError as e:
            logger.warning("Skipping undecodable Docker event: %s", e)
            return None
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed Docker event: %r", raw)
            return None

        # Client-side filter as well, for runtimes that ignore server-side filters.
        if raw.get("Type", "container") != "container":
            return None
        kind = ACTIONS.get(raw.get("Action") or raw.get("status") or "")
        if kind is None:
            return None
        actor = raw.get("Actor") or {}
        cid = actor.get("ID") or raw.get("id")
        if not cid:
            logger.warning("Skipping Docker event without container id: %r", raw)
            return None
        return ContainerEvent(kind, cid)


def _split_lines(stream: Any) -> Iterator[bytes]:
    """Re-frame a raw event stream into one JSON document per line."""
    buf = b""
    for chunk in stream:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        buf += chunk
        while b"\n" in buf:
            line, buf = buf.split(b"\n", 1)
            if line.strip():
                yield line
    if buf.strip():
        yield buf


def _close_quietly(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        close()
    except _TRANSPORT_ERRORS + (OSError,) as e:
        logger.debug("Error while closing Docker event stream: %s", e)
