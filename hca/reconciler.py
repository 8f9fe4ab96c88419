from __future__ import annotations

import logging
from dataclasses import dataclass
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import Any

from .branding import BrandingConfig
from .docker_ops import STARTED, ContainerEvent, ContainerSource, RuntimeUnavailable
from .homarr import HomarrApiError, HomarrClient
from .labels import DiscoveredApp, parse_labels
from .onboarding import Onboarder, OnboardingError
from .state import ReconciliationState, StateStore, TrackedApp

logger = logging.getLogger(__name__)

# Outcomes of Reconciler.apply
ADDED = "added"
KNOWN = "known"
SKIPPED_REMOVED = "skipped-removed"
DROPPED = "dropped"
IGNORED = "ignored"
FAILED = "failed"

_FULL = "full"
_EVENT = "event"


@dataclass
class SyncReport:
    discovered: int = 0
    added: int = 0
    skipped_removed: int = 0
    deregistered: int = 0
    failed: int = 0

    def count(self, outcome: str) -> None:
        if outcome == ADDED:
            self.added += 1
        elif outcome == SKIPPED_REMOVED:
            self.skipped_removed += 1
        elif outcome == DROPPED:
            self.deregistered += 1
        elif outcome == FAILED:
            self.failed += 1


class Reconciler:
    """Keeps Homarr's app list in step with labeled, running containers.

    Apps are only ever added to Homarr. A container that goes away is
    forgotten locally but its tile stays; when it starts again the app with
    the same name and URL is tracked instead of created twice. Ids in the
    removed-set are never added again. An app deleted in Homarr's UI without
    being added to the removed-set comes back on the next full scan.
    """

    def __init__(
        self,
        source: ContainerSource,
        client: HomarrClient,
        store: StateStore,
        branding: BrandingConfig,
        onboarder: Onboarder | None = None,
        product_name: str = "homarr",
        label_prefix: str = "homarr",
        poll_interval_s: int = 300,
        queue_size: int = 256,
        resubscribe_delay_s: float = 5.0,
        watch_events: bool = True,
    ):
        self.source = source
        self.client = client
        self.store = store
        self.branding = branding
        self.onboarder = onboarder
        self.product_name = product_name
        self.label_prefix = label_prefix
        self.poll_interval_s = max(1, int(poll_interval_s))
        self.resubscribe_delay_s = max(0.0, float(resubscribe_delay_s))
        self.watch_events = watch_events

        self._queue: Queue[tuple[str, Any]] = Queue(maxsize=max(1, int(queue_size)))
        self._stop = Event()
        self._threads: list[Thread] = []

    # -- decisions -----------------------------------------------------

    def parse(self, container_id: str, labels: dict[str, str]) -> DiscoveredApp | None:
        return parse_labels(container_id, labels, product_name=self.product_name, prefix=self.label_prefix)

    def apply(self, state: ReconciliationState, container_id: str, app: DiscoveredApp | None) -> str:
        """Apply the eligibility decision for one container to state and Homarr.

        Both the full scan and the event path go through here.
        """
        if app is None:
            if state.discovered_apps.pop(container_id, None) is not None:
                logger.info("Container %s is gone or no longer eligible; forgetting it", container_id[:12])
                return DROPPED
            return IGNORED

        if state.is_removed(container_id):
            logger.debug("Skipping %s (%s): removed by user", app.name, container_id[:12])
            return SKIPPED_REMOVED
        if container_id in state.discovered_apps:
            return KNOWN

        creds = self.branding.credentials
        try:
            self.client.ensure_login(creds.admin_username, creds.admin_password)
            # A restarted container comes back with the same id; adopt its app.
            existing = self.client.find_app(app.name, app.url)
            if existing is None:
                self.client.create_app(
                    name=app.name,
                    href=app.url,
                    description=app.description,
                    icon_url=app.icon_url,
                )
        except HomarrApiError as e:
            logger.error("Failed to add %s (%s) to Homarr: %s", app.name, app.container_name, e)
            return FAILED

        state.discovered_apps[container_id] = TrackedApp(name=app.name, url=app.url)
        if existing is None:
            logger.info("Added %s (%s) -> %s", app.name, app.container_name, app.url)
        else:
            logger.info("Tracking existing app %s (%s) -> %s", app.name, app.container_name, app.url)
        return ADDED

    def onboard(self, state: ReconciliationState) -> None:
        """Run first-boot setup if it has not completed yet."""
        if state.first_boot_completed:
            return
        if self.onboarder is None:
            raise OnboardingError("First-boot setup pending and no onboarder configured")
        logger.info("First boot detected, running setup")
        self.onboarder.run()
        state.first_boot_completed = True
        self.store.save(state)
        logger.info("First-boot setup complete")

    # -- cycles --------------------------------------------------------

    def full_sync(self) -> SyncReport:
        state = self.store.load()
        self.onboard(state)

        containers = self.source.list_eligible()
        report = SyncReport()
        present: set[str] = set()
        for container_id, labels in containers:
            app = self.parse(container_id, labels)
            if app is None:
                continue
            present.add(container_id)
            report.discovered += 1
            report.count(self.apply(state, container_id, app))

        for container_id in list(state.discovered_apps):
            if container_id not in present:
                report.count(self.apply(state, container_id, None))

        state.update_sync_time()
        self.store.save(state)
        logger.info(
            "Sync complete: %d discovered, %d added, %d skipped (removed), %d deregistered, %d failed",
            report.discovered,
            report.added,
            report.skipped_removed,
            report.deregistered,
            report.failed,
        )
        return report

    def handle_event(self, event: ContainerEvent) -> str:
        state = self.store.load()
        if not state.first_boot_completed:
            logger.info("Setup pending; leaving container %s to the next full sync", event.container_id[:12])
            return IGNORED

        app = self.parse(event.container_id, event.labels) if event.kind == STARTED else None
        outcome = self.apply(state, event.container_id, app)
        if outcome in {ADDED, DROPPED}:
            self.store.save(state)
        return outcome

    # -- event loop ----------------------------------------------------

    def start(self) -> None:
        if self._threads and any(t.is_alive() for t in self._threads):
            return
        self._stop.clear()
        self._threads = [Thread(target=self._ticker_loop, name="hca-ticker", daemon=True)]
        if self.watch_events:
            self._threads.append(Thread(target=self._watch_loop, name="hca-watch", daemon=True))
        for t in self._threads:
            t.start()

    def stop(self) -> None:
        self._stop.set()
        self.source.close()

    def run_forever(self) -> None:
        """Process full scans and container events until stop() is called."""
        logger.info("Reconciler started")
        self.start()
        try:
            self._consume()
        finally:
            self.stop()
            for t in self._threads:
                t.join(timeout=5)
            logger.info("Reconciler stopped")

    def _put(self, item: tuple[str, Any]) -> bool:
        # Block while the consumer is busy; give up only on shutdown.
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=0.5)
                return True
            except Full:
                continue
        return False

    def _ticker_loop(self) -> None:
        while not self._stop.is_set():
            if not self._put((_FULL, None)):
                return
            self._stop.wait(self.poll_interval_s)

    def _watch_loop(self) -> None:
        first = True
        while not self._stop.is_set():
            if not first:
                # Catch up on anything missed while unsubscribed.
                self._put((_FULL, None))
            first = False

            events = self.source.watch()
            try:
                for event in events:
                    if not self._put((_EVENT, event)):
                        return
            except Exception as e:
                if self._stop.is_set():
                    return
                logger.warning("Docker event watch failed: %s: %s", type(e).__name__, e)
            finally:
                events.close()

            if self._stop.is_set():
                return
            logger.info(
                "Docker event subscription ended; periodic scans continue, resubscribing in %.0fs",
                self.resubscribe_delay_s,
            )
            self._stop.wait(self.resubscribe_delay_s)

    def _consume(self) -> None:
        while not self._stop.is_set():
            try:
                kind, payload = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self._process(kind, payload)
            finally:
                self._queue.task_done()

    def _process(self, kind: str, payload: Any) -> None:
        try:
            if kind == _FULL:
                self.full_sync()
            else:
                self.handle_event(payload)
        except RuntimeUnavailable as e:
            logger.error("Docker unavailable, cycle aborted: %s", e)
        except OnboardingError as e:
            logger.error("First-boot setup failed, will retry next cycle: %s", e)
        except Exception as e:
            logger.exception("Reconciliation cycle failed: %s: %s", type(e).__name__, e)
