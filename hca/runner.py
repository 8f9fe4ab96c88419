from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from .branding import BrandingConfig, load_branding
from .docker_ops import ContainerSource, connect
from .homarr import HomarrClient
from .onboarding import Onboarder
from .reconciler import Reconciler, SyncReport
from .settings import Settings
from .state import StateStore

logger = logging.getLogger(__name__)


@contextmanager
def build_reconciler(cfg: Settings, branding: BrandingConfig | None = None) -> Iterator[Reconciler]:
    """Wire a Reconciler from settings; closes the Homarr session on exit."""
    branding = branding or load_branding(cfg.branding_file)
    source = ContainerSource(connect(cfg.docker_url), label_prefix=cfg.label_prefix)
    client = HomarrClient(cfg.homarr_url, timeout_s=cfg.http_timeout_s)
    try:
        yield Reconciler(
            source=source,
            client=client,
            store=StateStore(cfg.state_file),
            branding=branding,
            onboarder=Onboarder(client, branding, max_steps=cfg.max_onboarding_steps),
            product_name=cfg.product_name,
            label_prefix=cfg.label_prefix,
            poll_interval_s=cfg.poll_interval_s,
            queue_size=cfg.queue_size,
            resubscribe_delay_s=cfg.resubscribe_delay_s,
            watch_events=cfg.watch_events,
        )
    finally:
        client.close()


def run_sync(cfg: Settings) -> SyncReport:
    logger.info("Running sync cycle")
    with build_reconciler(cfg) as rec:
        return rec.full_sync()


def run_watch(cfg: Settings) -> None:
    with build_reconciler(cfg) as rec:
        rec.run_forever()


def run_setup(cfg: Settings, branding: BrandingConfig | None = None, client: HomarrClient | None = None) -> None:
    """Run first-boot setup and record completion; raises OnboardingError on failure."""
    branding = branding or load_branding(cfg.branding_file)
    owned = client is None
    client = client or HomarrClient(cfg.homarr_url, timeout_s=cfg.http_timeout_s)
    try:
        logger.info("Running first-boot setup")
        Onboarder(client, branding, max_steps=cfg.max_onboarding_steps).run()
    finally:
        if owned:
            client.close()

    store = StateStore(cfg.state_file)
    state = store.load()
    state.first_boot_completed = True
    store.save(state)
    logger.info("First-boot setup complete")


def check_status(cfg: Settings) -> dict[str, Any]:
    state = StateStore(cfg.state_file).load()
    return {
        "first_boot_completed": state.first_boot_completed,
        "last_sync": state.last_sync.isoformat() if state.last_sync else None,
        "tracked_apps": len(state.discovered_apps),
        "removed_apps": sorted(state.removed_apps),
    }


def mark_removed(cfg: Settings, container_id: str) -> None:
    store = StateStore(cfg.state_file)
    state = store.load()
    state.mark_removed(container_id)
    store.save(state)
    logger.info("Container %s will not be added to Homarr again", container_id)


def restore_removed(cfg: Settings, container_id: str) -> bool:
    store = StateStore(cfg.state_file)
    state = store.load()
    if not state.restore(container_id):
        return False
    store.save(state)
    logger.info("Container %s may be added to Homarr again", container_id)
    return True
