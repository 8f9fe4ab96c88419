from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from pydantic import ValidationError

from hca.docker_ops import RuntimeUnavailable
from hca.homarr import HomarrApiError
from hca.onboarding import OnboardingError
from hca.runner import check_status, mark_removed, restore_removed, run_setup, run_sync, run_watch
from hca.settings import Settings

logger = logging.getLogger("hca")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    for noisy in ("httpx", "httpcore", "urllib3", "docker"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Homarr container adapter: first-boot setup and auto-discovery")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--state-file", help="Override HCA_STATE_FILE")
    p.add_argument("--branding-file", help="Override HCA_BRANDING_FILE")
    p.add_argument("--homarr-url", help="Override HCA_HOMARR_URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("sync", help="Run a single sync cycle (for a systemd timer)")
    sub.add_parser("setup", help="Run first-boot setup only")
    sub.add_parser("watch", help="Follow Docker events, with periodic full scans")

    s_status = sub.add_parser("status", help="Show setup and sync status")
    s_status.add_argument("--json", action="store_true", help="Print status as JSON")

    s_rm = sub.add_parser("remove", help="Never add this container to Homarr again")
    s_rm.add_argument("container_id")

    s_rs = sub.add_parser("restore", help="Allow a removed container to be added again")
    s_rs.add_argument("container_id")

    args = p.parse_args(argv)
    _setup_logging(args.debug)

    overrides = {
        "state_file": args.state_file,
        "branding_file": args.branding_file,
        "homarr_url": args.homarr_url,
    }
    cfg = replace(Settings.from_env(), **{k: v for k, v in overrides.items() if v})

    try:
        if args.cmd == "sync":
            run_sync(cfg)
            return 0

        if args.cmd == "setup":
            run_setup(cfg)
            return 0

        if args.cmd == "watch":
            try:
                run_watch(cfg)
            except KeyboardInterrupt:
                pass
            return 0

        if args.cmd == "status":
            st = check_status(cfg)
            if args.json:
                _print(st)
            elif st["first_boot_completed"]:
                print("Status: First-boot setup completed")
                print(f"Last sync: {st['last_sync'] or 'never'}")
                print(f"Tracked apps: {st['tracked_apps']}")
                print(f"Removed apps: {len(st['removed_apps'])}")
            else:
                print("Status: First-boot setup pending")
            return 0

        if args.cmd == "remove":
            mark_removed(cfg, args.container_id)
            return 0

        if args.cmd == "restore":
            if not restore_removed(cfg, args.container_id):
                logger.warning("Container %s was not in the removed set", args.container_id)
                return 1
            return 0
    except (OnboardingError, RuntimeUnavailable, HomarrApiError) as e:
        logger.error("%s", e)
        return 1
    except ValidationError as e:
        logger.error("Invalid branding file %s: %s", cfg.branding_file, e)
        return 1
    except OSError as e:
        logger.error("%s", e)
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
