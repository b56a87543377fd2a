#!/usr/bin/env python3
"""Entry point for the LinkedIn Easy Apply bot.

  python run_agent.py                 start the scheduler (Ctrl-C to stop)
  python run_agent.py --once          run one cycle now
  python run_agent.py --scan          discovery only
  python run_agent.py --sync          re-index resume/FAQ embeddings
  python run_agent.py --login         sign in once in a visible browser
  python run_agent.py --approve ID    approve a job held for review
"""
from __future__ import annotations

import argparse
import sys
import time
from dataclasses import replace

from jobbot.config import PROFILE_PATH, load_settings, load_user
from jobbot.errors import InvalidTransition, JobbotError
from jobbot.log import get_logger

log = get_logger(__name__)


def _check_setup() -> bool:
    """Return True if first-run setup is needed."""
    if not PROFILE_PATH.exists():
        print()
        print("  No profile found. Create one first:")
        print("    cp config/profile.example.yaml config/profile.yaml")
        print()
        return True
    return False


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="LinkedIn Easy Apply bot")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single cycle now")
    mode.add_argument("--scan", action="store_true", help="scan listings without applying")
    mode.add_argument("--sync", action="store_true", help="re-index resume and FAQ embeddings")
    mode.add_argument("--login", action="store_true", help="sign in to LinkedIn in a visible browser")
    mode.add_argument("--clear-session", action="store_true", help="forget the stored LinkedIn session")
    mode.add_argument("--status", action="store_true", help="show application counts by status")
    mode.add_argument("--approve", metavar="JOB_ID", help="approve a job waiting for review")
    mode.add_argument("--reject", metavar="JOB_ID", help="reject a job waiting for review")
    p.add_argument("--dry-run", action="store_true", help="fill forms but stop before submitting")
    return p


def _review(components, job_id: str, approve: bool) -> int:
    user = load_user()
    if user is None:
        log.error("No user profile configured")
        return 1
    try:
        if approve:
            components.store.approve(user.id, job_id)
        else:
            components.store.reject(user.id, job_id)
    except (KeyError, InvalidTransition) as exc:
        log.error("%s", exc)
        return 1
    log.info("Job %s %s", job_id, "queued" if approve else "skipped")
    return 0


def _serve(scheduler) -> int:
    started = scheduler.start()
    if not started["started"]:
        log.error("Setup required: %s", started["setup_required"])
        return 1
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log.info("Stopping...")
    finally:
        scheduler.stop(timeout=5)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    from jobbot.agent import Components, run_scan, run_sync, status_summary

    settings = load_settings()
    if args.dry_run:
        settings = replace(settings, dry_run=True)
    components = Components(settings)

    if args.login:
        return 0 if components.sessions.login() else 1
    if args.clear_session:
        components.sessions.clear()
        return 0
    if args.status:
        for status, count in sorted(status_summary(components).items()):
            print(f"  {status:<15} {count}")
        return 0
    if args.approve or args.reject:
        return _review(components, args.approve or args.reject, approve=bool(args.approve))

    if _check_setup():
        return 1
    try:
        if args.scan:
            log.info("Scan complete: %d jobs recorded", run_scan(components))
            return 0
        if args.sync:
            log.info("Embedding sync complete: %d chunks", run_sync(components))
            return 0
        scheduler = components.scheduler()
        if args.once:
            submitted = scheduler.run_cycle_now()
            log.info("Cycle complete: %d submitted", submitted)
            return 0
        return _serve(scheduler)
    except JobbotError as exc:
        log.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
