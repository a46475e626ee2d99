"""Challenge tick worker.

Usage:
    python -m fitbet.workers.tick_worker --once
    python -m fitbet.workers.tick_worker --loop

Environment flags:
- TICK_INTERVAL_SECONDS (default 3600)
- DATABASE_URL, BOT_TOKEN, GROQ_API_KEY (see fitbet.core.config)
"""
from __future__ import annotations

import argparse
import time
from typing import Optional

from dotenv import load_dotenv

from fitbet.core.clock import Clock, SystemClock
from fitbet.core.config import settings, validate_config
from fitbet.core.database import create_all_tables
from fitbet.core.logging import configure_logging
from fitbet.features.advisor.service import AdvisoryOracle, get_advisor
from fitbet.features.jobs.runner import run_tick_and_dispatch
from fitbet.features.notifications.notifier import Notifier, TelegramNotifier
from fitbet.features.store.persistence import EntityStore


def _process_once(
    store: EntityStore,
    notifier: Notifier,
    advisor: Optional[AdvisoryOracle] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Run one tick and dispatch its messages. Returns the number of state changes."""
    now = (clock or SystemClock()).now()
    report, deliveries = run_tick_and_dispatch(now, store, notifier, advisor=advisor)
    changed = sum(len(phase.changed) for phase in report.phases)
    failed = sum(1 for delivery in deliveries if not delivery.ok)
    if changed or report.failures or failed:
        print(
            f"[tick-worker] {now.isoformat()} changed={changed} "
            f"record_failures={report.failures} sent={len(deliveries) - failed} undelivered={failed}"
        )
    return changed


def main() -> None:
    parser = argparse.ArgumentParser(description="Challenge tick worker")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    parser.add_argument("--loop", action="store_true", help="Run in continuous loop")
    parser.add_argument(
        "--sleep",
        type=int,
        default=settings.TICK_INTERVAL_SECONDS,
        help="Seconds to sleep between ticks (when --loop)",
    )
    args = parser.parse_args()

    load_dotenv()
    configure_logging(settings.ENV)
    validate_config()

    store = EntityStore()
    create_all_tables(store.engine)
    notifier = TelegramNotifier()
    advisor = get_advisor()

    try:
        if args.once:
            changed = _process_once(store, notifier, advisor)
            print(f"[tick-worker] Changed: {changed}")
            return

        # Default to loop mode when not explicitly once
        print(f"[tick-worker] Starting loop (sleep={args.sleep}s). CTRL+C to stop.")
        while True:
            _process_once(store, notifier, advisor)
            time.sleep(args.sleep)
    except KeyboardInterrupt:
        print("[tick-worker] Stopped")
    finally:
        notifier.close()


if __name__ == "__main__":
    main()
