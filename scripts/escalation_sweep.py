#!/usr/bin/env python3
"""
Run the overdue-approval escalation sweep.

One-shot by default (suitable for cron).  With --loop the sweep runs in
the foreground every ``escalation_interval_seconds`` until interrupted.

Usage:
  python3 scripts/escalation_sweep.py --settings approval.yaml
  python3 scripts/escalation_sweep.py --db-url postgresql://... --loop
"""

import argparse
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Escalate approvals past their deadline")
    p.add_argument("--settings", default=None, help="Engine settings YAML")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument("--tenant", default=None, help="Restrict the sweep to one tenant")
    p.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_batch.scheduler import EscalationScheduler
    from approval_config import load_settings
    from approval_kernel.db.engine import get_session_factory, init_engine_from_url
    from approval_kernel.db.immutability import register_immutability_listeners
    from approval_kernel.exceptions import ConfigurationError
    from approval_services.wiring import build_orchestrator

    try:
        settings = load_settings(args.settings)
    except ConfigurationError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    init_engine_from_url(args.db_url or settings.database_url)
    register_immutability_listeners()

    scheduler = EscalationScheduler(
        session_factory=get_session_factory(),
        orchestrator_factory=lambda session: build_orchestrator(session, settings=settings),
        tick_interval_seconds=settings.escalation_interval_seconds,
        batch_size=settings.escalation_batch_size,
        tenant_id=args.tenant,
    )

    if not args.loop:
        escalated = scheduler.tick()
        print(f"  escalated {escalated} approval(s)")
        return 0

    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
