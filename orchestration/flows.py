"""Prefect flows for scheduled Google Fit syncs.

Flows:
  daily_sync:     fetch today's metrics for each user
  backfill_users: fill missing days for each user

To run locally (ephemeral):
  python -m orchestration.flows run-daily-sync --user alice --user bob

To register with Prefect server/cloud later, wrap these flows with deployments.
"""
from __future__ import annotations
import logging
from datetime import date
from typing import List, Optional

from prefect import flow, task

from fit_data.errors import Unauthenticated
from fit_data.sync.orchestrator import build_orchestrator

logger = logging.getLogger(__name__)


@task
def sync_user_day(user_id: str, day: Optional[date] = None) -> bool:
    try:
        record = build_orchestrator().fetch_day(user_id, day)
    except Unauthenticated as e:
        logger.warning('Skipping %s: %s', user_id, e)
        return False
    return record.has_data()


@task
def backfill_user(user_id: str, days: int) -> int:
    return build_orchestrator().backfill(user_id, days)


@flow(name='daily_sync')
def daily_sync(user_ids: List[str], day: Optional[date] = None) -> int:
    return sum(1 for uid in user_ids if sync_user_day(uid, day))


@flow(name='backfill_users')
def backfill_users(user_ids: List[str], days: int = 30) -> int:
    return sum(backfill_user(uid, days) for uid in user_ids)


if __name__ == '__main__':
    import argparse
    ap = argparse.ArgumentParser()
    ap.add_argument('command', choices=['run-daily-sync', 'run-backfill'])
    ap.add_argument('--user', action='append', required=True)
    ap.add_argument('--days', type=int, default=30)
    args = ap.parse_args()
    if args.command == 'run-daily-sync':
        daily_sync(user_ids=args.user)
    else:
        backfill_users(user_ids=args.user, days=args.days)
