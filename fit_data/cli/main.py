"""Unified CLI.

Operational flow:
    1. bootstrap            -> apply schema.sql (idempotent)
    2. fit authorize        -> run the Google consent flow for a user
    3. fit fetch / backfill -> pull daily metrics into fit.daily_metrics
"""
from __future__ import annotations
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click

from fit_data import config
from fit_data.db.postgres import PostgresCredentialStore, PostgresDailyRecordStore, run_schema
from fit_data.db.stores import MemoryDailyRecordStore, today_or_latest
from fit_data.errors import NoRefreshCredential, RefreshCredentialExpired, ReauthRequired, Unauthenticated
from fit_data.models import METRIC_FIELDS
from fit_data.sources.google_fit.auth import AuthorizationFlow
from fit_data.sources.google_fit.heart_rate import insert_heart_rate
from fit_data.sync.orchestrator import build_orchestrator

REAUTH_HINT = 'Run `fit-data fit authorize --user {user}` to re-authorize with Google Fit.'
REAUTH_KINDS = {ReauthRequired.kind, NoRefreshCredential.kind, RefreshCredentialExpired.kind}


def _format_row(row: dict) -> str:
    parts = [f"{row['day']}"]
    for name in METRIC_FIELDS:
        value = row.get(name)
        parts.append(f"{name}={'-' if value is None else value}")
    return ' '.join(parts)


@click.group()
@click.option('--log-level', default='INFO', show_default=True, help='Python logging level.')
def cli(log_level: str):
    """Google Fit daily metrics CLI."""
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO),
                        format='[%(asctime)s] %(levelname)s %(message)s')


@cli.command()
@click.option('--schema', 'schema_path', default='schema.sql', show_default=True, help='Schema file to apply.')
def bootstrap(schema_path: str):
    """Apply schema.sql directly (idempotent bootstrap)."""
    path = Path(schema_path)
    if not path.exists():
        raise click.ClickException(f'{schema_path} not found.')
    run_schema(path)
    click.echo('Bootstrap complete: schemas/tables ensured.')


@cli.group()
def fit():
    """Google Fit source commands."""


@fit.command('authorize')
@click.option('--user', 'user_id', required=True, help='Internal user id to attach the credentials to.')
@click.option('--port', default=8765, show_default=True, help='Local callback port.')
def fit_authorize(user_id: str, port: int):
    flow = AuthorizationFlow(PostgresCredentialStore())
    try:
        flow.run_local(user_id, port=port)
    except Unauthenticated as e:
        raise click.ClickException(str(e))
    click.echo(f'Google Fit authorization completed for {user_id}.')


@fit.command('fetch')
@click.option('--user', 'user_id', required=True)
@click.option('--date', 'day', type=click.DateTime(formats=['%Y-%m-%d']), help='Day to fetch (default today).')
@click.option('--dry-run', is_flag=True, help='Keep results in memory instead of writing to the database.')
def fit_fetch(user_id: str, day: Optional[datetime], dry_run: bool):
    """Fetch all metrics for one day."""
    orchestrator = build_orchestrator(records=MemoryDailyRecordStore() if dry_run else None)
    try:
        record = orchestrator.fetch_day(user_id, day.date() if day else None)
    except Unauthenticated as e:
        raise click.ClickException(f'{e}. {REAUTH_HINT.format(user=user_id)}')
    click.echo(_format_row({'day': record.day, **record.values}))
    for failure in record.failures:
        click.echo(f'  {failure.metric}: {failure.kind} {failure.message}', err=True)
    if any(f.kind in REAUTH_KINDS for f in record.failures):
        click.echo(REAUTH_HINT.format(user=user_id), err=True)


@fit.command('backfill')
@click.option('--user', 'user_id', required=True)
@click.option('--days', default=30, show_default=True, type=click.IntRange(min=1))
@click.option('--delay', type=float, help='Seconds to wait between days (default FIT_BACKFILL_DELAY).')
def fit_backfill(user_id: str, days: int, delay: Optional[float]):
    """Fetch missing days, newest first."""
    kwargs = {'delay': delay} if delay is not None else {}
    orchestrator = build_orchestrator(**kwargs)
    try:
        count = orchestrator.backfill(user_id, days)
    except Unauthenticated as e:
        raise click.ClickException(f'{e}. {REAUTH_HINT.format(user=user_id)}')
    click.echo(f'Fetched {count} day(s) of data from Google Fit (window: {days} days).')


@fit.command('show')
@click.option('--user', 'user_id', required=True)
@click.option('--days', default=7, show_default=True, type=click.IntRange(min=1))
def fit_show(user_id: str, days: int):
    """Print stored records, newest first."""
    today = date.today()
    rows = PostgresDailyRecordStore().between(user_id, today - timedelta(days=days - 1), today)
    if not rows:
        click.echo('No health data found.')
        return
    for row in rows:
        click.echo(_format_row(row))


@fit.command('dashboard')
@click.option('--user', 'user_id', required=True)
def fit_dashboard(user_id: str):
    """Print today's record, falling back to the latest stored day."""
    row, is_today = today_or_latest(PostgresDailyRecordStore(), user_id, date.today())
    if row is None:
        click.echo('No health data found.')
        return
    click.echo(_format_row(row))
    if not is_today:
        click.echo(f"No data for today yet; showing latest from {row['day']}.")


@fit.command('push-heart-rate')
@click.option('--user', 'user_id', required=True)
@click.option('--bpm', required=True, type=click.FloatRange(min=1))
@click.option('--at', 'at', type=click.DateTime(), help='Measurement time (default now, UTC).')
def fit_push_heart_rate(user_id: str, bpm: float, at: Optional[datetime]):
    """Insert one heart-rate measurement into Google Fit."""
    if not config.GOOGLE_CLIENT_ID:
        raise click.ClickException('Missing GOOGLE_CLIENT_ID')
    when = at.replace(tzinfo=at.tzinfo or timezone.utc) if at else datetime.now(timezone.utc)
    orchestrator = build_orchestrator()
    ok = insert_heart_rate(orchestrator.adapter.executor, user_id, bpm, when, config.GOOGLE_CLIENT_ID)
    if not ok:
        raise click.ClickException('Heart rate insert failed; see log for details.')
    click.echo(f'Heart rate {bpm:g} bpm recorded at {when.isoformat()}.')


if __name__ == '__main__':
    cli()
