"""PostgreSQL persistence for credentials and per-day metric records."""
from __future__ import annotations
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from fit_data import config
from fit_data.db.stores import CredentialStore, DailyRecordStore
from fit_data.models import Credentials, METRIC_FIELDS

SCHEMA_FILE = Path('schema.sql')
RECORD_COLUMNS = ['user_id', 'day', *METRIC_FIELDS, 'fetched_at']


@contextmanager
def get_conn(dsn: Optional[str] = None):
    conn = psycopg2.connect(dsn or config.DSN)
    try:
        yield conn
    finally:
        conn.close()


def run_schema(schema_path: Path = SCHEMA_FILE, dsn: Optional[str] = None):
    sql_text = schema_path.read_text(encoding='utf-8')
    with get_conn(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(sql_text)
        conn.commit()


class PostgresCredentialStore(CredentialStore):
    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def get(self, user_id: str) -> Optional[Credentials]:
        with get_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT access_token, refresh_token FROM fit.oauth_credentials WHERE user_id=%s', (user_id,))
                row = cur.fetchone()
        if not row or not row[0]:
            return None
        return Credentials(access_token=row[0], refresh_token=row[1] or None)

    def set(self, user_id: str, access_token: str, refresh_token: Optional[str] = None) -> None:
        with get_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    '''INSERT INTO fit.oauth_credentials (user_id, access_token, refresh_token, updated_at)
                       VALUES (%s,%s,%s,NOW())
                       ON CONFLICT (user_id) DO UPDATE SET access_token=EXCLUDED.access_token,
                           refresh_token=COALESCE(EXCLUDED.refresh_token, fit.oauth_credentials.refresh_token),
                           updated_at=NOW()''',
                    (user_id, access_token, refresh_token)
                )
            conn.commit()


def build_upsert(partial: Dict[str, Any]) -> sql.Composed:
    """INSERT ... ON CONFLICT statement touching only the supplied metric columns."""
    unknown = set(partial) - set(METRIC_FIELDS)
    if unknown:
        raise ValueError(f'Unknown metric fields: {sorted(unknown)}')
    columns = [c for c in METRIC_FIELDS if c in partial]
    insert_cols = [sql.Identifier(c) for c in ['user_id', 'day', *columns]]
    placeholders = [sql.Placeholder()] * len(insert_cols)
    updates = [sql.SQL('{0}=EXCLUDED.{0}').format(sql.Identifier(c)) for c in columns]
    updates.append(sql.SQL('fetched_at=NOW()'))
    returning = sql.SQL(',').join(sql.Identifier(c) for c in RECORD_COLUMNS)
    return sql.SQL(
        'INSERT INTO fit.daily_metrics ({cols}) VALUES ({vals}) '
        'ON CONFLICT (user_id, day) DO UPDATE SET {updates} RETURNING {returning}'
    ).format(
        cols=sql.SQL(',').join(insert_cols),
        vals=sql.SQL(',').join(placeholders),
        updates=sql.SQL(', ').join(updates),
        returning=returning,
    )


class PostgresDailyRecordStore(DailyRecordStore):
    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def upsert(self, user_id: str, day: date, partial: Dict[str, Any]) -> Dict[str, Any]:
        stmt = build_upsert(partial)
        params = [user_id, day, *[partial[c] for c in METRIC_FIELDS if c in partial]]
        with get_conn(self.dsn) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(stmt, params)
                row = cur.fetchone()
            conn.commit()
        return dict(row)

    def _select(self, where: str, params: tuple, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = f"SELECT {','.join(RECORD_COLUMNS)} FROM fit.daily_metrics WHERE {where} ORDER BY day DESC"
        if limit:
            query += f' LIMIT {int(limit)}'
        with get_conn(self.dsn) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [dict(r) for r in cur.fetchall()]

    def get(self, user_id: str, day: date) -> Optional[Dict[str, Any]]:
        rows = self._select('user_id=%s AND day=%s', (user_id, day), limit=1)
        return rows[0] if rows else None

    def exists(self, user_id: str, day: date) -> bool:
        with get_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT 1 FROM fit.daily_metrics WHERE user_id=%s AND day=%s', (user_id, day))
                return cur.fetchone() is not None

    def latest(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self._select('user_id=%s', (user_id,), limit=1)
        return rows[0] if rows else None

    def between(self, user_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        return self._select('user_id=%s AND day BETWEEN %s AND %s', (user_id, start, end))
