"""Environment-driven settings (.env is loaded once, without overriding the process env)."""
from __future__ import annotations
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path('.') / '.env', override=False)

DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = int(os.getenv('DB_PORT', '5432'))
DB_USER = os.getenv('DB_USER', 'fit')
DB_PASSWORD = os.getenv('DB_PASSWORD', 'fit_password')
DB_NAME = os.getenv('DB_NAME', 'fit_data')
DSN = f"host={DB_HOST} port={DB_PORT} dbname={DB_NAME} user={DB_USER} password={DB_PASSWORD}"

GOOGLE_CLIENT_ID = os.getenv('GOOGLE_CLIENT_ID')
GOOGLE_CLIENT_SECRET = os.getenv('GOOGLE_CLIENT_SECRET')
GOOGLE_REDIRECT_URI = os.getenv('GOOGLE_REDIRECT_URI', 'http://localhost:8765/callback')
GOOGLE_FIT_SCOPES = os.getenv('GOOGLE_FIT_SCOPES', ' '.join([
    'https://www.googleapis.com/auth/fitness.activity.read',
    'https://www.googleapis.com/auth/fitness.body.read',
    'https://www.googleapis.com/auth/fitness.heart_rate.read',
    'https://www.googleapis.com/auth/fitness.heart_rate.write',
    'https://www.googleapis.com/auth/fitness.location.read',
    'https://www.googleapis.com/auth/fitness.sleep.read',
]))

FIT_API_BASE = os.getenv('FIT_API_BASE', 'https://www.googleapis.com/fitness/v1')
HTTP_TIMEOUT = int(os.getenv('FIT_HTTP_TIMEOUT', '60'))
FIT_TIMEZONE = os.getenv('FIT_TIMEZONE', 'UTC')
BACKFILL_DELAY = float(os.getenv('FIT_BACKFILL_DELAY', '0.5'))  # seconds between fetched days
AUTH_STATE_TTL = int(os.getenv('FIT_AUTH_STATE_TTL', '300'))
