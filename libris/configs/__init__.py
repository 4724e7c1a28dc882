#!/usr/bin/env python

"""
    Configurations for Libris

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('LIBRIS_HOST', 'localhost')
PORT = int(os.environ.get('LIBRIS_PORT', 8080))
WORKERS = int(os.environ.get('LIBRIS_WORKERS', 1))
DEBUG = bool(int(os.environ.get('LIBRIS_DEBUG', 0)))
LOG_LEVEL = os.environ.get('LIBRIS_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('LIBRIS_SSL_CRT')
SSL_KEY = os.environ.get('LIBRIS_SSL_KEY')
CORS_ORIGINS = os.environ.get(
    'LIBRIS_CORS_ORIGINS', 'http://localhost:3000').split(',')

# Signing secret for bearer tokens
SEED = os.environ.get('LIBRIS_SEED', 'libris-dev-seed' if TESTING else None)
TOKEN_TTL = int(os.environ.get('LIBRIS_TOKEN_TTL', 604800))

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'libris'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Background jobs
TIMEZONE = os.environ.get('LIBRIS_TIMEZONE', 'Asia/Ho_Chi_Minh')
SCHEDULER_ENABLED = (
    not TESTING and os.environ.get('LIBRIS_SCHEDULER', 'true').lower() == 'true'
)
DUE_SOON_DAYS = int(os.environ.get('LIBRIS_DUE_SOON_DAYS', 2))
OUTBOX_INTERVAL_MINUTES = int(os.environ.get('LIBRIS_OUTBOX_INTERVAL', 5))
OUTBOX_MAX_ATTEMPTS = int(os.environ.get('LIBRIS_OUTBOX_MAX_ATTEMPTS', 5))

# Fine policy used when no active policy exists yet
DEFAULT_POLICY = {
    'late_fee_per_day': os.environ.get('LIBRIS_LATE_FEE_PER_DAY', '5000'),
    'damage_fee_rate': os.environ.get('LIBRIS_DAMAGE_FEE_RATE', '0.3'),
    'lost_book_fee_rate': os.environ.get('LIBRIS_LOST_BOOK_FEE_RATE', '1.0'),
    'currency': os.environ.get('LIBRIS_CURRENCY', 'VND'),
}

# Loan rules
MAX_EXTENSION_DAYS = 30
EXTENSION_EXPIRY_DAYS = 7
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

__all__ = [
    'TESTING', 'SCHEME', 'HOST', 'PORT', 'WORKERS', 'DEBUG', 'LOG_LEVEL',
    'SSL_CRT', 'SSL_KEY', 'CORS_ORIGINS', 'SEED', 'TOKEN_TTL', 'OPTIONS',
    'DB_CONFIG', 'DB_URI', 'TIMEZONE', 'SCHEDULER_ENABLED', 'DUE_SOON_DAYS',
    'OUTBOX_INTERVAL_MINUTES', 'OUTBOX_MAX_ATTEMPTS', 'DEFAULT_POLICY',
    'MAX_EXTENSION_DAYS', 'EXTENSION_EXPIRY_DAYS', 'DEFAULT_PAGE_LIMIT',
    'MAX_PAGE_LIMIT',
]
