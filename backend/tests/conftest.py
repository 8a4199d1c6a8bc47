# backend/tests/conftest.py
"""
Test-wide environment.

Set before any mentorhub module is imported so Settings and the engine pick
up test values instead of a developer's .env.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
