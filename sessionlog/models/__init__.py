"""
models/__init__.py - imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from sessionlog.models.activity_log import ActivityLogORM

__all__ = ["ActivityLogORM"]
