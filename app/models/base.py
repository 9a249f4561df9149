"""
Base SQLAlchemy model class.

This module defines the base class for all SQLAlchemy models in the application.
Every model lives in the ``shared`` schema; tenant data lives in per-tenant
schemas that are never mapped.
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

SHARED_SCHEMA = "shared"

Base = declarative_base(metadata=MetaData(schema=SHARED_SCHEMA))
