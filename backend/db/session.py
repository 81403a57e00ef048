"""
Campaign Path Analytics Database Session Management

Declarative base shared by the models and migrations. Engines are built per
run by their owners: each Celery task opens its own inside asyncio.run().
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""

    pass
