"""
Database engine and session factory.

Holds the client-side state that must outlive a reload (the retrieval
reference of the attempt on screen) and the audit trail.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qrpay.config import settings
from qrpay.models.records import Base

logger = logging.getLogger("qrpay.database")

engine = create_async_engine(settings.database_url, echo=False)
session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create the client_state and audit_logs tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))


async def dispose_db() -> None:
    await engine.dispose()
