"""
Resumable-transaction persistence.

The retrieval reference of the attempt currently on screen is the only piece
of transaction state that survives a reload. It is kept in the ``client_state``
key-value table under a fixed key and removed once the attempt ends.
"""

import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrpay.models.records import ClientState

logger = logging.getLogger("qrpay.store")

RETRIEVAL_REF_KEY = "txn_retrieval_ref"


class ReferenceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], key: str = RETRIEVAL_REF_KEY):
        self._sessions = session_factory
        self._key = key

    async def load(self) -> Optional[str]:
        async with self._sessions() as session:
            row = await session.get(ClientState, self._key)
            return row.value if row else None

    async def save(self, retrieval_reference: str) -> None:
        async with self._sessions() as session:
            row = await session.get(ClientState, self._key)
            if row is None:
                session.add(ClientState(key=self._key, value=retrieval_reference))
            else:
                row.value = retrieval_reference
            await session.commit()
        logger.debug("Persisted retrieval reference %s", retrieval_reference)

    async def clear(self, expected: Optional[str] = None) -> None:
        """
        Remove the persisted reference.

        With ``expected`` set, only a matching value is removed, so a finished
        attempt never wipes the reference of a newer one.
        """
        stmt = delete(ClientState).where(ClientState.key == self._key)
        if expected is not None:
            stmt = stmt.where(ClientState.value == expected)
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()
