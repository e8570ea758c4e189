"""Repository layer for domain records.

Forms, responses, questions, scorings and routings are stored as JSON
documents keyed by (collection, id). ``SqlRecordStore`` adapts the
repository to the pipeline's RecordStore port, one transaction per call.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_session_ctx
from app.models.db import RecordModel
from pipeline.errors import PersistenceError, RecordNotFound

logger = logging.getLogger(__name__)


class RecordRepository:
    """Data access layer for JSON document records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, collection: str, record_id: str) -> Optional[RecordModel]:
        result = await self.session.execute(
            select(RecordModel).where(
                RecordModel.collection == collection,
                RecordModel.id == str(record_id),
            )
        )
        return result.scalar_one_or_none()

    async def load(self, collection: str, record_id: str) -> Dict[str, Any]:
        """Return a copy of the record's data.

        Raises:
            RecordNotFound: If no record exists under (collection, record_id)
        """
        record = await self.get(collection, record_id)
        if record is None:
            raise RecordNotFound(collection, str(record_id))
        return copy.deepcopy(record.data)

    async def save(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace the record under (collection, record_id)."""
        stored = copy.deepcopy(data)
        stored.setdefault("id", str(record_id))
        record = await self.get(collection, record_id)
        if record is None:
            record = RecordModel(collection=collection, id=str(record_id), data=stored)
            self.session.add(record)
        else:
            # Reassign so the JSON column is flagged dirty
            record.data = stored
        await self.session.flush()
        return copy.deepcopy(stored)

    async def list(self, collection: str) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(RecordModel)
            .where(RecordModel.collection == collection)
            .order_by(RecordModel.id)
        )
        return [copy.deepcopy(r.data) for r in result.scalars().all()]

    async def delete(self, collection: str, record_id: str) -> bool:
        record = await self.get(collection, record_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self.session.flush()
        return True


class SqlRecordStore:
    """RecordStore port backed by RecordRepository.

    Args:
        session_factory: Session factory (defaults to app.database's)
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory

    async def load(self, collection: str, record_id: str) -> Dict[str, Any]:
        try:
            async with get_session_ctx(self.session_factory) as session:
                return await RecordRepository(session).load(collection, record_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load {collection}/{record_id}: {e}")
            raise PersistenceError(f"Failed to load {collection}/{record_id}: {e}") from e

    async def save(self, collection: str, record_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with get_session_ctx(self.session_factory) as session:
                return await RecordRepository(session).save(collection, record_id, record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save {collection}/{record_id}: {e}")
            raise PersistenceError(f"Failed to save {collection}/{record_id}: {e}") from e
