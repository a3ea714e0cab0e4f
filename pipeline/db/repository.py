from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pipeline.db.models import Base, Lead, QualifiedLead, RawMessage

RAW_MESSAGES = "raw_messages"
LEADS = "leads"
QUALIFIED_LEADS = "qualified_leads"

COLLECTIONS: dict[str, type[Base]] = {
    RAW_MESSAGES: RawMessage,
    LEADS: Lead,
    QUALIFIED_LEADS: QualifiedLead,
}


def _model(collection: str) -> type[Base]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


class DocumentStore:
    """
    Store operations the pipeline depends on.

    One instance is built at startup around a session factory and injected
    into every component. Each call runs in its own short transaction, so
    every write is atomic per record and nothing is held open across
    network I/O.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ======================================================
    # GENERIC RECORD OPERATIONS
    # ======================================================

    async def get_by_id(self, collection: str, record_id: str) -> Any | None:
        model = _model(collection)
        async with self._session_factory() as session:
            return await session.get(model, record_id)

    async def query_equals(
        self, collection: str, field: str, value: Any, limit: int | None = None
    ) -> list[Any]:
        model = _model(collection)
        stmt = select(model).where(getattr(model, field) == value)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_equals(self, collection: str, field: str, value: Any) -> int:
        model = _model(collection)
        stmt = select(func.count()).select_from(model).where(getattr(model, field) == value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    async def update_fields(self, collection: str, record_id: str, fields: dict[str, Any]) -> None:
        """Partial update of one record in a single statement."""
        if not fields:
            raise ValueError("No fields to update")

        model = _model(collection)
        stmt = update(model).where(model.id == record_id).values(**fields)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def insert(self, collection: str, fields: dict[str, Any]) -> Any:
        """
        Insert a record and return it.
        Raises IntegrityError when a unique key already exists.
        """
        model = _model(collection)
        record = model(**fields)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
            return record

    # ======================================================
    # MESSAGE QUEUE HELPERS
    # ======================================================

    async def claim(self, message_id: str) -> bool:
        """
        Atomically mark a message as being processed.
        Returns True if this caller won the claim, False if the message is
        already claimed or already processed.
        """
        stmt = (
            update(RawMessage)
            .where(
                RawMessage.id == message_id,
                RawMessage.processing.is_(False),
                RawMessage.processed.is_(False),
            )
            .values(processing=True)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def fetch_eligible(self, limit: int) -> list[RawMessage]:
        """Oldest unprocessed, unclaimed messages."""
        stmt = (
            select(RawMessage)
            .where(RawMessage.processed.is_(False), RawMessage.processing.is_(False))
            .order_by(RawMessage.received_at.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
