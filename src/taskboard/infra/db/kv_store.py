from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def put(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    """
    Process-local slots. Used by tests and throwaway sessions;
    swap with SQLiteKeyValueStore without touching the provider.
    """
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._slots: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._slots.get(key)

    async def put(self, key: str, value: str) -> None:
        self._slots[key] = value


class Base(DeclarativeBase):
    pass


class SlotRow(Base):
    __tablename__ = "kv_slots"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SQLiteKeyValueStore:
    def __init__(self, sessionmaker):
        self.sessionmaker = sessionmaker

    async def get(self, key: str) -> Optional[str]:
        async with self.sessionmaker() as session:
            row = await session.get(SlotRow, key)
            return row.value if row else None

    async def put(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc)
        async with self.sessionmaker() as session:
            row = await session.get(SlotRow, key)
            if row is None:
                session.add(SlotRow(key=key, value=value, updated_at=now))
            else:
                row.value = value
                row.updated_at = now
            await session.commit()
