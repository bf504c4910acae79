from __future__ import annotations
import datetime as dt
import json
import logging
from typing import Sequence
from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base
from .errors import PersistenceError
from .schemas import VocabItem, utcnow

logger = logging.getLogger(__name__)

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)  # tg user id
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ui_lang: Mapped[str] = mapped_column(String(8), default="zh")  # zh/en
    level: Mapped[str] = mapped_column(String(16), default="intermediate")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class VocabularyRecord(Base):
    """The whole vocabulary collection of one owner, stored as one JSON list."""
    __tablename__ = "vocabulary_records"
    owner_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    items_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON list, most recent first
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

def _items_from_json(raw: str | None) -> list[VocabItem]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise PersistenceError(f"vocabulary record is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise PersistenceError("vocabulary record must be a JSON list")
    items: list[VocabItem] = []
    for idx, entry in enumerate(data):
        try:
            items.append(VocabItem.from_dict(entry))
        except (KeyError, TypeError, ValueError):
            logger.warning("vocabulary_record: skipped unreadable entry index=%s", idx)
    return items

class SqlVocabularyPersistence:
    """VocabularyPersistence writing the full collection in one transaction."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], owner_id: int):
        self._sessionmaker = sessionmaker
        self.owner_id = owner_id

    async def load(self) -> list[VocabItem]:
        async with self._sessionmaker() as s:
            rec = await s.get(VocabularyRecord, self.owner_id)
            return _items_from_json(rec.items_json if rec else None)

    async def save(self, items: Sequence[VocabItem]) -> None:
        payload = json.dumps([item.to_dict() for item in items], ensure_ascii=False)
        async with self._sessionmaker() as s:
            rec = await s.get(VocabularyRecord, self.owner_id)
            if rec is None:
                rec = VocabularyRecord(owner_id=self.owner_id, items_json=payload)
                s.add(rec)
            else:
                rec.items_json = payload
                rec.updated_at = utcnow()
            await s.commit()
