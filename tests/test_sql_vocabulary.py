import asyncio
import datetime as dt
import json
import pytest

sqlalchemy = pytest.importorskip("sqlalchemy")
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from realtalk.db import Base
from realtalk.errors import PersistenceError
from realtalk.models import SqlVocabularyPersistence, VocabularyRecord
from realtalk.schemas import SOURCE_FREETALK, SOURCE_PRACTICE, VocabItem
from realtalk.vocabulary import VocabularyStore

async def _setup_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    return engine, Session

def test_store_round_trips_through_sql_record():
    async def _run():
        engine, Session = await _setup_session()
        store = VocabularyStore(SqlVocabularyPersistence(Session, owner_id=7))
        await store.load()
        assert len(store) == 0

        added_at = dt.datetime(2024, 5, 1, 9, 30, tzinfo=dt.timezone.utc)
        await store.add(VocabItem(word="touch base", phonetic="/tʌtʃ beɪs/", native_meaning="简单联系", added_at=added_at, source=SOURCE_PRACTICE))
        await store.add(VocabItem(word="swamped", source=SOURCE_FREETALK))

        reloaded = VocabularyStore(SqlVocabularyPersistence(Session, owner_id=7))
        await reloaded.load()
        assert [i.word for i in reloaded.items] == ["swamped", "touch base"]
        item = reloaded.get("TOUCH BASE")
        assert item.added_at == added_at
        assert item.native_meaning == "简单联系"
        assert item.source == SOURCE_PRACTICE

        other = VocabularyStore(SqlVocabularyPersistence(Session, owner_id=8))
        await other.load()
        assert len(other) == 0

        await reloaded.clear()
        async with Session() as s:
            rec = await s.get(VocabularyRecord, 7)
            assert json.loads(rec.items_json) == []
        await engine.dispose()
    asyncio.run(_run())

def test_unreadable_entries_are_skipped():
    async def _run():
        engine, Session = await _setup_session()
        good = VocabItem(word="wrap up").to_dict()
        async with Session() as s:
            s.add(VocabularyRecord(owner_id=1, items_json=json.dumps([good, {"phonetic": "no word"}])))
            await s.commit()
        store = VocabularyStore(SqlVocabularyPersistence(Session, owner_id=1))
        await store.load()
        assert [i.word for i in store.items] == ["wrap up"]
        await engine.dispose()
    asyncio.run(_run())

def test_corrupt_record_is_a_persistence_error():
    async def _run():
        engine, Session = await _setup_session()
        async with Session() as s:
            s.add(VocabularyRecord(owner_id=2, items_json="{not json"))
            await s.commit()
        store = VocabularyStore(SqlVocabularyPersistence(Session, owner_id=2))
        with pytest.raises(PersistenceError):
            await store.load()
        await engine.dispose()
    asyncio.run(_run())
