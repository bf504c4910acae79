from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Iterator, Protocol, Sequence

from .errors import PersistenceError, UpstreamError, ValidationError
from .normalize import contains_ci, norm_text, word_key
from .schemas import VOCAB_SOURCES, Enrichment, VocabItem

logger = logging.getLogger(__name__)


class VocabularyPersistence(Protocol):
    """Durable form of the whole collection: loaded and written in full."""

    async def load(self) -> list[VocabItem]:
        ...

    async def save(self, items: Sequence[VocabItem]) -> None:
        ...


class Enricher(Protocol):
    async def enrich(self, word: str, context: str | None = None) -> Enrichment:
        ...


class MemoryVocabularyPersistence:
    def __init__(self, items: Iterable[VocabItem] = ()) -> None:
        self.items: list[VocabItem] = list(items)
        self.saves = 0

    async def load(self) -> list[VocabItem]:
        return list(self.items)

    async def save(self, items: Sequence[VocabItem]) -> None:
        self.items = list(items)
        self.saves += 1


class VocabularyView:
    """Filtered listing; iterating again re-applies the filter to the live store."""

    def __init__(self, store: "VocabularyStore", source: str | None, search: str | None) -> None:
        self._store = store
        self._source = source
        self._search = norm_text(search)

    def _matches(self, item: VocabItem) -> bool:
        if self._source and item.source != self._source:
            return False
        if self._search:
            return contains_ci(item.word, self._search) or contains_ci(item.native_meaning, self._search)
        return True

    def __iter__(self) -> Iterator[VocabItem]:
        items = [item for item in self._store.items if self._matches(item)]
        # stable: equal timestamps keep most-recent-first insertion order
        items.sort(key=lambda item: item.added_at, reverse=True)
        return iter(items)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class VocabularyStore:
    """Deduplicated saved terms, most recent first, persisted on every mutation."""

    def __init__(self, persistence: VocabularyPersistence) -> None:
        self._persistence = persistence
        self._items: tuple[VocabItem, ...] = ()
        self._keys: frozenset[str] = frozenset()
        self._lock = asyncio.Lock()
        self.loaded = False

    @property
    def items(self) -> tuple[VocabItem, ...]:
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    async def load(self) -> None:
        async with self._lock:
            try:
                raw = await self._persistence.load()
            except UpstreamError:
                raise
            except Exception as exc:
                raise PersistenceError(f"vocabulary load failed: {exc}") from exc
            unique: list[VocabItem] = []
            seen: set[str] = set()
            for item in raw:
                key = word_key(item.word)
                if key and key not in seen:
                    seen.add(key)
                    unique.append(item)
            self._set(unique)
            self.loaded = True
            logger.info("vocabulary: loaded items=%s", len(unique))

    def _set(self, items: Sequence[VocabItem]) -> None:
        self._items = tuple(items)
        self._keys = frozenset(word_key(item.word) for item in self._items)

    async def _commit(self, items: Sequence[VocabItem]) -> None:
        # durable first, then visible
        if not self.loaded:
            # writing now would replace a record that was never read
            raise PersistenceError("vocabulary is not loaded")
        try:
            await self._persistence.save(list(items))
        except UpstreamError:
            raise
        except Exception as exc:
            raise PersistenceError(f"vocabulary save failed: {exc}") from exc
        self._set(items)

    def is_saved(self, word: str) -> bool:
        return word_key(word) in self._keys

    async def add(self, item: VocabItem) -> bool:
        word = norm_text(item.word)
        if not word:
            return False
        if item.source not in VOCAB_SOURCES:
            raise ValidationError(f"unknown vocabulary source: {item.source}")
        async with self._lock:
            if self.is_saved(word):
                return False
            if word != item.word:
                item = replace(item, word=word)
            await self._commit((item,) + self._items)
        logger.info("vocabulary: added word=%r source=%s", word, item.source)
        return True

    async def remove(self, word: str) -> bool:
        key = word_key(word)
        async with self._lock:
            if key not in self._keys:
                return False
            await self._commit([item for item in self._items if word_key(item.word) != key])
        logger.info("vocabulary: removed word=%r", word)
        return True

    async def toggle(self, item: VocabItem) -> bool:
        """Save the word if absent, remove it if present; True when now saved."""
        if self.is_saved(item.word):
            await self.remove(item.word)
            return False
        return await self.add(item)

    async def clear(self) -> None:
        async with self._lock:
            await self._commit(())
        logger.info("vocabulary: cleared")

    def get(self, word: str) -> VocabItem | None:
        key = word_key(word)
        for item in self._items:
            if word_key(item.word) == key:
                return item
        return None

    def list(self, source: str | None = None, search: str | None = None) -> VocabularyView:
        if source is not None and source not in VOCAB_SOURCES:
            raise ValidationError(f"unknown vocabulary source: {source}")
        return VocabularyView(self, source, search)

    async def add_enriched(
        self,
        word: str,
        enricher: Enricher | None,
        *,
        source: str,
        context: str | None = None,
    ) -> bool:
        """Look the word up with the enricher, then add it.

        An already saved word is not looked up again. Enricher failures
        propagate and nothing is saved.
        """
        if source not in VOCAB_SOURCES:
            raise ValidationError(f"unknown vocabulary source: {source}")
        if not self.loaded:
            raise PersistenceError("vocabulary is not loaded")
        word = norm_text(word)
        if not word or self.is_saved(word):
            return False
        item = VocabItem(word=word, source=source)
        if enricher is not None:
            item = item.with_enrichment(await enricher.enrich(word, context))
        return await self.add(item)
