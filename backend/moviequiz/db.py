from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import AsyncMongoClient, ReturnDocument, UpdateOne


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"

    BOT_TOKEN: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    WEBHOOK_PATH: str = "/telegram/webhook"
    WEBHOOK_SECRET: Optional[str] = None
    PUBLIC_URL: Optional[str] = None

    TMDB_API_KEY: str = ""
    TMDB_BASE_URL: str = "https://api.themoviedb.org/3"
    TMDB_IMAGE_BASE: str = "https://image.tmdb.org/t/p/w500"
    HTTP_TIMEOUT: float = 10.0

    MONGODB_URI: Optional[str] = None
    MONGODB_DB: str = "moviequiz"

    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = None
    AZURE_STORAGE_CONTAINER: str = "ledger-snapshots"

    NOTIFY_CONCURRENCY: int = 8


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

SortSpec = Union[str, Sequence[Tuple[str, int]]]


def _get_path(doc: Dict[str, Any], path: str, default: Any = None) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value


def _unset_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


class InMemoryCursor:
    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query or {}
        self._sort_keys: List[Tuple[str, int]] = []
        self._limit: Optional[int] = None
        self._materialised: Optional[Iterator[Dict[str, Any]]] = None

    def sort(self, key: SortSpec, direction: int = 1):
        # Accepts either ``sort("score", -1)`` or ``sort([("score", -1), ("id", 1)])`` like pymongo.
        if isinstance(key, str):
            self._sort_keys = [(key, direction)]
        else:
            self._sort_keys = list(key)
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def _ensure_materialised(self):
        if self._materialised is not None:
            return

        docs = await self._collection._find_all(self._query)

        # Stable sorts applied from the least significant key upwards.
        for sort_key, direction in reversed(self._sort_keys):
            docs.sort(
                key=lambda d, k=sort_key: (_get_path(d, k) is not None, _get_path(d, k, 0)),
                reverse=direction < 0,
            )

        if self._limit:
            docs = docs[: self._limit]

        self._materialised = iter(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        await self._ensure_materialised()
        assert self._materialised is not None
        try:
            return next(self._materialised)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class InMemoryCollection:
    def __init__(self):
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in self._docs:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return InMemoryCursor(self, query or {})

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            self._update_locked(query, update, upsert)

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    original = copy.deepcopy(doc)
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else original)

            if upsert:
                new_doc = self._seed_from_query(query)
                new_doc = self._apply_update(new_doc, update, inserting=True)
                self._docs.append(new_doc)
                if return_document == ReturnDocument.AFTER:
                    return copy.deepcopy(new_doc)
                return None

        return None

    async def bulk_write(self, requests: Sequence[UpdateOne], ordered: bool = True) -> int:
        """Apply a batch of ``UpdateOne`` requests under a single lock acquisition.

        Returns the number of matched documents.
        """

        async with self._lock:
            staged = copy.deepcopy(self._docs)
            matched = 0
            for request in requests:
                # pymongo 4.x keeps the request body on these attributes; there is no public accessor.
                query, update, upsert = request._filter, request._doc, bool(request._upsert)
                if self._update_locked(query, update, upsert, docs=staged):
                    matched += 1
            self._docs = staged
            return matched

    def _update_locked(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        upsert: bool,
        docs: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        docs = self._docs if docs is None else docs
        for idx, doc in enumerate(docs):
            if self._matches(doc, query):
                docs[idx] = self._apply_update(copy.deepcopy(doc), update)
                return True

        if upsert:
            new_doc = self._apply_update(self._seed_from_query(query), update, inserting=True)
            docs.append(new_doc)
        return False

    def _seed_from_query(self, query: Dict[str, Any]) -> Dict[str, Any]:
        doc: Dict[str, Any] = {}
        for key, value in (query or {}).items():
            if not isinstance(value, dict):
                _set_path(doc, key, copy.deepcopy(value))
        return doc

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    _set_path(doc, key, copy.deepcopy(value))
            elif op == "$setOnInsert":
                if inserting:
                    for key, value in payload.items():
                        _set_path(doc, key, copy.deepcopy(value))
            elif op == "$inc":
                for key, value in payload.items():
                    current = _get_path(doc, key, 0) or 0
                    _set_path(doc, key, current + value)
            elif op == "$unset":
                for key in payload:
                    _unset_path(doc, key)
            else:  # pragma: no cover - only the above operators are used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            if isinstance(expected, dict):
                raise ValueError(f"Unsupported query operator(s): {expected}")
            if _get_path(doc, key) != expected:
                return False
        return True


class InMemoryDatabase:
    def __init__(self):
        self.users = InMemoryCollection()
        self.duels = InMemoryCollection()
        self.notifications = InMemoryCollection()
        self.notification_counters = InMemoryCollection()
        self.resets = InMemoryCollection()


def get_database() -> Any:
    """Return a Mongo database when ``MONGODB_URI`` is set, else the in-process store."""

    if settings.MONGODB_URI:
        client: AsyncMongoClient = AsyncMongoClient(settings.MONGODB_URI)
        return client[settings.MONGODB_DB]
    return InMemoryDatabase()


db: Any = get_database()
