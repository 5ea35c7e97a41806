from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, List, Optional

from pymongo import ReturnDocument, UpdateOne

from .db import db
from .models import QuizKind, QuizSession, UserRecord

logger = logging.getLogger(__name__)

ResetTransform = Callable[[UserRecord], Dict[str, Any]]


class LedgerStore:
    """Per-user score ledger plus the quiz session slots hanging off each record.

    ``score`` is only ever written by :meth:`increment_score` and
    :meth:`batch_reset_all`; both hold the same per-user lock.
    """

    def __init__(self, collection: Any):
        self.users = collection
        self.locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, user_id: str) -> asyncio.Lock:
        self.locks.setdefault(user_id, asyncio.Lock())
        return self.locks[user_id]

    async def get(self, user_id: str) -> Optional[UserRecord]:
        doc = await self.users.find_one({"id": user_id})
        return UserRecord(**doc) if doc else None

    async def merge_session(self, user_id: str, session: QuizSession) -> None:
        await self.users.update_one(
            {"id": user_id},
            {
                "$set": {f"sessions.{session.kind.value}": session.model_dump(mode="json")},
                "$setOnInsert": {"score": 0},
            },
            upsert=True,
        )

    async def clear_session(self, user_id: str, kind: QuizKind, **fields: Any) -> None:
        """Empty the ``kind`` slot, setting ``fields`` on the record in the same write."""

        update: Dict[str, Any] = {"$unset": {f"sessions.{kind.value}": ""}}
        if fields:
            update["$set"] = fields
        await self.users.update_one({"id": user_id}, update)

    async def set_nickname(self, user_id: str, nickname: str) -> None:
        await self.users.update_one(
            {"id": user_id},
            {"$set": {"nickname": nickname}, "$setOnInsert": {"score": 0}},
            upsert=True,
        )

    async def increment_score(self, user_id: str, delta: int) -> int:
        async with self._lock(user_id):
            doc = await self.users.find_one_and_update(
                {"id": user_id},
                {"$inc": {"score": delta}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            # Some Mongo-compatible providers complete the upsert without returning the document.
            doc = await self.users.find_one({"id": user_id}) or {}
        new_score = int(doc.get("score", 0))
        logger.debug("score user=%s delta=%+d now=%d", user_id, delta, new_score)
        return new_score

    async def rank_top(self, n: int) -> List[UserRecord]:
        cursor = self.users.find({}).sort([("score", -1), ("id", 1)]).limit(n)
        return [UserRecord(**doc) async for doc in cursor]

    async def all_users(self) -> List[UserRecord]:
        return [UserRecord(**doc) async for doc in self.users.find({})]

    async def batch_reset_all(self, transform: ResetTransform) -> List[UserRecord]:
        """Apply ``transform`` to every record in one bulk write.

        Every user's lock is held from the read until the write lands, so an
        increment either finishes before its user is read or is applied on top
        of the reset. Returns the records as they were before the reset.
        """

        user_ids = sorted({doc["id"] async for doc in self.users.find({})})
        locked = set(user_ids)
        async with AsyncExitStack() as stack:
            for user_id in user_ids:
                await stack.enter_async_context(self._lock(user_id))

            before = [
                UserRecord(**doc)
                async for doc in self.users.find({})
                if doc["id"] in locked
            ]
            requests = [UpdateOne({"id": r.id}, {"$set": transform(r)}) for r in before]
            if requests:
                await self.users.bulk_write(requests, ordered=False)

        logger.info("reset %d ledger records", len(before))
        return before


ledger = LedgerStore(db.users)
