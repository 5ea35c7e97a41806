from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from .db import db, settings
from .models import Notification
from .utils import fan_out, now_ts

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], Awaitable[Any]]


class DeliveryReport(BaseModel):
    # users with at least one delivered message, and every error per user
    sent: List[str] = Field(default_factory=list)
    failed: Dict[str, List[str]] = Field(default_factory=dict)

    def record_sent(self, user_id: str) -> None:
        if user_id not in self.sent:
            self.sent.append(user_id)

    def record_failure(self, user_id: str, exc: BaseException) -> str:
        error = str(exc) or exc.__class__.__name__
        self.failed.setdefault(user_id, []).append(error)
        return error


class NotificationOutbox:
    """Persist per-user notifications so delivery can be tracked and retried."""

    def __init__(self, counters: Any, notifications: Any, concurrency: Optional[int] = None):
        self.counters_collection = counters
        self.notifications_collection = notifications
        self.concurrency = concurrency or settings.NOTIFY_CONCURRENCY

    async def _next_seq(self, user_id: str) -> int:
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": user_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

        if not counter_doc:
            # Some Mongo-compatible providers (for example Azure Cosmos DB)
            # complete the upsert but return ``None`` instead of the updated
            # document. Fall back to a direct lookup.
            counter_doc = await self.counters_collection.find_one({"_id": user_id})

        return int((counter_doc or {}).get("seq", 1))

    async def enqueue(self, user_id: str, text: str) -> Notification:
        """Store a pending notification for a user and return it."""

        note = Notification(user_id=user_id, seq=await self._next_seq(user_id), text=text, created_at=now_ts())
        await self.notifications_collection.insert_one(note.model_dump())
        return note

    async def pending(self, user_id: Optional[str] = None, limit: int = 0) -> List[Notification]:
        query: Dict[str, Any] = {"status": "pending"}
        if user_id is not None:
            query["user_id"] = user_id
        cursor = self.notifications_collection.find(query).sort([("created_at", 1), ("seq", 1)]).limit(limit)
        return [Notification(**doc) async for doc in cursor]

    async def _mark(self, note: Notification, status: str, error: Optional[str] = None) -> None:
        await self.notifications_collection.update_one(
            {"user_id": note.user_id, "seq": note.seq},
            {"$set": {"status": status, "error": error}},
        )

    async def deliver(self, notes: List[Notification], send: Sender) -> DeliveryReport:
        """Send ``notes`` with bounded concurrency; one failure never stops the rest."""

        by_key = {(n.user_id, n.seq): n for n in notes}

        async def _send(key):
            note = by_key[key]
            await send(note.user_id, note.text)
            await self._mark(note, "sent")

        ok, failed = await fan_out(by_key, _send, self.concurrency)

        report = DeliveryReport()
        for user_id, _ in ok:
            report.record_sent(user_id)
        for (user_id, seq), exc in failed.items():
            logger.warning("notification user=%s seq=%d failed: %s", user_id, seq, exc)
            error = report.record_failure(user_id, exc)
            try:
                await self._mark(by_key[(user_id, seq)], "failed", error)
            except Exception:
                logger.exception("could not record failed notification user=%s seq=%d", user_id, seq)
        return report


outbox = NotificationOutbox(db.notification_counters, db.notifications)
