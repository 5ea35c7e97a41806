"""Monthly ledger reset.

Every record gets ``last_score := score``, ``last_tier := tier(score)`` and
``score := 0`` in one bulk write, then each user is notified of the tier they
closed the month with. A bulk-write failure aborts the run without marking the
period, so the next trigger retries it. Archive and notification failures are
reported but never undo the reset.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from . import storage
from .db import db
from .leaderboard import badge, tier
from .ledger import LedgerStore, ledger
from .models import UserRecord
from .outbox import NotificationOutbox, Sender, outbox
from .utils import current_period, now_ts

logger = logging.getLogger(__name__)


class ResetReport(BaseModel):
    period: str
    skipped: bool = False
    reset: int = 0
    notified: List[str] = Field(default_factory=list)
    failed: Dict[str, List[str]] = Field(default_factory=dict)
    snapshot_url: Optional[str] = None
    snapshot_error: Optional[str] = None


def reset_fields(record: UserRecord) -> Dict[str, Any]:
    return {
        "last_score": record.score,
        "last_tier": tier(record.score).value,
        "score": 0,
    }


def reset_message(record: UserRecord) -> str:
    return (
        "📆 Monthly Reset!\n"
        f"🏅 Your Tier: {badge(tier(record.score))}\n"
        f"🎯 Final Score: {record.score}"
    )


class MonthlyReset:
    def __init__(self, store: LedgerStore, notifications: NotificationOutbox, markers: Any):
        self.store = store
        self.outbox = notifications
        self.markers = markers
        self._running = asyncio.Lock()

    async def run(self, send: Sender, now: Optional[datetime] = None) -> ResetReport:
        async with self._running:
            return await self._run(send, now)

    async def _run(self, send: Sender, now: Optional[datetime]) -> ResetReport:
        period = current_period(now)
        report = ResetReport(period=period)

        if await self.markers.find_one({"period": period}):
            logger.info("monthly reset for %s already done", period)
            report.skipped = True
            return report

        before = await self.store.batch_reset_all(reset_fields)
        report.reset = len(before)
        await self.markers.insert_one({"period": period, "users": len(before), "timestamp": now_ts()})

        if storage.is_configured():
            try:
                report.snapshot_url = await storage.upload_ledger_snapshot(period, before)
            except Exception as exc:
                logger.exception("ledger snapshot for %s failed", period)
                report.snapshot_error = str(exc) or exc.__class__.__name__

        notes = []
        for record in before:
            try:
                notes.append(await self.outbox.enqueue(record.id, reset_message(record)))
            except Exception as exc:
                logger.warning("could not queue reset notice user=%s: %s", record.id, exc)
                report.failed.setdefault(record.id, []).append(str(exc) or exc.__class__.__name__)

        delivery = await self.outbox.deliver(notes, send)
        report.notified = delivery.sent
        for user_id, errors in delivery.failed.items():
            report.failed.setdefault(user_id, []).extend(errors)

        logger.info(
            "monthly reset %s: %d users, %d notified, %d failed",
            period, report.reset, len(report.notified), len(report.failed),
        )
        return report


monthly_reset = MonthlyReset(ledger, outbox, db.resets)
