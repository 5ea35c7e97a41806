from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List

from .ledger import LedgerStore, ledger
from .outbox import DeliveryReport, NotificationOutbox, Sender, outbox
from .tmdb import TMDBClient, tmdb

logger = logging.getLogger(__name__)

MORNING_PROMPT = "☀️ Morning! Ready to earn quiz points?"
EVENING_PROMPT = "🌙 Wind down with a thriller or drama tonight?"
UPCOMING_COUNT = 2


class Broadcaster:
    """Queue a message per known user and deliver it through the outbox."""

    def __init__(self, store: LedgerStore, notifications: NotificationOutbox, metadata: TMDBClient):
        self.store = store
        self.outbox = notifications
        self.metadata = metadata

    async def broadcast(self, texts: List[str], send: Sender) -> DeliveryReport:
        users = await self.store.all_users()
        notes = []
        queue_errors = DeliveryReport()
        for text in texts:
            for user in users:
                try:
                    notes.append(await self.outbox.enqueue(user.id, text))
                except Exception as exc:
                    logger.warning("could not queue broadcast user=%s: %s", user.id, exc)
                    queue_errors.record_failure(user.id, exc)

        report = await self.outbox.deliver(notes, send)
        for user_id, errors in queue_errors.failed.items():
            report.failed.setdefault(user_id, []).extend(errors)
        logger.info("broadcast %d messages: %d sent, %d failed", len(notes), len(report.sent), len(report.failed))
        return report

    async def morning(self, send: Sender) -> DeliveryReport:
        return await self.broadcast([MORNING_PROMPT], send)

    async def evening(self, send: Sender) -> DeliveryReport:
        return await self.broadcast([EVENING_PROMPT], send)

    async def upcoming(self, send: Sender) -> DeliveryReport:
        movies = (await self.metadata.upcoming())[:UPCOMING_COUNT]
        texts = []
        for movie in movies:
            text = f"🎬 *{movie.title}*\n🗓️ {movie.release_date or 'TBA'}"
            poster = self.metadata.poster_url(movie)
            if poster:
                text += f"\n🖼️ Poster:\n{poster}"
            texts.append(text)
        if not texts:
            logger.info("no upcoming movies to announce")
            return DeliveryReport()
        return await self.broadcast(texts, send)


broadcaster = Broadcaster(ledger, outbox, tmdb)

JOBS: Dict[str, Callable[[Sender], Awaitable[DeliveryReport]]] = {
    "morning": broadcaster.morning,
    "evening": broadcaster.evening,
    "upcoming": broadcaster.upcoming,
}
