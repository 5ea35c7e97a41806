from __future__ import annotations

import logging
from typing import Any

from .db import db
from .models import Duel

logger = logging.getLogger(__name__)


class DuelStore:
    def __init__(self, collection: Any):
        self.duels = collection

    async def request(self, challenger: str, opponent: str) -> Duel:
        duel = Duel(challenger=challenger, opponent=opponent)
        await self.duels.insert_one(duel.model_dump())
        logger.info("duel requested challenger=%s opponent=%s", challenger, opponent)
        return duel


duels = DuelStore(db.duels)
