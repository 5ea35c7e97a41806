from __future__ import annotations

import asyncio
import logging
import random
import uuid
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from .ledger import LedgerStore, ledger
from .models import MovieDetail, Question, QuizKind, QuizSession
from .questions import generate_questions
from .utils import current_day

logger = logging.getLogger(__name__)

# ledger points per correct answer
POINTS = {QuizKind.MOVIE: 10, QuizKind.DAILY: 15}
SEARCH_POINTS = 10


class AnswerStatus(str, Enum):
    NEXT = "next"
    COMPLETE = "complete"
    STALE = "stale"


class AnswerOutcome(BaseModel):
    status: AnswerStatus
    kind: QuizKind
    correct: bool = False
    correct_option: Optional[str] = None
    awarded: int = 0
    session: Optional[QuizSession] = None

    @property
    def next_question(self) -> Optional[Question]:
        if self.status != AnswerStatus.NEXT or self.session is None:
            return None
        return self.session.current


class QuizController:
    """Drives quiz sessions: start, answer, advance, complete.

    Answers are serialized per (user, kind), so a duplicate tap sees the
    already-advanced session and is rejected as stale.
    """

    def __init__(self, store: LedgerStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()
        self.locks: Dict[Tuple[str, QuizKind], asyncio.Lock] = {}

    def _lock(self, user_id: str, kind: QuizKind) -> asyncio.Lock:
        self.locks.setdefault((user_id, kind), asyncio.Lock())
        return self.locks[(user_id, kind)]

    async def start_movie_quiz(self, user_id: str, movie: MovieDetail) -> Optional[QuizSession]:
        questions = generate_questions(movie, self.rng)
        if not questions:
            logger.info("no quiz for movie=%s user=%s", movie.id, user_id)
            return None
        return await self._start(user_id, QuizKind.MOVIE, movie.title, questions)

    async def played_daily(self, user_id: str) -> bool:
        record = await self.store.get(user_id)
        return bool(record and record.daily_day == current_day())

    async def start_daily_quiz(self, user_id: str, movie: MovieDetail) -> Optional[QuizSession]:
        if await self.played_daily(user_id):
            logger.info("daily quiz already played today user=%s", user_id)
            return None
        questions = generate_questions(movie, self.rng)
        if not questions:
            logger.info("no daily quiz for movie=%s user=%s", movie.id, user_id)
            return None
        return await self._start(user_id, QuizKind.DAILY, movie.title, questions[:1])

    async def _start(self, user_id: str, kind: QuizKind, title: str, questions: List[Question]) -> QuizSession:
        session = QuizSession(kind=kind, ref=uuid.uuid4().hex[:12], title=title, questions=questions)
        async with self._lock(user_id, kind):
            # replaces any earlier session of this kind, whose buttons become stale
            await self.store.merge_session(user_id, session)
        logger.info("started %s quiz ref=%s user=%s questions=%d", kind.value, session.ref, user_id, len(questions))
        return session

    async def answer(self, user_id: str, kind: QuizKind, ref: str, position: int, selected: int) -> AnswerOutcome:
        """Score ``selected`` for the question at ``position`` of session ``ref``.

        Anything that does not match the stored session exactly (another
        session, a question already answered, an unknown option) is stale and
        changes nothing.
        """

        async with self._lock(user_id, kind):
            record = await self.store.get(user_id)
            session = record.session(kind) if record else None
            today = current_day()
            question = None
            if kind == QuizKind.DAILY and record is not None and record.daily_day == today:
                # one daily quiz per UTC day
                session = None
            if session is not None and session.ref == ref and session.index == position:
                question = session.current
            if question is None or not 0 <= selected < len(question.options):
                logger.info("stale %s answer ref=%s user=%s", kind.value, ref, user_id)
                return AnswerOutcome(status=AnswerStatus.STALE, kind=kind)

            correct = selected == question.answer
            session.index += 1
            if correct:
                session.score += 1

            if session.is_active:
                await self.store.merge_session(user_id, session)
                status = AnswerStatus.NEXT
            else:
                if kind == QuizKind.DAILY:
                    await self.store.clear_session(user_id, kind, daily_day=today)
                else:
                    await self.store.clear_session(user_id, kind)
                status = AnswerStatus.COMPLETE

            awarded = POINTS[kind] if correct else 0
            if awarded:
                await self.store.increment_score(user_id, awarded)

        return AnswerOutcome(
            status=status,
            kind=kind,
            correct=correct,
            correct_option=question.options[question.answer],
            awarded=awarded,
            session=session,
        )


controller = QuizController(ledger)
