from __future__ import annotations

import random
from typing import List, Optional
from unittest import IsolatedAsyncioTestCase

from .bot import DAILY_DONE, NOT_FOUND, STALE_ANSWER, TRY_AGAIN, BotDispatcher
from .db import InMemoryDatabase
from .duels import DuelStore
from .ledger import LedgerStore
from .models import MovieDetail, MovieSummary, QuizKind
from .quiz import SEARCH_POINTS, QuizController
from .schemas import TgUpdate
from .utils import MetadataUnavailable

HEAT = MovieDetail(
    id=949,
    title="Heat",
    poster_path="/heat.jpg",
    release_date="1995-12-15",
    genres=["Crime"],
    cast=["Al Pacino", "Robert De Niro", "Val Kilmer"],
    overview="Obsessive master thief Neil McCauley leads a top-notch crew on various daring heists",
)


class _FakeTransport:
    def __init__(self):
        self.texts: List[dict] = []
        self.photos: List[dict] = []
        self.acks: List[tuple] = []

    async def send_text(self, chat_id, text, buttons=None, parse_mode=None):
        self.texts.append({"chat_id": chat_id, "text": text, "buttons": buttons})

    async def send_photo(self, chat_id, photo_url, caption, buttons=None, parse_mode="Markdown"):
        self.photos.append({"chat_id": chat_id, "photo": photo_url, "caption": caption, "buttons": buttons})

    async def answer_callback(self, callback_id, text=None):
        self.acks.append((callback_id, text))


class _FakeMetadata:
    def __init__(self, movie: Optional[MovieDetail] = HEAT, fail: bool = False):
        self.movie = movie
        self.fail = fail

    def _check(self):
        if self.fail:
            raise MetadataUnavailable("TMDB request failed")

    async def search_movie(self, query):
        self._check()
        return self.movie

    async def movie_details(self, movie_id):
        self._check()
        return self.movie

    async def similar_movies(self, movie_id):
        self._check()
        return [MovieSummary(id=1, title="Ronin"), MovieSummary(id=2, title="Collateral"), MovieSummary(id=3, title="Thief")]

    async def discover(self, genre_id=None):
        self._check()
        return [self.movie] if self.movie else []

    def poster_url(self, movie):
        return f"https://img.example{movie.poster_path}" if movie.poster_path else None


def _message(text: str, user_id: int = 42) -> TgUpdate:
    return TgUpdate.model_validate(
        {
            "update_id": 1,
            "message": {
                "message_id": 10,
                "chat": {"id": user_id},
                "from": {"id": user_id, "first_name": "Vincent"},
                "text": text,
            },
        }
    )


def _callback(data: Optional[str], user_id: int = 42) -> TgUpdate:
    return TgUpdate.model_validate(
        {
            "update_id": 2,
            "callback_query": {
                "id": "cb-1",
                "from": {"id": user_id},
                "message": {"message_id": 11, "chat": {"id": user_id}},
                "data": data,
            },
        }
    )


class BotDispatcherTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.db = InMemoryDatabase()
        self.store = LedgerStore(self.db.users)
        self.transport = _FakeTransport()
        self.metadata = _FakeMetadata()
        self.bot = BotDispatcher(
            QuizController(self.store, random.Random(3)),
            self.store,
            self.metadata,
            self.transport,
            DuelStore(self.db.duels),
        )

    async def test_search_replies_with_poster_and_awards_points(self):
        await self.bot.handle_update(_message("heat"))

        self.assertEqual(len(self.transport.photos), 1)
        photo = self.transport.photos[0]
        self.assertEqual(photo["photo"], "https://img.example/heat.jpg")
        self.assertIn("*Heat* (1995)", photo["caption"])
        self.assertEqual(self.transport.texts[-1]["text"], "✨ You might also like: Ronin, Collateral")
        self.assertEqual((await self.store.get("42")).score, SEARCH_POINTS)

    async def test_search_without_result(self):
        self.metadata.movie = None
        await self.bot.handle_update(_message("zzzz"))
        self.assertEqual(self.transport.texts[-1]["text"], NOT_FOUND)
        self.assertIsNone(await self.store.get("42"))

    async def test_metadata_outage_asks_to_try_again(self):
        self.metadata.fail = True
        await self.bot.handle_update(_message("heat"))
        self.assertEqual(self.transport.texts[-1]["text"], TRY_AGAIN)
        self.assertIsNone(await self.store.get("42"))

    async def test_quiz_played_through_buttons(self):
        await self.bot.handle_update(_message("/quiz heat"))
        record = await self.store.get("42")
        session = record.session(QuizKind.MOVIE)
        self.assertEqual(len(session.questions), 3)

        for question in session.questions:
            keyboard = self.transport.texts[-1]["buttons"]
            self.assertEqual(len(keyboard), len(question.options))
            data = keyboard[question.answer][0]["callback_data"]
            self.assertNotIn(question.options[question.answer], data)
            await self.bot.handle_update(_callback(data))

        self.assertIn("Quiz complete! You scored 3/3 on Heat.", self.transport.texts[-1]["text"])
        record = await self.store.get("42")
        self.assertIsNone(record.session(QuizKind.MOVIE))
        self.assertEqual(record.score, 30)

        # tapping an old button again does nothing but acknowledge
        await self.bot.handle_update(_callback(data))
        self.assertEqual(self.transport.acks[-1], ("cb-1", STALE_ANSWER))
        self.assertEqual((await self.store.get("42")).score, 30)

    async def test_quiz_for_movie_without_signals(self):
        self.metadata.movie = MovieDetail(id=5, title="Blank", poster_path="/b.jpg")
        await self.bot.handle_update(_message("/quiz blank"))
        self.assertIn("Couldn't build a quiz for Blank", self.transport.texts[-1]["text"])
        self.assertIsNone(await self.store.get("42"))

    async def test_malformed_callback_changes_nothing(self):
        await self.bot.handle_update(_message("/quiz heat"))
        before = await self.store.get("42")

        for data in ("quiz_1", "mq:zz:0:0", None, "mq:" + before.session(QuizKind.MOVIE).ref):
            await self.bot.handle_update(_callback(data))

        self.assertEqual(await self.store.get("42"), before)
        self.assertEqual(len(self.transport.acks), 4)
        self.assertNotIn(TRY_AGAIN, [t["text"] for t in self.transport.texts])

    async def test_leaderboard_command(self):
        await self.store.increment_score("1", 400)
        await self.store.set_nickname("1", "Neil")
        await self.store.increment_score("2", 150)

        await self.bot.handle_update(_message("/leaderboard"))

        text = self.transport.texts[-1]["text"]
        self.assertIn("1. Neil — 400 pts 🥇", text)
        self.assertIn("2. Anonymous — 150 pts 🥈", text)

    async def test_monthly_poster_lists_top_three(self):
        for user_id, score in {"1": 50, "2": 40, "3": 30, "4": 20}.items():
            await self.store.increment_score(user_id, score)

        await self.bot.handle_update(_message("/monthlyposter"))

        text = self.transport.texts[-1]["text"]
        self.assertIn("3. Anonymous — 30 pts", text)
        self.assertNotIn("20 pts", text)

    async def test_duel_creates_pending_record(self):
        await self.bot.handle_update(_message("/duel 777"))

        duels = [d async for d in self.db.duels.find({})]
        self.assertEqual(len(duels), 1)
        self.assertEqual((duels[0]["challenger"], duels[0]["opponent"], duels[0]["status"]), ("42", "777", "pending"))
        self.assertIn("777", self.transport.texts[-1]["text"])
        self.assertIsNotNone(duels[0]["created_at"].tzinfo)

    async def test_nickname_command(self):
        await self.bot.handle_update(_message("/nickname   Vincent   Hanna "))
        self.assertEqual((await self.store.get("42")).nickname, "Vincent Hanna")

    async def test_daily_quiz_via_command(self):
        await self.bot.handle_update(_message("/daily"))
        session = (await self.store.get("42")).session(QuizKind.DAILY)
        question = session.questions[0]
        data = self.transport.texts[-1]["buttons"][question.answer][0]["callback_data"]

        await self.bot.handle_update(_callback(data))

        self.assertEqual((await self.store.get("42")).score, 15)
        self.assertIn("+15 pts", self.transport.texts[-1]["text"])

    async def test_second_daily_same_day_is_refused(self):
        await self.bot.handle_update(_message("/daily"))
        question = (await self.store.get("42")).session(QuizKind.DAILY).questions[0]
        data = self.transport.texts[-1]["buttons"][question.answer][0]["callback_data"]
        await self.bot.handle_update(_callback(data))

        await self.bot.handle_update(_message("/daily"))

        self.assertEqual(self.transport.texts[-1]["text"], DAILY_DONE)
        record = await self.store.get("42")
        self.assertIsNone(record.session(QuizKind.DAILY))
        self.assertEqual(record.score, 15)

    async def test_failing_callback_is_still_acknowledged(self):
        self.metadata.fail = True
        await self.bot.handle_update(_callback("qz:949"))

        self.assertEqual(self.transport.acks, [("cb-1", None)])
        self.assertEqual(self.transport.texts[-1]["text"], TRY_AGAIN)

    async def test_unknown_command(self):
        await self.bot.handle_update(_message("/frobnicate"))
        self.assertIn("Unknown command", self.transport.texts[-1]["text"])
