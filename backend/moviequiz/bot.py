from __future__ import annotations

import logging
from datetime import date
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import quote_plus

from . import callbacks
from .duels import DuelStore, duels
from .leaderboard import build_entries, format_leaderboard, format_monthly_poster
from .ledger import LedgerStore, ledger
from .models import MovieDetail, QuizKind, QuizSession
from .quiz import POINTS, SEARCH_POINTS, AnswerOutcome, AnswerStatus, QuizController, controller
from .schemas import TgCallbackQuery, TgMessage, TgUpdate
from .telegram import Keyboard, TelegramClient, telegram
from .tmdb import GENRE_IDS, TMDBClient, tmdb
from .utils import QuizBotError

logger = logging.getLogger(__name__)

LEADERBOARD_SIZE = 10
POSTER_SIZE = 3
SIMILAR_COUNT = 2
MAX_NICKNAME = 32

NOT_FOUND = "🙅🏽‍♂️ No movie found. Try another title."
TRY_AGAIN = "⚠️ Something went wrong on our side. Please try again in a moment."
STALE_ANSWER = "⌛ That quiz is already finished."
DAILY_DONE = "✅ You already played today's daily quiz. Come back tomorrow!"
WELCOME = (
    "🎬 Welcome! Send me a movie title to look it up and earn points.\n"
    "/quiz <title>: take a quiz about a movie\n"
    "/daily: today's bonus question\n"
    "/leaderboard: see who's on top\n"
    "/nickname <name>: set your leaderboard name"
)

CommandHandler = Callable[[str, str, str], Awaitable[None]]


def trailer_url(title: str) -> str:
    return f"https://youtube.com/results?search_query={quote_plus(title + ' trailer')}"


def question_keyboard(session: QuizSession) -> Keyboard:
    question = session.current
    assert question is not None
    return [
        [{"text": option, "callback_data": callbacks.answer_data(session.kind, session.ref, session.index, i)}]
        for i, option in enumerate(question.options)
    ]


def question_text(session: QuizSession) -> str:
    question = session.current
    assert question is not None
    if session.kind == QuizKind.DAILY:
        return f"🗓️ Daily quiz: {session.title}\n\n{question.prompt}"
    return f"❓ Question {session.index + 1}/{len(session.questions)}\n\n{question.prompt}"


def feedback_text(outcome: AnswerOutcome) -> str:
    if outcome.correct:
        line = "✅ Correct!"
        if outcome.awarded:
            line += f" +{outcome.awarded} pts"
    else:
        line = f"❌ Wrong! The answer was {outcome.correct_option}."

    if outcome.status != AnswerStatus.COMPLETE or outcome.session is None:
        return line
    session = outcome.session
    if session.kind == QuizKind.DAILY:
        return f"{line}\nCome back tomorrow for another daily question."
    return f"{line}\n\n🏁 Quiz complete! You scored {session.score}/{len(session.questions)} on {session.title}."


class BotDispatcher:
    """Routes Telegram updates to the quiz, ledger and lookup collaborators.

    Every error stops here: the user gets one "try again" reply and the
    webhook still succeeds.
    """

    def __init__(
        self,
        quiz: QuizController,
        store: LedgerStore,
        metadata: TMDBClient,
        transport: TelegramClient,
        duel_store: DuelStore,
    ):
        self.quiz = quiz
        self.store = store
        self.metadata = metadata
        self.transport = transport
        self.duels = duel_store
        self.commands: Dict[str, CommandHandler] = {
            "start": self.cmd_start,
            "help": self.cmd_start,
            "quiz": self.cmd_quiz,
            "daily": self.cmd_daily,
            "leaderboard": self.cmd_leaderboard,
            "monthlyposter": self.cmd_monthly_poster,
            "duel": self.cmd_duel,
            "nickname": self.cmd_nickname,
        }

    async def handle_update(self, update: TgUpdate) -> None:
        try:
            if update.callback_query is not None:
                await self.on_callback(update.callback_query)
            elif update.message is not None and update.message.text:
                await self.on_message(update.message)
        except QuizBotError as exc:
            logger.warning("update %s: %s", update.update_id, exc)
            await self._apologise(update)
        except Exception:
            logger.exception("update %s failed", update.update_id)
            await self._apologise(update)

    async def _apologise(self, update: TgUpdate) -> None:
        chat_id = _chat_of(update)
        if chat_id is None:
            return
        try:
            await self.transport.send_text(chat_id, TRY_AGAIN)
        except QuizBotError as exc:
            logger.warning("could not deliver apology to %s: %s", chat_id, exc)

    # messages

    async def on_message(self, message: TgMessage) -> None:
        chat_id = str(message.chat.id)
        user_id = str(message.from_user.id) if message.from_user else chat_id
        text = (message.text or "").strip()

        if not text.startswith("/"):
            await self.search(user_id, chat_id, text)
            return

        command, _, args = text[1:].partition(" ")
        command = command.split("@", 1)[0].lower()
        handler = self.commands.get(command)
        if handler is None:
            await self.transport.send_text(chat_id, "🤔 Unknown command. Try /help.")
            return
        await handler(user_id, chat_id, args.strip())

    async def search(self, user_id: str, chat_id: str, query: str) -> None:
        movie = await self.metadata.search_movie(query)
        poster = self.metadata.poster_url(movie) if movie else None
        if not movie or not poster:
            await self.transport.send_text(chat_id, NOT_FOUND)
            return

        year = (movie.release_date or "").split("-")[0] or "n/a"
        caption = f"🎬 *{movie.title}* ({year})\n🗂️ {movie.overview or 'No summary available.'}"
        await self.transport.send_photo(
            chat_id,
            poster,
            caption,
            buttons=[
                [{"text": "🎞️ Watch Trailer", "url": trailer_url(movie.title)}],
                [{"text": "🧠 Quiz me", "callback_data": callbacks.start_quiz_data(movie.id)}],
                [{"text": "📊 Leaderboard", "callback_data": callbacks.LEADERBOARD}],
            ],
        )

        similar = (await self.metadata.similar_movies(movie.id))[:SIMILAR_COUNT]
        if similar:
            titles = ", ".join(m.title for m in similar)
            await self.transport.send_text(chat_id, f"✨ You might also like: {titles}")

        await self.store.increment_score(user_id, SEARCH_POINTS)

    # commands

    async def cmd_start(self, user_id: str, chat_id: str, args: str) -> None:
        await self.transport.send_text(
            chat_id,
            WELCOME,
            buttons=[[
                {"text": f"🎭 {name.title()}", "callback_data": callbacks.mood_data(name)}
                for name in GENRE_IDS
            ]],
        )

    async def cmd_quiz(self, user_id: str, chat_id: str, args: str) -> None:
        if not args:
            await self.transport.send_text(chat_id, "Usage: /quiz <movie title>")
            return
        movie = await self.metadata.search_movie(args)
        if not movie:
            await self.transport.send_text(chat_id, NOT_FOUND)
            return
        await self.start_movie_quiz(user_id, chat_id, await self.metadata.movie_details(movie.id))

    async def cmd_daily(self, user_id: str, chat_id: str, args: str) -> None:
        if await self.quiz.played_daily(user_id):
            await self.transport.send_text(chat_id, DAILY_DONE)
            return
        picks = await self.metadata.discover()
        if not picks:
            await self.transport.send_text(chat_id, "😕 No daily quiz today. Try again later.")
            return
        pick = picks[date.today().toordinal() % len(picks)]
        movie = await self.metadata.movie_details(pick.id)
        session = await self.quiz.start_daily_quiz(user_id, movie)
        if session is None:
            await self.transport.send_text(chat_id, "😕 No daily quiz today. Try again later.")
            return
        await self.transport.send_text(chat_id, question_text(session), buttons=question_keyboard(session))

    async def cmd_leaderboard(self, user_id: str, chat_id: str, args: str) -> None:
        entries = build_entries(await self.store.rank_top(LEADERBOARD_SIZE))
        await self.transport.send_text(chat_id, format_leaderboard(entries), parse_mode="Markdown")

    async def cmd_monthly_poster(self, user_id: str, chat_id: str, args: str) -> None:
        entries = build_entries(await self.store.rank_top(POSTER_SIZE))
        await self.transport.send_text(chat_id, format_monthly_poster(entries), parse_mode="Markdown")

    async def cmd_duel(self, user_id: str, chat_id: str, args: str) -> None:
        opponent = args.split(" ", 1)[0] if args else ""
        if not opponent:
            await self.transport.send_text(chat_id, "Usage: /duel <user id>")
            return
        await self.duels.request(user_id, opponent)
        await self.transport.send_text(chat_id, f"🤜 Duel requested with user {opponent}!")

    async def cmd_nickname(self, user_id: str, chat_id: str, args: str) -> None:
        nickname = " ".join(args.split())
        if not nickname or len(nickname) > MAX_NICKNAME:
            await self.transport.send_text(chat_id, f"Usage: /nickname <name> (up to {MAX_NICKNAME} characters)")
            return
        await self.store.set_nickname(user_id, nickname)
        await self.transport.send_text(chat_id, f"👋 You'll appear on the leaderboard as {nickname}.")

    # quiz flow

    async def start_movie_quiz(self, user_id: str, chat_id: str, movie: MovieDetail) -> None:
        session = await self.quiz.start_movie_quiz(user_id, movie)
        if session is None:
            await self.transport.send_text(chat_id, f"😕 Couldn't build a quiz for {movie.title}. Try another movie.")
            return
        await self.transport.send_text(
            chat_id,
            f"🎬 {movie.title} quiz, {len(session.questions)} questions, "
            f"{POINTS[QuizKind.MOVIE]} pts each.\n\n{question_text(session)}",
            buttons=question_keyboard(session),
        )

    # callbacks

    async def on_callback(self, query: TgCallbackQuery) -> None:
        user_id = str(query.from_user.id)
        chat_id = str(query.message.chat.id) if query.message else user_id
        payload = callbacks.parse(query.data)
        ack: Optional[str] = None

        # the button spinner is stopped even when a handler fails
        try:
            if payload is None:
                logger.debug("ignoring callback data %r from %s", query.data, user_id)
            elif isinstance(payload, callbacks.LeaderboardPayload):
                await self.cmd_leaderboard(user_id, chat_id, "")
            elif isinstance(payload, callbacks.AnswerPayload):
                ack = await self.on_answer(user_id, chat_id, payload)
            elif isinstance(payload, callbacks.StartQuizPayload):
                await self.start_movie_quiz(user_id, chat_id, await self.metadata.movie_details(payload.movie_id))
            elif isinstance(payload, callbacks.GenrePickPayload):
                await self.on_genre_pick(chat_id, payload.name)
            elif isinstance(payload, callbacks.VotePayload):
                ack = "🙌 Vote recorded!"
                await self.transport.send_text(chat_id, "Thanks for voting! 🎉")
        finally:
            await self._acknowledge(query, ack)

    async def on_answer(self, user_id: str, chat_id: str, payload: callbacks.AnswerPayload) -> Optional[str]:
        outcome = await self.quiz.answer(user_id, payload.kind, payload.ref, payload.question, payload.selected)
        if outcome.status == AnswerStatus.STALE:
            return STALE_ANSWER

        text = feedback_text(outcome)
        if outcome.status == AnswerStatus.NEXT and outcome.session is not None:
            await self.transport.send_text(
                chat_id,
                f"{text}\n\n{question_text(outcome.session)}",
                buttons=question_keyboard(outcome.session),
            )
        else:
            await self.transport.send_text(chat_id, text)
        return None

    async def on_genre_pick(self, chat_id: str, name: str) -> None:
        genre_id = GENRE_IDS.get(name)
        if genre_id is None:
            return
        picks = await self.metadata.discover(genre_id)
        pick = picks[0] if picks else None
        poster = self.metadata.poster_url(pick) if pick else None
        if not pick or not poster:
            await self.transport.send_text(chat_id, NOT_FOUND)
            return
        rating = f"{pick.vote_average}/10" if pick.vote_average is not None else "unrated"
        await self.transport.send_photo(
            chat_id,
            poster,
            f"🎬 *{pick.title}*\n⭐ {rating}",
            buttons=[[{"text": "🎞️ Trailer", "url": trailer_url(pick.title)}]],
        )

    async def _acknowledge(self, query: TgCallbackQuery, text: Optional[str]) -> None:
        try:
            await self.transport.answer_callback(query.id, text)
        except QuizBotError as exc:
            logger.warning("callback ack %s failed: %s", query.id, exc)


def _chat_of(update: TgUpdate) -> Optional[str]:
    if update.message is not None:
        return str(update.message.chat.id)
    if update.callback_query is not None:
        cq = update.callback_query
        return str(cq.message.chat.id) if cq.message else str(cq.from_user.id)
    return None


dispatcher = BotDispatcher(controller, ledger, tmdb, telegram, duels)
