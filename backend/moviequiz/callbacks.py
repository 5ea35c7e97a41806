"""Inline-button payloads.

Answer buttons carry only the quiz kind, the session reference, the question
position and the raw selection; the correct answer never leaves the server.
Telegram caps ``callback_data`` at 64 bytes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from .models import QuizKind

LEADERBOARD = "lb"

_KIND_PREFIX = {QuizKind.MOVIE: "mq", QuizKind.DAILY: "dq"}
_PREFIX_KIND = {v: k for k, v in _KIND_PREFIX.items()}

_ANSWER_RE = re.compile(
    r"^(?P<prefix>mq|dq):(?P<ref>[0-9a-f]{6,32}):(?P<question>\d{1,2}):(?P<selected>\d{1,2})$"
)
_START_RE = re.compile(r"^qz:(?P<movie_id>\d{1,12})$")
_PICK_RE = re.compile(r"^(?P<source>mood|genre):(?P<name>[a-z]{1,20})$")
_VOTE_RE = re.compile(r"^vote:[\w-]{1,40}$")


@dataclass(frozen=True)
class AnswerPayload:
    kind: QuizKind
    ref: str
    question: int
    selected: int


@dataclass(frozen=True)
class StartQuizPayload:
    movie_id: int


@dataclass(frozen=True)
class GenrePickPayload:
    name: str


@dataclass(frozen=True)
class LeaderboardPayload:
    pass


@dataclass(frozen=True)
class VotePayload:
    pass


Payload = Union[AnswerPayload, StartQuizPayload, GenrePickPayload, LeaderboardPayload, VotePayload]


def answer_data(kind: QuizKind, ref: str, question: int, selected: int) -> str:
    return f"{_KIND_PREFIX[kind]}:{ref}:{question}:{selected}"


def start_quiz_data(movie_id: int) -> str:
    return f"qz:{movie_id}"


def mood_data(name: str) -> str:
    return f"mood:{name}"


def parse(data: Optional[str]) -> Optional[Payload]:
    """Decode a callback payload, returning ``None`` for anything unrecognised."""

    if not data or not isinstance(data, str):
        return None
    if data == LEADERBOARD:
        return LeaderboardPayload()

    match = _ANSWER_RE.match(data)
    if match:
        return AnswerPayload(
            kind=_PREFIX_KIND[match.group("prefix")],
            ref=match.group("ref"),
            question=int(match.group("question")),
            selected=int(match.group("selected")),
        )

    match = _START_RE.match(data)
    if match:
        return StartQuizPayload(movie_id=int(match.group("movie_id")))

    match = _PICK_RE.match(data)
    if match:
        return GenrePickPayload(name=match.group("name"))

    if _VOTE_RE.match(data):
        return VotePayload()
    return None
