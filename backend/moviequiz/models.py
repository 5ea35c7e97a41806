from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from datetime import datetime, timezone


class Tier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class QuizKind(str, Enum):
    MOVIE = "movie"
    DAILY = "daily"


class Question(BaseModel):
    prompt: str
    options: List[str]
    answer: int


class QuizSession(BaseModel):
    kind: QuizKind
    ref: str
    title: str
    questions: List[Question]
    index: int = 0
    score: int = 0

    @property
    def is_active(self) -> bool:
        return self.index < len(self.questions)

    @property
    def current(self) -> Optional[Question]:
        return self.questions[self.index] if self.is_active else None


class UserRecord(BaseModel):
    id: str
    score: int = 0
    nickname: Optional[str] = None
    last_score: int = 0
    last_tier: Optional[Tier] = None
    # UTC day (YYYY-MM-DD) of the last completed daily quiz
    daily_day: Optional[str] = None
    # one independent slot per quiz kind
    sessions: Dict[QuizKind, QuizSession] = Field(default_factory=dict)

    def session(self, kind: QuizKind) -> Optional[QuizSession]:
        return self.sessions.get(kind)


class MovieSummary(BaseModel):
    id: int
    title: str
    overview: Optional[str] = None
    release_date: Optional[str] = None
    poster_path: Optional[str] = None
    vote_average: Optional[float] = None


class MovieDetail(MovieSummary):
    genres: List[str] = Field(default_factory=list)
    # billing order
    cast: List[str] = Field(default_factory=list)


class Duel(BaseModel):
    challenger: str
    opponent: str
    status: str = "pending"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notification(BaseModel):
    user_id: str
    seq: int
    text: str
    status: str = "pending"
    error: Optional[str] = None
    created_at: float
