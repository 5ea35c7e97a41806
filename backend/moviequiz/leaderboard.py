from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from .models import Tier, UserRecord

GOLD_THRESHOLD = 300
SILVER_THRESHOLD = 150
ANONYMOUS = "Anonymous"

MEDALS = {Tier.GOLD: "🥇", Tier.SILVER: "🥈", Tier.BRONZE: "🥉"}


def tier(score: int) -> Tier:
    if score >= GOLD_THRESHOLD:
        return Tier.GOLD
    if score >= SILVER_THRESHOLD:
        return Tier.SILVER
    return Tier.BRONZE


def badge(t: Tier) -> str:
    return f"{MEDALS[t]} {t.value}"


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    nickname: Optional[str] = None
    score: int
    tier: Tier

    @property
    def display_name(self) -> str:
        return self.nickname or ANONYMOUS


def build_entries(records: List[UserRecord]) -> List[LeaderboardEntry]:
    return [
        LeaderboardEntry(
            rank=i,
            user_id=r.id,
            nickname=r.nickname,
            score=r.score,
            tier=tier(r.score),
        )
        for i, r in enumerate(records, start=1)
    ]


def format_leaderboard(entries: List[LeaderboardEntry]) -> str:
    if not entries:
        return "🏆 *Leaderboard*\n\nNo scores yet. Search a movie to get started!"
    rows = [f"{e.rank}. {e.display_name} — {e.score} pts {MEDALS[e.tier]}" for e in entries]
    return "🏆 *Leaderboard*\n\n" + "\n".join(rows)


def format_monthly_poster(entries: List[LeaderboardEntry]) -> str:
    msg = "🏆 *Top Movie Masters of the Month*\n\n"
    for e in entries:
        msg += f"{e.rank}. {e.display_name} — {e.score} pts\n"
    return msg
