from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional

from .leaderboard import LeaderboardEntry


class TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TgUser(TelegramModel):
    id: int
    first_name: Optional[str] = None
    username: Optional[str] = None


class TgChat(TelegramModel):
    id: int


class TgMessage(TelegramModel):
    message_id: int
    chat: TgChat
    from_user: Optional[TgUser] = Field(default=None, alias="from")
    text: Optional[str] = None


class TgCallbackQuery(TelegramModel):
    id: str
    from_user: TgUser = Field(alias="from")
    message: Optional[TgMessage] = None
    data: Optional[str] = None


class TgUpdate(TelegramModel):
    update_id: int
    message: Optional[TgMessage] = None
    callback_query: Optional[TgCallbackQuery] = None


class LeaderboardOut(BaseModel):
    entries: List[LeaderboardEntry]


class JobResultOut(BaseModel):
    job: str
    sent: int = 0
    failed: Dict[str, List[str]] = Field(default_factory=dict)
