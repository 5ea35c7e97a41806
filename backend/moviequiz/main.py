import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from .bot import dispatcher
from .db import settings
from .jobs import JOBS
from .leaderboard import build_entries
from .ledger import ledger
from .reset import ResetReport, monthly_reset
from .schemas import JobResultOut, LeaderboardOut, TgUpdate
from .telegram import telegram
from .utils import QuizBotError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def send_markdown(user_id: str, text: str):
    return await telegram.send_text(user_id, text, parse_mode="Markdown")


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.PUBLIC_URL and settings.BOT_TOKEN:
        try:
            await telegram.set_webhook(
                settings.PUBLIC_URL.rstrip("/") + settings.WEBHOOK_PATH,
                settings.WEBHOOK_SECRET,
            )
        except QuizBotError as exc:
            logger.error("webhook registration failed: %s", exc)
    yield


app = FastAPI(title="Movie Quiz Bot", lifespan=lifespan)


@app.get("/")
async def alive():
    return {"ok": True, "service": "moviequiz"}


@app.post(settings.WEBHOOK_PATH)
async def telegram_webhook(
    update: TgUpdate,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    if settings.WEBHOOK_SECRET and x_telegram_bot_api_secret_token != settings.WEBHOOK_SECRET:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")
    await dispatcher.handle_update(update)
    return {"ok": True}


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/api/leaderboard", response_model=LeaderboardOut)
async def leaderboard(limit: int = 10):
    limit = max(1, min(limit, 100))
    return LeaderboardOut(entries=build_entries(await ledger.rank_top(limit)))


@app.post("/api/jobs/monthly-reset", response_model=ResetReport)
async def run_monthly_reset(_: None = Depends(require_admin)):
    try:
        return await monthly_reset.run(send_markdown)
    except Exception as exc:
        logger.exception("monthly reset failed")
        raise HTTPException(status_code=503, detail="Monthly reset failed; it will be retried") from exc


@app.post("/api/jobs/{job}", response_model=JobResultOut)
async def run_job(job: str, _: None = Depends(require_admin)):
    runner = JOBS.get(job)
    if runner is None:
        raise HTTPException(404, "Unknown job")
    try:
        report = await runner(send_markdown)
    except QuizBotError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return JobResultOut(job=job, sent=len(report.sent), failed=report.failed)
