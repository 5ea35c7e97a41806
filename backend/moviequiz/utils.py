import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Tuple, TypeVar

T = TypeVar("T")


class QuizBotError(Exception):
    """Base class for collaborator failures surfaced to handlers."""


class MetadataUnavailable(QuizBotError):
    pass


class TransportError(QuizBotError):
    pass


def now_ts() -> float:
    return time.time()


def current_period(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def current_day(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%d")


async def fan_out(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[Any]],
    concurrency: int,
) -> Tuple[List[T], Dict[T, BaseException]]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Failures are isolated per item and returned alongside the successes.
    """

    semaphore = asyncio.Semaphore(max(1, concurrency))
    items = list(items)

    async def _run(item: T):
        async with semaphore:
            return await worker(item)

    results = await asyncio.gather(*(_run(item) for item in items), return_exceptions=True)

    ok: List[T] = []
    failed: Dict[T, BaseException] = {}
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            failed[item] = result
        else:
            ok.append(item)
    return ok, failed
