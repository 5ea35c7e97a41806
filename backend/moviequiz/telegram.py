from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from .db import settings
from .utils import TransportError

logger = logging.getLogger(__name__)

# rows of inline buttons: {"text": ..., "callback_data": ...} or {"text": ..., "url": ...}
Keyboard = List[List[Dict[str, str]]]


class TelegramClient:
    def __init__(self, token: str, api_base: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call_sync(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self.token:
            raise TransportError("BOT_TOKEN is not configured")
        try:
            res = self.session.post(
                f"{self.api_base}/bot{self.token}/{method}",
                json=payload,
                timeout=self.timeout,
            )
            body = res.json()
        except (requests.RequestException, ValueError) as exc:
            raise TransportError(f"Telegram {method} failed") from exc
        if not body.get("ok"):
            raise TransportError(f"Telegram {method} rejected: {body.get('description', res.status_code)}")
        return body.get("result")

    async def _call(self, method: str, **payload: Any) -> Any:
        payload = {k: v for k, v in payload.items() if v is not None}
        return await asyncio.to_thread(self._call_sync, method, payload)

    async def send_text(
        self,
        chat_id: str,
        text: str,
        buttons: Optional[Keyboard] = None,
        parse_mode: Optional[str] = None,
    ) -> Any:
        return await self._call(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
            reply_markup={"inline_keyboard": buttons} if buttons else None,
        )

    async def send_photo(
        self,
        chat_id: str,
        photo_url: str,
        caption: str,
        buttons: Optional[Keyboard] = None,
        parse_mode: Optional[str] = "Markdown",
    ) -> Any:
        return await self._call(
            "sendPhoto",
            chat_id=chat_id,
            photo=photo_url,
            caption=caption,
            parse_mode=parse_mode,
            reply_markup={"inline_keyboard": buttons} if buttons else None,
        )

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> Any:
        return await self._call("answerCallbackQuery", callback_query_id=callback_id, text=text)

    async def set_webhook(self, url: str, secret: Optional[str] = None) -> Any:
        logger.info("registering webhook %s", url)
        return await self._call("setWebhook", url=url, secret_token=secret)


telegram = TelegramClient(settings.BOT_TOKEN, settings.TELEGRAM_API_BASE, settings.HTTP_TIMEOUT)
