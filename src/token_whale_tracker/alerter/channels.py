"""Notification channels for alert delivery.

Every channel reports delivery as a boolean. HTTP failures are logged
and turned into ``False`` so callers decide whether to record history.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from token_whale_tracker.alerter.formatter import AlertFormatter, FormattedAlert
from token_whale_tracker.storage.repos import WhaleEventDTO

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
DISCORD_API_URL = "https://discord.com/api/v10"
DEFAULT_TIMEOUT_SECONDS = 10.0


class NotificationChannel(Protocol):
    """A per-user delivery channel."""

    name: str

    def render(self, alert: FormattedAlert) -> str: ...

    async def send(self, recipient: str, text: str) -> bool: ...


class TelegramChannel:
    """Sends HTML messages through the Telegram Bot API."""

    name = "telegram"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        bot_token: str,
        base_url: str = TELEGRAM_API_URL,
        dry_run: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token must be provided")
        self._client = client
        self._url = f"{base_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._dry_run = dry_run
        self._timeout = timeout

    def render(self, alert: FormattedAlert) -> str:
        return alert.telegram_html

    async def send(self, recipient: str, text: str) -> bool:
        if self._dry_run:
            logger.info("[dry-run] Telegram -> %s: %s", recipient, text.splitlines()[0] if text else "")
            return True

        payload = {
            "chat_id": recipient,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._client.post(self._url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.error("Telegram send failed for chat %s: %s", recipient, e)
            return False

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400 or not data.get("ok"):
            logger.error(
                "Telegram API error for chat %s (status=%d): %s",
                recipient,
                response.status_code,
                data.get("description", response.text[:200]),
            )
            return False
        return True


class DiscordChannel:
    """Sends direct messages and whale posts through a Discord bot."""

    name = "discord"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        bot_token: str,
        whale_channel_id: str | None = None,
        base_url: str = DISCORD_API_URL,
        formatter: AlertFormatter | None = None,
        dry_run: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not bot_token:
            raise ValueError("Discord bot token must be provided")
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bot {bot_token}"}
        self._whale_channel_id = whale_channel_id
        self._formatter = formatter or AlertFormatter()
        self._dry_run = dry_run
        self._timeout = timeout

    def render(self, alert: FormattedAlert) -> str:
        return alert.plain_text

    async def send(self, recipient: str, text: str) -> bool:
        """DM ``recipient`` (a Discord user id)."""
        if self._dry_run:
            logger.info("[dry-run] Discord DM -> %s: %s", recipient, text.splitlines()[0] if text else "")
            return True

        channel = await self._post("/users/@me/channels", {"recipient_id": recipient})
        if channel is None or "id" not in channel:
            logger.error("Could not open Discord DM channel for user %s", recipient)
            return False
        # Discord rejects message content over 2000 characters.
        message = {"content": text[:2000]}
        return await self._post(f"/channels/{channel['id']}/messages", message) is not None

    async def post_whale_event(self, event: WhaleEventDTO) -> bool:
        """Post one whale event embed to the configured alert channel."""
        if not self._whale_channel_id:
            logger.warning("Discord whale channel is not configured; skipping %s", event.tx_hash)
            return False

        alert = self._formatter.format_whale_event(event)
        if self._dry_run:
            logger.info("[dry-run] Discord #%s: %s", self._whale_channel_id, alert.title)
            return True

        posted = await self._post(
            f"/channels/{self._whale_channel_id}/messages", {"embeds": [alert.discord_embed]}
        )
        return posted is not None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.post(
                url, json=payload, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.error("Discord request to %s failed: %s", path, e)
            return None

        if response.status_code >= 400:
            logger.error(
                "Discord API error on %s (status=%d): %s",
                path,
                response.status_code,
                response.text[:200],
            )
            return None
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
