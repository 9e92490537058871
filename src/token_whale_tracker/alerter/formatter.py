"""Alert message formatter for multi-channel delivery.

This module turns scored tokens and whale events into messages for
Telegram (HTML), Discord (embeds), and plain text.
"""

from __future__ import annotations

import html
import math
from dataclasses import dataclass, field
from typing import Any

from token_whale_tracker.ingestor.models import TokenRecord
from token_whale_tracker.storage.repos import WhaleEventDTO

# Explorer URLs
PUMPFUN_TOKEN_URL = "https://pump.fun/coin/{address}"
SOLSCAN_ACCOUNT_URL = "https://solscan.io/account/{address}"
DEXSCREENER_TOKEN_URL = "https://dexscreener.com/solana/{address}"

# Discord embed colors and emoji per event type
EVENT_STYLES: dict[str, tuple[str, int, str]] = {
    "buy": ("BUY", 0x3B82F6, "\U0001f7e2"),
    "sell": ("SELL", 0xEF4444, "\U0001f534"),
    "transfer": ("TRANSFER", 0x10B981, "\U0001f4e6"),
    "mint": ("MINT", 0xF97316, "\U0001fa99"),
    "burn": ("BURN", 0xFACC15, "\U0001f525"),
}
FALLBACK_STYLE = ("TRANSFER", 0x0EA5E9, "\U0001f40b")

COLOR_TOKEN_ALERT = 0xF59E0B


@dataclass(frozen=True)
class FormattedAlert:
    """One alert rendered for every channel."""

    title: str
    plain_text: str
    telegram_html: str
    discord_embed: dict[str, Any] = field(default_factory=dict)


def truncate_address(address: str | None, chars: int = 4) -> str:
    """Truncate a base58 address to ``Abcd...wxyz`` format."""
    if not address:
        return "unknown"
    if len(address) < chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_usd(value: float | None) -> str:
    """Compact USD figure ($1.2K, $3.4M, $1.0B)."""
    if value is None or not math.isfinite(value):
        return "n/a"
    if value >= 1_000_000_000:
        return f"${value / 1_000_000_000:.1f}B"
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"${value / 1_000:.1f}K"
    return f"${value:,.0f}"


def format_tokens(amount: float | None) -> str:
    if amount is None or not math.isfinite(amount):
        return "n/a"
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.1f}K"
    return f"{amount:,.2f}"


def event_style(event_type: str | None) -> tuple[str, int, str]:
    if not event_type:
        return FALLBACK_STYLE
    return EVENT_STYLES.get(event_type.lower(), FALLBACK_STYLE)


class AlertFormatter:
    """Formats token alerts and whale events into multi-channel messages."""

    def format_token_alert(self, token: TokenRecord, *, alert_type: str) -> FormattedAlert:
        """Alert for a token crossing a user's score/progress threshold."""
        trigger = f"Score {token.score:.1f}" if alert_type == "score" else f"Progress {token.progress:.1f}%"
        title = f"{token.symbol} {trigger}"
        link = PUMPFUN_TOKEN_URL.format(address=token.address)

        plain = (
            f"KOTH alert: {token.name} ({token.symbol})\n"
            f"{trigger}\n"
            f"Progress: {token.progress:.1f}% | Score: {token.score:.1f}\n"
            f"Liquidity: {format_usd(token.liquidity_usd)} | "
            f"Volume 24h: {format_usd(token.volume_24h_usd)}\n"
            f"Whales: {token.whale_count} ({format_usd(token.whale_inflow_usd)})\n"
            f"{link}"
        )
        telegram = (
            f"\U0001f451 <b>KOTH alert: {html.escape(token.name)} ({html.escape(token.symbol)})</b>\n"
            f"{trigger}\n"
            f"Progress: <b>{token.progress:.1f}%</b> | Score: <b>{token.score:.1f}</b>\n"
            f"Liquidity: {format_usd(token.liquidity_usd)} | "
            f"Volume 24h: {format_usd(token.volume_24h_usd)}\n"
            f"Whales: {token.whale_count} ({format_usd(token.whale_inflow_usd)})\n"
            f'<a href="{link}">View on pump.fun</a>'
        )
        embed = {
            "title": f"\U0001f451 {token.name} ({token.symbol})",
            "url": link,
            "color": COLOR_TOKEN_ALERT,
            "description": trigger,
            "fields": [
                {"name": "Progress", "value": f"{token.progress:.1f}%", "inline": True},
                {"name": "Score", "value": f"{token.score:.1f}", "inline": True},
                {"name": "Liquidity", "value": format_usd(token.liquidity_usd), "inline": True},
            ],
        }
        return FormattedAlert(title=title, plain_text=plain, telegram_html=telegram, discord_embed=embed)

    def format_whale_event(self, event: WhaleEventDTO) -> FormattedAlert:
        """Alert for a newly detected whale transfer."""
        label, color, emoji = event_style(event.event_type)
        symbol = event.token_symbol or truncate_address(event.token_address)
        title = f"{emoji} Whale {label}: {format_usd(event.amount_usd)} of {symbol}"

        plain = (
            f"{title}\n"
            f"Amount: {format_tokens(event.amount_tokens)} {symbol}\n"
            f"From: {truncate_address(event.sender)} -> To: {truncate_address(event.receiver)}\n"
            f"{event.tx_url}"
        )
        telegram = (
            f"<b>{html.escape(title)}</b>\n"
            f"Amount: {format_tokens(event.amount_tokens)} {html.escape(symbol)}\n"
            f"From: <code>{truncate_address(event.sender)}</code> -> "
            f"To: <code>{truncate_address(event.receiver)}</code>\n"
            f'<a href="{event.tx_url}">View transaction</a>'
        )
        fields = [
            {"name": "Amount", "value": f"{format_tokens(event.amount_tokens)} {symbol}", "inline": True},
            {"name": "Value", "value": format_usd(event.amount_usd), "inline": True},
            {"name": "Liquidity", "value": format_usd(event.liquidity_usd), "inline": True},
            {"name": "From", "value": truncate_address(event.sender), "inline": True},
            {"name": "To", "value": truncate_address(event.receiver), "inline": True},
        ]
        embed: dict[str, Any] = {
            "title": title,
            "url": event.tx_url,
            "color": color,
            "fields": fields,
            "footer": {"text": f"Token {truncate_address(event.token_address)}"},
        }
        if event.block_time is not None:
            embed["timestamp"] = event.block_time.isoformat()
        return FormattedAlert(title=title, plain_text=plain, telegram_html=telegram, discord_embed=embed)
