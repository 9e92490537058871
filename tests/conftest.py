"""Pytest configuration and fixtures."""

from collections.abc import Callable
from typing import Any

import pytest
from solders.pubkey import Pubkey

from token_whale_tracker.storage.database import DatabaseManager


@pytest.fixture
def make_address() -> Callable[[int], str]:
    """Deterministic valid base58 account keys, one per seed."""

    def _make(seed: int) -> str:
        return str(Pubkey(bytes([seed % 255 + 1] * 32)))

    return _make


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed SQLite database shared across sessions."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def make_tx() -> Callable[..., dict[str, Any]]:
    """Raw ``getTransaction`` payloads moving one mint between two owners."""

    def _make(
        mint: str,
        *,
        sender: str | None,
        receiver: str | None,
        amount: float,
        sender_start: float = 1_000_000.0,
        receiver_start: float = 0.0,
        block_time: int = 1_700_000_000,
        fee: int = 5000,
    ) -> dict[str, Any]:
        def balance(index: int, owner: str, value: float) -> dict[str, Any]:
            return {
                "accountIndex": index,
                "mint": mint,
                "owner": owner,
                "uiTokenAmount": {"amount": str(int(value * 1_000_000)), "decimals": 6, "uiAmount": value},
            }

        pre, post = [], []
        if sender is not None:
            pre.append(balance(1, sender, sender_start))
            post.append(balance(1, sender, sender_start - amount))
        if receiver is not None:
            pre.append(balance(2, receiver, receiver_start))
            post.append(balance(2, receiver, receiver_start + amount))
        return {
            "slot": 250_000_000,
            "blockTime": block_time,
            "meta": {
                "err": None,
                "fee": fee,
                "preTokenBalances": pre,
                "postTokenBalances": post,
            },
            "transaction": {"signatures": [], "message": {"accountKeys": []}},
        }

    return _make
