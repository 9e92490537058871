"""Token transfer extraction from confirmed Solana transactions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from token_whale_tracker.ingestor.models import (
    ChainTransaction,
    TransferCandidate,
    TransferDirection,
)

LAMPORTS_PER_SOL = 1_000_000_000
DUST_THRESHOLD = 1e-9


@dataclass
class _Balance:
    owner: str | None
    pre: float = 0.0
    post: float = 0.0


@dataclass(frozen=True)
class BalanceDiff:
    """Net token movement for the mint within one transaction."""

    direction: TransferDirection
    amount_tokens: float
    sender: str | None
    receiver: str | None
    inflows: tuple[float, ...]


def diff_token_balances(tx: ChainTransaction, mint: str) -> BalanceDiff | None:
    """Net per-account balance changes of ``mint`` in ``tx``.

    Returns None when the transaction has no metadata or does not move
    the mint. The primary sender and receiver are the accounts with the
    largest outflow and inflow.
    """
    meta = tx.meta
    if meta is None:
        return None

    balances: dict[int, _Balance] = {}
    for entries, attr in ((meta.pre_token_balances, "pre"), (meta.post_token_balances, "post")):
        for entry in entries:
            if entry.mint != mint:
                continue
            owner = entry.owner or tx.transaction.message.key_at(entry.account_index)
            record = balances.setdefault(entry.account_index, _Balance(owner=owner))
            setattr(record, attr, entry.ui_token_amount.value)
            record.owner = owner or record.owner

    senders: list[tuple[float, str | None]] = []
    receivers: list[tuple[float, str | None]] = []
    for record in balances.values():
        diff = record.post - record.pre
        if abs(diff) < DUST_THRESHOLD:
            continue
        if diff > 0:
            receivers.append((diff, record.owner))
        else:
            senders.append((-diff, record.owner))

    total_in = sum(amount for amount, _ in receivers)
    total_out = sum(amount for amount, _ in senders)
    if total_in <= 0 and total_out <= 0:
        return None

    direction: TransferDirection
    if total_out == 0:
        direction = "mint"
    elif total_in == 0:
        direction = "burn"
    else:
        direction = "transfer"

    top_sender = max(senders, key=lambda s: s[0])[1] if senders else None
    top_receiver = max(receivers, key=lambda r: r[0])[1] if receivers else None
    return BalanceDiff(
        direction=direction,
        amount_tokens=total_out if direction == "burn" else total_in,
        sender=top_sender,
        receiver=top_receiver,
        inflows=tuple(amount for amount, _ in receivers),
    )


def extract_token_transfer(
    tx: ChainTransaction | None,
    *,
    signature: str,
    mint: str,
    price_usd: float,
) -> TransferCandidate | None:
    """Build a ``TransferCandidate`` for ``mint`` from a transaction.

    Args:
        tx: Transaction as returned by ``getTransaction`` (may be None).
        signature: Transaction signature.
        mint: Token mint address.
        price_usd: Token price used to value the transfer.

    Returns:
        The candidate, or None when the transaction does not move the mint.
    """
    if tx is None:
        return None
    diff = diff_token_balances(tx, mint)
    if diff is None or diff.amount_tokens <= 0:
        return None

    block_time = datetime.fromtimestamp(tx.block_time, tz=UTC) if tx.block_time else None
    fee_sol = tx.meta.fee / LAMPORTS_PER_SOL if tx.meta is not None else 0.0
    return TransferCandidate(
        signature=signature,
        token_address=mint,
        direction=diff.direction,
        amount_tokens=diff.amount_tokens,
        amount_usd=diff.amount_tokens * max(price_usd, 0.0),
        sender_account=diff.sender,
        receiver_account=diff.receiver,
        block_time=block_time,
        fee_sol=fee_sol,
    )
