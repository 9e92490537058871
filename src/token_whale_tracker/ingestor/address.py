"""Recovery of Solana account addresses corrupted by upstream feeds.

Aggregators sometimes splice marketing tags such as ``pump`` into mint
addresses. ``recover_address`` searches breadth-first over edits of the
raw string and returns the closest candidate that decodes to a valid
32-byte account key.
"""

from __future__ import annotations

import logging
from collections import deque

from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

# Base58-encoded 32-byte keys are 32..44 characters long.
MIN_ADDRESS_LENGTH = 32
MAX_ADDRESS_LENGTH = 44

NOISE_PATTERNS: tuple[str, ...] = ("pump", ".pump", "-pump", "_pump", "come")

# Upper bound on explored candidates for pathological inputs.
MAX_CANDIDATES = 5000


def is_valid_address(value: str, *, require_on_curve: bool = False) -> bool:
    """Check that ``value`` is a base58 Solana account key.

    Args:
        value: Candidate address string.
        require_on_curve: Also require the key to be an ed25519 point
            (wallets are on-curve, program-derived accounts are not).
    """
    if not MIN_ADDRESS_LENGTH <= len(value) <= MAX_ADDRESS_LENGTH:
        return False
    try:
        key = Pubkey.from_string(value)
    except ValueError:
        return False
    if str(key) != value:
        return False
    return key.is_on_curve() if require_on_curve else True


def _strip_variants(candidate: str, patterns: tuple[str, ...]) -> list[str]:
    """All strings produced by removing one occurrence of one pattern."""
    lowered = candidate.lower()
    variants: list[str] = []
    for pattern in patterns:
        start = lowered.find(pattern)
        while start != -1:
            variants.append(candidate[:start] + candidate[start + len(pattern) :])
            start = lowered.find(pattern, start + 1)
    return variants


def recover_address(
    raw: str | None,
    *,
    patterns: tuple[str, ...] = NOISE_PATTERNS,
    require_on_curve: bool = False,
) -> str | None:
    """Recover a valid account address from a possibly corrupted string.

    Candidates are explored breadth-first, so the first valid one found is
    the fewest edits away from ``raw``. An already-valid address is
    returned unchanged.

    Args:
        raw: Address as received from the upstream feed.
        patterns: Noise fragments to strip (matched case-insensitively).
        require_on_curve: Forwarded to ``is_valid_address``.

    Returns:
        The recovered address, or None when no candidate validates.
    """
    if not raw:
        return None
    start = raw.strip()
    if not start:
        return None

    queue: deque[str] = deque([start])
    visited: set[str] = {start}

    while queue and len(visited) <= MAX_CANDIDATES:
        candidate = queue.popleft()

        if len(candidate) >= MIN_ADDRESS_LENGTH:
            if len(candidate) <= MAX_ADDRESS_LENGTH and is_valid_address(
                candidate, require_on_curve=require_on_curve
            ):
                if candidate != start:
                    logger.debug("Recovered address %s from %s", candidate, raw)
                return candidate

            next_candidates = _strip_variants(candidate, patterns)
            if len(candidate) > MAX_ADDRESS_LENGTH:
                next_candidates.extend(
                    (candidate[:MAX_ADDRESS_LENGTH], candidate[1:], candidate[:-1])
                )
            for variant in next_candidates:
                if variant not in visited:
                    visited.add(variant)
                    queue.append(variant)

    logger.debug("Could not recover a valid address from %r", raw)
    return None
