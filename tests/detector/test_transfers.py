"""Tests for transfer extraction."""

from datetime import UTC, datetime

import pytest

from token_whale_tracker.detector.transfers import (
    diff_token_balances,
    extract_token_transfer,
)
from token_whale_tracker.ingestor.models import ChainTransaction


def parse(raw: dict) -> ChainTransaction:
    return ChainTransaction.model_validate(raw)


class TestDiffTokenBalances:
    """Tests for diff_token_balances."""

    def test_transfer(self, make_address, make_tx) -> None:
        mint, alice, bob = make_address(1), make_address(2), make_address(3)

        diff = diff_token_balances(parse(make_tx(mint, sender=alice, receiver=bob, amount=250)), mint)

        assert diff is not None
        assert diff.direction == "transfer"
        assert diff.amount_tokens == pytest.approx(250)
        assert diff.sender == alice
        assert diff.receiver == bob
        assert diff.inflows == pytest.approx((250,))

    def test_mint(self, make_address, make_tx) -> None:
        mint, bob = make_address(1), make_address(3)

        diff = diff_token_balances(parse(make_tx(mint, sender=None, receiver=bob, amount=10)), mint)

        assert diff.direction == "mint"
        assert diff.sender is None

    def test_burn(self, make_address, make_tx) -> None:
        mint, alice = make_address(1), make_address(2)

        diff = diff_token_balances(parse(make_tx(mint, sender=alice, receiver=None, amount=10)), mint)

        assert diff.direction == "burn"
        assert diff.amount_tokens == pytest.approx(10)
        assert diff.inflows == ()

    def test_other_mint_ignored(self, make_address, make_tx) -> None:
        raw = make_tx(make_address(1), sender=make_address(2), receiver=make_address(3), amount=10)
        assert diff_token_balances(parse(raw), make_address(9)) is None

    def test_no_meta(self) -> None:
        assert diff_token_balances(ChainTransaction(), "m") is None

    def test_owner_from_account_keys(self, make_address, make_tx) -> None:
        mint, alice, bob = make_address(1), make_address(2), make_address(3)
        raw = make_tx(mint, sender=alice, receiver=bob, amount=5)
        for entry in raw["meta"]["preTokenBalances"] + raw["meta"]["postTokenBalances"]:
            entry.pop("owner")
        raw["transaction"]["message"]["accountKeys"] = ["fee-payer", alice, bob]

        diff = diff_token_balances(parse(raw), mint)

        assert diff.sender == alice
        assert diff.receiver == bob


class TestExtractTokenTransfer:
    """Tests for extract_token_transfer."""

    def test_values_and_fee(self, make_address, make_tx) -> None:
        mint = make_address(1)
        raw = make_tx(
            mint, sender=make_address(2), receiver=make_address(3), amount=1000, fee=15_000,
            block_time=1_700_000_000,
        )

        candidate = extract_token_transfer(parse(raw), signature="sig1", mint=mint, price_usd=0.02)

        assert candidate is not None
        assert candidate.amount_usd == pytest.approx(20.0)
        assert candidate.fee_sol == pytest.approx(0.000015)
        assert candidate.block_time == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert candidate.tx_url == "https://solscan.io/tx/sig1"

    def test_missing_transaction(self) -> None:
        assert extract_token_transfer(None, signature="s", mint="m", price_usd=1.0) is None

    def test_negative_price_values_at_zero(self, make_address, make_tx) -> None:
        mint = make_address(1)
        raw = make_tx(mint, sender=make_address(2), receiver=make_address(3), amount=10)

        candidate = extract_token_transfer(parse(raw), signature="s", mint=mint, price_usd=-1.0)

        assert candidate.amount_usd == 0.0
