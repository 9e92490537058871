"""Tests for the whale detector and top-token refresh."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from token_whale_tracker.detector.whale import (
    TopTokenRefresher,
    WhaleDetector,
    map_pairs_to_top_tokens,
)
from token_whale_tracker.ingestor.models import ChainTransaction, DexPair, SignatureInfo
from token_whale_tracker.ingestor.rpc_client import ErrorKind, UpstreamResult
from token_whale_tracker.storage.repos import (
    TopTokenDTO,
    TopTokenRepository,
    WhaleEventDTO,
    WhaleEventRepository,
)

# ============================================================================
# Fakes
# ============================================================================


class FakeChain:
    """Serves a fixed set of signatures and transactions per mint."""

    def __init__(self, txs: dict[str, dict[str, dict]], *, configured: bool = True) -> None:
        self.txs = txs
        self.configured = configured
        self.signature_calls: list[str] = []

    async def get_signatures_for_address(self, address: str, *, limit: int):
        self.signature_calls.append(address)
        sigs = list(self.txs.get(address, {}))[:limit]
        return UpstreamResult.success([SignatureInfo(signature=s) for s in sigs])

    async def get_transaction(self, signature: str):
        for by_sig in self.txs.values():
            if signature in by_sig:
                return UpstreamResult.success(ChainTransaction.model_validate(by_sig[signature]))
        return UpstreamResult.failure(ErrorKind.REJECTED, "missing", action="getTransaction")


class RecordingNotifier:
    def __init__(self, *, succeed: bool = True, raises: bool = False) -> None:
        self.succeed = succeed
        self.raises = raises
        self.events: list[WhaleEventDTO] = []

    async def post_whale_event(self, event: WhaleEventDTO) -> bool:
        self.events.append(event)
        if self.raises:
            raise RuntimeError("discord down")
        return self.succeed


async def seed_top_token(db, address: str, *, price: float = 1.0, updated_at: datetime | None = None) -> None:
    async with db.get_async_session() as session:
        await TopTokenRepository(session).upsert_many(
            [
                TopTokenDTO(
                    token_address=address,
                    token_symbol="WHL",
                    token_name="Whale Token",
                    price_usd=price,
                    liquidity_usd=50_000,
                    updated_at=updated_at,
                )
            ]
        )


@pytest.fixture
def mint(make_address) -> str:
    return make_address(1)


@pytest.fixture
def whale_txs(make_address, make_tx, mint) -> dict[str, dict]:
    """Five whale-sized transfers of ``mint`` keyed by signature."""
    return {
        f"sig{i}": make_tx(mint, sender=make_address(10 + i), receiver=make_address(20 + i), amount=20_000 + i)
        for i in range(5)
    }


def make_detector(db, chain, notifier=None, **kwargs) -> WhaleDetector:
    kwargs.setdefault("signature_limit", 5)
    kwargs.setdefault("token_delay_seconds", 0.0)
    return WhaleDetector(chain, db.get_async_session, notifier=notifier, min_usd=10_000, **kwargs)


# ============================================================================
# WhaleDetector Tests
# ============================================================================


class TestWhaleDetector:
    """Tests for WhaleDetector.run."""

    async def test_only_new_signatures_inserted_and_notified(self, db, mint, whale_txs) -> None:
        await seed_top_token(db, mint)
        notifier = RecordingNotifier()
        detector = make_detector(db, FakeChain({mint: whale_txs}), notifier)

        # Two of the five are already stored.
        async with db.get_async_session() as session:
            await WhaleEventRepository(session).insert_new(
                [
                    WhaleEventDTO(
                        tx_hash=sig,
                        token_address=mint,
                        event_type="transfer",
                        amount_tokens=1.0,
                        amount_usd=1.0,
                        tx_url=f"https://solscan.io/tx/{sig}",
                    )
                    for sig in ("sig0", "sig3")
                ]
            )

        summary = await detector.run()

        assert summary.candidates == 5
        assert summary.skipped_existing == 2
        assert summary.inserted == 3
        assert summary.notified == 3
        assert sorted(e.tx_hash for e in notifier.events) == ["sig1", "sig2", "sig4"]
        async with db.get_async_session() as session:
            repo = WhaleEventRepository(session)
            for sig in whale_txs:
                assert await repo.count_by_tx_hash(sig) == 1

    async def test_second_run_inserts_nothing(self, db, mint, whale_txs) -> None:
        await seed_top_token(db, mint)
        notifier = RecordingNotifier()
        detector = make_detector(db, FakeChain({mint: whale_txs}), notifier)

        first = await detector.run()
        second = await detector.run()

        assert first.inserted == 5
        assert second.inserted == 0
        assert second.skipped_existing == 5
        assert len(notifier.events) == 5

    async def test_event_fields(self, db, mint, whale_txs, make_address) -> None:
        await seed_top_token(db, mint, price=2.0)
        notifier = RecordingNotifier()
        detector = make_detector(db, FakeChain({mint: {"sig1": whale_txs["sig1"]}}), notifier)

        await detector.run()

        event = notifier.events[0]
        assert event.event_type == "transfer"
        assert event.amount_usd == pytest.approx(40_002.0)
        assert event.sender == make_address(11)
        assert event.receiver == make_address(21)
        assert event.token_symbol == "WHL"
        assert event.tx_url == "https://solscan.io/tx/sig1"

    async def test_below_floor_ignored(self, db, mint, make_address, make_tx) -> None:
        await seed_top_token(db, mint, price=0.01)
        txs = {"small": make_tx(mint, sender=make_address(2), receiver=make_address(3), amount=1000)}
        detector = make_detector(db, FakeChain({mint: txs}), RecordingNotifier())

        summary = await detector.run()

        assert summary.candidates == 0
        assert summary.inserted == 0

    async def test_notify_failure_keeps_event(self, db, mint, whale_txs) -> None:
        await seed_top_token(db, mint)
        detector = make_detector(db, FakeChain({mint: whale_txs}), RecordingNotifier(raises=True))

        summary = await detector.run()

        assert summary.inserted == 5
        assert summary.notified == 0
        assert summary.notify_failures == 5

    async def test_stale_top_tokens_skipped(self, db, mint, whale_txs) -> None:
        await seed_top_token(db, mint, updated_at=datetime.now(UTC) - timedelta(hours=5))
        chain = FakeChain({mint: whale_txs})
        detector = make_detector(db, chain, stale_token_hours=4)

        summary = await detector.run()

        assert summary.reviewed_tokens == 0
        assert chain.signature_calls == []

    async def test_unconfigured_chain(self, db) -> None:
        detector = make_detector(db, FakeChain({}, configured=False))

        summary = await detector.run()

        assert summary.reviewed_tokens == 0
        assert summary.errors == ["chain-data provider is not configured"]

    async def test_one_token_failure_does_not_stop_run(self, db, make_address, whale_txs, mint) -> None:
        broken = make_address(2)
        await seed_top_token(db, mint)
        await seed_top_token(db, broken)

        class HalfBrokenChain(FakeChain):
            async def get_signatures_for_address(self, address, *, limit):
                if address == broken:
                    raise RuntimeError("boom")
                return await super().get_signatures_for_address(address, limit=limit)

        detector = make_detector(db, HalfBrokenChain({mint: whale_txs}))

        summary = await detector.run()

        assert summary.reviewed_tokens == 2
        assert summary.inserted == 5
        assert any(broken in e for e in summary.errors)

    async def test_persist_failure_skips_notify_and_continues(
        self, db, make_address, make_tx, monkeypatch
    ) -> None:
        failing, healthy = make_address(3), make_address(4)
        await seed_top_token(db, failing)
        await seed_top_token(db, healthy)
        chain = FakeChain(
            {
                failing: {"bad0": make_tx(failing, sender=make_address(30), receiver=make_address(31), amount=20_000)},
                healthy: {"ok0": make_tx(healthy, sender=make_address(32), receiver=make_address(33), amount=20_000)},
            }
        )
        notifier = RecordingNotifier()
        original_insert = WhaleEventRepository.insert_new

        async def insert_new(self, events):
            if any(e.token_address == failing for e in events):
                raise OperationalError("INSERT INTO whale_events", {}, Exception("disk full"))
            return await original_insert(self, events)

        monkeypatch.setattr(WhaleEventRepository, "insert_new", insert_new)

        summary = await make_detector(db, chain, notifier).run()

        assert summary.reviewed_tokens == 2
        assert summary.inserted == 1
        assert any(failing in e and "persist failed" in e for e in summary.errors)
        assert [e.tx_hash for e in notifier.events] == ["ok0"]
        async with db.get_async_session() as session:
            repo = WhaleEventRepository(session)
            assert await repo.count_by_tx_hash("bad0") == 0
            assert await repo.count_by_tx_hash("ok0") == 1


# ============================================================================
# Top-token refresh Tests
# ============================================================================


def dex_pair(address: str, **extra) -> DexPair:
    return DexPair.model_validate(
        {
            "chainId": "solana",
            "baseToken": {"address": address, "symbol": "T", "name": "Token"},
            "priceUsd": "0.5",
            "liquidity": {"usd": 1000},
            **extra,
        }
    )


class TestTopTokens:
    """Tests for trending pair mapping and refresh."""

    def test_map_pairs_dedups_and_recovers(self, make_address) -> None:
        a, b = make_address(1), make_address(2)
        pairs = [dex_pair(a), dex_pair(a, priceUsd="9"), dex_pair(b + "pump"), dex_pair("bad")]

        tokens = map_pairs_to_top_tokens(pairs)

        assert [t.token_address for t in tokens] == [a, b]
        assert tokens[0].price_usd == 0.5

    async def test_refresher_stores_tokens(self, db, make_address) -> None:
        a = make_address(1)

        class FakePairs:
            async def fetch_trending(self, *, limit: int):
                return UpstreamResult.success([dex_pair(a)])

        summary = await TopTokenRefresher(FakePairs(), db.get_async_session).run()

        assert summary == {"pairs": 1, "tokens": 1}
        async with db.get_async_session() as session:
            stored = await TopTokenRepository(session).list_fresh(
                datetime.now(UTC) - timedelta(minutes=1), limit=10
            )
        assert [t.token_address for t in stored] == [a]

    async def test_refresher_raises_when_unavailable(self, db) -> None:
        class DownPairs:
            async def fetch_trending(self, *, limit: int):
                return UpstreamResult.failure(ErrorKind.REJECTED, "HTTP 500", action="trending")

        with pytest.raises(RuntimeError, match="Trending pairs unavailable"):
            await TopTokenRefresher(DownPairs(), db.get_async_session).run()
