"""
Tests for agent_chain.wallet.transfers.

Tests cover:
- Agent-to-agent permit + transferFrom sequence
- Ordering and abort behaviour on permit / transferFrom failure
- Balance cache invalidation after confirmed transfers only
- Treasury as source and as destination
- Per-wallet serialisation of concurrent transfers
"""
from __future__ import annotations

import asyncio

import pytest

from agent_chain.errors import (
    ChainUnavailableError,
    TransactionFailedError,
    WalletNotFoundError,
)
from agent_chain.notifications import EventKind
from agent_chain.wallet.balance import BalanceCache
from agent_chain.wallet.signature import (
    MAX_UINT256,
    build_permit_typed_data,
    recover_permit_signer,
)
from agent_chain.wallet.transfers import KeyedLock, TransferIntent, TransferOrchestrator

from conftest import CHAIN_ID, TOKEN_ADDRESS, TOKEN_NAME, add_wallet, gate_first_balance_read


@pytest.fixture
def cache(store, chain) -> BalanceCache:
    return BalanceCache(store, chain, ttl_seconds=600)


@pytest.fixture
def orchestrator(store, chain, cache, notifier) -> TransferOrchestrator:
    return TransferOrchestrator(store, chain, cache, notifier)


class TestAgentToAgent:

    @pytest.mark.asyncio
    async def test_alice_pays_bob(self, store, chain, cache, orchestrator, sink):
        alice = await add_wallet(store, "alice", chain, balance=1000)
        bob = await add_wallet(store, "bob", chain, balance=0)
        assert await cache.read("alice") == 1000
        assert await cache.read("bob") == 0

        receipt = await orchestrator.transfer_between_agents("alice", "bob", 100)

        assert chain.steps() == ["permit", "transferFrom"]
        permit = chain.calls[0]
        assert permit[1] == alice.address
        assert permit[2] == chain.treasury_address
        assert permit[3] == MAX_UINT256
        assert chain.calls[1] == ("transferFrom", alice.address, bob.address, 100)
        assert receipt.permit_tx_hash and receipt.transfer_tx_hash

        reads_before = chain.reads
        assert await cache.read("alice") == 900
        assert await cache.read("bob") == 100
        assert chain.reads == reads_before + 2
        assert EventKind.TRANSFER_COMPLETED in sink.kinds()

    @pytest.mark.asyncio
    async def test_transfer_during_balance_read_forces_live_read(self, store, chain, cache, orchestrator):
        await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)
        started, release = gate_first_balance_read(chain)

        pending = asyncio.create_task(cache.read("alice"))
        await started.wait()
        await orchestrator.transfer_between_agents("alice", "bob", 100)
        release.set()

        assert await pending == 1000
        assert await cache.read("alice") == 900

    @pytest.mark.asyncio
    async def test_second_transfer_uses_fresh_signature(self, store, chain, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)

        await orchestrator.transfer_between_agents("alice", "bob", 100)
        first_sig = (await store.get_wallet("alice")).permit_signature.value
        await orchestrator.transfer_between_agents("alice", "bob", 50)
        second_sig = (await store.get_wallet("alice")).permit_signature.value

        assert first_sig != second_sig
        assert chain.nonces[alice.address.lower()] == 2
        assert chain.balance(alice.address) == 850

    @pytest.mark.asyncio
    async def test_recorded_signature_is_spent(self, store, chain, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)

        await orchestrator.transfer_between_agents("alice", "bob", 100)

        stored = (await store.get_wallet("alice")).permit_signature.value
        domain, _, message = build_permit_typed_data(
            token_name=TOKEN_NAME,
            chain_id=CHAIN_ID,
            token_address=TOKEN_ADDRESS,
            owner=alice.address,
            spender=chain.treasury_address,
            value=MAX_UINT256,
            nonce=0,
            deadline=MAX_UINT256,
        )
        assert recover_permit_signer(stored, domain, message) == alice.address
        assert chain.nonces[alice.address.lower()] == 1

    @pytest.mark.asyncio
    async def test_permit_failure_blocks_transfer_from(self, store, chain, cache, orchestrator, sink):
        await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)
        await cache.read("alice")
        chain.fail_on.add("permit")

        with pytest.raises(TransactionFailedError) as exc_info:
            await orchestrator.transfer_between_agents("alice", "bob", 100)

        assert exc_info.value.step == "permit"
        assert "transferFrom" not in chain.steps()
        assert sink.kinds() == [EventKind.FAILED]

    @pytest.mark.asyncio
    async def test_transfer_from_revert_leaves_cache_alone(self, store, chain, cache, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)
        assert await cache.read("alice") == 1000
        assert await cache.read("bob") == 0
        chain.fail_on.add("transferFrom")

        with pytest.raises(TransactionFailedError) as exc_info:
            await orchestrator.transfer_between_agents("alice", "bob", 100)

        assert exc_info.value.step == "transferFrom"
        assert chain.steps() == ["permit", "transferFrom"]
        # The confirmed permit is not rolled back.
        assert chain.allowances[(alice.address.lower(), chain.treasury_address.lower())] == MAX_UINT256
        reads_before = chain.reads
        assert await cache.read("alice") == 1000
        assert await cache.read("bob") == 0
        assert chain.reads == reads_before

    @pytest.mark.asyncio
    async def test_missing_wallet_is_not_found(self, store, chain, orchestrator):
        await add_wallet(store, "alice", chain, balance=10)
        with pytest.raises(WalletNotFoundError):
            await orchestrator.transfer_between_agents("alice", "ghost", 1)
        assert chain.calls == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amount(self, store, chain, orchestrator):
        await add_wallet(store, "alice", chain, balance=10)
        await add_wallet(store, "bob", chain)
        with pytest.raises(ValueError):
            await orchestrator.transfer_between_agents("alice", "bob", 0)

    @pytest.mark.asyncio
    async def test_offline_transfer_is_fatal(self, store):
        await add_wallet(store, "alice")
        await add_wallet(store, "bob")
        orchestrator = TransferOrchestrator(store, None)
        with pytest.raises(ChainUnavailableError):
            await orchestrator.transfer_between_agents("alice", "bob", 1)

    @pytest.mark.asyncio
    async def test_caller_supplied_deadline(self, store, chain, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=10)
        bob = await add_wallet(store, "bob", chain)
        await orchestrator.transfer(TransferIntent(
            source=alice,
            destination_address=bob.address,
            amount=5,
            deadline=1_900_000_000,
        ))
        assert chain.calls[0][4] == 1_900_000_000


class TestTreasuryTransfers:

    @pytest.mark.asyncio
    async def test_treasury_source_skips_permit(self, store, chain, cache, orchestrator):
        bob = await add_wallet(store, "bob", chain)
        chain.set_balance(chain.treasury_address, 1000)
        assert await cache.read("bob") == 0

        receipt = await orchestrator.send_from_treasury("bob", 250)

        assert chain.steps() == ["transfer"]
        assert receipt.permit_tx_hash is None
        assert receipt.source_address == chain.treasury_address
        assert chain.balance(bob.address) == 250
        assert await cache.read("bob") == 250

    @pytest.mark.asyncio
    async def test_charge_to_treasury(self, store, chain, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=300)

        await orchestrator.charge_to_treasury("alice", 120)

        assert chain.steps() == ["permit", "transferFrom"]
        assert chain.balance(alice.address) == 180
        assert chain.balance(chain.treasury_address) == 120


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_source_transfers_are_serialised(self, store, chain, orchestrator):
        alice = await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)
        await add_wallet(store, "carol", chain)

        await asyncio.gather(
            orchestrator.transfer_between_agents("alice", "bob", 100),
            orchestrator.transfer_between_agents("alice", "carol", 200),
        )

        assert chain.steps() == ["permit", "transferFrom", "permit", "transferFrom"]
        assert chain.balance(alice.address) == 700
        assert chain.nonces[alice.address.lower()] == 2

    @pytest.mark.asyncio
    async def test_unlocked_transfers_race_on_nonce(self, store, chain):
        await add_wallet(store, "alice", chain, balance=1000)
        await add_wallet(store, "bob", chain)

        class NoLock(KeyedLock):
            def hold(self, key):
                return _null()

        orchestrator = TransferOrchestrator(store, chain, lock=NoLock())
        results = await asyncio.gather(
            orchestrator.transfer_between_agents("alice", "bob", 100),
            orchestrator.transfer_between_agents("alice", "bob", 100),
            return_exceptions=True,
        )
        assert any(isinstance(r, TransactionFailedError) for r in results)


class _null:
    async def __aenter__(self):
        return None

    async def __aexit__(self, *exc_info):
        return None


class TestKeyedLock:

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self):
        lock = KeyedLock()
        with pytest.raises(RuntimeError):
            async with lock.hold("0xABC"):
                assert lock.locked("0xabc")
                raise RuntimeError("boom")
        assert not lock.locked("0xabc")
        assert lock._locks == {}

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        lock = KeyedLock()
        async with lock.hold("a"):
            async with lock.hold("b"):
                assert lock.locked("a") and lock.locked("b")
