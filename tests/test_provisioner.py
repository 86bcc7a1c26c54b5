"""
Tests for agent_chain.wallet.provisioner.

Tests cover:
- Wallet creation with and without chain connectivity
- Fallback when the permit cannot be signed
- Persistence failures and duplicate handles
"""
from __future__ import annotations

import re
from unittest.mock import AsyncMock, Mock

import pytest
from eth_account import Account

from agent_chain.errors import StorageError, WalletExistsError
from agent_chain.notifications import EventKind
from agent_chain.storage.models import SignatureUnavailable
from agent_chain.wallet.provisioner import WalletProvisioner

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class TestOfflineProvisioning:

    @pytest.mark.asyncio
    async def test_wallet_created_without_rpc(self, store, notifier, sink):
        provisioner = WalletProvisioner(store, chain=None, notifier=notifier)

        assert await provisioner.create_wallet("alice") is True

        wallet = await store.get_wallet("alice")
        assert wallet is not None
        assert ADDRESS_RE.match(wallet.address)
        assert wallet.private_key
        assert not wallet.permit_signature.is_present
        assert wallet.permit_signature.as_legacy_string() == "development-mode-no-signature"
        assert sink.kinds() == [EventKind.WALLET_CREATED]

    @pytest.mark.asyncio
    async def test_private_key_matches_address(self, store):
        wallet = await WalletProvisioner(store).provision("@Alice")
        assert wallet.handle == "alice"
        assert Account.from_key(wallet.private_key).address == wallet.address


class TestOnlineProvisioning:

    @pytest.mark.asyncio
    async def test_permit_signature_stored(self, store, chain):
        wallet = await WalletProvisioner(store, chain).provision("bob")
        stored = await store.get_wallet("bob")
        assert stored.permit_signature.is_present
        assert stored.permit_signature.value == wallet.permit_signature.value

    @pytest.mark.asyncio
    async def test_signing_failure_falls_back(self, store, chain):
        chain.fail_on.add("name")
        assert await WalletProvisioner(store, chain).create_wallet("carol") is True

        stored = await store.get_wallet("carol")
        assert stored.permit_signature.reason == SignatureUnavailable.SIGNING_FAILED
        assert stored.permit_signature.as_legacy_string() == "error-generating-signature"


class TestPersistenceFailures:

    @pytest.mark.asyncio
    async def test_storage_error_reported(self, notifier, sink):
        store = Mock()
        store.create_wallet = AsyncMock(side_effect=StorageError("disk full"))
        provisioner = WalletProvisioner(store, notifier=notifier)

        assert await provisioner.create_wallet("dave") is False
        with pytest.raises(StorageError):
            await provisioner.provision("dave")
        assert EventKind.WALLET_CREATED not in sink.kinds()
        assert EventKind.FAILED in sink.kinds()

    @pytest.mark.asyncio
    async def test_duplicate_handle_rejected(self, store):
        provisioner = WalletProvisioner(store)
        first = await provisioner.provision("erin")

        with pytest.raises(WalletExistsError):
            await provisioner.provision("ERIN")

        assert (await store.get_wallet("erin")).address == first.address
        assert len(await store.list_wallets()) == 1
