"""
Pytest configuration and fixtures for agent_chain tests.

``FakeChain`` stands in for :class:`agent_chain.wallet.provider.ChainClient`:
it keeps balances, permit nonces and allowances in memory, verifies permit
signatures with real EIP-712 recovery, and records every write it sees.
"""
from __future__ import annotations

import asyncio
import itertools

import pytest
import pytest_asyncio
from eth_account import Account
from web3 import Web3

from agent_chain.errors import TransactionFailedError
from agent_chain.notifications import MemorySink, Notifier
from agent_chain.storage.database import Database
from agent_chain.storage.models import AgentWalletRecord, PermitSignature
from agent_chain.storage.wallets import WalletStore
from agent_chain.wallet.signature import build_permit_typed_data, recover_permit_signer

TOKEN_ADDRESS = Web3.to_checksum_address("0x" + "11" * 20)
TOKEN_NAME = "AgentCoin"
CHAIN_ID = 84532


class FakeChain:
    """In-memory AgentCoin/NFT contracts with a treasury relayer."""

    def __init__(self) -> None:
        self.token_address = TOKEN_ADDRESS
        self.treasury = Account.create()
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.nfts: dict[str, int] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.reads = 0
        self._tx_counter = itertools.count(1)

    @property
    def treasury_address(self) -> str:
        return self.treasury.address

    def _tx(self) -> str:
        return "0x" + format(next(self._tx_counter), "064x")

    def _check_failure(self, step: str) -> None:
        if step in self.fail_on:
            raise TransactionFailedError(step, "execution reverted", self._tx())

    def set_balance(self, address: str, amount: int) -> None:
        self.balances[address.lower()] = amount

    def balance(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    # Reads

    async def get_chain_id(self) -> int:
        return CHAIN_ID

    async def token_name(self) -> str:
        if "name" in self.fail_on:
            raise ConnectionError("rpc unreachable")
        return TOKEN_NAME

    async def token_nonce(self, owner: str) -> int:
        await asyncio.sleep(0)
        return self.nonces.get(owner.lower(), 0)

    async def token_balance(self, address: str) -> int:
        self.reads += 1
        if "balanceOf" in self.fail_on:
            raise ConnectionError("rpc unreachable")
        return self.balance(address)

    async def nft_balance(self, address: str) -> int:
        if "nftBalance" in self.fail_on:
            raise ConnectionError("rpc unreachable")
        return self.nfts.get(address.lower(), 0)

    # Writes

    async def transfer(self, to_address: str, amount: int) -> str:
        self.calls.append(("transfer", to_address, amount))
        self._check_failure("transfer")
        treasury = self.treasury_address.lower()
        self.balances[treasury] = self.balance(treasury) - amount
        self.balances[to_address.lower()] = self.balance(to_address) + amount
        return self._tx()

    async def permit(self, owner, spender, value, deadline, v, r, s) -> str:
        self.calls.append(("permit", owner, spender, value, deadline))
        await asyncio.sleep(0)
        self._check_failure("permit")
        domain, _, message = build_permit_typed_data(
            token_name=TOKEN_NAME,
            chain_id=CHAIN_ID,
            token_address=TOKEN_ADDRESS,
            owner=owner,
            spender=spender,
            value=value,
            nonce=self.nonces.get(owner.lower(), 0),
            deadline=deadline,
        )
        signer = recover_permit_signer(r + s + bytes([v]), domain, message)
        if signer.lower() != owner.lower():
            raise TransactionFailedError("permit", "ERC2612InvalidSigner", self._tx())
        self.nonces[owner.lower()] = self.nonces.get(owner.lower(), 0) + 1
        self.allowances[(owner.lower(), spender.lower())] = value
        return self._tx()

    async def transfer_from(self, source: str, destination: str, amount: int) -> str:
        self.calls.append(("transferFrom", source, destination, amount))
        self._check_failure("transferFrom")
        key = (source.lower(), self.treasury_address.lower())
        if self.allowances.get(key, 0) < amount or self.balance(source) < amount:
            raise TransactionFailedError("transferFrom", "insufficient allowance or balance", self._tx())
        self.balances[source.lower()] = self.balance(source) - amount
        self.balances[destination.lower()] = self.balance(destination) + amount
        return self._tx()

    async def mint_nft(self, recipient: str, artwork_url: str, title: str) -> str:
        self.calls.append(("mint", recipient, artwork_url, title))
        self._check_failure("mint")
        self.nfts[recipient.lower()] = self.nfts.get(recipient.lower(), 0) + 1
        return self._tx()

    async def close(self) -> None:
        return None

    def steps(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def notifier(sink: MemorySink) -> Notifier:
    return Notifier([sink])


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(tmp_path / "wallets.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def store(db: Database) -> WalletStore:
    return WalletStore(db)


async def add_wallet(
    store: WalletStore,
    handle: str,
    chain: FakeChain | None = None,
    balance: int = 0,
) -> AgentWalletRecord:
    """Store a fresh wallet for *handle* and optionally seed its balance."""
    account = Account.create()
    record = AgentWalletRecord(
        handle=handle,
        address=account.address,
        private_key=Web3.to_hex(account.key),
        permit_signature=PermitSignature.present("0x" + "ab" * 65),
    )
    await store.create_wallet(record)
    if chain is not None:
        chain.set_balance(account.address, balance)
    return record


def gate_first_balance_read(chain: FakeChain) -> tuple[asyncio.Event, asyncio.Event]:
    """Hold the first ``token_balance`` call after it has read the chain.

    Returns ``(started, release)`` events; later calls pass straight through.
    """
    original = chain.token_balance
    started, release = asyncio.Event(), asyncio.Event()

    async def gated(address: str) -> int:
        value = await original(address)
        if not started.is_set():
            started.set()
            await release.wait()
        return value

    chain.token_balance = gated
    return started, release
