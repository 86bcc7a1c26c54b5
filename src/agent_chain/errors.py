"""Exception types raised by the agent wallet subsystem."""

from __future__ import annotations


class AgentChainError(Exception):
    """Base class for every error raised by agent_chain."""


class ConfigError(AgentChainError):
    """Required configuration is missing or invalid."""


class ChainUnavailableError(AgentChainError):
    """No RPC endpoint is configured, so no provider is bound."""

    def __init__(self, message: str = "No RPC endpoint configured (RPC_URL is unset).") -> None:
        super().__init__(message)


class SignatureError(AgentChainError):
    """A permit signature could not be produced."""


class TransactionFailedError(AgentChainError):
    """A submitted transaction reverted or never confirmed.

    ``step`` names the contract call that failed (``permit``,
    ``transferFrom``, ``transfer`` or ``mint``).
    """

    def __init__(self, step: str, message: str, tx_hash: str | None = None) -> None:
        self.step = step
        self.tx_hash = tx_hash
        detail = f"{step} failed: {message}"
        if tx_hash:
            detail += f" (tx={tx_hash})"
        super().__init__(detail)


class StorageError(AgentChainError):
    """The record store could not complete an operation."""


class WalletExistsError(StorageError):
    """A wallet is already registered for the handle."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Wallet already exists for '{handle}'.")


class WalletNotFoundError(AgentChainError):
    """No wallet is registered for the handle."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Wallet not found for '{handle}'.")
