"""Agent Chain storage layer -- async SQLite database and Pydantic models."""

from agent_chain.storage.database import Database, get_database
from agent_chain.storage.models import (
    AgentWalletRecord,
    PermitSignature,
    SignatureUnavailable,
)
from agent_chain.storage.wallets import WalletStore

__all__ = [
    "Database",
    "get_database",
    "AgentWalletRecord",
    "PermitSignature",
    "SignatureUnavailable",
    "WalletStore",
]
