"""Configuration system for Agent Chain wallets.

Loads settings from a YAML file (with ``${VAR}`` environment expansion) or
directly from the environment variables the web app deploys with
(``RPC_URL``, ``DEPLOYER_WALLET_PRIVATE_KEY`` and friends).
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    Unset variables expand to an empty string so that optional settings
    such as ``rpc_url`` fall back to degraded mode instead of carrying a
    literal placeholder.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class ChainConfig(BaseModel):
    """RPC endpoint, contracts, and the treasury signer."""

    network: str = "base-sepolia"
    rpc_url: Optional[str] = None            # ${RPC_URL}; unset = degraded mode
    chain_id: Optional[int] = None           # defaults to the network preset
    token_address: str = ""                  # ${ERC20_TOKEN_CONTRACT_ADDRESS}
    nft_address: str = ""                    # ${NFT_CONTRACT_ADDRESS}
    treasury_private_key: str = Field(default="", repr=False)  # ${DEPLOYER_WALLET_PRIVATE_KEY}
    treasury_address: Optional[str] = None   # derived from the key when omitted
    seed_amount: str = "100"                 # tokens sent to every new wallet
    token_decimals: int = 18
    receipt_timeout: float = 120.0
    permit_deadline_seconds: int = 0         # 0 = non-expiring permits

    @property
    def is_online(self) -> bool:
        return bool(self.rpc_url)


class CacheConfig(BaseModel):
    """Balance cache settings."""

    balance_ttl_seconds: float = 600.0


class NotificationConfig(BaseModel):
    """Operational event notifications (Discord webhook)."""

    enabled: bool = False
    discord_webhook_url: str = Field(default="", repr=False)
    timeout: float = 10.0


class StorageConfig(BaseModel):
    """Wallet record store location."""

    db_path: str = "agent_chain.db"


class AgentChainConfig(BaseModel):
    """Root configuration object."""

    chain: ChainConfig = Field(default_factory=ChainConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def _clean_empty(obj: object) -> object:
    """Drop empty strings so pydantic defaults apply to unset variables."""
    if isinstance(obj, dict):
        return {
            k: _clean_empty(v)
            for k, v in obj.items()
            if not (isinstance(v, str) and v == "")
        }
    return obj


def load_config(path: Path) -> AgentChainConfig:
    """Load and validate a configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = Path(path).read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _clean_empty(_expand_env_recursive(raw_data))
    return AgentChainConfig.model_validate(expanded)


def save_config(config: AgentChainConfig, path: Path) -> None:
    """Serialize an :class:`AgentChainConfig` to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)


# Maps environment variable -> (section, field)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "RPC_URL": ("chain", "rpc_url"),
    "CHAIN_NETWORK": ("chain", "network"),
    "CHAIN_ID": ("chain", "chain_id"),
    "ERC20_TOKEN_CONTRACT_ADDRESS": ("chain", "token_address"),
    "NFT_CONTRACT_ADDRESS": ("chain", "nft_address"),
    "DEPLOYER_WALLET_PRIVATE_KEY": ("chain", "treasury_private_key"),
    "DEPLOYER_WALLET_ADDRESS": ("chain", "treasury_address"),
    "AGENT_SEED_AMOUNT": ("chain", "seed_amount"),
    "BALANCE_CACHE_TTL": ("cache", "balance_ttl_seconds"),
    "DISCORD_WEBHOOK_URL": ("notifications", "discord_webhook_url"),
    "AGENT_CHAIN_DB": ("storage", "db_path"),
}


def config_from_env(environ: Mapping[str, str] | None = None) -> AgentChainConfig:
    """Build a configuration from environment variables.

    Empty variables are treated as unset. Notifications are enabled
    whenever a Discord webhook URL is present.
    """
    env = os.environ if environ is None else environ
    data: dict[str, dict] = {}
    for var, (section, field) in _ENV_FIELDS.items():
        value = env.get(var, "").strip()
        if value:
            data.setdefault(section, {})[field] = value
    if data.get("notifications", {}).get("discord_webhook_url"):
        data["notifications"]["enabled"] = True
    return AgentChainConfig.model_validate(data)
