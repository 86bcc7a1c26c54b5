"""Operational events emitted by the wallet subsystem.

Components call :meth:`Notifier.emit` at fixed points (wallet created,
funded, transfer completed, NFT minted, failure). Delivery is
best-effort: a sink that raises is logged and skipped, and the caller
never sees the exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Protocol

import httpx

logger = logging.getLogger("agent_chain.notifications")


class EventKind(str, Enum):
    WALLET_CREATED = "wallet_created"
    WALLET_FUNDED = "wallet_funded"
    TRANSFER_COMPLETED = "transfer_completed"
    NFT_MINTED = "nft_minted"
    FAILED = "failed"


_EMOJI = {
    EventKind.WALLET_CREATED: "\U0001f4b0",      # money bag
    EventKind.WALLET_FUNDED: "\U0001f4b0",
    EventKind.TRANSFER_COMPLETED: "\U0001f4b8",  # money with wings
    EventKind.NFT_MINTED: "\U0001f5bc",          # framed picture
    EventKind.FAILED: "\U0001f534",              # red circle
}


@dataclass
class WalletEvent:
    kind: EventKind
    message: str
    handle: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def render(self) -> str:
        """One-line text suitable for a chat channel."""
        return f"{_EMOJI[self.kind]} {self.message}"


class EventSink(Protocol):
    async def emit(self, event: WalletEvent) -> None: ...


class MemorySink:
    """Keeps events in a list; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[WalletEvent] = []

    async def emit(self, event: WalletEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]


class DiscordWebhookSink:
    """Posts events to a Discord channel through an incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client

    async def emit(self, event: WalletEvent) -> None:
        payload = {"content": event.render()[:2000]}
        if self._client is not None:
            resp = await self._client.post(self.webhook_url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.webhook_url, json=payload)
        if resp.status_code not in (200, 204):
            raise RuntimeError(
                f"Discord webhook error {resp.status_code}: {resp.text}"
            )


class Notifier:
    """Fans events out to every configured sink, swallowing sink failures.

    With ``background=True`` each sink delivery runs as its own task, so
    :meth:`emit` returns immediately and a slow webhook never holds up the
    wallet operation that raised the event. Call :meth:`drain` before
    shutdown to let pending deliveries finish. Inline delivery (the
    default) delays the caller by at most each sink's own timeout.
    """

    def __init__(self, sinks: Iterable[EventSink] = (), background: bool = False) -> None:
        self._sinks: list[EventSink] = list(sinks)
        self.background = background
        self._pending: set[asyncio.Task] = set()

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _deliver(self, sink: EventSink, event: WalletEvent) -> None:
        try:
            await sink.emit(event)
        except Exception as e:
            logger.error(
                f"Notification sink {type(sink).__name__} failed for "
                f"{event.kind.value}: {e}"
            )

    async def emit(self, event: WalletEvent) -> None:
        for sink in self._sinks:
            if not self.background:
                await self._deliver(sink, event)
                continue
            task = asyncio.create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every background delivery scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def created(self, handle: str, address: str) -> None:
        await self.emit(WalletEvent(
            EventKind.WALLET_CREATED,
            f"wallet created for {handle}",
            handle=handle,
            details={"address": address},
        ))

    async def funded(self, address: str, amount: str, handle: str | None = None) -> None:
        await self.emit(WalletEvent(
            EventKind.WALLET_FUNDED,
            f"Initial funds ({amount}) sent to {address}",
            handle=handle,
            details={"address": address, "amount": amount},
        ))

    async def transferred(
        self,
        source: str,
        destination: str,
        amount: str,
        tx_hash: str,
        handle: str | None = None,
    ) -> None:
        await self.emit(WalletEvent(
            EventKind.TRANSFER_COMPLETED,
            f"Sent {amount} $AGENT from {source} to {destination}",
            handle=handle,
            details={"source": source, "destination": destination,
                     "amount": amount, "tx_hash": tx_hash},
        ))

    async def minted(self, handle: str, tx_hash: str) -> None:
        await self.emit(WalletEvent(
            EventKind.NFT_MINTED,
            f"NFT minted for {handle} (tx: {tx_hash})",
            handle=handle,
            details={"tx_hash": tx_hash},
        ))

    async def failed(self, operation: str, error: BaseException | str, handle: str | None = None) -> None:
        await self.emit(WalletEvent(
            EventKind.FAILED,
            f"Error in {operation}: {error}",
            handle=handle,
            details={"operation": operation},
        ))
