"""Market data feeds.

A feed yields normalized gridrisk events one at a time; None signals
that the feed has closed and no more events will arrive.
"""

import asyncio
import json
import logging
from datetime import datetime, UTC
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Protocol

from gridrisk import Event, EventType, Fill, FillEvent, TickerEvent, safe_parse_float


logger = logging.getLogger(__name__)


class EventFeed(Protocol):
    """Source of ticker and fill events."""

    async def next_event(self) -> Optional[Event]:
        ...


class QueueFeed:
    """Feed backed by an asyncio.Queue.

    Venue adapters push normalized events with put(); close() enqueues
    the end-of-stream marker so the runner drains pending events first.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[Optional[Event]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("feed is closed")
        await self._queue.put(event)

    def put_nowait(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("feed is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def next_event(self) -> Optional[Event]:
        return await self._queue.get()


def _parse_ts(value) -> datetime:
    """Epoch milliseconds or ISO 8601 string to an aware datetime."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, UTC)
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def parse_event(record: dict) -> Event:
    """Build an event from one replay record.

    Ticker records carry `mid_price`; fill records carry a `fills` list of
    objects with order_id, side, price, qty and an optional fee. `ts` is
    used for both the exchange and the local timestamp.

    Raises:
        ValueError: If the record is malformed
    """
    try:
        ts = _parse_ts(record["ts"])
        kind = record["type"]
        symbol = record["symbol"]
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"bad record header: {e}") from e

    if kind == EventType.TICKER.value:
        try:
            mid_price = Decimal(str(record["mid_price"]))
        except (KeyError, InvalidOperation) as e:
            raise ValueError(f"bad mid_price: {e}") from e
        return TickerEvent(
            event_type=EventType.TICKER,
            symbol=symbol,
            exchange_ts=ts,
            local_ts=ts,
            mid_price=mid_price,
        )

    if kind == EventType.FILLS.value:
        try:
            fills = tuple(
                Fill(
                    order_id=str(f["order_id"]),
                    side=f["side"],
                    price=str(f["price"]),
                    qty=str(f["qty"]),
                    fee=safe_parse_float(str(f["fee"]), "fee", 0.0) if "fee" in f else 0.0,
                )
                for f in record["fills"]
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"bad fills: {e}") from e
        return FillEvent(
            event_type=EventType.FILLS,
            symbol=symbol,
            exchange_ts=ts,
            local_ts=ts,
            fills=fills,
        )

    raise ValueError(f"unknown event type {kind!r}")


class ReplayFeed:
    """Feed that replays a JSON-lines file of recorded events.

    Malformed lines are logged and skipped. The feed closes at end of file.
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._events: Optional[list[Event]] = None
        self._position = 0

    def _load(self) -> list[Event]:
        events = []
        with open(self._path) as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(parse_event(json.loads(line)))
                except ValueError as e:
                    logger.warning(f"{self._path}:{line_no}: skipping record: {e}")
        logger.info(f"Loaded {len(events)} events from {self._path}")
        return events

    async def next_event(self) -> Optional[Event]:
        if self._events is None:
            self._events = self._load()
        if self._position >= len(self._events):
            return None
        event = self._events[self._position]
        self._position += 1
        return event
