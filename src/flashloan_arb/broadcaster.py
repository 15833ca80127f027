"""
Fan-out of engine events to subscribers.

Subscribers are plain callables (sync or async) receiving one message dict:

    {"type": "opportunity" | "execution" | "automation_status",
     "payload": {...},
     "timestamp": "2024-01-01T00:00:00+00:00"}

Delivery is best effort and at most once. Subscribers are served
concurrently, so one slow subscriber costs at most `send_timeout`. A
subscriber that raises or times out is dropped from the registry; the others
still receive the event. Late subscribers get no replay.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import nats
from nats.aio.client import Client as NATS

logger = logging.getLogger(__name__)

EVENT_OPPORTUNITY = "opportunity"
EVENT_EXECUTION = "execution"
EVENT_STATUS = "automation_status"

Subscriber = Callable[[Dict[str, Any]], Any]


class EventBroadcaster:
    def __init__(self, send_timeout: Optional[float] = 5.0) -> None:
        self._subscribers: List[Subscriber] = []
        self._send_timeout = send_timeout

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_subscriber(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)
            logger.debug("Added subscriber %s", getattr(callback, "__name__", callback))

    def remove_subscriber(self, callback: Subscriber) -> None:
        before = len(self._subscribers)
        self._subscribers = [cb for cb in self._subscribers if cb is not callback]
        logger.debug("Removed %s subscriber(s)", before - len(self._subscribers))

    async def _deliver(self, callback: Subscriber, message: Dict[str, Any]) -> None:
        result = callback(message)
        if inspect.isawaitable(result):
            if self._send_timeout is None:
                await result
            else:
                await asyncio.wait_for(result, timeout=self._send_timeout)

    async def broadcast(self, event_type: str, payload: Dict[str, Any]) -> int:
        """Send one event to every current subscriber. Returns the delivery count."""
        if not self._subscribers:
            return 0

        message = {
            "type": event_type,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        subscribers = list(self._subscribers)
        outcomes = await asyncio.gather(
            *(self._deliver(cb, message) for cb in subscribers),
            return_exceptions=True,
        )

        delivered = 0
        for cb, outcome in zip(subscribers, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Dropping subscriber %s after send failure: %r",
                    getattr(cb, "__name__", cb),
                    outcome,
                )
                self.remove_subscriber(cb)
                continue
            delivered += 1
        return delivered


class NatsEventPublisher:
    """
    Subscriber that republishes every event on NATS as JSON.

    Subject: "<subject>.<event type>", e.g. "arb.events.execution".
    """

    def __init__(self, nats_url: Optional[str] = None, subject: str = "arb.events") -> None:
        self.nats_url = nats_url or os.getenv("NATS_URL", "nats://127.0.0.1:4222")
        self.subject = subject
        self.nc: Optional[NATS] = None
        self.__name__ = f"NatsEventPublisher({self.subject})"

    async def connect(self) -> None:
        try:
            self.nc = await nats.connect(
                self.nats_url,
                connect_timeout=3,
                allow_reconnect=True,
                reconnect_time_wait=1,
                max_reconnect_attempts=-1,
            )
            logger.info("Connected to NATS: %s", self.nats_url)
        except Exception as e:
            logger.error("Failed to connect to NATS: %s", e, exc_info=True)
            raise

    async def __call__(self, message: Dict[str, Any]) -> None:
        if self.nc is None:
            raise RuntimeError("NatsEventPublisher is not connected")
        subject = f"{self.subject}.{message.get('type', 'event')}"
        data = json.dumps(message, default=str).encode("utf-8")
        await self.nc.publish(subject, data)

    async def close(self) -> None:
        if self.nc is not None:
            await self.nc.drain()
            self.nc = None
            logger.info("NATS publisher closed")
