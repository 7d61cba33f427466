from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable

from .models import Alert, order_for_display

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[Alert]], Any]
SnapshotLoader = Callable[[tuple[str, ...]], Awaitable[list[Alert]]]


class Subscription:
    def __init__(self, hub: "SubscriptionHub", kinds: tuple[str, ...], callback: SnapshotCallback) -> None:
        self.subscription_id = uuid.uuid4().hex
        self.kinds = kinds
        self._hub = hub
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._hub._discard(self)
        logger.info("subscription cancelled id=%s kinds=%s", self.subscription_id, ",".join(self.kinds))

    async def deliver(self, alerts: list[Alert]) -> None:
        # Checked at delivery time so a cancel racing an in-flight publish wins.
        if not self._active:
            return
        result = self._callback(alerts)
        if inspect.isawaitable(result):
            await result


class SubscriptionHub:
    """Fans out full ordered snapshots to live subscribers.

    Every create or update calls ``publish`` with the alert's kind. Each
    subscription watching that kind receives the complete refreshed set, not a
    delta. Publishes are serialized per watched kind set, so a subscriber sees
    snapshots in write order and a subscription registered between two writes
    sees exactly one initial snapshot followed by one snapshot per later write.
    Subscribers to unrelated kinds never wait on each other.
    """

    def __init__(self, loader: SnapshotLoader) -> None:
        self._loader = loader
        self._subscriptions: dict[str, Subscription] = {}
        self._locks: dict[tuple[str, ...], asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _discard(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.subscription_id, None)

    def _lock_for(self, kinds: tuple[str, ...]) -> asyncio.Lock:
        lock = self._locks.get(kinds)
        if lock is None:
            lock = self._locks[kinds] = asyncio.Lock()
        return lock

    async def subscribe(self, kinds: tuple[str, ...], callback: SnapshotCallback) -> Subscription:
        async with self._lock_for(kinds):
            snapshot = order_for_display(await self._loader(kinds))
            subscription = Subscription(self, kinds, callback)
            self._subscriptions[subscription.subscription_id] = subscription
            logger.info("subscription registered id=%s kinds=%s", subscription.subscription_id, ",".join(kinds))
            await self._deliver_safely(subscription, snapshot)
        return subscription

    async def publish(self, kind: str) -> None:
        watched = {sub.kinds for sub in self._subscriptions.values() if kind in sub.kinds}
        for kinds in sorted(watched):
            await self._publish_to(kinds)

    async def _publish_to(self, kinds: tuple[str, ...]) -> None:
        async with self._lock_for(kinds):
            targets = [sub for sub in self._subscriptions.values() if sub.kinds == kinds and sub.active]
            if not targets:
                return
            try:
                snapshot = order_for_display(await self._loader(kinds))
            except Exception:
                logger.exception("snapshot refresh failed kinds=%s", ",".join(kinds))
                return
            for subscription in targets:
                await self._deliver_safely(subscription, list(snapshot))

    async def _deliver_safely(self, subscription: Subscription, snapshot: list[Alert]) -> None:
        try:
            await subscription.deliver(snapshot)
        except Exception:
            logger.exception("subscriber callback failed id=%s", subscription.subscription_id)
