# hdas/shutdown.py
"""Broadcast shutdown notification shared by the long-running tasks.

One ``ShutdownNotifier`` is created when the process starts. Every task gets
its own ``Shutdown`` receiver from ``subscribe()`` and waits on it; a single
``trigger()`` wakes all of them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

logger = logging.getLogger("hdas.shutdown")


class Shutdown:
    """Receiving side of a ``ShutdownNotifier``.

    Once notified (or closed) the receiver stays set: ``wait()`` returns
    immediately from then on.
    """

    def __init__(self, notifier: "ShutdownNotifier") -> None:
        self._notifier = notifier
        self._event = asyncio.Event()
        self._closed = False

    def _notify(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    async def wait(self) -> None:
        await self._event.wait()

    def close(self) -> None:
        """Drop the receiver. Pending and future waits return."""
        if self._closed:
            return
        self._closed = True
        self._notifier._unsubscribe(self)
        self._event.set()


class ShutdownNotifier:
    """Sending side: mint receivers with ``subscribe()``, fire with ``trigger()``."""

    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._receivers: List[Shutdown] = []
        self._triggered = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    @property
    def receiver_count(self) -> int:
        return len(self._receivers)

    def subscribe(self) -> Shutdown:
        receiver = Shutdown(self)
        if self._triggered:
            # Late subscribers see the signal straight away instead of hanging
            receiver._notify()
        else:
            self._receivers.append(receiver)
        return receiver

    def _unsubscribe(self, receiver: Shutdown) -> None:
        try:
            self._receivers.remove(receiver)
        except ValueError:
            pass

    def trigger(self) -> int:
        """Notify every subscribed receiver. Returns how many were notified.

        Only the first call has an effect; later calls return 0.
        """
        if self._triggered:
            return 0
        self._triggered = True
        receivers, self._receivers = self._receivers, []
        for receiver in receivers:
            receiver._notify()
        logger.debug("shutdown triggered, notified %d receivers", len(receivers))
        return len(receivers)


async def wait_or_tick(shutdown: Shutdown, timeout: float) -> bool:
    """Race the shutdown signal against a ``timeout`` second timer.

    Returns True when the signal won, False when the timer fired first.
    """
    if shutdown.is_set():
        return True
    try:
        await asyncio.wait_for(shutdown.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True
