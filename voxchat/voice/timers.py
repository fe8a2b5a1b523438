"""
Single-shot timer slots for the voice loop

Every countdown in the voice subsystem is a named slot holding at most one
scheduled callback:

- inactivity: ends non-stop listening after a stretch without transcripts
- auto_stop: cuts speech playback short after the configured duration
- confirmation: dismisses on-screen confirmations
- restart: delays re-opening the microphone after a session ends on its own

Arming a slot replaces whatever it held. A slot clears itself before running
its callback, so one arming fires at most once.

Scheduling goes through a ``Scheduler``; ``LoopScheduler`` wraps the running
asyncio loop, and tests substitute a manual clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedule callbacks on the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)


class TimerSlot:
    """One single-shot timer that can be armed, re-armed and cancelled."""

    def __init__(self, name: str, scheduler: Scheduler, logger: logging.Logger | None = None) -> None:
        self.name = name
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self._generation = 0
        self._logger = logger or LOGGER

    @property
    def active(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        """Schedule ``callback`` after ``delay`` seconds, replacing any pending one."""
        self.cancel()
        self._generation += 1
        generation = self._generation

        def _fire() -> None:
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
            self._logger.debug("[timers] %s fired", self.name)
            callback()

        self._handle = self._scheduler.call_later(delay, _fire)

    def cancel(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        self._generation += 1


class TimerService:
    """Holds the named timer slots used by the voice subsystem."""

    def __init__(self, scheduler: Scheduler | None = None, logger: logging.Logger | None = None) -> None:
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self._logger = logger or LOGGER
        self.inactivity = TimerSlot("inactivity", self.scheduler, self._logger)
        self.auto_stop = TimerSlot("auto_stop", self.scheduler, self._logger)
        self.confirmation = TimerSlot("confirmation", self.scheduler, self._logger)
        self.restart = TimerSlot("restart", self.scheduler, self._logger)

    def cancel_listening_timers(self) -> None:
        """Cancel the timers tied to a listening session."""
        self.inactivity.cancel()
        self.restart.cancel()

    def cancel_all(self) -> None:
        for slot in (self.inactivity, self.auto_stop, self.confirmation, self.restart):
            slot.cancel()
