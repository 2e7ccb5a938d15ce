"""Abstract base class for polling watchers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any


class WatcherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class BaseWatcher(ABC):
    """Base class for watchers that poll a source on a fixed interval.

    Lifecycle is ``IDLE -> RUNNING -> STOPPED``. ``STOPPED`` is terminal.
    Ticks never overlap, and ``stop()`` waits for an in-flight tick to finish
    before tearing anything down.

    Subclasses must implement:
        - check_for_updates() -> events detected in one tick
        - dispatch(event) -> deliver one event; must not raise
    and may override on_start() / on_stop() for resource setup and teardown.
    """

    def __init__(self, data_dir: str, check_interval: float = 5.0):
        self.data_dir = Path(data_dir)
        self.logs_path = self.data_dir / "Logs"
        self.check_interval = check_interval
        self.logger = logging.getLogger(self.__class__.__name__)
        self.state = WatcherState.IDLE
        self._stop_requested = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._starting = False

    @property
    def is_running(self) -> bool:
        return self.state is WatcherState.RUNNING

    @abstractmethod
    async def check_for_updates(self) -> list[Any]:
        """Run one tick and return the events it detected."""

    @abstractmethod
    async def dispatch(self, event: Any) -> None:
        """Deliver one event. Failures are handled inside."""

    async def on_start(self) -> None:
        """Acquire resources and record initial state before the first tick."""

    async def on_stop(self) -> None:
        """Persist state and release resources."""

    async def start(self) -> None:
        """Move from IDLE to RUNNING.

        Raises:
            RuntimeError: If the watcher was already started or stopped.
        """
        if self.state is not WatcherState.IDLE:
            msg = f"{self.__class__.__name__} cannot start from state '{self.state.value}'"
            raise RuntimeError(msg)
        self._starting = True
        try:
            await self.on_start()
        except Exception:
            if self.state is not WatcherState.STOPPED:
                raise
            self.logger.info("%s stopped during startup", self.__class__.__name__)
        finally:
            self._starting = False
        if self.state is WatcherState.STOPPED:
            # stop() arrived while on_start() was still running and left teardown to us
            await self._teardown()
            return
        self.state = WatcherState.RUNNING
        self.logger.info("%s started (interval: %ss)", self.__class__.__name__, self.check_interval)

    async def poll_once(self) -> list[Any]:
        """Run a single tick and dispatch its events."""
        async with self._tick_lock:
            if not self.is_running:
                return []
            events = await self.check_for_updates()
            for event in events:
                await self.dispatch(event)
            return events

    async def _wait_interval(self) -> bool:
        """Sleep for one interval. Returns True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.check_interval)
        except TimeoutError:
            return False
        return True

    async def run(self) -> None:
        """Main polling loop. Starts the watcher first if it is still IDLE."""
        if self.state is WatcherState.IDLE:
            await self.start()

        while self.is_running:
            if await self._wait_interval():
                break
            try:
                await self.poll_once()
            except Exception:
                self.logger.exception("Error in %s polling cycle", self.__class__.__name__)

        self.logger.info("%s polling loop exited", self.__class__.__name__)

    async def stop(self) -> None:
        """Stop polling, then run on_stop() once no tick is in flight. Idempotent.

        During startup the teardown is deferred until on_start() returns, so
        resources acquired late in on_start() are still released.
        """
        if self.state is WatcherState.STOPPED:
            return
        self.state = WatcherState.STOPPED
        self._stop_requested.set()
        if self._starting:
            self.logger.info("%s stop requested during startup", self.__class__.__name__)
            return
        await self._teardown()

    async def _teardown(self) -> None:
        async with self._tick_lock:
            await self.on_stop()
        self.logger.info("%s stopped", self.__class__.__name__)
