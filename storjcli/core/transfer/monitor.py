"""
Host memory watchdog for upload runs.

Encrypting and staging many files at once can exhaust memory on small
hosts. The monitor polls a health source and trips once free memory falls
under a fixed floor.
"""
import asyncio
from typing import Callable, List, Optional

import psutil

from ..exceptions import ResourceExhaustedError
from ..logging import get_logger

logger = get_logger('storjcli.transfer.monitor')

MIN_FREE_MEMORY = 100 * 1024 * 1024  # 100 MiB
CHECK_INTERVAL = 1.0


def available_memory() -> int:
    """Free memory reported by the OS, in bytes."""
    return psutil.virtual_memory().available


class ResourcePressureMonitor:
    """
    Polls ``health_source`` every ``interval`` seconds.
    
    Once the reported value drops under ``MIN_FREE_MEMORY`` the monitor
    records a ResourceExhaustedError, sets ``tripped`` and notifies every
    subscriber exactly once. A health source that raises trips it the same way.
    
    Example:
        >>> monitor = ResourcePressureMonitor()
        >>> unsubscribe = monitor.subscribe(lambda err: print(err))
        >>> monitor.start()
    """
    
    def __init__(
        self,
        health_source: Optional[Callable[[], int]] = None,
        interval: float = CHECK_INTERVAL,
        threshold: int = MIN_FREE_MEMORY
    ):
        self._source = health_source or available_memory
        self._interval = interval
        self._threshold = threshold
        self._subscribers: List[Callable[[ResourceExhaustedError], None]] = []
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[ResourceExhaustedError] = None
        self.tripped = asyncio.Event()
    
    @property
    def error(self) -> Optional[ResourceExhaustedError]:
        return self._error
    
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    def subscribe(self, callback: Callable[[ResourceExhaustedError], None]) -> Callable[[], None]:
        """
        Register a callback fired when the monitor trips.
        
        Returns:
            A function removing the subscription
        """
        self._subscribers.append(callback)
        
        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        
        return unsubscribe
    
    def check(self) -> bool:
        """
        Poll the health source once.
        
        Returns:
            True if memory is above the floor
        """
        if self._error is not None:
            return False
        
        try:
            available = self._source()
        except Exception as e:
            error = ResourceExhaustedError(f"Memory check failed, aborting upload: {e}")
            error.__cause__ = e
            self._trip(error)
            return False
        
        if available >= self._threshold:
            return True
        
        self._trip(ResourceExhaustedError(
            f"Free memory ({available} bytes) dropped below "
            f"{self._threshold} bytes, aborting upload",
            available=available
        ))
        return False
    
    def _trip(self, error: ResourceExhaustedError) -> None:
        self._error = error
        logger.error(str(error))
        self.tripped.set()
        for callback in list(self._subscribers):
            callback(error)
    
    async def _watch(self) -> None:
        while self.check():
            await asyncio.sleep(self._interval)
    
    def start(self) -> None:
        """Start polling in a background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._watch())
    
    async def stop(self) -> None:
        """Stop polling."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif not task.cancelled() and task.exception() is not None:
            logger.error(f"Memory monitor stopped with an error: {task.exception()}")
