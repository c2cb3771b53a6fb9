"""Stop and pause primitives the run's suspension points wait on."""

import asyncio


class CancellationToken:
    """One-way stop flag that waiting coroutines can block on"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self):
        return self._event.is_set()

    async def wait_cancelled(self):
        await self._event.wait()

    async def wait(self, timeout):
        """Sleep up to `timeout` seconds, returning True as soon as cancelled"""
        if self.is_cancelled:
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self.is_cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class PauseGate:
    """Open while running, closed while paused"""

    def __init__(self):
        self._open = asyncio.Event()
        self._open.set()

    @property
    def is_paused(self):
        return not self._open.is_set()

    def pause(self):
        self._open.clear()

    def resume(self):
        self._open.set()

    async def wait_open(self, token=None):
        """Block until resumed or cancelled; returns False if cancelled"""
        if not self.is_paused:
            return not (token and token.is_cancelled)
        waiters = [asyncio.ensure_future(self._open.wait())]
        if token is not None:
            waiters.append(asyncio.ensure_future(token.wait_cancelled()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return not (token and token.is_cancelled)
