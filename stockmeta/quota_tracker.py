import asyncio
import logging
import math
import time

from stockmeta.config import CONFIG
from stockmeta.errors import ConfigurationError, GenerationCancelled

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Per-key request budgets over one shared rolling minute.

    Capacity is reserved when a batch is assigned, not when it finishes, so
    batches still in flight count against their key. Counters are only ever
    released by the window rolling over.
    """

    def __init__(self, api_keys, max_per_minute=None, clock=time.monotonic,
                 window=None, grace=None, poll_interval=None):
        self.api_keys = list(api_keys)
        self.max_per_minute = max_per_minute or CONFIG["requests_per_minute"]
        self.window = CONFIG["rate_window"] if window is None else window
        self.grace = CONFIG["rate_wait_grace"] if grace is None else grace
        self.poll_interval = CONFIG["rate_poll_interval"] if poll_interval is None else poll_interval
        self._clock = clock
        self.request_counts = [0] * len(self.api_keys)
        self.window_start = clock()
        self.cursor = 0

    def reset_if_expired(self):
        """Zero every counter once the shared window is over"""
        now = self._clock()
        if now - self.window_start > self.window:
            self.window_start = now
            self.request_counts = [0] * len(self.api_keys)
            logger.debug("Rate window reset")

    def can_process(self, index, count=1):
        """Check if a key can take `count` more requests this window"""
        return self.request_counts[index] + count <= self.max_per_minute

    def add_usage(self, index, count=1):
        self.request_counts[index] += count

    def get_remaining(self, index):
        return max(0, self.max_per_minute - self.request_counts[index])

    def seconds_until_reset(self):
        return max(0.0, self.window_start + self.window + self.grace - self._clock())

    def get_status(self):
        """Get current quota status"""
        return {
            "used": list(self.request_counts),
            "max": self.max_per_minute,
            "remaining": [self.get_remaining(i) for i in range(len(self.api_keys))],
            "resets_in": self.seconds_until_reset(),
        }

    def validate(self, batch_size):
        if not self.api_keys:
            raise ConfigurationError("API Key Missing. Please add an API key in the settings.")
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ConfigurationError(f"Batch size must be a positive whole number, got {batch_size!r}.")
        if batch_size > self.max_per_minute:
            raise ConfigurationError(
                f"Batch size {batch_size} exceeds the per-key limit of "
                f"{self.max_per_minute} requests per minute."
            )

    def try_assign(self, batch_size):
        """Reserve capacity on the next key in rotation, or return None"""
        self.reset_if_expired()
        start = self.cursor
        index = start
        while True:
            if self.can_process(index, batch_size):
                self.add_usage(index, batch_size)
                self.cursor = (index + 1) % len(self.api_keys)
                return index
            index = (index + 1) % len(self.api_keys)
            if index == start:
                return None

    async def assign(self, batch_size, token=None, on_wait=None):
        """Return the key index for a batch, waiting for the window if every key is full"""
        self.validate(batch_size)
        while True:
            index = self.try_assign(batch_size)
            if index is not None:
                return index

            remaining = self.seconds_until_reset()
            if on_wait:
                on_wait(math.ceil(remaining))
            logger.debug("All keys rate-limited. Waiting %ds...", math.ceil(remaining))

            delay = min(self.poll_interval, remaining)
            if token is not None:
                if await token.wait(delay):
                    raise GenerationCancelled("Stopped while waiting for rate limit")
            else:
                await asyncio.sleep(delay)
