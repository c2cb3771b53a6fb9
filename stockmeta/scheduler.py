import asyncio
import logging
import math

from stockmeta.errors import GenerationCancelled
from stockmeta.models import (
    PAUSED,
    PROCESSING,
    RUNNING,
    Batch,
    ResultRecord,
    create_batches,
    mark_processed,
    queue_for_retry,
    record_success,
    record_terminal_failure,
)

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Drives one pass over a list of work items, one batch at a time.

    Batches run strictly in sequence; items inside a batch run concurrently
    under the single key the tracker assigned to that batch. Outcomes are
    written to the run state, the shared result list and the staged list
    only after the whole batch has settled.
    """

    def __init__(self, tracker, execute, state, results, staged, reporter, token, gate,
                 batch_size, mode):
        self.tracker = tracker
        self.execute = execute
        self.state = state
        self.results = results
        self.staged = staged
        self.reporter = reporter
        self.token = token
        self.gate = gate
        self.batch_size = batch_size
        self.mode = mode

    async def run_pass(self, items, is_retry_pass):
        done = 0
        recovered = 0
        for chunk in create_batches(items, self.batch_size):
            if self.token.is_cancelled:
                break
            if not await self._wait_if_paused():
                break

            try:
                key_index = await self.tracker.assign(len(chunk), self.token, on_wait=self._report_wait)
            except GenerationCancelled:
                break
            batch = Batch(items=chunk, key_index=key_index)
            logger.info("Dispatching %d item(s) on key #%d", len(chunk), key_index + 1)

            outcomes = await self._dispatch(batch)
            if self.token.is_cancelled:
                logger.info("Stop requested, discarding %d in-flight result(s)", len(outcomes))
                break

            for item, (metadata, error) in zip(batch.items, outcomes):
                if error is None:
                    self._succeed(item, metadata)
                    recovered += 1
                elif is_retry_pass:
                    self._fail_terminally(item, error)
                else:
                    self._queue_retry(item, error)

                if not is_retry_pass:
                    mark_processed(self.state)
                    self.reporter.publish(self.state.progress())

            done += len(batch.items)
            if is_retry_pass:
                self.reporter.status(f"Retried {done}/{len(items)} failed files | {recovered} recovered")

    async def _wait_if_paused(self):
        if not self.gate.is_paused:
            return True
        self.state.paused = True
        self.state.phase = PAUSED
        self.reporter.observer.on_generating(False)
        self.reporter.notify("Generation paused.", "info")
        resumed = await self.gate.wait_open(self.token)
        self.state.paused = False
        if not resumed:
            return False
        self.state.phase = RUNNING
        self.reporter.observer.on_generating(True)
        return True

    def _report_wait(self, seconds):
        self.reporter.status(f"All keys rate-limited. Waiting {math.ceil(seconds)}s...")

    async def _dispatch(self, batch):
        for item in batch.items:
            item.status = PROCESSING
        return await asyncio.gather(*(self._process(item, batch.key_index) for item in batch.items))

    async def _process(self, item, key_index):
        def on_retry(delay):
            logger.info("Retrying %s in %ds...", item.filename, math.ceil(delay))

        try:
            metadata = await self.execute(item, key_index, on_retry)
        except Exception as e:
            return None, e
        return metadata, None

    def _unstage(self, item):
        self.staged[:] = [f for f in self.staged if f.id != item.id]

    def _succeed(self, item, metadata):
        record = ResultRecord.from_metadata(item, metadata, self.mode)
        self.results.append(record)
        record_success(self.state, item)
        self._unstage(item)
        self.reporter.observer.on_result(record)

    def _queue_retry(self, item, error):
        logger.error("Failed to generate metadata for %s: %s", item.filename, error)
        queue_for_retry(self.state, item)
        self.reporter.notify(f"Error for {item.filename}. It will be retried later.", "warning")

    def _fail_terminally(self, item, error):
        logger.error("Failed to generate metadata for %s on retry: %s", item.filename, error)
        record = ResultRecord.failed(item, str(error), self.mode)
        self.results.append(record)
        record_terminal_failure(self.state, item)
        self._unstage(item)
        self.reporter.observer.on_result(record)
        self.reporter.notify(f"Retry failed for {item.filename}: {error}", "error")
