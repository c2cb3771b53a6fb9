import copy
import logging
import time

from stockmeta.config import CONFIG, Settings
from stockmeta.errors import ConfigurationError, RegenerationError, StockMetaError
from stockmeta.gemini_service import call_api_with_backoff, create_client
from stockmeta.models import (
    COMPLETED,
    IDLE,
    PAUSED,
    RUNNING,
    STOPPED,
    ProgressSnapshot,
    RunState,
    begin_retry_pass,
)
from stockmeta.observer import ProgressReporter
from stockmeta.prompts import create_prompt
from stockmeta.quota_tracker import QuotaTracker
from stockmeta.scheduler import BatchScheduler
from stockmeta.signals import CancellationToken, PauseGate

logger = logging.getLogger(__name__)


class RunController:
    """Owns staged files, results and the lifecycle of generation runs.

    idle -> running(primary) -> running(retry)? -> completed, with stop
    reachable from any running state and pause toggling while running.
    Settings are snapshotted when a run starts; edits made during the run
    apply to the next one.
    """

    def __init__(self, settings=None, observer=None, client_factory=None, execute=None,
                 clock=time.monotonic, requests_per_minute=None, retry_pass_delay=None,
                 backoff=None, rate_poll_interval=None):
        self.settings = settings or Settings()
        self.reporter = ProgressReporter(observer)
        self.client_factory = client_factory or create_client
        self.execute = execute
        self.clock = clock
        self.requests_per_minute = requests_per_minute or CONFIG["requests_per_minute"]
        self.retry_pass_delay = CONFIG["retry_pass_delay"] if retry_pass_delay is None else retry_pass_delay
        self.backoff = backoff or (CONFIG["initial_backoff"], CONFIG["max_backoff"])
        self.rate_poll_interval = rate_poll_interval
        self.staged = []
        self.results = []
        self.state = None
        self.tracker = None
        self.token = None
        self.regen_tokens = set()
        self.gate = PauseGate()

    @property
    def observer(self):
        return self.reporter.observer

    @property
    def progress(self):
        return self.reporter.snapshot

    @property
    def phase(self):
        return self.state.phase if self.state is not None else IDLE

    @property
    def is_generating(self):
        return self.phase == RUNNING

    @property
    def is_active(self):
        return self.phase in (RUNNING, PAUSED)

    def stage(self, items):
        """Add preprocessed work items, skipping ids already staged"""
        known = {f.id for f in self.staged}
        added = [item for item in items if item.id not in known]
        self.staged.extend(added)
        return added

    def _fail_config(self, message):
        self.reporter.notify(message, "error")
        raise ConfigurationError(message)

    def _check_start(self):
        if self.is_active:
            self._fail_config("Generation is already running.")
        keys = self.settings.api_keys
        if not keys:
            self._fail_config("API Key Missing. Please add an API key in the settings.")
        ready = [f for f in self.staged if f.is_ready]
        if not ready:
            if self.staged:
                self._fail_config("Files are not ready for processing.")
            self._fail_config("No files uploaded to generate.")
        return keys, ready

    def _make_executor(self, keys, model_name, prompt, controls, mode, token):
        clients = {}
        initial_delay, max_delay = self.backoff

        async def execute(item, key_index, on_retry):
            if key_index not in clients:
                clients[key_index] = self.client_factory(keys[key_index])
            return await call_api_with_backoff(
                clients[key_index], model_name, prompt, item.payload, controls, mode,
                on_retry=on_retry, token=token, initial_delay=initial_delay, max_delay=max_delay,
            )

        return execute

    async def start(self):
        """Run both passes over every ready item and return the final RunState"""
        keys, ready = self._check_start()
        controls = copy.deepcopy(self.settings.controls)
        model_name = self.settings.model
        mode = controls["active_tab"]
        batch_size = controls.get("batch_size", CONFIG["batch_size"])

        tracker = QuotaTracker(keys, self.requests_per_minute, clock=self.clock,
                               poll_interval=self.rate_poll_interval)
        try:
            tracker.validate(batch_size)
        except ConfigurationError as e:
            self._fail_config(str(e))

        self.tracker = tracker
        self.token = CancellationToken()
        self.gate.resume()
        self.state = state = RunState.start(ready)
        self.observer.on_generating(True)
        logger.info("Starting %s generation for %d file(s) with %d key(s)", mode, len(ready), len(keys))

        prompt = create_prompt(controls, mode)
        scheduler = BatchScheduler(
            tracker=tracker,
            execute=self.execute or self._make_executor(keys, model_name, prompt, controls, mode, self.token),
            state=state,
            results=self.results,
            staged=self.staged,
            reporter=self.reporter,
            token=self.token,
            gate=self.gate,
            batch_size=batch_size,
            mode=mode,
        )

        await scheduler.run_pass(ready, is_retry_pass=False)

        if state.retry_queue and not self.token.is_cancelled:
            self.reporter.status(f"Retrying {len(state.retry_queue)} failed files...")
            if not await self.token.wait(self.retry_pass_delay):
                await scheduler.run_pass(begin_retry_pass(state), is_retry_pass=True)

        if self.token.is_cancelled:
            return self._finish_stopped(state)
        return self._finish_completed(state)

    def _finish_stopped(self, state):
        state.stopped = True
        state.phase = STOPPED
        self.observer.on_generating(False)
        self.reporter.notify("Generation stopped.", "info")
        self.reporter.status("Stopped.")
        return state

    def _finish_completed(self, state):
        state.phase = COMPLETED
        self.observer.on_generating(False)
        self.reporter.publish(ProgressSnapshot(
            percent=100.0,
            status=f"Complete. {state.success} of {state.total} successful.",
            current=state.total,
            total=state.total,
        ))
        logger.info("Run complete: %d of %d successful", state.success, state.total)
        self.observer.on_complete(state.success, state.total)
        return state

    def pause(self):
        self.gate.pause()

    def resume(self):
        self.gate.resume()

    def toggle_pause(self):
        if self.gate.is_paused:
            self.resume()
        else:
            self.pause()
        return self.gate.is_paused

    @property
    def is_paused(self):
        return self.gate.is_paused

    def stop(self):
        """Hard stop: no new batches start, in-flight results and regenerations are discarded"""
        if self.token is not None:
            self.token.cancel()
        for token in self.regen_tokens:
            token.cancel()
        self.gate.resume()

    def clear_all(self):
        self.stop()
        self.staged.clear()
        self.results.clear()
        if not self.is_active:
            self.state = None
        self.reporter.publish(ProgressSnapshot())
        self.reporter.notify("All files and results have been cleared.", "info")

    def remove_result(self, index):
        return self.results.pop(index)

    async def regenerate(self, index, token=None):
        """Re-issue one finished result on the first key and replace it in place"""
        keys = self.settings.api_keys
        if not keys:
            self.reporter.notify("API Key Missing.", "error")
            raise RegenerationError("API Key Missing.")
        if not 0 <= index < len(self.results) or self.results[index].payload is None:
            self.reporter.notify("Cannot regenerate. Missing data.", "error")
            raise RegenerationError("Cannot regenerate. Missing data.")

        record = self.results[index]
        controls = copy.deepcopy(self.settings.controls)
        mode = controls["active_tab"]
        initial_delay, max_delay = self.backoff

        token = token or CancellationToken()
        self.regen_tokens.add(token)

        def on_retry(delay):
            logger.info("Regeneration for %s failed. Retrying in %.0fs...", record.filename, delay)
            self.reporter.notify("Regeneration failed, retrying...", "warning")

        try:
            metadata = await call_api_with_backoff(
                self.client_factory(keys[0]), self.settings.model, create_prompt(controls, mode),
                record.payload, controls, mode, on_retry=on_retry, token=token,
                initial_delay=initial_delay, max_delay=max_delay,
            )
        except StockMetaError as e:
            self.reporter.notify(f"Regeneration failed: {e}", "error")
            raise RegenerationError(str(e)) from e
        finally:
            self.regen_tokens.discard(token)

        record.apply(metadata, mode)
        self.reporter.notify(f"{record.filename} regenerated.", "success")
        return record
