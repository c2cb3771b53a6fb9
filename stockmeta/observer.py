import logging
from dataclasses import replace

from stockmeta.models import ProgressSnapshot

logger = logging.getLogger(__name__)


class RunObserver:
    """Receives everything a front end shows. Override what you need."""

    def on_progress(self, snapshot):
        pass

    def on_notify(self, message, level):
        pass

    def on_generating(self, is_generating):
        pass

    def on_result(self, record):
        pass

    def on_complete(self, success, total):
        pass


_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ProgressReporter:
    """Keeps the latest progress snapshot and forwards changes to the observer"""

    def __init__(self, observer=None):
        self.observer = observer or RunObserver()
        self.snapshot = ProgressSnapshot()

    def publish(self, snapshot):
        self.snapshot = snapshot
        self.observer.on_progress(snapshot)

    def status(self, text):
        self.publish(replace(self.snapshot, status=text))

    def notify(self, message, level="info"):
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        self.observer.on_notify(message, level)
