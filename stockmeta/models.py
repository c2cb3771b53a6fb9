"""Data model shared by the scheduler, controller and collaborators.

RunState is the single owner of a run's mutable bookkeeping. The scheduler
changes it only through the transition functions at the bottom of this
module so the counters, pending set and retry queue cannot drift apart.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Optional

# WorkItem statuses
COMPRESSING = "compressing"
READY = "ready"
PROCESSING = "processing"
ERROR = "error"

# Generation modes
MODE_METADATA = "metadata"
MODE_PROMPT = "prompt"

# Passes
PRIMARY_PASS = "primary"
RETRY_PASS = "retry"

# Run phases
IDLE = "idle"
RUNNING = "running"
PAUSED = "paused"
COMPLETED = "completed"
STOPPED = "stopped"

_ids = itertools.count(1)


def new_item_id():
    return f"file-{int(time.time() * 1000)}-{next(_ids)}"


@dataclass(frozen=True)
class EncodedPayload:
    data: bytes
    mime_type: str


@dataclass
class WorkItem:
    filename: str
    payload: Optional[EncodedPayload] = None
    thumbnail: Optional[bytes] = None
    status: str = COMPRESSING
    id: str = field(default_factory=new_item_id)
    source_mtime: Optional[float] = None

    @property
    def is_ready(self):
        return self.status == READY and self.payload is not None


@dataclass
class ResultRecord:
    filename: str
    mode: str
    description: str
    title: Optional[str] = None
    keywords: list[str] = field(default_factory=list)
    category: Optional[str] = None
    thumbnail: Optional[bytes] = None
    payload: Optional[EncodedPayload] = None
    is_error: bool = False

    @classmethod
    def from_metadata(cls, item, metadata, mode):
        return cls(
            filename=item.filename,
            mode=mode,
            title=metadata.get("title"),
            description=metadata.get("description", ""),
            keywords=list(metadata.get("keywords") or []),
            category=metadata.get("category"),
            thumbnail=item.thumbnail,
            payload=item.payload,
        )

    @classmethod
    def failed(cls, item, message, mode):
        return cls(
            filename=item.filename,
            mode=mode,
            title="Error",
            description=f"Failed: {message}",
            keywords=[],
            category="Error",
            thumbnail=item.thumbnail,
            payload=item.payload,
            is_error=True,
        )

    def apply(self, metadata, mode):
        """Replace generated fields in place, keeping file identity"""
        self.mode = mode
        self.description = metadata.get("description", "")
        if "title" in metadata:
            self.title = metadata.get("title")
        if "keywords" in metadata:
            self.keywords = list(metadata.get("keywords") or [])
        if "category" in metadata:
            self.category = metadata.get("category")
        self.is_error = False


@dataclass
class Batch:
    items: list[WorkItem]
    key_index: int


def create_batches(items, batch_size):
    """Split items into batches"""
    for i in range(0, len(items), batch_size):
        yield items[i:i + batch_size]


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: float = 0.0
    status: str = "Ready."
    current: int = 0
    total: int = 0


@dataclass
class RunState:
    total: int
    pending: set[str] = field(default_factory=set)
    processed: int = 0
    success: int = 0
    current_pass: str = PRIMARY_PASS
    phase: str = RUNNING
    paused: bool = False
    stopped: bool = False
    retry_queue: list[WorkItem] = field(default_factory=list)

    @classmethod
    def start(cls, items):
        return cls(total=len(items), pending={item.id for item in items})

    def progress(self):
        percent = (self.processed / self.total) * 100 if self.total else 0.0
        return ProgressSnapshot(
            percent=percent,
            status=f"Generated {self.processed}/{self.total} | {self.success} successful",
            current=self.processed,
            total=self.total,
        )


def record_success(state, item):
    state.success += 1
    state.pending.discard(item.id)


def queue_for_retry(state, item):
    item.status = ERROR
    state.retry_queue.append(item)


def record_terminal_failure(state, item):
    item.status = ERROR
    state.pending.discard(item.id)


def mark_processed(state):
    state.processed += 1


def begin_retry_pass(state):
    """Hand the retry queue over to the retry pass, emptying it"""
    queued, state.retry_queue = state.retry_queue, []
    state.current_pass = RETRY_PASS
    return queued
