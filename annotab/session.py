from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator

from .ingest import IngestResult, ingest
from .page import render_page
from .record import SessionRecord

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 2 * 1024 * 1024


@dataclass
class SessionConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    encoding: str | None = None
    open_browser: bool = True
    reload_debounce: float = 0.15
    keepalive_interval: float = 25.0
    watch_interval: float = 0.25
    max_body_bytes: int = MAX_BODY_BYTES
    port_attempts: int = 100
    sse_retry_ms: int = 3000


class Phase(str, Enum):
    INIT = "init"
    SERVING = "serving"
    DRAINING = "draining"
    CLOSED = "closed"


class EventChannel:
    """Outgoing event queue for one connected browser tab."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[str | None]" = queue.Queue()
        self.closed = False

    def send(self, data: str) -> None:
        if not self.closed:
            self._queue.put(data)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put(None)

    def events(self) -> Iterator[str]:
        while True:
            item = self._queue.get()
            if item is None:
                return
            yield item


class FileWatcher:
    """Polls a file's stat signature and calls ``on_change`` when it moves."""

    def __init__(self, path: Path, on_change: Callable[[], None], interval: float) -> None:
        self.path = path
        self.on_change = on_change
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._signature = self._stat()

    def _stat(self) -> tuple[int, int] | None:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def poll(self) -> bool:
        signature = self._stat()
        if signature == self._signature:
            return False
        self._signature = signature
        self.on_change()
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"watch:{self.path.name}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()


@dataclass
class SessionState:
    source_path: Path
    config: SessionConfig = field(default_factory=SessionConfig)
    phase: Phase = Phase.INIT
    record: SessionRecord | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.channels: set[EventChannel] = set()
        self.mode = "text"
        self._reload_timer: threading.Timer | None = None
        self._stop = threading.Event()
        self._watcher: FileWatcher | None = None
        self._keepalive: threading.Thread | None = None

    def load(self) -> IngestResult:
        result = ingest(self.source_path, self.config.encoding)
        self.mode = result.mode
        return result

    def render_html(self) -> str:
        return render_page(self.load())

    def start(self) -> None:
        with self.lock:
            if self.phase is not Phase.INIT:
                return
            self.phase = Phase.SERVING
        try:
            self._watcher = FileWatcher(self.source_path, self.notify_file_changed, self.config.watch_interval)
            self._watcher.start()
        except (OSError, RuntimeError) as error:
            logger.warning("Failed to start file watcher for %s: %s", self.source_path.name, error)
        self._keepalive = threading.Thread(target=self._keepalive_loop, name="keepalive", daemon=True)
        self._keepalive.start()

    def _keepalive_loop(self) -> None:
        while not self._stop.wait(self.config.keepalive_interval):
            self.broadcast("ping")

    def open_channel(self) -> EventChannel | None:
        channel = EventChannel()
        with self.lock:
            if self.phase not in {Phase.INIT, Phase.SERVING}:
                return None
            self.channels.add(channel)
        return channel

    def close_channel(self, channel: EventChannel) -> None:
        with self.lock:
            self.channels.discard(channel)
        channel.close()

    def broadcast(self, data: str) -> int:
        with self.lock:
            targets = tuple(self.channels)
        for channel in targets:
            channel.send(data)
        return len(targets)

    def notify_file_changed(self) -> None:
        with self.lock:
            if self.phase is not Phase.SERVING:
                return
            if self._reload_timer is not None:
                self._reload_timer.cancel()
            timer = threading.Timer(self.config.reload_debounce, self._fire_reload)
            timer.daemon = True
            self._reload_timer = timer
        timer.start()

    def _fire_reload(self) -> None:
        with self.lock:
            self._reload_timer = None
        count = self.broadcast("reload")
        logger.info("%s changed, reload sent to %d tab(s)", self.source_path.name, count)

    def begin_shutdown(self, record: SessionRecord | None) -> bool:
        """Claim the one end-of-session slot; only the first caller gets ``True``."""

        with self.lock:
            if self.phase not in {Phase.INIT, Phase.SERVING}:
                return False
            self.phase = Phase.DRAINING
            self.record = record
        return True

    def close(self) -> None:
        with self.lock:
            if self.phase is Phase.CLOSED:
                return
            self.phase = Phase.CLOSED
            if self._reload_timer is not None:
                self._reload_timer.cancel()
                self._reload_timer = None
            channels = tuple(self.channels)
            self.channels.clear()
        self._stop.set()
        if self._watcher is not None:
            self._watcher.stop()
        for channel in channels:
            channel.close()
