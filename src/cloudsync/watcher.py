from __future__ import annotations

import logging
import os
import queue
from typing import Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

log = logging.getLogger(__name__)

_CLOSED = object()


class DeletionHandler(FileSystemEventHandler):
    """Forwards deletions of files directly inside the watched directory."""

    def __init__(self, stream: "DeletionEventStream"):
        super().__init__()
        self.stream = stream

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.stream.publish(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # a rename leaves nothing under the old name; the scanner sends the new one
        if not event.is_directory:
            self.stream.publish(os.fsdecode(event.src_path))


class DeletionEventStream:
    """Blocking iterator over names of files deleted from ``directory``.

    Iteration ends after ``close``.
    """

    def __init__(self, directory: str | os.PathLike[str]):
        self.directory = os.path.realpath(directory)
        self.handler = DeletionHandler(self)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        observer = Observer()
        observer.schedule(self.handler, self.directory, recursive=False)
        observer.start()
        self._observer = observer
        log.debug("watching %s for deletions", self.directory)

    def publish(self, path: str) -> None:
        if os.path.realpath(os.path.dirname(os.path.abspath(path))) != self.directory:
            return
        self._queue.put(os.path.basename(path))

    def close(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
