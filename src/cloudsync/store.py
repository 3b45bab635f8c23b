from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class SyncStatus:
    file_size: int
    last_modified: int  # st_mtime_ns
    in_sync: bool = True

    def matches(self, file_size: int, last_modified: int) -> bool:
        return self.file_size == file_size and self.last_modified == last_modified


class SyncStateStore:
    """Thread-safe map of file name to the status recorded after its last send.

    Every operation takes the same lock, and ``snapshot`` copies the entries
    out so reporters never iterate the live dict.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, SyncStatus] = {}

    def get(self, file_name: str) -> Optional[SyncStatus]:
        with self._lock:
            return self._entries.get(file_name)

    def put(self, file_name: str, status: SyncStatus) -> None:
        with self._lock:
            self._entries[file_name] = status

    def remove(self, file_name: str) -> Optional[SyncStatus]:
        with self._lock:
            return self._entries.pop(file_name, None)

    def snapshot(self) -> List[Tuple[str, SyncStatus]]:
        with self._lock:
            return sorted(self._entries.items())

    def is_in_sync(self, file_name: str, file_size: int, last_modified: int) -> bool:
        status = self.get(file_name)
        return status is not None and status.matches(file_size, last_modified)

    def __contains__(self, file_name: object) -> bool:
        with self._lock:
            return file_name in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
