"""Per-resource locks for fetch-decide-mutate sequences."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass(slots=True)
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ResourceLocks:
    """One lock per parent resource ID.

    Reconcilers read the current rule set, decide, then mutate. That
    sequence is not transactional against AWS, so two writers on the same
    security group or ACL can race (two creates picking the same ACL rule
    number). Holding the resource's lock serializes writers inside this
    process. Other processes are not covered.

    An entry lives only while some thread holds or waits on it, so the
    registry stays empty between operations.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _Entry] = {}

    def _acquire_entry(self, resource_id: str) -> _Entry:
        with self._guard:
            entry = self._locks.get(resource_id)
            if entry is None:
                entry = self._locks[resource_id] = _Entry()
            entry.users += 1
            return entry

    def _release_entry(self, resource_id: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[resource_id]

    @contextmanager
    def hold(self, resource_id: str) -> Iterator[None]:
        entry = self._acquire_entry(resource_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(resource_id, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


default_locks = ResourceLocks()
