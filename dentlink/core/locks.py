# FILE: dentlink/core/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """
    One re-entrant lock per key, alive only while someone holds or waits on it.
    Guards check-then-write sequences inside one process; row locks
    (SELECT ... FOR UPDATE) cover the database side.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        # sorted acquisition order, so two callers never deadlock on the same pair
        ordered = sorted(set(keys), key=repr)
        checked_out: List[tuple] = []
        acquired: List[_Entry] = []
        try:
            for k in ordered:
                entry = self._checkout(k)
                checked_out.append((k, entry))
                entry.lock.acquire()
                acquired.append(entry)
            yield
        finally:
            for entry in reversed(acquired):
                entry.lock.release()
            for k, entry in reversed(checked_out):
                self._checkin(k, entry)


_locks = KeyedLocks()


def case_lock(case_id: int):
    return _locks.hold(("case", int(case_id)))


def patient_lock(patient_id: int):
    return _locks.hold(("patient", int(patient_id)))


def doctor_lock(doctor_id: int):
    return _locks.hold(("doctor", int(doctor_id)))


def hold_all(*, case_id=None, patient_id=None, doctor_id=None):
    keys = []
    if case_id is not None:
        keys.append(("case", int(case_id)))
    if patient_id is not None:
        keys.append(("patient", int(patient_id)))
    if doctor_id is not None:
        keys.append(("doctor", int(doctor_id)))
    return _locks.hold(*keys)
