# Purpose: In-memory resource store shared by concurrent request handlers.
# Not for production use; intended only as a reference sandbox.

import threading

from ob_errors import NotFound


class InMemoryResourceStore:
    """Records keyed by (kind, id). Every operation is atomic under one lock.

    Records are never evicted; they live until the process exits. A durable
    replacement must offer the same four operations with the same guarantees.
    """

    def __init__(self):
        self._records = {}
        self._lock = threading.Lock()

    def create_if_absent(self, kind, resource_id, record):
        """Stores record unless the id is taken. Returns True when stored."""
        with self._lock:
            key = (kind, resource_id)
            if key in self._records:
                return False
            self._records[key] = record
            return True

    def get(self, kind, resource_id):
        with self._lock:
            return self._records.get((kind, resource_id))

    def update(self, kind, resource_id, transition):
        """Atomic read-modify-write: stores and returns transition(current).

        Raises NotFound when the id was never created; update never creates.
        """
        with self._lock:
            key = (kind, resource_id)
            current = self._records.get(key)
            if current is None:
                raise NotFound(f"No {kind.value} with id {resource_id}")
            updated = transition(current)
            self._records[key] = updated
            return updated

    def count(self, kind):
        with self._lock:
            return sum(1 for stored_kind, _ in self._records if stored_kind == kind)
