import time
import uuid
import threading
from dataclasses import dataclass, field
from datetime import datetime

import config

SEARCH = 'SEARCH'
BULK = 'BULK'


@dataclass
class HistoryItem:
    id: str
    type: str
    label: str
    timestamp: float
    profiles: list = field(default_factory=list)


def format_time(timestamp, now=None):
    """Relative age of a history entry, e.g. 'Just now', '5m ago', '3h ago'."""
    now = time.time() if now is None else now
    minutes = int((now - timestamp) // 60)
    if minutes < 1:
        return 'Just now'
    if minutes < 60:
        return f'{minutes}m ago'
    hours = minutes // 60
    if hours < 24:
        return f'{hours}h ago'
    return datetime.fromtimestamp(timestamp).strftime('%Y-%m-%d')


class ActivityHistory:
    """In-memory recent activity, newest first."""
    def __init__(self, limit=None):
        self.limit = limit or config.HISTORY_LIMIT
        self._items = []
        self._lock = threading.Lock()

    def _add(self, item_type, label, profiles):
        item = HistoryItem(
            id=uuid.uuid4().hex,
            type=item_type,
            label=label,
            timestamp=time.time(),
            profiles=profiles,
        )
        with self._lock:
            self._items.insert(0, item)
            del self._items[self.limit:]
        return item

    def record_search(self, code, profile):
        return self._add(SEARCH, code, [profile])

    def record_bulk(self, codes, profiles, file_name=None):
        label = file_name or f'{len(codes)} codes'
        return self._add(BULK, label, profiles)

    def get(self, item_id):
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
        return None

    def items(self):
        with self._lock:
            return list(self._items)

    def clear(self):
        with self._lock:
            self._items.clear()
