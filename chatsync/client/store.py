"""In-memory message stores.

``MessageStore`` holds one scope's messages, unique by id and sorted by
``(createdAt, id)``. Every path that mutates it (realtime events, the send
pipeline's success path, pagination) funnels through the same dedup-by-id
rule, so a locally sent message and its realtime echo converge on one entry.
"""

import bisect
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from chatsync.shared.models import Message

from .events import MessageCreated, MessageDeleted, MessageEvent, MessageUpdated

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


def _sort_key(message: Message):
    return message.sort_key


class MessageStore:
    """Ordered, deduplicated messages for one scope."""

    def __init__(self, on_change: Optional[ChangeListener] = None):
        self.on_change = on_change
        self._messages: List[Message] = []
        self._index: Dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._index

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self._messages]

    @property
    def oldest(self) -> Optional[Message]:
        return self._messages[0] if self._messages else None

    @property
    def newest(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def get(self, message_id: str) -> Optional[Message]:
        return self._index.get(message_id)

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"Message store listener failed: {e}", exc_info=True)

    def _insert(self, message: Message) -> bool:
        if message.id in self._index:
            return False
        bisect.insort(self._messages, message, key=_sort_key)
        self._index[message.id] = message
        return True

    def _position(self, message: Message) -> int:
        key = message.sort_key
        i = bisect.bisect_left(self._messages, key, key=_sort_key)
        while self._messages[i].id != message.id:
            i += 1
        return i

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply(self, event: MessageEvent) -> bool:
        """Apply one event; returns whether the store changed."""
        if isinstance(event, MessageCreated):
            return self.add(event.message)
        if isinstance(event, MessageUpdated):
            return self.update(event.message)
        if isinstance(event, MessageDeleted):
            return self.remove(event.message_id)
        raise TypeError(f"Unsupported event: {event!r}")

    def add(self, message: Message) -> bool:
        """Insert ``message`` unless its id is already present."""
        changed = self._insert(message)
        if changed:
            self._notify()
        return changed

    def update(self, message: Message) -> bool:
        """Merge the fields set on ``message`` into the stored entry.

        Messages that are not loaded (e.g. on an older, unfetched page) are
        ignored.
        """
        current = self._index.get(message.id)
        if current is None:
            return False

        merged = current.merged(message)
        position = self._position(current)
        if merged.sort_key == current.sort_key:
            self._messages[position] = merged
        else:
            del self._messages[position]
            bisect.insort(self._messages, merged, key=_sort_key)
        self._index[merged.id] = merged
        self._notify()
        return True

    def remove(self, message_id: str) -> bool:
        current = self._index.pop(message_id, None)
        if current is None:
            return False
        del self._messages[self._position(current)]
        self._notify()
        return True

    def extend(self, messages: Iterable[Message]) -> int:
        """Insert a batch (e.g. an older page) with a single change signal."""
        added = sum(1 for message in messages if self._insert(message))
        if added:
            self._notify()
        return added

    def reset(self, messages: Iterable[Message] = ()) -> None:
        """Replace the whole contents."""
        self._messages = []
        self._index = {}
        for message in messages:
            self._insert(message)
        self._notify()


class ThreadStore:
    """One ``MessageStore`` per open thread, keyed by root id."""

    def __init__(self, on_change: Optional[Callable[[str], None]] = None):
        self.on_change = on_change
        self._threads: Dict[str, MessageStore] = {}

    def open(self, root_id: str) -> MessageStore:
        store = self._threads.get(root_id)
        if store is None:
            listener = None
            if self.on_change is not None:
                on_change = self.on_change

                def listener() -> None:
                    on_change(root_id)

            store = MessageStore(on_change=listener)
            self._threads[root_id] = store
        return store

    def close(self, root_id: str) -> None:
        self._threads.pop(root_id, None)

    def get(self, root_id: str) -> Optional[MessageStore]:
        return self._threads.get(root_id)

    def is_open(self, root_id: str) -> bool:
        return root_id in self._threads

    @property
    def open_roots(self) -> List[str]:
        return list(self._threads)

    def clear(self) -> None:
        self._threads.clear()
