import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List

from errors import NotFoundError
from models import PaymentEvent

logger = logging.getLogger(__name__)

Listener = Callable[[PaymentEvent], None]


@dataclass
class Notification:
    id: int
    event: PaymentEvent
    read: bool = False


class NotificationHub:
    """Per-process registry of live listeners plus an inbox per participant.

    Create one where the app starts and pass it (or its ``publish``) to the
    ledger calls as their ``notify`` hook.
    """

    def __init__(self, inbox_limit: int = 200):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._notification_ids = itertools.count(1)
        self._listeners: Dict[int, Dict[int, Listener]] = defaultdict(dict)
        self._inbox: Dict[int, List[Notification]] = defaultdict(list)
        self.inbox_limit = inbox_limit

    def register(self, participant: int, listener: Listener) -> int:
        with self._lock:
            token = next(self._ids)
            self._listeners[participant][token] = listener
        logger.info("Participant %s connected (listener %s)", participant, token)
        return token

    def unregister(self, participant: int, token: int):
        with self._lock:
            listeners = self._listeners.get(participant)
            if listeners is not None:
                listeners.pop(token, None)
                if not listeners:
                    del self._listeners[participant]
        logger.info("Participant %s disconnected (listener %s)", participant, token)

    def is_online(self, participant: int) -> bool:
        with self._lock:
            return bool(self._listeners.get(participant))

    def publish(self, event: PaymentEvent):
        with self._lock:
            inbox = self._inbox[event.recipient]
            inbox.append(Notification(next(self._notification_ids), event))
            del inbox[:-self.inbox_limit]
            listeners = list(self._listeners.get(event.recipient, {}).values())
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed for %s event to %s", event.type, event.recipient)

    __call__ = publish

    def inbox(self, participant: int, unread_only: bool = False) -> List[Notification]:
        """Newest first."""
        with self._lock:
            return [n for n in reversed(self._inbox.get(participant, [])) if not (unread_only and n.read)]

    def unread_count(self, participant: int) -> int:
        with self._lock:
            return sum(1 for n in self._inbox.get(participant, []) if not n.read)

    def mark_read(self, participant: int, notification_id: int) -> Notification:
        # A participant can only mark their own notifications.
        with self._lock:
            for n in self._inbox.get(participant, []):
                if n.id == notification_id:
                    n.read = True
                    return n
        raise NotFoundError("Notification not found")

    def mark_all_read(self, participant: int) -> int:
        with self._lock:
            unread = [n for n in self._inbox.get(participant, []) if not n.read]
            for n in unread:
                n.read = True
        return len(unread)
