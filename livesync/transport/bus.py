"""In-process event bus with explicit subscription handles.

Handlers are plain callables invoked synchronously in publish order. Every
``subscribe`` returns a ``Subscription`` whose ``unsubscribe`` is idempotent;
a ``SubscriptionScope`` groups the subscriptions of one tracking session so
that closing the scope tears each of them down exactly once.
"""

from typing import Any, Callable, Dict, List, Optional
from ..util.logging import log

Handler = Callable[[Any], None]

WILDCARD = "*"


class Subscription:
    def __init__(self, bus: "EventBus", key: str, handler: Handler) -> None:
        self._bus = bus
        self.key = key
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> bool:
        """Detach the handler. Returns False if it was already detached."""
        if not self._active:
            return False
        self._active = False
        self._bus._remove(self)
        return True


class SubscriptionScope:
    """Owns a set of subscriptions and releases them together."""

    def __init__(self, name: str = "scope") -> None:
        self.name = name
        self._subs: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._subs)

    def add(self, sub: Subscription) -> Subscription:
        if self._closed:
            # Scope already ended: do not leak a live handler
            sub.unsubscribe()
            return sub
        self._subs.append(sub)
        return sub

    def close(self) -> int:
        """Unsubscribe everything registered in this scope. Returns how many were released."""
        if self._closed:
            return 0
        self._closed = True
        released = 0
        for sub in self._subs:
            if sub.unsubscribe():
                released += 1
        self._subs.clear()
        return released

    def __enter__(self) -> "SubscriptionScope":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus:
    def __init__(self, name: str = "bus") -> None:
        self.name = name
        self._handlers: Dict[str, List[Subscription]] = {}

    def subscribe(self, key: str, handler: Handler, scope: Optional[SubscriptionScope] = None) -> Subscription:
        sub = Subscription(self, key, handler)
        self._handlers.setdefault(key, []).append(sub)
        if scope is not None:
            scope.add(sub)
        return sub

    def subscriber_count(self, key: Optional[str] = None) -> int:
        if key is None:
            return sum(len(subs) for subs in self._handlers.values())
        return len(self._handlers.get(key, []))

    def publish(self, key: str, payload: Any = None) -> int:
        """Deliver payload to handlers of ``key`` and to wildcard handlers.

        A handler that raises is logged and skipped; delivery to the rest continues.
        """
        targets = list(self._handlers.get(key, []))
        if key != WILDCARD:
            targets += self._handlers.get(WILDCARD, [])

        delivered = 0
        for sub in targets:
            # A handler may have unsubscribed another one during this publish
            if not sub.active:
                continue
            try:
                sub.handler(payload)
                delivered += 1
            except Exception as e:
                log("ERROR", "bus", "handler_failed", bus=self.name, key=key, error=str(e))
        return delivered

    def clear(self) -> None:
        for subs in list(self._handlers.values()):
            for sub in list(subs):
                sub.unsubscribe()
        self._handlers.clear()

    def _remove(self, sub: Subscription) -> None:
        subs = self._handlers.get(sub.key)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            return
        if not subs:
            del self._handlers[sub.key]
