"""Per-key change notification.

:class:`ChangeBus` is a plain publish/subscribe registry keyed by state
key. It owns the subscriptions but never the values: ``emit`` just
forwards references to the callbacks.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pyfusionstate._constants import SUBSCRIBER_CALLBACK_ERROR, format_error_message
from pyfusionstate.exceptions import SubscriberCallbackError

_logger = logging.getLogger(__name__)

StateChangeCallback: TypeAlias = Callable[[Any, Any, str], None]
"""``callback(new_value, old_value, key)``."""

Unsubscribe: TypeAlias = Callable[[], None]


@dataclass(eq=False, slots=True)
class Subscription:
    """A single (key, callback) registration."""

    key: str
    callback: StateChangeCallback
    id: int = 0
    active: bool = field(default=True)


class ChangeBus:
    """Per-key publish/subscribe registry.

    Delivery semantics of :meth:`emit`:

    * every subscriber registered for the key when the emit *began* is
      called, in registration order;
    * subscribers added during an emit are not called by that emit;
    * subscribers removed during an emit that have not run yet are skipped.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, key: str, callback: StateChangeCallback) -> Unsubscribe:
        """Register *callback* for *key* and return its unsubscribe function.

        The returned function removes exactly this registration and may be
        called any number of times.
        """
        subscription = Subscription(key=key, callback=callback, id=next(self._ids))
        self._subscriptions.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        subscribers = self._subscriptions.get(subscription.key)
        if subscribers is None:
            return
        # Rebuild rather than mutate: an emit in progress iterates its own copy.
        remaining = [s for s in subscribers if s is not subscription]
        if remaining:
            self._subscriptions[subscription.key] = remaining
        else:
            del self._subscriptions[subscription.key]

    def emit(self, key: str, new_value: Any, old_value: Any) -> None:
        """Synchronously notify the subscribers of *key*.

        Callback exceptions are logged and never propagate.
        """
        subscribers = self._subscriptions.get(key)
        if not subscribers:
            return

        for subscription in tuple(subscribers):
            if not subscription.active:
                continue
            try:
                subscription.callback(new_value, old_value, key)
            except Exception as exc:
                error = SubscriberCallbackError(
                    format_error_message(SUBSCRIBER_CALLBACK_ERROR, key, exc),
                    key=key,
                    callback=subscription.callback,
                )
                _logger.error("%s", error, exc_info=exc)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscriptions.get(key, ()))

    def total_subscriber_count(self) -> int:
        return sum(len(subscribers) for subscribers in self._subscriptions.values())

    def subscribed_keys(self) -> list[str]:
        return list(self._subscriptions)

    def clear_key(self, key: str) -> None:
        """Remove every subscription for *key*."""
        for subscription in self._subscriptions.pop(key, ()):
            subscription.active = False

    def clear(self) -> None:
        """Remove all subscriptions."""
        for subscribers in self._subscriptions.values():
            for subscription in subscribers:
                subscription.active = False
        self._subscriptions.clear()
