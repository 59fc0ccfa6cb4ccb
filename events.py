from __future__ import annotations

import logging
from typing import Callable, Hashable


logger = logging.getLogger(__name__)

Listener = Callable[[], None]
Unsubscribe = Callable[[], None]


class ChangeFeed:
    """
    Publish/subscribe channel owned by a single store instance.

    Topics are arbitrary hashable keys. A publish calls every listener of the
    topic in registration order; a failing listener is logged and does not
    stop the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[Hashable, list[Listener]] = {}

    def subscribe(self, topic: Hashable, listener: Listener) -> Unsubscribe:
        self._listeners.setdefault(topic, []).append(listener)
        logger.debug("Subscribed listener to %s", topic)

        def unsubscribe() -> None:
            listeners = self._listeners.get(topic)
            if not listeners:
                return
            try:
                listeners.remove(listener)
            except ValueError:
                return
            if not listeners:
                del self._listeners[topic]
            logger.debug("Unsubscribed listener from %s", topic)

        return unsubscribe

    def publish(self, topic: Hashable) -> None:
        for listener in list(self._listeners.get(topic, ())):
            try:
                listener()
            except Exception:
                logger.exception("Change listener failed for %s", topic)

    def listener_count(self, topic: Hashable) -> int:
        return len(self._listeners.get(topic, ()))
