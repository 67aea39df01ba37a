"""Registry routing document change events to trigger handlers."""

import logging
import re
from typing import Any, Callable

from src.db.document_store import ChangeEvent

logger = logging.getLogger(__name__)

TriggerHandler = Callable[[ChangeEvent], Any]

CHANGE_KINDS = ("created", "updated", "deleted")


class TriggerRegistry:
    """
    Maps collection patterns such as ``chats/{chatId}/messages`` to handlers.

    Delivery is at-least-once, so handlers must be idempotent. A failing
    handler is logged and never affects the write that produced the event
    or the other handlers registered for it.
    """

    def __init__(self):
        self._handlers: list[tuple[re.Pattern, str, str, TriggerHandler]] = []

    @staticmethod
    def _compile(pattern: str) -> re.Pattern:
        regex = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", pattern)
        return re.compile(f"^{regex}$")

    def on(self, pattern: str, kind: str, handler: TriggerHandler) -> None:
        if kind not in CHANGE_KINDS:
            raise ValueError(f"Unknown change kind: {kind}")
        self._handlers.append((self._compile(pattern), pattern, kind, handler))
        logger.info(f"Registered {kind} trigger on {pattern}: {getattr(handler, '__name__', handler)}")

    def on_created(self, pattern: str, handler: TriggerHandler) -> None:
        self.on(pattern, "created", handler)

    def on_updated(self, pattern: str, handler: TriggerHandler) -> None:
        self.on(pattern, "updated", handler)

    def on_deleted(self, pattern: str, handler: TriggerHandler) -> None:
        self.on(pattern, "deleted", handler)

    def has_handlers(self, collection: str) -> bool:
        return any(regex.match(collection) for regex, _, _, _ in self._handlers)

    def dispatch(self, event: ChangeEvent) -> list[Any]:
        results = []
        for regex, pattern, kind, handler in self._handlers:
            if kind != event.kind:
                continue
            match = regex.match(event.collection)
            if not match:
                continue
            event.params = {**event.params, **match.groupdict()}
            try:
                results.append(handler(event))
            except Exception as e:
                logger.error(
                    f"Trigger {getattr(handler, '__name__', handler)} failed for "
                    f"{event.collection}/{event.document_id}: {e}"
                )
        return results
