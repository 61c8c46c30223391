"""Store change notifications.

Stores publish a `ChangeEvent` after every successful mutation; the sync
gateway is the single subscriber that turns them into broadcasts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
REPLACED = "replaced"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    record: Any


Listener = Callable[[ChangeEvent], Awaitable[None]]


class ChangeNotifier:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def notify(self, kind: str, record: Any) -> None:
        event = ChangeEvent(kind, record)
        for listener in list(self._listeners):
            await listener(event)
