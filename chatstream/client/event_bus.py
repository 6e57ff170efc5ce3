from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type, TypeVar

from loguru import logger

E = TypeVar("E")


@dataclass(frozen=True)
class TitleChanged:
    conversation_id: str
    title: str


@dataclass(frozen=True)
class ConversationCreated:
    conversation_id: str
    title: str


class EventBus:
    """
    Typed publish/subscribe channel between client components.

    Subscribers register for one event class and only receive instances of
    exactly that class. A failing subscriber is logged and does not stop
    delivery to the others.
    """

    def __init__(self):
        self._subscribers: DefaultDict[type, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        self._subscribers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: object) -> None:
        for handler in list(self._subscribers[type(event)]):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Subscriber {handler!r} failed on {type(event).__name__}")
