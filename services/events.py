import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, DefaultDict, List, Type

logger = logging.getLogger("erp_drive.events")


@dataclass(frozen=True)
class ExpenseDocumentUploaded:
    """A reimbursable expense receipt was stored for ``owner_id``."""

    owner_id: str
    amount: Decimal
    year: int
    month: int
    document_id: str


class DomainEventBus:
    """
    Synchronous in-process publisher.

    Handlers run inside ``publish`` on the caller's thread, so a handler that
    uses the caller's database session commits or rolls back with it.
    Handler exceptions propagate to the publisher.
    """

    def __init__(self):
        self._handlers: DefaultDict[Type, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Callable) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event) -> None:
        handlers = self._handlers.get(type(event), [])
        logger.info(
            "Publishing domain event",
            extra={"event_type": type(event).__name__, "handlers": len(handlers)},
        )
        for handler in handlers:
            handler(event)
