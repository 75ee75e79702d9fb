# src/flat_file_source/dispatch.py

"""
Wraps batches of lines in CloudEvents and hands them to the transport.
"""

import logging
from typing import TYPE_CHECKING, Protocol

from .schemas import CloudEvent, CloudEventOverrides

if TYPE_CHECKING:
    from .clients import DeliveryContext
    from .core import RunStats

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Anything that can deliver one event and report whether it was acknowledged."""

    def send(self, event: CloudEvent, context: "DeliveryContext") -> bool: ...


class Dispatcher:
    """
    Delivers one batch per call and keeps the run's counters up to date.

    A batch that is not acknowledged is left untouched for the caller to keep;
    the dispatcher does not retry it on its own.
    """

    def __init__(
        self,
        transport: Transport,
        context: "DeliveryContext",
        stats: "RunStats",
        overrides: CloudEventOverrides | None = None,
    ):
        self._transport = transport
        self._context = context
        self._stats = stats
        self._overrides = overrides

    def deliver(self, batch: list[str]) -> bool:
        event = CloudEvent.for_batch(
            self._stats.next_event_id(), "".join(batch), self._overrides
        )
        # Serialization problems must surface before anything is sent.
        event.body()

        if not self._transport.send(event, self._context):
            self._stats.error_count += 1
            logger.error(
                "Failed to send cloudevent",
                extra={"event_id": event.id, "batch_lines": len(batch)},
            )
            return False

        self._stats.sent_count += len(batch)
        logger.info(
            "Delivered batch",
            extra={"event_id": event.id, "batch_lines": len(batch)},
        )
        return True
