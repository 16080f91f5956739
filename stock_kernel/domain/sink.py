"""
Movement sink protocol.

The rest of the system (notifications, audit export) receives every
committed MovementRecord through a sink.  Publishing happens after the
commit; a sink can never undo or block it.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from stock_kernel.domain.stock import MovementRecord


@runtime_checkable
class MovementSink(Protocol):
    def publish(self, movement: MovementRecord) -> None:
        ...


class NullSink:
    """Discards everything."""

    def publish(self, movement: MovementRecord) -> None:
        return None


class CollectingSink:
    """Keeps published movements in memory, in order."""

    def __init__(self) -> None:
        self.movements: list[MovementRecord] = []

    def publish(self, movement: MovementRecord) -> None:
        self.movements.append(movement)

    def clear(self) -> None:
        self.movements.clear()


def publish_all(sink: MovementSink, movements: Iterable[MovementRecord], logger) -> int:
    """Publish each movement; log and skip failures.  Returns the count delivered."""
    delivered = 0
    for movement in movements:
        try:
            sink.publish(movement)
            delivered += 1
        except Exception:
            logger.exception(
                "movement_sink_failed",
                extra={"movement_id": str(movement.id), "sink": type(sink).__name__},
            )
    return delivered
