"""Movement sinks backed by this package's infrastructure."""

from stock_kernel.domain.sink import CollectingSink, MovementSink, NullSink
from stock_kernel.domain.stock import MovementRecord
from stock_kernel.logging_config import get_logger

__all__ = ["CollectingSink", "LoggingSink", "MovementSink", "NullSink"]


class LoggingSink:
    """Emits one ``movement_published`` record per committed movement."""

    def __init__(self, logger_name: str = "services.sinks"):
        self._logger = get_logger(logger_name)

    def publish(self, movement: MovementRecord) -> None:
        self._logger.info("movement_published", extra={"movement": movement.to_dict()})
