import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] [outlet-orders] [cid=%(correlation_id)s] %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Give records logged without ``extra={"correlation_id": ...}`` a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())
