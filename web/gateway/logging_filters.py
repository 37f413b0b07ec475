"""Logging filter that stamps records with the current request id."""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``record.request_id`` from ``REQUEST_ID_CTX``.

    Outside a request the ContextVar default ("-") is used, so formatters
    can always reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
