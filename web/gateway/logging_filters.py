"""Logging filters for enriching log records with request context.

Adding ``RequestIdFilter`` to a handler injects the current request id
(set by ``RequestIdMiddleware``) into every record, so JSON log lines from
the order service and its coupon client can be correlated per request.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    Records logged outside a request (startup, background threads) get a
    hyphen so formatters can always reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
