"""Errors raised by the delivery core.

Routers translate these into HTTP responses; the live channel turns them into
``error`` events. ``AggregationFailure`` is swallowed on push paths and only
reaches callers that asked for the unread map itself.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from pymongo.errors import PyMongoError


logger = logging.getLogger(__name__)


class ChatError(Exception):

    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class InvalidMessage(ChatError):

    status_code = 400
    detail = "Message cannot be empty"


class NotFound(ChatError):

    status_code = 404
    detail = "Not found"


class Forbidden(ChatError):

    status_code = 403
    detail = "Forbidden"


class PersistenceFailure(ChatError):

    status_code = 500
    detail = "Internal server error"


class AggregationFailure(ChatError):
    pass


class SendFailed(ChatError):
    """Client side: the relay did not confirm a send; the optimistic entry is gone."""

    detail = "Failed to send"


@contextmanager
def persistence_errors(action: str) -> Iterator[None]:
    """Convert store errors raised inside the block into ``PersistenceFailure``."""
    try:
        yield
    except PyMongoError as exc:
        logger.exception("Store failure while %s", action)
        raise PersistenceFailure() from exc
