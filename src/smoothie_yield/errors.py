"""Error codes and exceptions raised at the request boundary.

Error code ranges:
  1xxx: request parameters
  9xxx: computation / system
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class SmoothieError(Exception):
    """Base Smoothie error carrying an HTTP-equivalent status."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: request parameters ---

class MissingParameterError(SmoothieError):
    def __init__(self, name: str) -> None:
        super().__init__(1001, f"Missing required parameter: {name}", 400)


class InvalidParameterError(SmoothieError):
    def __init__(self, name: str, value: object) -> None:
        super().__init__(1002, f"Invalid value for {name}: {value!r}", 400)


# --- 9xxx: computation ---

class ComputationError(SmoothieError):
    def __init__(self, message: str = "Failed to compute yield data") -> None:
        super().__init__(9001, message, 500)


def error_response(exc: BaseException) -> tuple[int, dict[str, Any]]:
    """Map an exception to ``(status, {"error": message})``.

    Client errors keep their message. Anything else becomes a 500 with a
    generic message; the original exception is logged.
    """

    if isinstance(exc, SmoothieError) and exc.http_status < 500:
        return exc.http_status, {"error": exc.message}
    if isinstance(exc, ComputationError):
        logger.error("Computation failed: %s", exc.message)
        return exc.http_status, {"error": exc.message}
    logger.exception("Unhandled error", exc_info=exc)
    return 500, {"error": ComputationError().message}


__all__ = [
    "ComputationError",
    "InvalidParameterError",
    "MissingParameterError",
    "SmoothieError",
    "error_response",
]
