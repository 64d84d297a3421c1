"""Error mapping from fetch/parse failures to source error codes.

Follows Open/Closed Principle: extend by adding new mappings,
not by modifying existing code. Anything not matched here maps to
FETCH_FAILED.
"""

import httpx

from src.sources.errors import SourceErrorCode


_HTTP_STATUS_MAP: dict[int, SourceErrorCode] = {
    401: SourceErrorCode.UNAUTHORIZED,
    403: SourceErrorCode.UNAUTHORIZED,
    404: SourceErrorCode.NOT_RSS,
    410: SourceErrorCode.NOT_RSS,
    408: SourceErrorCode.TIMEOUT,
    429: SourceErrorCode.RATE_LIMITED,
    504: SourceErrorCode.TIMEOUT,
}

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def map_http_status_to_error_code(status_code: int | None) -> SourceErrorCode:
    """Map an HTTP error status to an error code.

    Args:
        status_code: HTTP status code (4xx or 5xx).

    Returns:
        Matching error code; FETCH_FAILED for anything not listed.
    """
    if status_code is None:
        return SourceErrorCode.FETCH_FAILED

    return _HTTP_STATUS_MAP.get(status_code, SourceErrorCode.FETCH_FAILED)


def map_exception_to_error_code(error: BaseException) -> SourceErrorCode:
    """Map an exception raised while fetching to an error code.

    Args:
        error: The exception.

    Returns:
        Matching error code.
    """
    if isinstance(error, httpx.TimeoutException | TimeoutError):
        return SourceErrorCode.TIMEOUT

    if isinstance(error, httpx.InvalidURL | httpx.UnsupportedProtocol):
        return SourceErrorCode.INVALID_URL

    if isinstance(error, httpx.HTTPStatusError):
        return map_http_status_to_error_code(error.response.status_code)

    return SourceErrorCode.FETCH_FAILED


def map_parse_error_to_error_code(
    content_type: str | None = None,
    error_message: str | None = None,
) -> SourceErrorCode:
    """Map a feed parse failure to an error code.

    Args:
        content_type: Response Content-Type header, if known.
        error_message: Optional parser error message.

    Returns:
        NOT_RSS when the document is an HTML page, else PARSE_ERROR.
    """
    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in _HTML_CONTENT_TYPES:
            return SourceErrorCode.NOT_RSS

    if error_message:
        msg_lower = error_message.lower()
        if "<html" in msg_lower or "not a feed" in msg_lower:
            return SourceErrorCode.NOT_RSS

    return SourceErrorCode.PARSE_ERROR
