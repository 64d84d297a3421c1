"""Feed checker that turns one fetch attempt into a classified outcome."""

import calendar
import time
from datetime import UTC, datetime
from typing import Protocol
from urllib.parse import urlparse

import feedparser  # type: ignore[import-untyped]
import httpx
import structlog

from src.sources.constants import COMPONENT_CHECKER
from src.sources.error_mapper import (
    map_exception_to_error_code,
    map_http_status_to_error_code,
    map_parse_error_to_error_code,
)
from src.sources.errors import SourceErrorCode
from src.sources.models import (
    FailOutcome,
    NoItemsOutcome,
    Outcome,
    Source,
    SuccessOutcome,
    TimeoutOutcome,
)


logger = structlog.get_logger()

_ALLOWED_SCHEMES = ("http", "https")


class SourceChecker(Protocol):
    """Performs one check of a source.

    Implementations block for the duration of the fetch and should report
    failures as outcomes; an exception is treated as FETCH_FAILED.
    """

    def check(self, source: Source) -> Outcome:
        """Check a source and classify the result."""
        ...


def is_checkable_url(url: str) -> bool:
    """Check if a URL is an absolute http(s) URL with a host."""
    parsed = urlparse(url.strip())
    return parsed.scheme.lower() in _ALLOWED_SCHEMES and bool(parsed.netloc)


def _entry_timestamp(entry: feedparser.FeedParserDict) -> datetime | None:
    """Get the publish (or update) time of a feed entry in UTC."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=UTC)
            except (ValueError, OverflowError):
                continue
    return None


class FeedChecker:
    """Checks RSS/Atom sources with httpx and feedparser.

    A URL that is not http(s) fails with INVALID_URL without any network
    call. Transport and HTTP failures are mapped through the error mapper,
    so only the closed error code set ever reaches the caller.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        user_agent: str = "source-health/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the feed checker.

        Args:
            timeout_seconds: Per-request timeout.
            user_agent: User-Agent header value.
            transport: Optional httpx transport (used by tests).
        """
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._transport = transport
        self._log = logger.bind(component=COMPONENT_CHECKER)

    def check(self, source: Source) -> Outcome:
        """Fetch and parse a source.

        Args:
            source: The source to check; its resolved feed URL is preferred.

        Returns:
            The classified outcome.
        """
        url = source.feed_url or source.url
        log = self._log.bind(source_id=source.id, url=url)

        if not is_checkable_url(url):
            log.info("invalid_url")
            return FailOutcome(
                error_code=SourceErrorCode.INVALID_URL,
                message="URL must be an absolute http(s) address",
            )

        start_time_ns = time.perf_counter_ns()
        try:
            with httpx.Client(
                timeout=self._timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "application/rss+xml, application/atom+xml, "
                    "application/xml;q=0.9, */*;q=0.8",
                },
            ) as client:
                response = client.get(url)
        except httpx.TimeoutException:
            log.warning("check_timed_out")
            return TimeoutOutcome()
        except httpx.HTTPError as e:
            code = map_exception_to_error_code(e)
            log.warning("check_fetch_failed", error_code=code.value, error=str(e))
            return FailOutcome(error_code=code, message=str(e))

        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000

        if response.is_error:
            code = map_http_status_to_error_code(response.status_code)
            log.warning(
                "check_http_error",
                status_code=response.status_code,
                error_code=code.value,
            )
            return FailOutcome(
                error_code=code,
                http_status=response.status_code,
                message=f"HTTP {response.status_code}",
            )

        return self._parse(response, log, duration_ms)

    def _parse(
        self,
        response: httpx.Response,
        log: structlog.stdlib.BoundLogger,
        duration_ms: float,
    ) -> Outcome:
        """Classify a successful HTTP response by parsing it as a feed."""
        feed_url = str(response.url)
        content_type = response.headers.get("content-type")
        feed = feedparser.parse(response.content)

        # feedparser reports no version for documents it could not read
        if not feed.entries and not feed.get("version"):
            message = str(feed.get("bozo_exception") or "unrecognized feed format")
            code = map_parse_error_to_error_code(content_type, message)
            log.warning("check_parse_failed", error_code=code.value)
            return FailOutcome(error_code=code, message=message)

        if not feed.entries:
            log.info("check_no_items", duration_ms=round(duration_ms, 2))
            return NoItemsOutcome(feed_url=feed_url)

        timestamps = [
            ts for ts in (_entry_timestamp(e) for e in feed.entries) if ts is not None
        ]
        log.info(
            "check_succeeded",
            item_count=len(feed.entries),
            duration_ms=round(duration_ms, 2),
        )
        return SuccessOutcome(
            feed_url=feed_url,
            item_count=len(feed.entries),
            last_item_at=max(timestamps) if timestamps else None,
        )
