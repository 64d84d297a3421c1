"""Unit tests for the feed checker."""

from datetime import UTC, datetime

import httpx

from src.scheduler.checker import FeedChecker, is_checkable_url
from src.sources.errors import SourceErrorCode
from src.sources.models import (
    FailOutcome,
    NoItemsOutcome,
    Source,
    SuccessOutcome,
    TimeoutOutcome,
)
from tests.helpers.time import FIXED_NOW


FEED_URL = "https://example.com/feed.xml"

RSS_WITH_ITEMS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Ken's shelf</title>
    <link>https://example.com/</link>
    <description>Five-star books</description>
    <item>
      <title>The Dispossessed</title>
      <link>https://example.com/1</link>
      <pubDate>Sun, 01 Mar 2026 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Piranesi</title>
      <link>https://example.com/2</link>
      <pubDate>Mon, 02 Mar 2026 08:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

EMPTY_RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Ken's shelf</title>
    <link>https://example.com/</link>
    <description>Nothing yet</description>
  </channel>
</rss>
"""

HTML_PAGE = b"<!DOCTYPE html><html><head><title>Hi</title></head><body>Hello</body></html>"


def make_source(url: str = FEED_URL) -> Source:
    """Create a source to check."""
    return Source(id="src-1", user_id="user-1", url=url, created_at=FIXED_NOW)


def checker_returning(
    status_code: int,
    content: bytes = b"",
    content_type: str = "application/rss+xml",
) -> FeedChecker:
    """Create a checker whose transport always returns one response."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code, content=content, headers={"content-type": content_type}
        )

    return FeedChecker(transport=httpx.MockTransport(handler))


class TestIsCheckableUrl:
    """Tests for URL pre-validation."""

    def test_http_urls(self) -> None:
        """Test absolute http(s) URLs are accepted."""
        assert is_checkable_url("https://example.com/feed")
        assert is_checkable_url("HTTP://example.com")

    def test_rejected_urls(self) -> None:
        """Test other schemes and relative URLs are rejected."""
        assert not is_checkable_url("ftp://example.com/feed")
        assert not is_checkable_url("example.com/feed")
        assert not is_checkable_url("https://")


class TestFeedChecker:
    """Tests for FeedChecker outcomes."""

    def test_success(self) -> None:
        """Test a feed with entries is a success."""
        outcome = checker_returning(200, RSS_WITH_ITEMS).check(make_source())

        assert isinstance(outcome, SuccessOutcome)
        assert outcome.item_count == 2
        assert outcome.feed_url == FEED_URL
        assert outcome.last_item_at == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    def test_empty_feed(self) -> None:
        """Test a valid feed without entries is no_items."""
        outcome = checker_returning(200, EMPTY_RSS).check(make_source())

        assert isinstance(outcome, NoItemsOutcome)

    def test_html_page(self) -> None:
        """Test an HTML page is NOT_RSS."""
        outcome = checker_returning(200, HTML_PAGE, "text/html").check(make_source())

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.NOT_RSS

    def test_not_found(self) -> None:
        """Test a 404 is NOT_RSS with the status recorded."""
        outcome = checker_returning(404).check(make_source())

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.NOT_RSS
        assert outcome.http_status == 404

    def test_rate_limited(self) -> None:
        """Test a 429 is RATE_LIMITED."""
        outcome = checker_returning(429).check(make_source())

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.RATE_LIMITED

    def test_server_error(self) -> None:
        """Test a 5xx is FETCH_FAILED."""
        outcome = checker_returning(503).check(make_source())

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.FETCH_FAILED

    def test_timeout(self) -> None:
        """Test a transport timeout is a timeout outcome."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        checker = FeedChecker(transport=httpx.MockTransport(handler))

        assert isinstance(checker.check(make_source()), TimeoutOutcome)

    def test_connection_error(self) -> None:
        """Test a refused connection is FETCH_FAILED."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        checker = FeedChecker(transport=httpx.MockTransport(handler))
        outcome = checker.check(make_source())

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.FETCH_FAILED

    def test_invalid_url_makes_no_request(self) -> None:
        """Test an invalid URL fails before any network call."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=RSS_WITH_ITEMS)

        checker = FeedChecker(transport=httpx.MockTransport(handler))
        outcome = checker.check(make_source("ftp://example.com/feed"))

        assert isinstance(outcome, FailOutcome)
        assert outcome.error_code == SourceErrorCode.INVALID_URL
        assert requests == []

    def test_prefers_resolved_feed_url(self) -> None:
        """Test the resolved feed URL is fetched when known."""
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=RSS_WITH_ITEMS)

        source = make_source("https://example.com/").model_copy(
            update={"feed_url": FEED_URL}
        )
        FeedChecker(transport=httpx.MockTransport(handler)).check(source)

        assert requested == [FEED_URL]
