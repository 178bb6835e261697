"""
Live headlines from an OPML list of RSS/Atom feeds.

The news workflow uses these to ground the researcher: a few feeds are
sampled from the OPML list, their items are merged newest first and the
result is cached for a while so repeated requests do not hammer the feeds.
"""

import logging
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional, Tuple

import httpx
from defusedxml import ElementTree

from ..models import NewsArticle

logger = logging.getLogger(__name__)

UNKNOWN_PUBLISHED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)
DESCRIPTION_LIMIT = 200

_TAG = re.compile(r"<[^>]*>")


class FeedError(Exception):
    """Raised when an OPML or feed document cannot be parsed."""


@dataclass(frozen=True)
class Feed:
    title: str
    xml_url: str
    html_url: Optional[str] = None


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _child_text(element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) != name:
            continue
        text = "".join(child.itertext()).strip()
        if text:
            return text
    return None


def _clean_text(text: Optional[str]) -> str:
    return _TAG.sub("", text or "").strip()


def _parse_datetime(raw: Optional[str]) -> datetime:
    if not raw:
        return UNKNOWN_PUBLISHED_AT
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return UNKNOWN_PUBLISHED_AT
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_opml(text: str) -> List[Feed]:
    """Return every rss outline of an OPML document that has an xmlUrl."""
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise FeedError(f"Invalid OPML: {e}") from e

    feeds = []
    for outline in root.iter("outline"):
        if outline.get("type", "").lower() != "rss" or not outline.get("xmlUrl"):
            continue
        feeds.append(Feed(
            title=outline.get("title") or outline.get("text") or "",
            xml_url=outline.get("xmlUrl"),
            html_url=outline.get("htmlUrl"),
        ))
    return feeds


def parse_feed(text: str, source: str) -> List[NewsArticle]:
    """
    Parse an RSS 2.0 or Atom document.

    Args:
        text: Feed XML
        source: Label stored on every article (usually the feed title)

    Returns:
        Articles that have both a title and a link, in document order
    """
    return [article for article, _ in _parse_feed_items(text, source)]


def _parse_feed_items(text: str, source: str) -> List[Tuple[NewsArticle, datetime]]:
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise FeedError(f"Invalid feed from {source}: {e}") from e

    items = []
    if _local_name(root.tag) == "feed":
        for entry in root.iter():
            if _local_name(entry.tag) != "entry":
                continue
            link = None
            for child in entry:
                if _local_name(child.tag) == "link" and child.get("href"):
                    if child.get("rel", "alternate") == "alternate":
                        link = child.get("href")
                        break
                    link = link or child.get("href")
            description = _child_text(entry, "summary") or _child_text(entry, "content")
            published = _child_text(entry, "published") or _child_text(entry, "updated")
            items.append((_child_text(entry, "title"), link, description, published))
    else:
        for item in root.iter():
            if _local_name(item.tag) != "item":
                continue
            items.append((
                _child_text(item, "title"),
                _child_text(item, "link"),
                _child_text(item, "description"),
                _child_text(item, "pubdate"),
            ))

    articles = []
    for title, link, description, published in items:
        if not title or not link:
            continue
        published_at = _parse_datetime(published)
        articles.append((
            NewsArticle(
                title=_clean_text(title),
                description=_clean_text(description)[:DESCRIPTION_LIMIT] or None,
                url=link,
                published_at=published_at.isoformat(),
                source=source,
            ),
            published_at,
        ))
    return articles


class HeadlineSource:
    """Samples feeds from an OPML list and caches the newest headlines."""

    def __init__(
        self,
        opml_url: str,
        *,
        feed_sample: int = 3,
        cache_seconds: float = 1800,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.opml_url = opml_url
        self.feed_sample = feed_sample
        self.cache_seconds = cache_seconds
        self.clock = clock
        self.rng = rng or random.Random()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )
        self._feeds: List[Feed] = []
        self._cache: List[NewsArticle] = []
        self._cached_at: Optional[float] = None

    def _cache_fresh(self) -> bool:
        return self._cached_at is not None and self.clock() - self._cached_at < self.cache_seconds

    async def load_feeds(self) -> List[Feed]:
        """Fetch and parse the OPML list (once per instance)."""
        if not self._feeds:
            response = await self._client.get(self.opml_url)
            response.raise_for_status()
            self._feeds = parse_opml(response.text)
            logger.info(f"Loaded {len(self._feeds)} feeds from {self.opml_url}")
        return self._feeds

    async def fetch_latest(self, count: int = 5) -> List[NewsArticle]:
        """
        Return the newest headlines across a random sample of feeds.

        Args:
            count: Maximum number of articles

        Returns:
            Articles newest first; feeds that fail are skipped

        Raises:
            httpx.HTTPError: If the OPML list cannot be fetched
            FeedError: If the OPML list cannot be parsed
        """
        if self._cache_fresh():
            return self._cache[:count]

        feeds = await self.load_feeds()
        selected = feeds if len(feeds) <= self.feed_sample else self.rng.sample(feeds, self.feed_sample)

        collected: List[Tuple[NewsArticle, datetime]] = []
        for feed in selected:
            try:
                response = await self._client.get(feed.xml_url)
                response.raise_for_status()
                collected.extend(_parse_feed_items(response.text, feed.title))
            except (httpx.HTTPError, FeedError) as e:
                logger.warning(f"Skipping feed {feed.title or feed.xml_url}: {e}")

        collected.sort(key=lambda pair: pair[1], reverse=True)
        self._cache = [article for article, _ in collected]
        self._cached_at = self.clock()
        return self._cache[:count]

    async def aclose(self) -> None:
        await self._client.aclose()
