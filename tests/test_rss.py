"""
Tests for OPML/feed parsing and the cached headline source.
"""

import random

import httpx
import pytest

from agent_office.sources.rss import FeedError, HeadlineSource, parse_feed, parse_opml

from .conftest import ManualClock


OPML = """<?xml version="1.0"?>
<opml version="2.0">
  <body>
    <outline text="Tech">
      <outline type="rss" text="Alpha Blog" title="Alpha" xmlUrl="https://alpha.example/feed" htmlUrl="https://alpha.example"/>
      <outline type="rss" text="Beta" xmlUrl="https://beta.example/atom"/>
      <outline type="link" text="Not a feed" xmlUrl="https://gamma.example/feed"/>
      <outline type="rss" text="No url"/>
    </outline>
  </body>
</opml>
"""

RSS = """<?xml version="1.0"?>
<rss version="2.0">
  <channel>
    <title>Alpha</title>
    <item>
      <title>Older post</title>
      <link>https://alpha.example/older</link>
      <description>&lt;p&gt;Some &lt;b&gt;bold&lt;/b&gt; text&lt;/p&gt;</description>
      <pubDate>Mon, 05 Jan 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link here</title>
    </item>
  </channel>
</rss>
"""

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Beta</title>
  <entry>
    <title>Newest post</title>
    <link rel="alternate" href="https://beta.example/newest"/>
    <summary>Short summary</summary>
    <published>2026-01-07T08:00:00Z</published>
  </entry>
</feed>
"""


class TestParsing:
    """OPML and feed documents."""

    def test_parse_opml_keeps_rss_outlines_with_urls(self):
        feeds = parse_opml(OPML)

        assert [f.xml_url for f in feeds] == ["https://alpha.example/feed", "https://beta.example/atom"]
        assert feeds[0].title == "Alpha"
        assert feeds[1].title == "Beta"

    def test_parse_rss(self):
        articles = parse_feed(RSS, "Alpha")

        assert len(articles) == 1
        assert articles[0].title == "Older post"
        assert articles[0].description == "Some bold text"
        assert articles[0].source == "Alpha"
        assert articles[0].published_at.startswith("2026-01-05T10:00:00")

    def test_parse_atom(self):
        articles = parse_feed(ATOM, "Beta")

        assert articles[0].url == "https://beta.example/newest"
        assert articles[0].description == "Short summary"

    def test_description_is_truncated(self):
        long_rss = RSS.replace("&lt;p&gt;Some &lt;b&gt;bold&lt;/b&gt; text&lt;/p&gt;", "x" * 500)

        assert len(parse_feed(long_rss, "Alpha")[0].description) == 200

    def test_invalid_xml(self):
        with pytest.raises(FeedError):
            parse_feed("<rss><channel>", "Broken")


class TestHeadlineSource:
    """Sampling, merging and caching."""

    def make_source(self, handler, clock, **kwargs):
        return HeadlineSource(
            "https://lists.example/feeds.opml",
            transport=httpx.MockTransport(handler),
            clock=clock,
            rng=random.Random(0),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_merges_feeds_newest_first(self):
        documents = {
            "https://lists.example/feeds.opml": OPML,
            "https://alpha.example/feed": RSS,
            "https://beta.example/atom": ATOM,
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=documents[str(request.url)])

        source = self.make_source(handler, ManualClock())
        articles = await source.fetch_latest(5)
        await source.aclose()

        assert [a.title for a in articles] == ["Newest post", "Older post"]

    @pytest.mark.asyncio
    async def test_failing_feed_is_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            if url.endswith(".opml"):
                return httpx.Response(200, text=OPML)
            if "alpha" in url:
                return httpx.Response(500)
            return httpx.Response(200, text=ATOM)

        source = self.make_source(handler, ManualClock())
        articles = await source.fetch_latest(5)
        await source.aclose()

        assert [a.title for a in articles] == ["Newest post"]

    @pytest.mark.asyncio
    async def test_results_are_cached(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(str(request.url))
            if str(request.url).endswith(".opml"):
                return httpx.Response(200, text=OPML)
            return httpx.Response(200, text=ATOM)

        clock = ManualClock()
        source = self.make_source(handler, clock, cache_seconds=60)

        await source.fetch_latest(5)
        await source.fetch_latest(5)
        assert len(requests) == 3

        await clock.sleep(61)
        await source.fetch_latest(5)
        await source.aclose()

        # OPML list is loaded once; feeds are fetched again after expiry
        assert len(requests) == 5

    @pytest.mark.asyncio
    async def test_opml_failure_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        source = self.make_source(handler, ManualClock())
        with pytest.raises(httpx.HTTPStatusError):
            await source.fetch_latest(5)
        await source.aclose()
