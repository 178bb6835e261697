from .rss import FeedError, HeadlineSource, parse_feed, parse_opml


__all__ = ["FeedError", "HeadlineSource", "parse_feed", "parse_opml"]
