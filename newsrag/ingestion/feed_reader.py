"""
RSS/Atom Feed Reader

Fetches news feeds and turns their entries into FeedItem records.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Union
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


USER_AGENT = 'Mozilla/5.0 (compatible; NewsRAG/1.0)'

KNOWN_SOURCES = [
    ('cnn', 'CNN'),
    ('bbc', 'BBC'),
    ('reuters', 'Reuters'),
    ('nytimes', 'New York Times'),
    ('guardian', 'The Guardian'),
    ('washingtonpost', 'Washington Post'),
]


@dataclass
class FeedItem:
    """A single entry of a news feed."""
    title: str
    link: str
    description: str = ""
    published: Optional[str] = None


def extract_source_name(url: str) -> str:
    """
    Human-readable publisher name for a feed or article URL.

    Args:
        url: Feed or article URL

    Returns:
        Known publisher name, else the upper-cased first host label
    """
    hostname = (urlparse(url).hostname or '').lower()

    for marker, name in KNOWN_SOURCES:
        if marker in hostname:
            return name

    if hostname.startswith('www.'):
        hostname = hostname[4:]
    return hostname.split('.')[0].upper()


def _strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    text = BeautifulSoup(text, 'html.parser').get_text(' ')
    return re.sub(r'\s+', ' ', text).strip()


def _entry_date(entry: Any) -> Optional[str]:
    """ISO-8601 publication date of a feedparser entry (UTC), if any."""
    parsed = entry.get('published_parsed') or entry.get('updated_parsed')
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()


def _entry_description(entry: Any) -> str:
    content = entry.get('content')
    if content and content[0].get('value'):
        return content[0]['value']
    return entry.get('summary', "")


class FeedReader:
    """
    Reads RSS 2.0 and Atom feeds.

    Parsing is lenient: entries without a title or link are skipped, and a
    feed that cannot be fetched or parsed yields no items.
    """

    def __init__(self, timeout: int = 10, session: Optional[requests.Session] = None):
        """
        Initialize the feed reader.

        Args:
            timeout: Request timeout in seconds
            session: HTTP session to reuse (default: a new requests.Session)
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def parse(self, xml_text: Union[str, bytes]) -> List[FeedItem]:
        """
        Parse a feed document into items.

        Args:
            xml_text: RSS or Atom document

        Returns:
            Items in document order; empty if the document is not a feed
        """
        if isinstance(xml_text, str):
            xml_text = xml_text.encode('utf-8')

        feed = feedparser.parse(xml_text)
        if feed.bozo:
            if not feed.entries:
                logger.error(f"Error parsing RSS feed: {feed.get('bozo_exception')}")
                return []
            logger.warning(f"RSS feed is malformed, using recovered entries: {feed.get('bozo_exception')}")

        items = []
        for entry in feed.entries:
            title = _strip_html(entry.get('title'))
            link = (entry.get('link') or "").strip()
            if not title or not link:
                logger.debug(f"Skipping entry without link or title: {title or 'unknown'}")
                continue
            items.append(FeedItem(
                title=title,
                link=link,
                description=_strip_html(_entry_description(entry)),
                published=_entry_date(entry),
            ))

        return items

    def fetch(self, feed_url: str) -> List[FeedItem]:
        """
        Download and parse a feed.

        Args:
            feed_url: Feed URL

        Returns:
            Feed items; empty if the feed cannot be fetched or parsed
        """
        logger.info(f"Fetching RSS feed from: {feed_url}")
        try:
            response = self.session.get(
                feed_url,
                timeout=self.timeout,
                headers={'User-Agent': USER_AGENT}
            )
            response.raise_for_status()
            items = self.parse(response.content)
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching RSS feed {feed_url}: {e}")
            return []

        logger.info(f"RSS feed loaded, found {len(items)} items")
        return items
