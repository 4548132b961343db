"""
Article Extractor Module

Downloads a news article page and pulls out its main text with BeautifulSoup.
"""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


USER_AGENT = 'Mozilla/5.0 (compatible; NewsRAG/1.0)'

# Elements that never hold article text
NOISE_SELECTORS = 'script, style, nav, header, footer, aside, .advertisement, .ads'

# Candidate containers for the article body; the longest text wins
CONTENT_SELECTORS = [
    'article',
    '[role="main"]',
    '.article-body',
    '.entry-content',
    '.post-content',
    '.content',
    'main',
    '.story-body',
    '.article-content',
    '[data-component="text-block"]',  # BBC
]


class ArticleExtractor:
    """
    Extracts article text from news URLs.

    Failures never raise: an unreachable or unparseable page yields an empty
    string so the caller can fall back to the feed description.
    """

    def __init__(
        self,
        timeout: int = 10,
        max_length: int = 5000,
        min_text_length: int = 100,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the article extractor.

        Args:
            timeout: Request timeout in seconds
            max_length: Extracted text is truncated to this many characters
            min_text_length: Below this length the whole page body is used instead
            session: HTTP session to reuse (default: a new requests.Session)
        """
        self.timeout = timeout
        self.max_length = max_length
        self.min_text_length = min_text_length
        self.session = session or requests.Session()

    def _validate_url(self, url: str) -> bool:
        """
        Validate URL format.

        Args:
            url: URL to validate

        Returns:
            True if valid, False otherwise
        """
        try:
            result = urlparse(url)
        except ValueError as e:
            logger.warning(f"URL validation error for {url}: {e}")
            return False

        is_valid = bool(result.scheme in ('http', 'https') and result.netloc)
        if not is_valid:
            logger.warning(f"Invalid URL format: {url}")
        return is_valid

    def _clean_text(self, text: str) -> str:
        """
        Collapse whitespace and truncate.

        Args:
            text: Raw text to clean

        Returns:
            Cleaned text
        """
        if not text:
            return ""
        text = re.sub(r'\s+', ' ', text).strip()
        return text[:self.max_length]

    def extract_from_html(self, html: str) -> str:
        """
        Pick the main text out of an HTML page.

        Args:
            html: Page markup

        Returns:
            Cleaned article text (may be empty)
        """
        soup = BeautifulSoup(html, 'html.parser')

        # Remove unwanted elements
        for element in soup.select(NOISE_SELECTORS):
            element.decompose()

        content = ""
        for selector in CONTENT_SELECTORS:
            text = " ".join(
                element.get_text(' ', strip=True) for element in soup.select(selector)
            ).strip()
            if len(text) > len(content):
                content = text
                logger.debug(f"Found content using selector: {selector} ({len(content)} chars)")

        # If no specific content selector worked, try the body
        if len(content) < self.min_text_length and soup.body is not None:
            content = soup.body.get_text(' ', strip=True)
            logger.debug(f"Using body content: {len(content)} chars")

        return self._clean_text(content)

    def extract(self, url: str) -> str:
        """
        Download ``url`` and extract its article text.

        Args:
            url: Article URL

        Returns:
            Article text, or "" when the page cannot be fetched
        """
        if not self._validate_url(url):
            return ""

        logger.debug(f"Attempting to extract content from: {url}")
        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers={'User-Agent': USER_AGENT},
                allow_redirects=True
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Error extracting content from {url}: {e}")
            return ""

        content = self.extract_from_html(response.text)
        logger.debug(f"Final content length: {len(content)} chars")
        return content
