"""
News Ingestion Pipeline

Populates the vector index from RSS feeds:
1. Read feeds until the article limit is reached
2. Extract each article's text (feed description as a fallback)
3. Split articles into overlapping chunks
4. Embed and store chunks in small batches, with per-article retry
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Set

from langchain_text_splitters import RecursiveCharacterTextSplitter
from tqdm import tqdm

from ..embeddings.embedding_service import EmbeddingService
from ..models import ChunkMetadata, DocumentChunk, NewsArticle, utc_now
from ..storage.vector_store import VectorIndex
from .article_extractor import ArticleExtractor
from .feed_reader import FeedItem, FeedReader, extract_source_name

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    """Outcome of one ingestion run."""
    articles_fetched: int = 0
    chunks_stored: int = 0
    failed_articles: int = 0
    documents_count: int = 0
    processing_time: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


class NewsIngestionService:
    """
    Feeds news articles into the vector index.

    Links already ingested by this instance are skipped on later runs until
    ``clear_and_reingest`` resets them.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        embedding_service: EmbeddingService,
        rss_urls: Sequence[str],
        feed_reader: Optional[FeedReader] = None,
        article_extractor: Optional[ArticleExtractor] = None,
        max_articles: int = 50,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        min_content_length: int = 100,
        min_description_length: int = 50
    ):
        """
        Initialize the ingestion service.

        Args:
            vector_index: Index receiving the chunks
            embedding_service: Service embedding chunk texts
            rss_urls: Feeds to read, in order
            feed_reader: Feed reader (default: FeedReader())
            article_extractor: Page text extractor (default: ArticleExtractor())
            max_articles: Maximum articles per run
            batch_size: Articles embedded and stored together
            batch_delay: Seconds to wait between batches
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters shared by consecutive chunks
            min_content_length: Extracted text shorter than this is replaced
                by the feed description
            min_description_length: Articles whose fallback text is shorter
                than this are skipped
        """
        self.vector_index = vector_index
        self.embedding_service = embedding_service
        self.rss_urls = list(rss_urls)
        self.feed_reader = feed_reader or FeedReader()
        self.article_extractor = article_extractor or ArticleExtractor()
        self.max_articles = max_articles
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.min_content_length = min_content_length
        self.min_description_length = min_description_length

        self.text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", " ", ""]
        )

        self.processed_links: Set[str] = set()

    async def _build_article(self, item: FeedItem, source: str) -> Optional[NewsArticle]:
        content = await asyncio.to_thread(self.article_extractor.extract, item.link)

        # Fall back to the feed description when extraction fails or is too short
        if len(content) < self.min_content_length:
            content = item.description or ""
            if len(content) < self.min_description_length:
                logger.debug(f"Skipping article with insufficient content: {item.title} ({len(content)} chars)")
                return None
            logger.debug(f"Using RSS description as content for: {item.title}")

        return NewsArticle(
            id=str(uuid.uuid4()),
            title=item.title,
            content=content,
            url=item.link,
            published_at=item.published or utc_now(),
            source=source,
        )

    async def fetch_articles(self) -> List[NewsArticle]:
        """
        Read feeds and extract articles until ``max_articles`` is reached.

        Returns:
            Newly seen articles
        """
        articles: List[NewsArticle] = []

        for rss_url in self.rss_urls:
            if len(articles) >= self.max_articles:
                break

            items = await asyncio.to_thread(self.feed_reader.fetch, rss_url)
            source = extract_source_name(rss_url)
            fetched = 0

            for item in items:
                if len(articles) >= self.max_articles:
                    break
                if item.link in self.processed_links:
                    logger.debug(f"Skipping already processed article: {item.title}")
                    continue

                article = await self._build_article(item, source)
                if article is None:
                    continue

                articles.append(article)
                self.processed_links.add(item.link)
                fetched += 1

            logger.info(f"Fetched {fetched} articles from {rss_url}")

        return articles

    def split_article(self, article: NewsArticle) -> List[str]:
        """
        Chunk texts for an article, each prefixed with the title.

        Args:
            article: Article to split

        Returns:
            Texts of the form "<title>\\n\\n<piece>"
        """
        pieces = self.text_splitter.split_text(article.content) or [article.content]
        return [f"{article.title}\n\n{piece}" for piece in pieces]

    def _make_chunks(
        self,
        article: NewsArticle,
        texts: List[str],
        embeddings: List[List[float]]
    ) -> List[DocumentChunk]:
        chunks = []
        for i, (text, embedding) in enumerate(zip(texts, embeddings)):
            chunks.append(DocumentChunk(
                id=str(uuid.uuid4()),
                article_id=article.id,
                text=text,
                embedding=embedding,
                metadata=ChunkMetadata(
                    title=article.title,
                    url=article.url,
                    published_at=article.published_at,
                    source=article.source,
                    extra={'chunk_index': i, 'total_chunks': len(texts)},
                ),
            ))
        return chunks

    async def process_article(self, article: NewsArticle) -> int:
        """
        Embed and store a single article.

        Returns:
            Number of chunks stored
        """
        texts = self.split_article(article)
        embeddings = await self.embedding_service.embed_batch(texts)
        chunks = self._make_chunks(article, texts, embeddings)
        await self.vector_index.add_batch(chunks)
        return len(chunks)

    async def process_batch(self, articles: List[NewsArticle]) -> Dict[str, int]:
        """
        Embed and store articles together, falling back to one at a time.

        Returns:
            Dictionary with 'chunks' stored and 'failed' article count
        """
        try:
            per_article = [self.split_article(article) for article in articles]
            all_texts = [text for texts in per_article for text in texts]
            embeddings = await self.embedding_service.embed_batch(all_texts)

            chunks = []
            offset = 0
            for article, texts in zip(articles, per_article):
                chunks.extend(self._make_chunks(article, texts, embeddings[offset:offset + len(texts)]))
                offset += len(texts)

            await self.vector_index.add_batch(chunks)
            logger.info(f"Processed batch of {len(articles)} articles ({len(chunks)} chunks)")
            return {'chunks': len(chunks), 'failed': 0}

        except Exception as e:
            logger.error(f"Error processing batch, retrying articles individually: {e}")

        stored = 0
        failed = 0
        for article in articles:
            try:
                stored += await self.process_article(article)
            except Exception as e:
                failed += 1
                logger.error(f"Error processing individual article {article.id}: {e}")

        return {'chunks': stored, 'failed': failed}

    async def ingest(self, show_progress: bool = False) -> IngestionReport:
        """
        Run one ingestion pass over all feeds.

        Args:
            show_progress: Show a progress bar over articles

        Returns:
            IngestionReport for the run
        """
        logger.info("Starting news articles ingestion...")
        start_time = time.time()
        report = IngestionReport()

        articles = await self.fetch_articles()
        report.articles_fetched = len(articles)
        logger.info(f"Processing {len(articles)} articles...")

        with tqdm(total=len(articles), desc="Ingesting articles", unit="article", disable=not show_progress) as progress:
            for i in range(0, len(articles), self.batch_size):
                batch = articles[i:i + self.batch_size]
                result = await self.process_batch(batch)
                report.chunks_stored += result['chunks']
                report.failed_articles += result['failed']
                progress.update(len(batch))

                # Pause between batches to avoid rate limiting
                if i + self.batch_size < len(articles) and self.batch_delay > 0:
                    await asyncio.sleep(self.batch_delay)

        report.documents_count = await self.vector_index.count()
        report.processing_time = time.time() - start_time

        logger.info(
            f"News ingestion completed: {report.articles_fetched} articles, "
            f"{report.chunks_stored} chunks stored, {report.failed_articles} failed. "
            f"Total documents in vector index: {report.documents_count}"
        )
        return report

    async def clear_and_reingest(self, show_progress: bool = False) -> IngestionReport:
        """
        Empty the index, forget processed links, and ingest again.

        Raises:
            IndexUnavailableError: If the index cannot be cleared
        """
        logger.info("Clearing existing vector index...")
        await self.vector_index.clear()
        self.processed_links.clear()
        return await self.ingest(show_progress=show_progress)
