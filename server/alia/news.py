"""
News Aggregator — pulls Israeli news over RSS, drops articles already stored,
translates the rest into Spanish and saves them.
"""
from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from .storage import RecordStore, gte, utcnow_iso
from .translation import TranslationService

logger = logging.getLogger("alia.news")

RSS_NS = {
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "media": "http://search.yahoo.com/mrss/",
}

MAX_CONTENT_LENGTH = 5000
SUMMARY_LENGTH = 300
SEARCH_COLUMNS = ("titleTranslated", "summaryTranslated")


class FeedError(Exception):
    """A feed could not be fetched or parsed."""


@dataclass
class NewsSourceConfig:
    name: str
    url: str
    type: str = "rss"
    enabled: bool = True
    category: Optional[str] = None


@dataclass
class ScrapedArticle:
    title: str
    content: str
    url: str
    published_at: datetime
    image_url: Optional[str] = None
    author: Optional[str] = None


@dataclass
class SourceResult:
    name: str
    articles: int
    success: bool


@dataclass
class UpdateSummary:
    total_articles: int = 0
    source_results: List[SourceResult] = field(default_factory=list)


def strip_html(html: str) -> str:
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def _parse_date(value: Optional[str]) -> datetime:
    if value:
        try:
            parsed = parsedate_to_datetime(value.strip())
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            logger.debug("Unparseable pubDate: %s", value)
    return datetime.now(timezone.utc)


def _image_url(item: ET.Element) -> Optional[str]:
    enclosure = item.find("enclosure")
    if enclosure is not None and (enclosure.get("type") or "").startswith("image/"):
        return enclosure.get("url")
    media = item.find("media:content", RSS_NS)
    if media is not None and media.get("url"):
        medium = media.get("medium") or ""
        mime = media.get("type") or ""
        if medium == "image" or mime.startswith("image/") or not (medium or mime):
            return media.get("url")
    return None


def parse_feed(feed_xml: str) -> List[ScrapedArticle]:
    """Parse an RSS 2.0 document. Items missing a title or link are skipped."""
    try:
        root = ET.fromstring(feed_xml)
    except ET.ParseError as e:
        raise FeedError(f"Invalid RSS document: {e}") from e

    articles = []
    for item in root.iter("item"):
        title = (item.findtext("title") or "").strip()
        link = (item.findtext("link") or "").strip()
        if not title or not link:
            continue

        raw = (
            item.findtext("content:encoded", namespaces=RSS_NS)
            or item.findtext("description")
            or ""
        )
        author = (
            item.findtext("author")
            or item.findtext("dc:creator", namespaces=RSS_NS)
            or ""
        ).strip() or None

        articles.append(ScrapedArticle(
            title=strip_html(title),
            content=strip_html(raw)[:MAX_CONTENT_LENGTH],
            url=link,
            published_at=_parse_date(item.findtext("pubDate")),
            image_url=_image_url(item),
            author=author,
        ))
    return articles


class NewsAggregator:
    """Fetches configured RSS sources and stores translated articles."""

    def __init__(
        self,
        sources: List[NewsSourceConfig],
        source_store: RecordStore,
        article_store: RecordStore,
        translator: TranslationService,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.sources = sources
        self._source_store = source_store
        self._article_store = article_store
        self._translator = translator
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings, source_store, article_store, translator) -> "NewsAggregator":
        sources = [NewsSourceConfig(**s) for s in settings.news_sources]
        return cls(sources, source_store, article_store, translator, timeout=settings.news_fetch_timeout_seconds)

    async def initialize(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        logger.info("News aggregator initialized (%d sources)", len(self.sources))

    async def shutdown(self):
        if self._client and self._owns_client:
            await self._client.aclose()

    async def fetch_feed(self, source: NewsSourceConfig) -> List[ScrapedArticle]:
        logger.info("Processing RSS: %s", source.name)
        try:
            resp = await self._client.get(source.url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise FeedError(f"Failed to fetch {source.name}: {e}") from e
        articles = parse_feed(resp.text)
        logger.info("%s: %d articles parsed", source.name, len(articles))
        return articles

    async def _get_or_create_source(self, source: NewsSourceConfig) -> Dict[str, Any]:
        record = await self._source_store.find_first({"name": source.name})
        if record is None:
            record = await self._source_store.create({
                "name": source.name,
                "url": source.url,
                "rssUrl": source.url,
                "type": source.type.upper(),
                "category": source.category,
                "isActive": True,
            })
        return record

    async def _save_articles(self, articles: List[ScrapedArticle], source_id: Any) -> int:
        saved = 0
        seen = set()
        for article in articles:
            if article.url in seen:
                continue
            seen.add(article.url)
            try:
                if await self._save_article(article, source_id):
                    saved += 1
            except Exception as e:
                logger.warning("Error saving article %s: %s", article.url, e)
        return saved

    async def _save_article(self, article: ScrapedArticle, source_id: Any) -> bool:
        if await self._article_store.find_first({"url": article.url}):
            return False

        translated = await self._translator.translate_article(article.title, article.content)
        await self._article_store.create({
            "sourceId": source_id,
            "title": article.title,
            "titleTranslated": translated.title,
            "content": article.content,
            "contentTranslated": translated.content,
            "summary": article.content[:SUMMARY_LENGTH],
            "summaryTranslated": translated.summary,
            "url": article.url,
            "imageUrl": article.image_url,
            "author": article.author,
            "publishedAt": article.published_at.astimezone(timezone.utc).isoformat(),
            "isTranslated": True,
            "translatedAt": utcnow_iso(),
            "isActive": True,
        })
        return True

    async def update_all_sources(self) -> UpdateSummary:
        logger.info("Starting RSS news update...")
        summary = UpdateSummary()

        for source in self.sources:
            if not source.enabled or source.type != "rss":
                continue
            try:
                record = await self._get_or_create_source(source)
                articles = await self.fetch_feed(source)
                saved = await self._save_articles(articles, record["id"])
                await self._source_store.update(record["id"], {"lastFetched": utcnow_iso()})
            except Exception as e:
                logger.error("Error processing %s: %s", source.name, e)
                summary.source_results.append(SourceResult(source.name, 0, False))
                continue
            summary.total_articles += saved
            summary.source_results.append(SourceResult(source.name, saved, True))
            logger.info("%s: %d new articles", source.name, saved)

        logger.info("Update complete: %d new articles", summary.total_articles)
        return summary

    async def get_recent_articles(
        self,
        limit: int = 20,
        offset: int = 0,
        source_ids: Optional[List[str]] = None,
        search: Optional[str] = None,
    ) -> dict:
        filters: Dict[str, Any] = {"isActive": True}
        if source_ids:
            filters["sourceId"] = list(source_ids)

        articles = await self._article_store.find_many(
            filters,
            search=search,
            search_columns=SEARCH_COLUMNS,
            order_by="publishedAt",
            descending=True,
            limit=limit,
            offset=offset,
        )
        total = await self._article_store.count(filters, search=search, search_columns=SEARCH_COLUMNS)
        return {
            "articles": articles,
            "total": total,
            "hasMore": offset + limit < total,
        }

    async def health_check(self) -> dict:
        one_hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        active_sources = await self._source_store.count({"isActive": True})
        recent_articles = await self._article_store.count({"createdAt": gte(one_hour_ago)})

        if active_sources > 0 and recent_articles > 0:
            status = "healthy"
        elif active_sources > 0:
            status = "degraded"
        else:
            status = "unhealthy"
        return {
            "status": status,
            "details": {
                "activeSources": active_sources,
                "recentArticles": recent_articles,
                "lastUpdate": utcnow_iso(),
            },
        }
