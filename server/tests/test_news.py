"""Tests for the RSS news aggregator."""
import httpx
import pytest

from alia.news import FeedError, NewsAggregator, NewsSourceConfig, parse_feed, strip_html
from alia.storage import MemoryStore, StorageError
from alia.translation import TranslatedArticle

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example News</title>
    <item>
      <title>Record aliyah from Latin America</title>
      <link>https://news.example.com/aliyah-record</link>
      <description>&lt;p&gt;Short &amp;amp; sweet&lt;/p&gt;</description>
      <content:encoded><![CDATA[<p>Thousands of <b>olim</b>&nbsp;arrived.</p>]]></content:encoded>
      <dc:creator>Ruth Cohen</dc:creator>
      <pubDate>Mon, 06 Jan 2025 10:00:00 +0200</pubDate>
      <enclosure url="https://news.example.com/img.jpg" type="image/jpeg" length="1"/>
    </item>
    <item>
      <title>Knesset session</title>
      <link>https://news.example.com/knesset</link>
      <description>Plain description</description>
      <media:content url="https://news.example.com/knesset.png" medium="image"/>
      <pubDate>Tue, 07 Jan 2025 09:00:00 +0000</pubDate>
    </item>
    <item>
      <title>No link here</title>
    </item>
    <item>
      <title>Record aliyah from Latin America</title>
      <link>https://news.example.com/aliyah-record</link>
    </item>
  </channel>
</rss>
"""


class StubTranslator:
    def __init__(self):
        self.calls = []

    async def translate_article(self, title, content, from_lang=None, to_lang="es"):
        self.calls.append(title)
        return TranslatedArticle(title=f"[es] {title}", summary=f"[es] {content[:20]}", content=None)


class FlakyArticleStore(MemoryStore):
    """Rejects the create for one URL."""

    def __init__(self, failing_url):
        super().__init__("articles")
        self.failing_url = failing_url

    async def create(self, data):
        if data.get("url") == self.failing_url:
            raise StorageError("insert failed")
        return await super().create(data)


def _aggregator(handler, sources=None):
    sources = sources or [NewsSourceConfig("Example", "https://news.example.com/feed")]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    translator = StubTranslator()
    aggregator = NewsAggregator(
        sources,
        MemoryStore("news_sources"),
        MemoryStore("articles"),
        translator,
        client=client,
    )
    return aggregator, translator


class TestParseFeed:

    def test_items_extracted(self):
        articles = parse_feed(FEED)

        assert len(articles) == 3
        first = articles[0]
        assert first.title == "Record aliyah from Latin America"
        assert first.content == "Thousands of olim arrived."
        assert first.author == "Ruth Cohen"
        assert first.image_url == "https://news.example.com/img.jpg"
        assert first.published_at.year == 2025
        assert articles[1].content == "Plain description"
        assert articles[1].image_url == "https://news.example.com/knesset.png"
        assert articles[1].author is None

    def test_invalid_xml(self):
        with pytest.raises(FeedError):
            parse_feed("<rss><channel>")

    def test_strip_html(self):
        assert strip_html("<p>Shalom&nbsp;<i>olim</i> &amp; amigos</p>") == "Shalom olim & amigos"


class TestUpdateAllSources:

    async def test_new_articles_saved_and_translated(self):
        aggregator, translator = _aggregator(lambda request: httpx.Response(200, text=FEED))

        summary = await aggregator.update_all_sources()

        assert summary.total_articles == 2
        assert summary.source_results[0].success is True
        assert summary.source_results[0].articles == 2
        assert translator.calls == ["Record aliyah from Latin America", "Knesset session"]

        result = await aggregator.get_recent_articles()
        assert result["total"] == 2
        assert result["hasMore"] is False
        newest = result["articles"][0]
        assert newest["url"] == "https://news.example.com/knesset"
        assert newest["titleTranslated"] == "[es] Knesset session"
        assert newest["isTranslated"] is True

    async def test_second_run_skips_known_urls(self):
        aggregator, _ = _aggregator(lambda request: httpx.Response(200, text=FEED))
        await aggregator.update_all_sources()
        summary = await aggregator.update_all_sources()
        assert summary.total_articles == 0
        assert summary.source_results[0].success is True

    async def test_failing_source_does_not_stop_others(self):
        def handler(request):
            if "broken" in request.url.host:
                return httpx.Response(503)
            return httpx.Response(200, text=FEED)

        sources = [
            NewsSourceConfig("Broken", "https://broken.example.com/feed"),
            NewsSourceConfig("Disabled", "https://news.example.com/off", enabled=False),
            NewsSourceConfig("Example", "https://news.example.com/feed"),
        ]
        aggregator, _ = _aggregator(handler, sources)

        summary = await aggregator.update_all_sources()

        assert [(r.name, r.success) for r in summary.source_results] == [
            ("Broken", False),
            ("Example", True),
        ]
        assert summary.total_articles == 2

    async def test_one_failed_article_does_not_lose_the_others(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=FEED)))
        articles = FlakyArticleStore("https://news.example.com/aliyah-record")
        aggregator = NewsAggregator(
            [NewsSourceConfig("Example", "https://news.example.com/feed")],
            MemoryStore("news_sources"),
            articles,
            StubTranslator(),
            client=client,
        )

        summary = await aggregator.update_all_sources()

        assert summary.total_articles == 1
        assert summary.source_results[0].success is True
        assert summary.source_results[0].articles == 1
        assert await articles.count() == 1

    async def test_search_and_paging(self):
        aggregator, _ = _aggregator(lambda request: httpx.Response(200, text=FEED))
        await aggregator.update_all_sources()

        found = await aggregator.get_recent_articles(search="knesset")
        assert [a["url"] for a in found["articles"]] == ["https://news.example.com/knesset"]
        assert found["total"] == 1

        page = await aggregator.get_recent_articles(limit=1)
        assert page["hasMore"] is True


class TestHealthCheck:

    async def test_unhealthy_without_sources(self):
        aggregator, _ = _aggregator(lambda request: httpx.Response(200, text=FEED))
        health = await aggregator.health_check()
        assert health["status"] == "unhealthy"

    async def test_healthy_after_update(self):
        aggregator, _ = _aggregator(lambda request: httpx.Response(200, text=FEED))
        await aggregator.update_all_sources()
        health = await aggregator.health_check()
        assert health["status"] == "healthy"
        assert health["details"]["activeSources"] == 1
        assert health["details"]["recentArticles"] == 2

    async def test_degraded_with_sources_but_no_articles(self):
        aggregator, _ = _aggregator(lambda request: httpx.Response(200, text="<rss><channel/></rss>"))
        await aggregator.update_all_sources()
        health = await aggregator.health_check()
        assert health["status"] == "degraded"
