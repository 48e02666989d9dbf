"""Tests for the translation service."""
import json

import httpx
import pytest

from alia.translation import DEEPL_FREE_API_URL, TranslationService, clean_text


def _deepl_ok(text="Hola mundo", detected="EN"):
    return httpx.Response(200, json={"translations": [{"detected_source_language": detected, "text": text}]})


def _google_ok(text="Hola mundo"):
    return httpx.Response(200, json={"data": {"translations": [{"translatedText": text}]}})


def _service(handler, **kwargs) -> TranslationService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("deepl_api_key", "deepl-key")
    kwargs.setdefault("google_api_key", "google-key")
    return TranslationService(client=client, **kwargs)


class TestTranslate:

    async def test_deepl_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            return _deepl_ok()

        service = _service(handler)
        await service.initialize()
        result = await service.translate("Hello   world\n", "en", "es")

        assert result.translated_text == "Hola mundo"
        assert result.confidence == 0.95
        assert result.detected_language == "en"
        body = json.loads(calls[0].content)
        assert body["text"] == ["Hello world"]
        assert body["target_lang"] == "ES"
        assert body["source_lang"] == "EN"
        assert calls[0].headers["authorization"] == "DeepL-Auth-Key deepl-key"

    async def test_free_key_uses_free_host(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return _deepl_ok()

        service = _service(handler, deepl_api_key="abc:fx")
        await service.initialize()
        await service.translate("Hello", "en", "es")
        assert urls == [DEEPL_FREE_API_URL]

    async def test_deepl_failure_falls_back_to_google(self):
        def handler(request):
            if "deepl" in request.url.host:
                return httpx.Response(456, text="quota exceeded")
            return _google_ok("Hola desde Google")

        service = _service(handler)
        await service.initialize()
        result = await service.translate("Hello", "en", "es")

        assert result.translated_text == "Hola desde Google"
        assert result.confidence == 0.85

    async def test_total_failure_returns_original(self):
        def handler(request):
            return httpx.Response(500, text="down")

        service = _service(handler)
        await service.initialize()
        result = await service.translate("Hello", "en", "es")

        assert result.translated_text == "Hello"
        assert result.confidence == 0.0

    async def test_missing_deepl_key_switches_to_google(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return _google_ok()

        service = _service(handler, deepl_api_key="")
        await service.initialize()
        await service.translate("Hello", "en", "es")

        assert service.provider == "google"
        assert hosts == ["translation.googleapis.com"]

    async def test_cache_hit(self):
        calls = []

        def handler(request):
            calls.append(request)
            return _deepl_ok()

        service = _service(handler)
        await service.initialize()
        await service.translate("Hello world", "en", "es")
        cached = await service.translate("Hello world", "en", "es")

        assert len(calls) == 1
        assert cached.translated_text == "Hola mundo"
        assert cached.confidence == 0.9
        assert service.stats() == {"cacheSize": 1, "provider": "deepl", "cacheHitRatio": 0.5}

        service.clear_cache()
        assert service.stats()["cacheSize"] == 0

    async def test_expired_cache_entry_is_refetched(self):
        calls = []

        def handler(request):
            calls.append(request)
            return _deepl_ok()

        service = _service(handler, cache_ttl_seconds=-1)
        await service.initialize()
        await service.translate("Hello", "en", "es")
        await service.translate("Hello", "en", "es")
        assert len(calls) == 2

    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_text_short_circuits(self, text):
        service = _service(lambda request: pytest.fail("no request expected"))
        result = await service.translate(text, "en", "es")
        assert result.translated_text == ""
        assert result.confidence == 1.0

    async def test_same_language_returns_input(self):
        service = _service(lambda request: pytest.fail("no request expected"))
        result = await service.translate("Hola", "es", "es")
        assert result.translated_text == "Hola"
        assert result.confidence == 1.0


class TestArticles:

    async def test_detects_hebrew(self):
        service = _service(lambda request: pytest.fail("no request expected"))
        assert await service.detect_language("שלום ירושלים") == "he"
        assert await service.detect_language("مرحبا") == "ar"
        assert await service.detect_language("Hello Jerusalem") == "en"

    async def test_translate_article_summary_and_content(self):
        sent = []

        def handler(request):
            text = json.loads(request.content)["text"][0]
            sent.append(text)
            return _deepl_ok(f"ES:{text[:10]}")

        service = _service(handler)
        await service.initialize()
        content = "a" * 400
        article = await service.translate_article("Breaking news", content, "en")

        assert article.title == "ES:Breaking n"
        assert sent[1] == "a" * 300 + "..."
        assert article.content is not None
        assert len(sent) == 3

    async def test_long_article_content_not_translated(self):
        service = _service(lambda request: _deepl_ok())
        await service.initialize()
        article = await service.translate_article("Title", "b" * 3000, "en")
        assert article.content is None

    async def test_translate_batch(self):
        service = _service(lambda request: _deepl_ok(json.loads(request.content)["text"][0].upper()))
        await service.initialize()
        assert await service.translate_batch(["uno", "dos"], "en", "es") == ["UNO", "DOS"]

    async def test_health_check_degraded_when_provider_down(self):
        service = _service(lambda request: httpx.Response(503))
        await service.initialize()
        health = await service.health_check()
        assert health["status"] == "degraded"


def test_clean_text_caps_length():
    assert clean_text("  a \n\n b  ") == "a b"
    assert len(clean_text("x" * 6000)) == 5000


def test_service_modules_keep_their_docstrings():
    from alia import news, translation

    assert translation.__doc__
    assert news.__doc__
