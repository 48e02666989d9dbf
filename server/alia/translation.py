"""
Translation Service — DeepL REST API with Google Translate v2 as fallback.
Translates Israeli news (Hebrew/English) into Spanish for the platform.
"""
from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger("alia.translation")

DEEPL_API_URL = "https://api.deepl.com/v2/translate"
DEEPL_FREE_API_URL = "https://api-free.deepl.com/v2/translate"
GOOGLE_TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"
GOOGLE_DETECT_URL = GOOGLE_TRANSLATE_URL + "/detect"

# DeepL language codes; anything missing goes to Google
DEEPL_SOURCE_LANGS = {"en": "EN", "es": "ES", "he": "HE", "ar": "AR", "fr": "FR", "ru": "RU"}
DEEPL_TARGET_LANGS = {"en": "EN-US", "es": "ES", "he": "HE", "ar": "AR", "fr": "FR", "ru": "RU"}

HEBREW_PATTERN = re.compile(r"[\u0590-\u05FF]")
ARABIC_PATTERN = re.compile(r"[\u0600-\u06FF]")

MAX_TEXT_LENGTH = 5000
SUMMARY_LENGTH = 300
FULL_CONTENT_LIMIT = 3000


class TranslationError(Exception):
    """A provider rejected or failed a translation request."""


@dataclass
class TranslationResult:
    translated_text: str
    detected_language: str
    confidence: float


@dataclass
class TranslatedArticle:
    title: str
    summary: str
    content: Optional[str] = None


def clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()[:MAX_TEXT_LENGTH]


class TranslationService:
    """Translates text via DeepL or Google, with an in-memory TTL cache."""

    def __init__(
        self,
        provider: str = "deepl",
        deepl_api_key: str = "",
        google_api_key: str = "",
        cache_ttl_seconds: float = 24 * 60 * 60,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.provider = provider
        self._deepl_api_key = deepl_api_key
        self._google_api_key = google_api_key
        self._cache_ttl = cache_ttl_seconds
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._cache: Dict[str, Tuple[str, float, float]] = {}
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings) -> "TranslationService":
        return cls(
            provider=settings.translation_provider,
            deepl_api_key=settings.deepl_api_key,
            google_api_key=settings.google_translate_api_key,
            cache_ttl_seconds=settings.translation_cache_ttl_hours * 3600,
            timeout=settings.translation_timeout_seconds,
        )

    async def initialize(self):
        if self.provider == "deepl" and not self._deepl_api_key:
            logger.warning("DEEPL_API_KEY not configured, switching to Google Translate")
            self.provider = "google"
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        logger.info("Translation service initialized (provider=%s)", self.provider)

    async def shutdown(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            logger.info("Translation service shut down")

    # --- cache -------------------------------------------------------------

    @staticmethod
    def _cache_key(text: str, from_lang: str, to_lang: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"{from_lang}:{to_lang}:{digest}"

    def _get_cached(self, key: str) -> Optional[str]:
        cached = self._cache.get(key)
        if cached is None:
            return None
        translation, stored_at, _ = cached
        if time.monotonic() - stored_at > self._cache_ttl:
            del self._cache[key]
            return None
        return translation

    def _set_cached(self, key: str, translation: str, confidence: float):
        self._cache[key] = (translation, time.monotonic(), confidence)

    def clear_cache(self):
        self._cache.clear()

    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "cacheSize": len(self._cache),
            "provider": self.provider,
            "cacheHitRatio": self._hits / lookups if lookups else 0.0,
        }

    # --- providers ---------------------------------------------------------

    async def _translate_with_deepl(self, text: str, from_lang: str, to_lang: str) -> TranslationResult:
        target = DEEPL_TARGET_LANGS.get(to_lang)
        if target is None:
            raise TranslationError(f"DeepL does not support target language {to_lang}")
        api_url = DEEPL_FREE_API_URL if self._deepl_api_key.endswith(":fx") else DEEPL_API_URL
        payload = {
            "text": [text],
            "target_lang": target,
            "preserve_formatting": True,
        }
        source = DEEPL_SOURCE_LANGS.get(from_lang)
        if source:
            payload["source_lang"] = source

        resp = await self._client.post(
            api_url,
            headers={"Authorization": f"DeepL-Auth-Key {self._deepl_api_key}"},
            json=payload,
        )
        if resp.status_code != 200:
            raise TranslationError(f"DeepL API error {resp.status_code}: {resp.text[:200]}")
        translation = resp.json()["translations"][0]
        detected = translation.get("detected_source_language", "").lower() or from_lang
        return TranslationResult(translation["text"], detected, 0.95)

    async def _translate_with_google(self, text: str, from_lang: str, to_lang: str) -> TranslationResult:
        resp = await self._client.post(
            GOOGLE_TRANSLATE_URL,
            params={"key": self._google_api_key},
            json={"q": text, "source": from_lang, "target": to_lang, "format": "text"},
        )
        if resp.status_code != 200:
            raise TranslationError(f"Google Translate API error {resp.status_code}: {resp.text[:200]}")
        translation = resp.json()["data"]["translations"][0]
        detected = translation.get("detectedSourceLanguage") or from_lang
        return TranslationResult(translation["translatedText"], detected, 0.85)

    async def _detect_with_google(self, text: str) -> str:
        try:
            resp = await self._client.post(
                GOOGLE_DETECT_URL,
                params={"key": self._google_api_key},
                json={"q": text[:1000]},
            )
            if resp.status_code != 200:
                logger.error("Google detect API error %d", resp.status_code)
                return "en"
            return resp.json()["data"]["detections"][0][0].get("language") or "en"
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error("Language detection error: %s", e)
            return "en"

    async def detect_language(self, text: str) -> str:
        if HEBREW_PATTERN.search(text):
            return "he"
        if ARABIC_PATTERN.search(text):
            return "ar"
        if self.provider == "google" and self._google_api_key:
            return await self._detect_with_google(text)
        # Israeli outlets publish in English when not in Hebrew
        return "en"

    # --- public API --------------------------------------------------------

    async def translate(self, text: str, from_lang: str, to_lang: str) -> TranslationResult:
        """Translate text. Never raises; returns the input with confidence 0.0 on failure."""
        if not text or not text.strip():
            return TranslationResult("", from_lang, 1.0)
        if from_lang == to_lang:
            return TranslationResult(text, from_lang, 1.0)

        cleaned = clean_text(text)
        key = self._cache_key(cleaned, from_lang, to_lang)
        cached = self._get_cached(key)
        if cached is not None:
            self._hits += 1
            return TranslationResult(cached, from_lang, 0.9)
        self._misses += 1

        try:
            if self.provider == "deepl":
                try:
                    result = await self._translate_with_deepl(cleaned, from_lang, to_lang)
                except (TranslationError, httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                    logger.warning("DeepL failed, falling back to Google: %s", e)
                    result = await self._translate_with_google(cleaned, from_lang, to_lang)
            else:
                result = await self._translate_with_google(cleaned, from_lang, to_lang)
        except httpx.TimeoutException:
            logger.error("Translation timeout for: %s", cleaned[:40])
            return TranslationResult(text, from_lang, 0.0)
        except (TranslationError, httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error("Translation error: %s", e)
            return TranslationResult(text, from_lang, 0.0)

        self._set_cached(key, result.translated_text, result.confidence)
        return result

    async def translate_article(
        self,
        title: str,
        content: str,
        from_lang: Optional[str] = None,
        to_lang: str = "es",
    ) -> TranslatedArticle:
        """Translate a title, a short summary and, for short pieces, the full body."""
        source = from_lang or await self.detect_language(f"{title} {content}")

        title_result = await self.translate(title, source, to_lang)

        summary = content[:SUMMARY_LENGTH] + ("..." if len(content) > SUMMARY_LENGTH else "")
        summary_result = await self.translate(summary, source, to_lang)

        translated_content = None
        if 0 < len(content) < FULL_CONTENT_LIMIT:
            content_result = await self.translate(content, source, to_lang)
            translated_content = content_result.translated_text

        return TranslatedArticle(
            title=title_result.translated_text,
            summary=summary_result.translated_text,
            content=translated_content,
        )

    async def translate_batch(self, texts: List[str], from_lang: str, to_lang: str) -> List[str]:
        results = []
        for text in texts:
            result = await self.translate(text, from_lang, to_lang)
            results.append(result.translated_text)
        return results

    async def health_check(self) -> dict:
        result = await self.translate("Hello world", "en", "es")
        healthy = result.confidence > 0 and bool(result.translated_text)
        return {
            "status": "healthy" if healthy else "degraded",
            "provider": self.provider,
            "details": {
                "cacheSize": len(self._cache),
                "testTranslation": result.translated_text,
                "confidence": result.confidence,
            },
        }
