"""Plataforma Aliá server configuration via environment variables."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings
from typing import List, Optional


DEFAULT_NEWS_SOURCES = [
    {
        "name": "Times of Israel",
        "url": "https://www.timesofisrael.com/feed/",
        "type": "rss",
        "enabled": True,
        "category": "general",
    },
    {
        "name": "Jerusalem Post",
        "url": "https://www.jpost.com/rss/rssfeedsarticles.aspx",
        "type": "rss",
        "enabled": True,
        "category": "general",
    },
    {
        "name": "Haaretz",
        "url": "https://www.haaretz.com/cmlink/1.268323",
        "type": "rss",
        "enabled": True,
        "category": "general",
    },
    {
        "name": "Israel National News",
        "url": "https://www.israelnationalnews.com/News.aspx/rss",
        "type": "rss",
        "enabled": True,
        "category": "religious",
    },
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # Field encryption (>= 32 chars, never logged)
    encryption_key: Optional[SecretStr] = None

    # Supabase
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Translation
    translation_provider: str = "deepl"
    deepl_api_key: str = ""
    google_translate_api_key: str = ""
    translation_cache_ttl_hours: int = 24
    translation_timeout_seconds: float = 30.0

    # Email (SMTP)
    email_from: str = "noreply@plataforma-alia.com"
    email_from_name: str = "Plataforma Aliá Sionista"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    # News
    news_fetch_timeout_seconds: float = 10.0
    news_sources: List[dict] = DEFAULT_NEWS_SOURCES

    # Server
    app_url: str = "http://localhost:3000"
    server_port: int = 8000
    log_level: str = "INFO"
    supported_languages: str = "es,he,en"

    @property
    def supported_language_list(self) -> List[str]:
        return [lang.strip() for lang in self.supported_languages.split(",")]

    @property
    def master_key(self) -> Optional[str]:
        if self.encryption_key is None:
            return None
        return self.encryption_key.get_secret_value()

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    class Config:
        env_file = ("../.env", ".env")
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
