"""
Plataforma Aliá — FastAPI Server
Registration with encrypted PII, translated Israeli news, halakha quizzes
and transactional email.
"""
import hashlib
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import EmailStr, TypeAdapter, ValidationError

from .audit import AuditLogger
from .config import Settings, settings
from .mailer import EmailService
from .news import NewsAggregator
from .profiles import PROFILE_KEY, PROFILE_TABLE, EncryptedProfileStore
from .quiz import score_attempt
from .schemas import ProfileUpdate, QuizAttemptRequest, RegisterRequest, TranslateRequest
from .security.encryption import (
    AuthenticationError,
    ConfigurationError,
    EncryptionError,
    FieldEncryptionService,
)
from .security.passwords import generate_secure_token, hash_password
from .storage import StorageError, StoreFactory
from .translation import TranslationService

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger("alia")

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
_email_adapter = TypeAdapter(EmailStr)


def create_app(config: Settings = settings) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app):
        logger.info("Plataforma Aliá server starting...")
        if not config.master_key:
            logger.warning("ENCRYPTION_KEY not configured — profile writes will be refused")
        app.state.encryption = FieldEncryptionService.from_settings(config)
        app.state.stores = StoreFactory.from_settings(config)
        stores = app.state.stores
        app.state.users = stores.table("users")
        app.state.profiles = EncryptedProfileStore(
            stores.table(PROFILE_TABLE, key=PROFILE_KEY), app.state.encryption
        )
        app.state.verification_tokens = stores.table("verification_tokens")
        app.state.quiz_topics = stores.table("quiz_topics")
        app.state.quiz_attempts = stores.table("quiz_attempts")
        app.state.translation = TranslationService.from_settings(config)
        await app.state.translation.initialize()
        app.state.news = NewsAggregator.from_settings(
            config, stores.table("news_sources"), stores.table("articles"), app.state.translation
        )
        await app.state.news.initialize()
        app.state.mailer = EmailService.from_settings(
            config, stores.table("email_templates"), stores.table("email_logs")
        )
        app.state.audit = AuditLogger.from_settings(config)
        logger.info("All services initialized")
        yield
        await app.state.news.shutdown()
        await app.state.translation.shutdown()
        await app.state.stores.shutdown()
        logger.info("Plataforma Aliá server stopped")

    app = FastAPI(
        title="Plataforma Aliá",
        description="Aliyah education and information platform",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI):

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Datos inválidos", "details": details})

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        logger.error("Encryption misconfigured: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Error interno del servidor"})

    @app.exception_handler(EncryptionError)
    async def encryption_error(request: Request, exc: EncryptionError):
        logger.error("Encryption failure on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Error interno del servidor"})

    @app.exception_handler(AuthenticationError)
    async def authentication_error(request: Request, exc: AuthenticationError):
        logger.warning("Unreadable encrypted data on %s", request.url.path)
        return JSONResponse(status_code=422, content={"error": "Datos cifrados ilegibles"})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        return JSONResponse(status_code=503, content={"error": "Servicio de datos no disponible"})


def _register_routes(app: FastAPI):

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "Plataforma Aliá",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- registration & profiles -------------------------------------------

    @app.post("/api/auth/register")
    async def register(body: RegisterRequest):
        state = app.state
        email = body.email.lower()

        if await state.users.find_first({"email": email}):
            return JSONResponse(status_code=400, content={"error": "Este email ya está registrado"})

        user_id = str(uuid.uuid4())
        # sealed before any write: an encryption failure leaves no rows behind
        profile = state.profiles.seal({PROFILE_KEY: user_id, **body.profile_data()})
        user = await state.users.create({
            "id": user_id,
            "email": email,
            "password": hash_password(body.password),
            "role": "USER",
            "status": "PENDING",
        })
        token = generate_secure_token()
        try:
            await state.profiles.create_sealed(profile)
            await state.verification_tokens.create({
                "userId": user_id,
                "tokenHash": hashlib.sha256(token.encode("utf-8")).hexdigest(),
                "expiresAt": (datetime.now(timezone.utc) + VERIFICATION_TOKEN_TTL).isoformat(),
            })
        except StorageError:
            logger.error("Registration write failed, removing user %s", user_id[:8])
            await state.profiles.delete(user_id)
            await state.users.delete(user_id)
            raise

        if not await state.mailer.send_verification_email(email, token):
            logger.warning("Verification email not delivered for user %s", user_id[:8])

        await state.audit.log("user_registered", user_id, {"status": "PENDING"})
        return {
            "success": True,
            "message": "Usuario registrado exitosamente. Por favor verifica tu email.",
            "user": {"id": user["id"], "email": user["email"], "status": user["status"]},
        }

    @app.get("/api/auth/register")
    async def email_available(email: Optional[str] = None):
        try:
            normalized = _email_adapter.validate_python(email or "")
        except ValidationError:
            return JSONResponse(status_code=400, content={"error": "Email inválido"})
        existing = await app.state.users.find_first({"email": normalized.lower()})
        return {
            "available": existing is None,
            "message": "Email ya registrado" if existing else "Email disponible",
        }

    @app.get("/api/profiles/{user_id}")
    async def get_profile(user_id: str):
        profile = await app.state.profiles.find_unique(user_id)
        if profile is None:
            raise HTTPException(status_code=404, detail="Perfil no encontrado")
        return profile

    @app.patch("/api/profiles/{user_id}")
    async def update_profile(user_id: str, body: ProfileUpdate):
        changes = body.model_dump(exclude_unset=True)
        profile = await app.state.profiles.update(user_id, changes)
        if profile is None:
            raise HTTPException(status_code=404, detail="Perfil no encontrado")
        await app.state.audit.log("profile_updated", user_id, {"fields": sorted(changes)})
        return profile

    # --- translation --------------------------------------------------------

    @app.post("/api/translate")
    async def translate(body: TranslateRequest):
        result = await app.state.translation.translate(body.text, body.from_lang, body.to_lang)
        return {
            "translatedText": result.translated_text,
            "detectedLanguage": result.detected_language,
            "confidence": result.confidence,
        }

    # --- news ---------------------------------------------------------------

    @app.get("/api/news")
    async def list_news(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        search: Optional[str] = None,
        source_id: Optional[List[str]] = Query(None, alias="sourceId"),
    ):
        return await app.state.news.get_recent_articles(
            limit=limit, offset=offset, source_ids=source_id, search=search
        )

    @app.post("/api/news/refresh")
    async def refresh_news():
        summary = await app.state.news.update_all_sources()
        await app.state.audit.log("news_refreshed", "system", {"articles": summary.total_articles})
        return {
            "totalArticles": summary.total_articles,
            "sourceResults": [
                {"name": r.name, "articles": r.articles, "success": r.success}
                for r in summary.source_results
            ],
        }

    @app.get("/api/news/health")
    async def news_health():
        return await app.state.news.health_check()

    # --- quiz ---------------------------------------------------------------

    @app.post("/api/quiz/{topic_id}/attempts")
    async def submit_quiz(topic_id: str, body: QuizAttemptRequest):
        topic = await app.state.quiz_topics.find_unique(topic_id)
        if topic is None:
            raise HTTPException(status_code=404, detail="Tema no encontrado")
        answers = [a.model_dump() for a in body.answers]
        result = score_attempt(topic, answers, body.timeSpent)
        await app.state.quiz_attempts.create({
            "topicId": topic_id,
            "score": result.score,
            "passed": result.passed,
            "timeSpent": result.time_spent,
            "answers": answers,
        })
        return result.to_dict()


app = create_app()
