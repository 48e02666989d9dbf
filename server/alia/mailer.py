"""
Email Service — transactional mail over SMTP with bilingual default templates.
Stored templates override the defaults; every send is recorded in email_logs.
"""
import logging
import re
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Iterable, Mapping, Optional, Union

import aiosmtplib

from .storage import RecordStore, StorageError, utcnow_iso

logger = logging.getLogger("alia.mail")


@dataclass
class EmailTemplate:
    subject: str
    html: str
    text: str


WELCOME_TEMPLATE = EmailTemplate(
    subject="Bienvenido a Plataforma Aliá | ברוך הבא",
    html="""
<div dir="ltr" style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background: linear-gradient(135deg, #0033CC 0%, #0038B8 100%); padding: 20px; text-align: center;">
    <h1 style="color: white; margin: 0;">ברוך הבא</h1>
    <h2 style="color: #FFD700; margin: 5px 0;">Bienvenido a Plataforma Aliá</h2>
  </div>
  <div style="padding: 30px 20px;">
    <p style="font-size: 16px; line-height: 1.6;">Shalom {{userName}},</p>
    <p style="font-size: 16px; line-height: 1.6;">
      ¡Baruj Hashem! Te damos la bienvenida a nuestra plataforma de Aliá para judíos ortodoxos sionistas.
    </p>
    <ul style="font-size: 16px; line-height: 1.6;">
      <li>Educación halájica interactiva</li>
      <li>Noticias de Israel traducidas al español</li>
      <li>Apoyo personalizado para tu Aliá</li>
      <li>Comunidad de futuros olim</li>
    </ul>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{{dashboardUrl}}" style="background: #0033CC; color: white; padding: 15px 30px; text-decoration: none; border-radius: 8px; font-weight: bold;">
        Acceder a mi Dashboard
      </a>
    </div>
    <p style="font-size: 14px; color: #666; text-align: center; margin-top: 30px;">
      עם ישראל חי • בית ישראל בארץ ישראל
    </p>
  </div>
</div>
""",
    text="Shalom {{userName}}, bienvenido a Plataforma Aliá. Tu camino hacia Israel comienza aquí: {{dashboardUrl}}",
)

DEFAULT_TEMPLATES = {
    "welcome": WELCOME_TEMPLATE,
    "verification": EmailTemplate(
        subject="Verifica tu email | אימות אימייל",
        html="""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2>Verifica tu dirección de email</h2>
  <p>Haz clic en el enlace para verificar tu cuenta:</p>
  <a href="{{verificationUrl}}" style="background: #0033CC; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">
    Verificar Email
  </a>
</div>
""",
        text="Verifica tu email haciendo clic en: {{verificationUrl}}",
    ),
    "password_reset": EmailTemplate(
        subject="Restablecer contraseña | איפוס סיסמה",
        html="""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2>Restablecer contraseña</h2>
  <p>Haz clic en el enlace para restablecer tu contraseña:</p>
  <a href="{{resetUrl}}" style="background: #0033CC; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">
    Restablecer Contraseña
  </a>
</div>
""",
        text="Restablece tu contraseña haciendo clic en: {{resetUrl}}",
    ),
    "newsletter": EmailTemplate(
        subject="Newsletter - Plataforma Aliá",
        html="""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2>Newsletter</h2>
  <div>{{content}}</div>
  <p><a href="{{unsubscribeUrl}}">Cancelar suscripción</a></p>
</div>
""",
        text="{{content}} - Cancelar suscripción: {{unsubscribeUrl}}",
    ),
}

PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


def render(template: str, variables: Mapping[str, Any]) -> str:
    """Replace {{name}} placeholders; missing or empty values render as ""."""
    def substitute(match):
        value = variables.get(match.group(1))
        return "" if value is None else str(value)
    return PLACEHOLDER.sub(substitute, template)


class SmtpTransport:
    """Async SMTP client. Refuses servers that do not offer STARTTLS."""

    def __init__(self, host: str, port: int, username: str = "", password: str = "", timeout: float = 30.0):
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self._timeout = timeout

    async def send(self, message: EmailMessage):
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            start_tls=True,
            username=self._username or None,
            password=self._password or None,
            timeout=self._timeout,
        )
        async with smtp:
            await smtp.send_message(message)


class EmailService:
    """Renders templates and delivers them, logging each attempt."""

    def __init__(
        self,
        transport: SmtpTransport,
        sender: str,
        sender_name: str,
        app_url: str,
        template_store: Optional[RecordStore] = None,
        log_store: Optional[RecordStore] = None,
    ):
        self._transport = transport
        self.sender = sender
        self.sender_name = sender_name
        self.app_url = app_url.rstrip("/")
        self._template_store = template_store
        self._log_store = log_store

    @classmethod
    def from_settings(cls, settings, template_store=None, log_store=None) -> "EmailService":
        transport = SmtpTransport(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
        )
        return cls(
            transport,
            settings.email_from,
            settings.email_from_name,
            settings.app_url,
            template_store=template_store,
            log_store=log_store,
        )

    async def get_template(self, name: str, language: str = "es") -> EmailTemplate:
        if self._template_store is not None:
            try:
                stored = await self._template_store.find_first(
                    {"name": name, "language": language, "isActive": True}
                )
            except StorageError as e:
                logger.warning("Template lookup failed for %s: %s", name, e)
                stored = None
            if stored:
                return EmailTemplate(
                    subject=stored["subject"],
                    html=stored["content"],
                    text=re.sub(r"<[^>]*>", "", stored["content"]),
                )
        return DEFAULT_TEMPLATES.get(name, WELCOME_TEMPLATE)

    def _build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.sender_name, self.sender))
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    async def _log(self, to: str, template_name: str, sent: bool, error: Optional[str] = None):
        if self._log_store is None:
            return
        try:
            await self._log_store.create({
                "toEmail": to,
                "fromEmail": self.sender,
                "subject": template_name,
                "status": "SENT" if sent else "FAILED",
                "errorMessage": error,
                "sentAt": utcnow_iso() if sent else None,
            })
        except StorageError as e:
            logger.warning("Could not record email log: %s", e)

    async def send_email(
        self,
        to: Union[str, Iterable[str]],
        template_name: str,
        variables: Mapping[str, Any],
        language: str = "es",
    ) -> bool:
        """Send one template to each recipient. Stops at the first failure."""
        recipients = [to] if isinstance(to, str) else list(to)
        template = await self.get_template(template_name, language)
        for recipient in recipients:
            message = self._build_message(
                recipient,
                render(template.subject, variables),
                render(template.html, variables),
                render(template.text, variables),
            )
            try:
                await self._transport.send(message)
            except (aiosmtplib.SMTPException, OSError) as e:
                logger.error("SMTP delivery of %s failed: %s", template_name, type(e).__name__)
                await self._log(recipient, template_name, False, "SMTP delivery failed")
                return False
            await self._log(recipient, template_name, True)
            logger.info("Sent %s email", template_name)
        return True

    async def send_welcome_email(self, to: str, user_name: str, language: str = "es") -> bool:
        return await self.send_email(to, "welcome", {
            "userName": user_name,
            "dashboardUrl": f"{self.app_url}/dashboard",
        }, language)

    async def send_verification_email(self, to: str, token: str, language: str = "es") -> bool:
        return await self.send_email(to, "verification", {
            "verificationUrl": f"{self.app_url}/auth/verify?token={token}",
        }, language)

    async def send_password_reset_email(self, to: str, token: str, language: str = "es") -> bool:
        return await self.send_email(to, "password_reset", {
            "resetUrl": f"{self.app_url}/auth/reset-password?token={token}",
        }, language)
