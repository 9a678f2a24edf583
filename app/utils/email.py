from email.message import EmailMessage
import logging

import aiosmtplib
from fastapi import Request

from app.config import Settings

logger = logging.getLogger(__name__)


class EmailService:
    """Envoi d'emails via SMTP (aiosmtplib)."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.MAIL_SERVER)

    async def send_email_async(self, subject: str, email_to: str, body: str) -> bool:
        if not self.enabled:
            logger.warning(f"MAIL_SERVER non configuré, email '{subject}' pour {email_to} ignoré")
            return False

        message = EmailMessage()
        message["From"] = self.settings.MAIL_FROM
        message["To"] = email_to
        message["Subject"] = subject
        message.set_content(body)

        await aiosmtplib.send(
            message,
            hostname=self.settings.MAIL_SERVER,
            port=self.settings.MAIL_PORT,
            username=self.settings.MAIL_USERNAME,
            password=self.settings.MAIL_PASSWORD,
            start_tls=True,
        )
        logger.info(f"Email envoyé à {email_to}")
        return True

    async def send_password_reset_email(self, email_to: str, reset_url: str) -> bool:
        subject = "Réinitialisation de mot de passe"
        body = (
            f"Pour réinitialiser votre mot de passe, ouvrez le lien suivant : {reset_url}\n"
            "Si vous n'êtes pas à l'origine de cette demande, ignorez cet email.\n"
            f"Ce lien expire dans {self.settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes."
        )
        return await self.send_email_async(subject, email_to, body)


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email
