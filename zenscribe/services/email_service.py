import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from loguru import logger
from starlette.concurrency import run_in_threadpool

from zenscribe.core.config import settings


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.EMAILS_FROM_EMAIL
        self.from_name = settings.EMAILS_FROM_NAME

    @property
    def is_configured(self) -> bool:
        return all([self.smtp_server, self.smtp_port, self.smtp_user, self.smtp_password, self.from_email])

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """
        Send an email

        Args:
            to_email: Recipient email
            subject: Email subject
            html_content: HTML content
            text_content: Plain text content (optional)

        Returns:
            True if the email was sent successfully, False otherwise
        """
        # Skip sending emails if SMTP is not configured
        if not self.is_configured:
            logger.warning("SMTP not configured, skipping email sending")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            await run_in_threadpool(self._deliver, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False

        logger.info(f"Email sent to {to_email}")
        return True

    def _deliver(self, to_email: str, message: str) -> None:
        with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
            if settings.SMTP_TLS:
                server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.sendmail(str(self.from_email), [to_email], message)

    async def send_magic_link(self, email: str, token: str) -> bool:
        """Send a one-time login link"""
        login_url = f"{settings.FRONTEND_URL}/auth/magic-link?token={token}"

        html_content = f"""
        <p>Non è stato possibile completare l'accesso a ZenScribe.</p>
        <p>Usa questo link per accedere:</p>
        <p><a href="{login_url}">{login_url}</a></p>
        <p>Il link scade tra {settings.MAGIC_LINK_EXPIRE_MINUTES} minuti.</p>
        """

        text_content = f"""
        Non è stato possibile completare l'accesso a ZenScribe.

        Usa questo link per accedere:
        {login_url}

        Il link scade tra {settings.MAGIC_LINK_EXPIRE_MINUTES} minuti.
        """

        return await self.send_email(
            to_email=email,
            subject="Il tuo link di accesso a ZenScribe",
            html_content=html_content,
            text_content=text_content,
        )

    async def send_password_reset(self, email: str, token: str) -> bool:
        """Send password reset email"""
        reset_url = f"{settings.FRONTEND_URL}/auth/reset-password?token={token}"

        html_content = f"""
        <p>Hai richiesto il ripristino della password del tuo account ZenScribe.</p>
        <p>Clicca sul link per impostare una nuova password:</p>
        <p><a href="{reset_url}">{reset_url}</a></p>
        <p>Il link scade tra 24 ore. Se non hai fatto tu la richiesta, ignora questa email.</p>
        """

        text_content = f"""
        Hai richiesto il ripristino della password del tuo account ZenScribe.

        Visita questo indirizzo per impostare una nuova password:
        {reset_url}

        Il link scade tra 24 ore. Se non hai fatto tu la richiesta, ignora questa email.
        """

        return await self.send_email(
            to_email=email,
            subject="Ripristino password ZenScribe",
            html_content=html_content,
            text_content=text_content,
        )


email_service = EmailService()
