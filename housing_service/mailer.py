import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

from . import config
from .errors import UpstreamError

logger = structlog.get_logger(__name__)


class Mailer:
    """
    Delivers verification codes over SMTP.

    Without credentials the code is written to the log instead, which is
    the development fallback.
    """

    def __init__(
        self,
        user: Optional[str] = None,
        password: Optional[str] = None,
        host: str = config.EMAIL_HOST,
        port: int = config.EMAIL_PORT,
        sender: str = config.EMAIL_FROM,
    ):
        self.user = user
        self.password = password
        self.host = host
        self.port = port
        self.sender = sender

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def build_message(self, to: str, code: str) -> EmailMessage:
        minutes = config.VERIFICATION_CODE_TTL_MINUTES
        msg = EmailMessage()
        msg["Subject"] = "Your Verification Code"
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(
            f"Your verification code is: {code}. It expires in {minutes} minutes."
        )
        msg.add_alternative(
            f"""\
<div style="font-family: Arial, sans-serif; padding: 20px;">
  <h2>Verify your login</h2>
  <p>Your verification code is:</p>
  <h1 style="letter-spacing: 5px;">{code}</h1>
  <p>This code expires in {minutes} minutes.</p>
  <p>If you didn't request this code, you can safely ignore this email.</p>
</div>
""",
            subtype="html",
        )
        return msg

    def send_verification_code(self, to: str, code: str) -> None:
        """
        Send ``code`` to ``to``.

        Raises
        ------
        UpstreamError
            If the SMTP server refuses the login or the message.
        """
        if not self.configured:
            if config.IS_PRODUCTION:
                logger.warning("mail_not_configured", to=to)
            else:
                logger.info("verification_code_dev_fallback", to=to, code=code)
            return

        message = self.build_message(to, code)
        try:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=10) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("verification_email_failed", to=to, error=str(exc))
            raise UpstreamError("Error sending verification code")

        logger.info("verification_email_sent", to=to)


def get_mailer() -> Mailer:
    return Mailer(user=config.EMAIL_USER, password=config.EMAIL_PASS)
