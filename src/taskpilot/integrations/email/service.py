import smtplib
import socket
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
import logging
from typing import List, Optional

from taskpilot.errors import ChannelError, FailureKind
from taskpilot.platform.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

class EmailService:
    def __init__(self, settings: Optional[Settings] = None, timeout: float = 10.0):
        settings = settings or default_settings
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.user = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM_EMAIL
        self.from_name = settings.SMTP_FROM_NAME
        self.use_tls = settings.SMTP_TLS
        self.timeout = timeout

    def send_email(self, to_emails: List[str], subject: str, content: str, html: bool = False) -> None:
        """
        Send an email to a list of recipients.

        Raises ChannelError classified by the SMTP reply: 4xx replies and
        connection problems are transient, authentication failures and 5xx
        replies are permanent.
        """
        if not to_emails:
            raise ChannelError("No email recipients", kind=FailureKind.PERMANENT)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = ", ".join(to_emails)

        part = MIMEText(content, "html" if html else "plain")
        msg.attach(part)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()

                if self.user and self.password:
                    server.login(self.user, self.password)

                server.sendmail(self.from_email, to_emails, msg.as_string())

        except smtplib.SMTPAuthenticationError as e:
            raise ChannelError(f"SMTP authentication failed: {e}", kind=FailureKind.PERMANENT, status_code=e.smtp_code)
        except smtplib.SMTPRecipientsRefused as e:
            raise ChannelError(f"Recipients refused: {list(e.recipients)}", kind=FailureKind.PERMANENT)
        except smtplib.SMTPResponseException as e:
            kind = FailureKind.TRANSIENT if 400 <= e.smtp_code < 500 else FailureKind.PERMANENT
            raise ChannelError(f"SMTP error {e.smtp_code}: {e.smtp_error!r}", kind=kind, status_code=e.smtp_code)
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, socket.timeout, OSError) as e:
            raise ChannelError(f"SMTP connection failed: {e}", kind=FailureKind.TRANSIENT)

        logger.info(f"Email sent to {to_emails}")
