"""SMTP delivery for incident notifications."""

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from deploywatch.incident.errors import NotificationError

logger = logging.getLogger(__name__)


class Mailer:
    """Send HTML email through an SMTP relay.

    Without an ``smtp_host`` only the recipient and subject are logged, which
    keeps local development free of mail credentials.
    """

    def __init__(
        self,
        smtp_host,
        from_address,
        smtp_port=587,
        username=None,
        password=None,
        use_tls=True,
        timeout=30,
    ):
        self.smtp_host = smtp_host
        self.from_address = from_address
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to, subject, html_body):
        """
        Deliver one message and return its Message-ID.

        :param to: Recipient address
        :param subject: Subject line
        :param html_body: Rendered HTML body
        :raises NotificationError: when there is no recipient or SMTP fails
        :return: str
        """
        if not to:
            raise NotificationError("No recipient configured for notifications")

        message_id = f"<{uuid.uuid4()}@{self.smtp_host or 'localhost'}>"

        if not self.smtp_host:
            logger.warning(
                "SMTP is not configured, skipping email",
                extra={"to": to, "subject": subject},
            )
            return message_id

        email = MIMEMultipart("alternative")
        email["Subject"] = subject
        email["From"] = self.from_address
        email["To"] = to
        email["Message-ID"] = message_id
        email.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            server = smtplib.SMTP(
                self.smtp_host, self.smtp_port, timeout=self.timeout
            )
            try:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_address, [to], email.as_string())
            finally:
                try:
                    server.quit()
                except smtplib.SMTPException:
                    logger.debug("SMTP quit failed", exc_info=True)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Failed to send email: {exc}") from exc

        logger.info("Email sent: %s", message_id)
        return message_id
