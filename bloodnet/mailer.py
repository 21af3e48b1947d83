"""Outbound email. Sending is fire-and-forget: failures are logged, never raised."""
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class Mailer:
    """Minimal SMTP sender; a no-op when no host is configured"""

    def __init__(self, host=None, port=587, user=None, password=None, use_tls=True,
                 sender='no-reply@bloodnet.com', timeout=2.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.MAIL_HOST,
            port=config.MAIL_PORT,
            user=config.MAIL_USER,
            password=config.MAIL_PASSWORD,
            use_tls=config.MAIL_USE_TLS,
            sender=config.MAIL_SENDER,
        )

    @property
    def enabled(self):
        return bool(self.host)

    def build_message(self, to, subject, text, html=None):
        msg = EmailMessage()
        msg['From'] = self.sender
        msg['To'] = to
        msg['Subject'] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype='html')
        return msg

    def send_mail(self, to, subject, text, html=None):
        """Returns True when the message was handed to the SMTP server"""
        if not self.enabled or not to:
            return False
        try:
            msg = self.build_message(to, subject, text, html)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.warning("Email to %s failed: %s", to, e)
            return False
        return True
