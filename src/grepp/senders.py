"""
Notification Channel Senders

One sender per delivery channel. A sender returns True when the message
was accepted, False when it was rejected, and raises DeliveryError when
the channel could not be reached at all.
"""

import contextlib
import hashlib
import hmac
import json
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional, Protocol, runtime_checkable

import httpx

from grepp.exceptions import DeliveryError
from grepp.models import NotificationPayload

logger = logging.getLogger("grepp.senders")

USER_AGENT = "grepp-dns-alert/1.1"
SIGNATURE_HEADER = "X-DnsAlert-Signature"
TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
SMS_MAX_LENGTH = 1600


@runtime_checkable
class ChannelSender(Protocol):
    """Interface implemented by every delivery channel."""

    def send(self, recipient: str, payload: NotificationPayload) -> bool:
        ...


# =============================================================================
# Email
# =============================================================================

class EmailSender:
    """
    SMTP sender.

    ``encryption`` is ``"ssl"`` for implicit TLS (port 465), ``"tls"`` for
    STARTTLS, anything else for a plain connection.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        encryption: str = "tls",
        from_email: str = "dns-alerts@localhost",
        from_name: str = "DNS Alert System",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.encryption = (encryption or "").lower()
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def build_message(self, recipient: str, payload: NotificationPayload) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = payload.subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = recipient

        if payload.html:
            text = payload.data.get("text") or payload.text
            msg.attach(MIMEText(text, "plain", "utf-8"))
            msg.attach(MIMEText(payload.body, "html", "utf-8"))
        else:
            msg.attach(MIMEText(payload.body, "plain", "utf-8"))
        return msg

    def _connect(self) -> smtplib.SMTP:
        if self.encryption == "ssl":
            return smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=ssl.create_default_context()
            )

        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        if self.encryption == "tls":
            server.starttls(context=ssl.create_default_context())
        return server

    def send(self, recipient: str, payload: NotificationPayload) -> bool:
        msg = self.build_message(recipient, payload)
        try:
            server = self._connect()
            try:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, [recipient], msg.as_string())
            finally:
                with contextlib.suppress(smtplib.SMTPException):
                    server.quit()
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(f"SMTP server refused {recipient}: {e}")
            return False
        except smtplib.SMTPException as e:
            raise DeliveryError(f"SMTP error: {e}") from e
        except OSError as e:
            raise DeliveryError(f"SMTP connection error: {e}") from e

        logger.info(f"Email sent to {recipient}: {payload.subject}")
        return True


# =============================================================================
# SMS
# =============================================================================

class TwilioSmsSender:
    """SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        api_url: str = TWILIO_API_URL,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/Accounts/{self.account_sid}/Messages.json"

    def send(self, recipient: str, payload: NotificationPayload) -> bool:
        data = {
            "To": recipient,
            "From": self.from_number,
            "Body": payload.text[:SMS_MAX_LENGTH],
        }
        try:
            with httpx.Client(timeout=self.timeout, headers={"User-Agent": USER_AGENT}) as client:
                response = client.post(
                    self.messages_url,
                    data=data,
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Twilio request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Twilio rejected SMS to {recipient}: HTTP {response.status_code} {response.text[:200]}")
            return False

        logger.info(f"SMS sent to {recipient}")
        return True


# =============================================================================
# Webhook
# =============================================================================

def sign_body(body: bytes, secret_key: str) -> str:
    """HMAC-SHA256 signature in the ``sha256=<hex>`` header format."""
    digest = hmac.new(secret_key.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookSender:
    """
    JSON POST to the recipient URL.

    When a secret key is configured the raw body is signed and the signature
    sent in the ``X-DnsAlert-Signature`` header. Any 2xx status is success.
    """

    def __init__(self, timeout: float = 10.0, verify_ssl: bool = True, secret_key: Optional[str] = None):
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.secret_key = secret_key

    def send(self, recipient: str, payload: NotificationPayload) -> bool:
        body = json.dumps(payload.to_dict(), ensure_ascii=False, default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.secret_key:
            headers[SIGNATURE_HEADER] = sign_body(body, self.secret_key)

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.post(recipient, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Webhook {recipient} answered HTTP {response.status_code}")
            return False
        return True
