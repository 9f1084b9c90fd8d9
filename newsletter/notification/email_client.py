"""HTTP email gateway client.

Posts one message per call to ``{base_url}/email`` in the Postmark
``{From, To, Subject, HtmlBody, TextBody}`` shape, authenticated by the
``X-Postmark-Server-Token`` header.

Every request carries an explicit timeout so a stalled gateway fails fast
instead of pinning a delivery claim open.  Retry/backoff at the transport
level is deliberately absent: the delivery worker owns the attempt policy.
"""
from __future__ import annotations

import logging
import time

import httpx

from newsletter.core.errors import GatewayError
from newsletter.core.settings import Settings, get_settings
from newsletter.domain.subscriber_email import SubscriberEmail

logger = logging.getLogger(__name__)


class EmailClient:
    """Synchronous client for the transactional email API.

    Parameters
    ----------
    base_url:
        Gateway base URL, must be an absolute ``http(s)`` URL.
    sender:
        Address used in the ``From`` field.
    authorization_token:
        Server token sent with every request.
    timeout_s:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport, used by tests to stub the gateway.
    """

    def __init__(
        self,
        *,
        base_url: str,
        sender: SubscriberEmail,
        authorization_token: str,
        timeout_s: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        try:
            url = httpx.URL(base_url.strip())
        except httpx.InvalidURL as exc:
            raise ValueError(f"Invalid email API URL {base_url!r}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Invalid email API URL {base_url!r}")
        self.base_url = str(url).rstrip("/")
        self.sender = sender
        self.timeout_s = timeout_s
        self._authorization_token = authorization_token
        self._http = httpx.Client(timeout=timeout_s, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EmailClient:
        settings = settings or get_settings()
        return cls(
            base_url=settings.email_base_url,
            sender=SubscriberEmail.parse(settings.email_sender),
            authorization_token=settings.email_authorization_token.get_secret_value(),
            timeout_s=settings.email_timeout_ms / 1000,
        )

    def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> None:
        """Send one message.

        Raises
        ------
        GatewayError
            On timeout, connection failure or a non-2xx gateway response.
        """
        payload = {
            "From": str(self.sender),
            "To": str(recipient),
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body,
        }
        start = time.monotonic()
        try:
            response = self._http.post(
                f"{self.base_url}/email",
                json=payload,
                headers={"X-Postmark-Server-Token": self._authorization_token},
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Email gateway timed out after {self.timeout_s}s") from exc
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"Email gateway rejected the message with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Email gateway HTTP error: {exc}") from exc

        logger.debug("Email gateway accepted message in %d ms", int((time.monotonic() - start) * 1000))

    def close(self) -> None:
        self._http.close()
