"""
Email Client - sends newsletter emails over a Postmark-compatible HTTP API.

One POST per send, no retries: the delivery worker makes a single attempt per
queue row and drops the row afterwards either way.
"""
from __future__ import annotations

import httpx

from mailroom.core.config import settings
from mailroom.core.exceptions import EmailTransportError, ServiceTimeoutError
from mailroom.core.logging import get_logger
from mailroom.core.validation import EmailValidator

logger = get_logger(__name__)


class EmailClient:
    """
    Thin async client for the email API.

    Holds one httpx.AsyncClient for its lifetime; close it with aclose() or use
    the client as an async context manager.
    """

    def __init__(
        self,
        base_url: str,
        sender: str,
        authorization_token: str,
        timeout: float,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._sender = sender
        self._authorization_token = authorization_token
        self._timeout = timeout
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls) -> "EmailClient":
        return cls(
            base_url=settings.EMAIL_BASE_URL,
            sender=settings.EMAIL_SENDER,
            authorization_token=settings.EMAIL_AUTHORIZATION_TOKEN,
            timeout=settings.EMAIL_TIMEOUT_MILLISECONDS / 1000,
        )

    @property
    def sender(self) -> str:
        return self._sender

    async def send_email(
        self,
        recipient: str,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        """
        Send one email.

        Raises:
            EmailTransportError: network failure or a non-2xx reply
            ServiceTimeoutError: the API did not answer within the client timeout
        """
        payload = {
            "From": self._sender,
            "To": recipient,
            "Subject": subject,
            "HtmlBody": html_content,
            "TextBody": text_content,
        }
        try:
            response = await self._http.post(
                f"{self._base_url}/email",
                json=payload,
                headers={"X-Postmark-Server-Token": self._authorization_token},
            )
        except httpx.TimeoutException as exc:
            raise ServiceTimeoutError("email", self._timeout) from exc
        except httpx.HTTPError as exc:
            raise EmailTransportError(
                f"request failed: {exc.__class__.__name__}",
                details={"recipient": EmailValidator.mask(recipient)},
            ) from exc

        if not response.is_success:
            raise EmailTransportError.from_response(
                "email",
                response,
                message=f"/email returned status {response.status_code}",
            )

        logger.debug(
            "Email accepted by API",
            extra_data={"recipient": EmailValidator.mask(recipient)},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "EmailClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
