"""HTTP collaborators: the WhatsApp Cloud API transport and the webhook caller."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from litestar_flows.core.models import WebhookResponse
from litestar_flows.exceptions import (
    InvalidRecipientError,
    ProviderError,
    RateLimitedError,
    WebhookConnectionError,
    WebhookTimeoutError,
)

if TYPE_CHECKING:
    from litestar_flows.core.models import OutboundMessage, WebhookRequest

__all__ = ("CloudApiTransport", "HttpxWebhookCaller")

logger = structlog.get_logger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"
# Cloud API error codes meaning the recipient cannot be messaged.
RECIPIENT_ERROR_CODES = frozenset({131026, 131030, 131021})


class CloudApiTransport:
    """Sends messages through the WhatsApp Cloud API.

    Attributes:
        access_token: Bearer token of the WhatsApp Business account.
        phone_number_id: Sending phone number ID.
        api_version: Graph API version.

    Example:
        >>> transport = CloudApiTransport(access_token="...", phone_number_id="1234")
        >>> delivery_id = await transport.send(OutboundMessage(to="5511999999999", message_type="text", content={"body": "Hi"}))
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v21.0",
        client: httpx.AsyncClient | None = None,
        base_url: str = GRAPH_API_URL,
    ) -> None:
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        self._url = f"{base_url}/{api_version}/{phone_number_id}/messages"

    @staticmethod
    def build_payload(message: OutboundMessage) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": message.to,
            "type": message.message_type,
            message.message_type: message.content,
        }

    async def send(self, message: OutboundMessage) -> str:
        """Send one message.

        Returns:
            The WhatsApp message ID.

        Raises:
            RateLimitedError: On HTTP 429 or a Cloud API throttling code.
            InvalidRecipientError: When the recipient cannot be messaged.
            ProviderError: On any other failure. Retryable for 5xx and network errors.
        """
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}
        try:
            response = await self._client.post(self._url, json=self.build_payload(message), headers=headers)
        except httpx.RequestError as e:
            msg = f"WhatsApp API request failed: {e}"
            raise ProviderError(msg, status_code=503) from e

        if response.is_success:
            data = response.json()
            return data["messages"][0]["id"]

        error = self._error_body(response)
        code = error.get("code")
        detail = error.get("message") or response.text
        logger.warning("whatsapp_send_failed", status_code=response.status_code, code=code, detail=detail)
        if response.status_code == 429 or code in (4, 80007, 130429):
            raise RateLimitedError(f"WhatsApp API rate limit: {detail}")
        if code in RECIPIENT_ERROR_CODES:
            raise InvalidRecipientError(message.to, detail)
        msg = f"WhatsApp API error {code}: {detail}"
        raise ProviderError(msg, status_code=response.status_code)

    @staticmethod
    def _error_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        error = body.get("error") if isinstance(body, dict) else None
        return error if isinstance(error, dict) else {}

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpxWebhookCaller:
    """Performs webhook node calls with httpx."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient()

    async def call(self, request: WebhookRequest) -> WebhookResponse:
        """Perform the request.

        The response body is decoded as JSON when possible, otherwise kept as text.

        Raises:
            WebhookTimeoutError: The call exceeded ``request.timeout``.
            WebhookConnectionError: The target could not be reached.
        """
        kwargs: dict[str, Any] = {"headers": request.headers, "timeout": request.timeout}
        if request.body is not None and request.method != "GET":
            kwargs["json"] = request.body
        try:
            response = await self._client.request(request.method, request.url, **kwargs)
        except httpx.TimeoutException as e:
            raise WebhookTimeoutError(request.url, request.timeout or 0.0) from e
        except httpx.RequestError as e:
            raise WebhookConnectionError(request.url, str(e)) from e

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return WebhookResponse(status_code=response.status_code, body=body)

    async def aclose(self) -> None:
        await self._client.aclose()
