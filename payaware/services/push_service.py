"""
Expo push transport.

Every send is classified into a PushOutcome so callers never deal with raw
HTTP responses:
- ok: Expo accepted the message (ticket status "ok")
- recoverable_error: network trouble, timeouts, 5xx
- terminal_error: Expo rejected the message (token, size, rate, credentials)
"""

from typing import Any

import httpx

from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.notification_domain import (
    DEVICE_NOT_REGISTERED,
    INVALID_CREDENTIALS,
    MESSAGE_RATE_EXCEEDED,
    PushOutcome,
)

logger = get_logger(__name__)

DEFAULT_TITLE = "‼ Payment reminder"


class ExpoPushClient:
    """Thin async client for the Expo push API."""

    def __init__(
        self,
        push_url: str,
        access_token: str | None = None,
        icon_url: str | None = None,
        timeout_s: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.push_url = push_url
        self.icon_url = icon_url
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._headers = headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build_message(
        self, device_token: str, title: str, body: str, high_priority: bool
    ) -> dict[str, Any]:
        message: dict[str, Any] = {
            "to": device_token,
            "title": title,
            "body": body,
            "sound": "default",
            "priority": "high" if high_priority else "default",
        }
        if self.icon_url:
            # Android picks the large icon from data.image
            message["data"] = {"image": self.icon_url}
        return message

    async def send(
        self, device_token: str, title: str, body: str, high_priority: bool = False
    ) -> PushOutcome:
        """Send one push message and classify the response."""
        payload = [self._build_message(device_token, title, body, high_priority)]

        try:
            response = await self._client.post(self.push_url, json=payload, headers=self._headers)
        except httpx.TimeoutException as e:
            logger.warning("Push request timed out", error=str(e))
            return PushOutcome.recoverable(f"timeout: {e}")
        except httpx.TransportError as e:
            logger.warning("Push transport error", error=str(e), error_type=type(e).__name__)
            return PushOutcome.recoverable(f"transport: {e}")

        if response.status_code >= 500:
            logger.warning("Push service unavailable", status_code=response.status_code)
            return PushOutcome.recoverable(f"HTTP {response.status_code}")

        if response.status_code >= 400:
            return self._classify_request_error(response)

        return self._classify_ticket(response)

    def _classify_request_error(self, response: httpx.Response) -> PushOutcome:
        code = None
        reason = f"HTTP {response.status_code}"
        try:
            errors = response.json().get("errors") or []
            if errors:
                code = errors[0].get("code")
                reason = errors[0].get("message") or reason
        except ValueError:
            pass

        if response.status_code == 429:
            code = MESSAGE_RATE_EXCEEDED
        elif response.status_code in (401, 403):
            code = INVALID_CREDENTIALS

        logger.error(
            "Push request rejected", status_code=response.status_code, code=code, reason=reason
        )
        return PushOutcome.terminal(reason, code)

    def _classify_ticket(self, response: httpx.Response) -> PushOutcome:
        try:
            data = response.json().get("data")
        except ValueError:
            return PushOutcome.recoverable("unreadable push response")

        ticket = data[0] if isinstance(data, list) and data else data
        if not isinstance(ticket, dict):
            return PushOutcome.recoverable("push response without ticket")

        if ticket.get("status") == "ok":
            return PushOutcome.ok(ticket_id=ticket.get("id"))

        code = (ticket.get("details") or {}).get("error")
        reason = ticket.get("message") or "push ticket error"

        if code == DEVICE_NOT_REGISTERED:
            logger.warning("Push token not registered", code=code)
        else:
            logger.error("Push ticket error", code=code, reason=reason)
        return PushOutcome.terminal(reason, code)
