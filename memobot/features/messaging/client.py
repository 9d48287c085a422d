from __future__ import annotations

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_WHATSAPP_PREFIX = "whatsapp:"


def whatsapp_address(phone_number: str) -> str:
    cleaned = phone_number.strip()
    if cleaned.startswith(_WHATSAPP_PREFIX):
        return cleaned
    return f"{_WHATSAPP_PREFIX}{cleaned}"


class MessagingClient(Protocol):
    async def send(self, recipient: str, body: str) -> bool: ...


class TwilioMessagingClient:
    """Sends WhatsApp messages through the Twilio Messages REST endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base_url: str,
    ):
        self.client = client
        self.account_sid = account_sid
        self.auth = httpx.BasicAuth(account_sid, auth_token)
        self.from_address = whatsapp_address(from_number)
        self.api_base_url = api_base_url.rstrip("/")

    @property
    def messages_url(self) -> str:
        return f"{self.api_base_url}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, recipient: str, body: str) -> bool:
        response = await self.client.post(
            self.messages_url,
            data={"From": self.from_address, "To": whatsapp_address(recipient), "Body": body},
            auth=self.auth,
        )
        if response.is_success:
            logger.info("WhatsApp message accepted for %s (HTTP %d).", recipient, response.status_code)
            return True
        logger.warning(
            "WhatsApp message to %s rejected with HTTP %d: %s",
            recipient,
            response.status_code,
            response.text[:200],
        )
        return False


class LoggingMessagingClient:
    """Stand-in used when no messaging credentials are configured."""

    async def send(self, recipient: str, body: str) -> bool:
        logger.info("WhatsApp message would be sent to %s (%d chars).", recipient, len(body))
        return True
