import json
import logging
from typing import Any, Dict, Optional

import httpx

from whatsapp_inbox.config import settings
from whatsapp_inbox.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.wapisimo.dev/v1"

# Wapisimo requires a message alongside media; used when the operator sent no caption
DEFAULT_MEDIA_MESSAGES = {
    "image": "Imagen",
    "video": "Video",
    "audio": "Audio",
    "document": "Documento",
}


def _error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        body = json.loads(text)
    except ValueError:
        return text or response.reason_phrase
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or text
    return text


class WapisimoClient:
    """Async client for the Wapisimo WhatsApp gateway."""

    def __init__(
        self,
        api_key: str,
        phone_id: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.phone_id = phone_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                headers=self._headers, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[wapisimo] {method} {endpoint} failed: {e}")
            raise ProviderError(502, str(e) or e.__class__.__name__) from e

        if resp.is_error:
            message = _error_message(resp)
            logger.error(
                "[wapisimo] API error",
                extra={"status": resp.status_code, "endpoint": endpoint, "error": message},
            )
            raise ProviderError(resp.status_code, message)

        if not resp.content:
            return {}
        return resp.json()

    async def send_text(self, to: str, message: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/{self.phone_id}/send", json={"to": to, "message": message})
        logger.info("[wapisimo] send text ok: to=%s", to)
        return data

    async def send_media(
        self,
        to: str,
        media_url: str,
        media_type: str,
        caption: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "to": to,
            "mediaUrl": media_url,
            "mediaType": media_type,
            "message": caption or DEFAULT_MEDIA_MESSAGES.get(media_type, DEFAULT_MEDIA_MESSAGES["document"]),
        }
        logger.debug(f"[wapisimo] sending media: {payload}")
        data = await self._request("POST", f"/{self.phone_id}/send", json=payload)
        logger.info("[wapisimo] send media ok: to=%s type=%s", to, media_type)
        return data

    async def verify_number(self, phone_number: str) -> Dict[str, Any]:
        """Check whether a number is registered on WhatsApp."""
        return await self._request("GET", "/verify", params={"phone": phone_number})

    async def get_qr_code(self) -> Dict[str, Any]:
        return await self._request("GET", f"/{self.phone_id}/qr")

    async def list_webhooks(self) -> Any:
        return await self._request("GET", f"/{self.phone_id}/webhook")

    async def add_webhook(self, url: str, type: str = "new_messages") -> Dict[str, Any]:
        return await self._request("POST", f"/{self.phone_id}/webhook", json={"url": url, "type": type})

    async def delete_webhook(self, webhook_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/{self.phone_id}/webhook/{webhook_id}")


def get_provider_client() -> WapisimoClient:
    """FastAPI dependency; tests override it with a fake."""
    return WapisimoClient(
        api_key=settings.PROVIDER_API_KEY,
        phone_id=settings.PROVIDER_PHONE_ID,
        base_url=settings.PROVIDER_API_BASE,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
