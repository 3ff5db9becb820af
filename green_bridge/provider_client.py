"""
Green API Provider Gateway.
One coroutine per remote operation. Every call passes the shared rate
limiter first; retry policy belongs to the callers.
"""

import asyncio
import json
import logging
from typing import Any, List, Optional

import aiohttp

from .config import BridgeConfig
from .contract import Notification
from .errors import (
    ProtocolError,
    ProviderError,
    TransportError,
    error_for_status,
)
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Keys tried, in order, when the provider answers downloadFile
DOWNLOAD_URL_KEYS = ("downloadUrl", "urlFile", "url", "fileUrl")

# receiveNotification answers these when the inbox is empty
EMPTY_NOTIFICATION_STATUSES = (204, 502)


def extract_download_url(response: Any) -> Optional[str]:
    """
    Pull the file URL out of a downloadFile response.

    Tries ``downloadUrl``, ``urlFile``, ``url`` and ``fileUrl`` in that order
    and also accepts a bare http(s) string.
    """
    if isinstance(response, str):
        return response if response.startswith(("http://", "https://")) else None
    if not isinstance(response, dict):
        return None
    for key in DOWNLOAD_URL_KEYS:
        value = response.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class ProviderGateway:
    def __init__(
        self,
        config: BridgeConfig,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.id_instance = config.id_instance
        self.api_token = config.api_token_instance
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=config.rate_limit_max_requests,
            time_window_ms=config.rate_limit_window_ms,
        )
        self.headers = {"User-Agent": "green-bridge/0.1.0"}
        self.session = session

    async def start(self):
        """Initialize shared session."""
        if not self.session:
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_sec),
            )

    async def close(self):
        """Close shared session."""
        if self.session:
            await self.session.close()
            self.session = None

    def url_for(self, operation: str, suffix: Optional[str] = None) -> str:
        url = f"{self.base_url}/waInstance{self.id_instance}/{operation}/{self.api_token}"
        if suffix is not None:
            url = f"{url}/{suffix}"
        return url

    async def _request(
        self,
        method: str,
        operation: str,
        json_data: Optional[dict] = None,
        suffix: Optional[str] = None,
        empty_statuses: tuple = (),
    ) -> Any:
        await self.rate_limiter.admit()
        if not self.session:
            await self.start()

        url = self.url_for(operation, suffix)
        try:
            async with self.session.request(method, url, json=json_data) as resp:
                status = resp.status
                if status in empty_statuses:
                    return None
                text = await resp.text()
                if not 200 <= status < 300:
                    raise error_for_status(operation, status, text, resp.headers)
        except ProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(operation, f"{type(e).__name__}: {e}") from e

        if status == 204 or not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise ProtocolError(operation, f"JSON parse failed: {e}", status, text) from e

    # --- Account ---

    async def get_state_instance(self) -> str:
        data = await self._request("GET", "getStateInstance")
        if not isinstance(data, dict) or not data.get("stateInstance"):
            raise ProtocolError("getStateInstance", f"unexpected response {data!r}")
        return data["stateInstance"]

    async def get_qr(self) -> Optional[dict]:
        data = await self._request("GET", "qr")
        if data is not None and not isinstance(data, dict):
            raise ProtocolError("qr", f"unexpected response {type(data).__name__}")
        return data

    async def logout(self) -> Optional[dict]:
        return await self._request("GET", "logout")

    async def reboot(self) -> Optional[dict]:
        return await self._request("GET", "reboot")

    # --- Chats ---

    async def get_chats(self) -> List[dict]:
        data = await self._request("POST", "getChats", {})
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProtocolError("getChats", f"expected a list, got {type(data).__name__}")
        return data

    async def get_chat_history(self, chat_id: str, count: int = 100) -> List[dict]:
        data = await self._request(
            "POST", "getChatHistory", {"chatId": chat_id, "count": count}
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProtocolError(
                "getChatHistory", f"expected a list, got {type(data).__name__}"
            )
        return data

    async def send_message(self, chat_id: str, message: str) -> dict:
        data = await self._request(
            "POST", "sendMessage", {"chatId": chat_id, "message": message}
        )
        return data if isinstance(data, dict) else {}

    # --- Notifications ---

    async def receive_notification(self) -> Optional[Notification]:
        data = await self._request(
            "GET", "receiveNotification", empty_statuses=EMPTY_NOTIFICATION_STATUSES
        )
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ProtocolError(
                "receiveNotification", f"unexpected response {type(data).__name__}"
            )
        return Notification(receipt_id=data.get("receiptId"), body=data.get("body"))

    async def delete_notification(self, receipt_id) -> Optional[dict]:
        return await self._request("DELETE", "deleteNotification", suffix=str(receipt_id))

    # --- Files ---

    async def download_file(
        self, chat_id: str, id_message: str, download_url: Optional[str] = None
    ) -> bytes:
        """
        Download an attachment.

        The URL comes from the notification when present, otherwise it is
        resolved through the downloadFile operation.
        """
        url = download_url
        if not url:
            data = await self._request(
                "POST", "downloadFile", {"chatId": chat_id, "idMessage": id_message}
            )
            url = extract_download_url(data)
            if not url:
                raise ProtocolError("downloadFile", "no download URL in response")
        return await self.fetch_file(url)

    async def fetch_file(self, url: str) -> bytes:
        """GET raw bytes from the file host (not the provider API, no rate limit)."""
        if not self.session:
            await self.start()
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise error_for_status("fetchFile", resp.status, text, resp.headers)
                return await resp.read()
        except ProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError("fetchFile", f"{type(e).__name__}: {e}") from e
