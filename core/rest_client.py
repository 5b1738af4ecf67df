"""
RestClient - клиент REST API Home Assistant.

Используется только для изменения состояния сущности:
    POST /api/states/<entity_id>  (Authorization: Bearer <token>)
"""

from typing import Any, Optional

import aiohttp
from yarl import URL

from core.exceptions import StateWriteError
from core.logger_helper import debug


class RestClient:
    """HTTP клиент REST API Home Assistant поверх aiohttp.ClientSession."""

    def __init__(self, base_url: str, token: str, runtime: Optional[Any] = None, timeout: float = 15.0):
        """
        Args:
            base_url: базовый URL API, например "https://hass.local:8123/api"
            token: long-lived access token
            runtime: экземпляр CoreRuntime (для логирования)
            timeout: тайм-аут запроса (секунды)
        """
        self._base_url = URL(base_url)
        self._token = token
        self._runtime = runtime
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def set_state(self, entity_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        Записать состояние сущности.

        Args:
            entity_id: сущность
            body: {"state": ..., "attributes": {...}}

        Returns:
            ответ Home Assistant (новое состояние)

        Raises:
            StateWriteError: если ответ не 2xx
        """
        url = self._base_url / "states" / entity_id
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        session = self._get_session()
        async with session.post(url, json=body, headers=headers) as resp:
            debug(self._runtime, f"POST {url.path}: HTTP {resp.status}", component="rest_client", entity_id=entity_id)
            if not resp.ok:
                raise StateWriteError(entity_id, resp.status, resp.reason)
            return await resp.json(content_type=None)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
