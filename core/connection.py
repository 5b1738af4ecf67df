"""
HomeAssistantConnection - WebSocket клиент Home Assistant.

Протокол (https://developers.home-assistant.io/docs/api/websocket):
    server: {"type": "auth_required"}
    client: {"type": "auth", "access_token": "..."}
    server: {"type": "auth_ok"} | {"type": "auth_invalid", "message": "..."}
    client: {"id": N, "type": "subscribe_events" | "call_service" | "get_states", ...}
    server: {"id": N, "type": "result", "success": bool, "result"|"error": ...}
    server: {"id": N, "type": "event", "event": {...}}

События жизненного цикла:
- ready - после auth_ok (на каждое подключение, включая переподключения)
- close - после потери аутентифицированного соединения

Переподключение - экспоненциальный backoff с jitter. auth_invalid останавливает попытки.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from core.exceptions import AuthenticationError, ConnectionClosedError, RuntimeCoreError, ServiceCallError
from core.logger_helper import debug, error as log_error, info, warning
from core.utils.operation import call_isolated


LifecycleCallback = Callable[[], Optional[Awaitable[None]]]
EventHandler = Callable[[Dict[str, Any]], Any]


class HomeAssistantConnection:
    """
    WebSocket соединение с Home Assistant.

    Запросы сопоставляются с ответами по id; подписки на события живут
    только в пределах одной сессии (после переподключения их нужно создать заново,
    что брокер и делает на событии ready).
    """

    def __init__(
        self,
        url: str,
        token: str,
        runtime: Optional[Any] = None,
        max_backoff: float = 30.0,
        request_timeout: float = 15.0,
        heartbeat: float = 30.0,
    ):
        self._url = url
        self._token = token
        self._runtime = runtime
        self._max_backoff = max_backoff
        self._request_timeout = request_timeout
        self._heartbeat = heartbeat

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._runner: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._connected = False

        self._next_id = 1
        self._pending: Dict[int, asyncio.Future] = {}
        self._event_handlers: Dict[int, EventHandler] = {}
        self._ready_callbacks: List[LifecycleCallback] = []
        self._close_callbacks: List[LifecycleCallback] = []

    @property
    def connected(self) -> bool:
        return self._connected

    def on_ready(self, callback: LifecycleCallback) -> None:
        """Зарегистрировать обработчик события ready."""
        self._ready_callbacks.append(callback)

    def on_close(self, callback: LifecycleCallback) -> None:
        """Зарегистрировать обработчик события close."""
        self._close_callbacks.append(callback)

    async def start(self) -> None:
        if self._runner and not self._runner.done():
            return
        self._stop_event.clear()
        self._runner = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._runner:
            self._runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._runner
            self._runner = None
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        if self._session:
            with contextlib.suppress(Exception):
                await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Публичные запросы
    # ------------------------------------------------------------------

    async def subscribe_event(self, event_type: str, handler: EventHandler) -> int:
        """
        Подписаться на события заданного типа.

        Обработчик регистрируется до отправки запроса: событие может прийти
        сразу за результатом подписки.

        Returns:
            id подписки в текущей сессии
        """
        msg_id = self._allocate_id()
        self._event_handlers[msg_id] = handler
        try:
            await self._send_and_wait(msg_id, {"type": "subscribe_events", "event_type": event_type})
        except Exception:
            self._event_handlers.pop(msg_id, None)
            raise
        return msg_id

    async def call_service(self, domain: str, service: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """Вызвать сервис Home Assistant."""
        payload: Dict[str, Any] = {"type": "call_service", "domain": domain, "service": service}
        if data:
            payload["service_data"] = data
        return await self._send_and_wait(self._allocate_id(), payload)

    async def get_states(self) -> List[Dict[str, Any]]:
        """Получить все состояния."""
        return await self._send_and_wait(self._allocate_id(), {"type": "get_states"})

    def _allocate_id(self) -> int:
        msg_id = self._next_id
        self._next_id += 1
        return msg_id

    async def _send_and_wait(self, msg_id: int, payload: Dict[str, Any]) -> Any:
        if not self._connected or self._ws is None:
            raise ConnectionClosedError("Home Assistant websocket is not connected")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._ws.send_json({"id": msg_id, **payload})
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        finally:
            self._pending.pop(msg_id, None)

    # ------------------------------------------------------------------
    # Цикл соединения
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        backoff = 1.0
        while not self._stop_event.is_set():
            try:
                await self._connect_once()
                backoff = 1.0
            except asyncio.CancelledError:
                raise
            except AuthenticationError as e:
                log_error(self._runtime, f"Home Assistant auth failed, not reconnecting: {e}", component="connection")
                break
            except Exception as e:
                log_error(
                    self._runtime,
                    f"Home Assistant WS loop error: {type(e).__name__}: {e}",
                    component="connection",
                    backoff=round(backoff, 2),
                )
            finally:
                await self._handle_disconnect()

            if self._stop_event.is_set():
                break
            await asyncio.sleep(backoff + random.random())
            backoff = min(backoff * 2, self._max_backoff)

    async def _connect_once(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        debug(self._runtime, f"Connecting to {self._url}", component="connection")
        async with self._session.ws_connect(self._url, heartbeat=self._heartbeat) as ws:
            self._ws = ws
            await self._authenticate(ws)
            self._connected = True
            info(self._runtime, "Home Assistant websocket authenticated", component="connection")
            self._fire(self._ready_callbacks, "ready")

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        warning(self._runtime, "Invalid JSON from Home Assistant", component="connection")
                        continue
                    # Home Assistant может склеивать сообщения в массив
                    for message in data if isinstance(data, list) else [data]:
                        self._handle_message(message)
                elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSE):
                    break

    async def _authenticate(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        msg = await ws.receive_json(timeout=self._request_timeout)
        if msg.get("type") != "auth_required":
            raise RuntimeCoreError(f"Unexpected handshake message: {msg.get('type')}")
        await ws.send_json({"type": "auth", "access_token": self._token})
        msg = await ws.receive_json(timeout=self._request_timeout)
        if msg.get("type") == "auth_invalid":
            raise AuthenticationError(msg.get("message") or "auth_invalid")
        if msg.get("type") != "auth_ok":
            raise RuntimeCoreError(f"Unexpected handshake message: {msg.get('type')}")

    def _handle_message(self, message: Dict[str, Any]) -> None:
        """Разобрать одно сообщение от сервера."""
        msg_type = message.get("type")
        msg_id = message.get("id")

        if msg_type == "result":
            future = self._pending.get(msg_id)
            if future is None or future.done():
                return
            if message.get("success"):
                future.set_result(message.get("result"))
            else:
                err = message.get("error") or {}
                future.set_exception(ServiceCallError(err.get("code"), err.get("message")))
        elif msg_type == "event":
            handler = self._event_handlers.get(msg_id)
            if handler is None:
                return
            call_isolated(
                self._runtime,
                handler,
                message.get("event") or {},
                name="event handler",
                component="connection",
            )

    async def _handle_disconnect(self) -> None:
        was_connected = self._connected
        self._connected = False
        self._ws = None

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionClosedError("Home Assistant websocket closed"))
        self._pending.clear()
        # Подписки принадлежали закрытой сессии
        self._event_handlers.clear()

        if was_connected:
            warning(self._runtime, "Home Assistant websocket closed", component="connection")
            self._fire(self._close_callbacks, "close")

    def _fire(self, callbacks: List[LifecycleCallback], name: str) -> None:
        for callback in list(callbacks):
            call_isolated(self._runtime, callback, name=f"{name} callback", component="connection")
