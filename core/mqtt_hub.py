"""
MqttHub - общий MQTT клиент для автоматизаций.

paho-mqtt работает в своём сетевом потоке; входящие сообщения
переносятся в event loop runtime через call_soon_threadsafe, так что
callback'и автоматизаций выполняются в том же потоке, что и всё остальное.

Подписки с id: несколько автоматизаций могут слушать один топик,
на брокере подписка одна (снимается с последним слушателем).
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import paho.mqtt.client as mqtt

from core.ids import new_id
from core.logger_helper import debug, info, warning
from core.models import Listener
from core.utils.operation import call_isolated


MessageCallback = Callable[[str, bytes], Any]


class MqttHub:
    """MQTT клиент с реестром подписок по топикам."""

    def __init__(
        self,
        runtime: Optional[Any] = None,
        host: Optional[str] = None,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
    ):
        self._runtime = runtime
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._keepalive = keepalive
        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # topic filter -> слушатели; qos хранится по фильтру отдельно
        self._subscriptions: Dict[str, List[Listener]] = {}
        self._qos: Dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        """MQTT настроен (указан хост)."""
        return bool(self._host)

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def start(self) -> None:
        """Подключиться к брокеру и запустить сетевой поток paho."""
        if not self.enabled or self._client is not None:
            return
        self._loop = asyncio.get_running_loop()

        client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
        if self._username:
            client.username_pw_set(self._username, self._password)

        def on_connect(c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            if reason_code.is_failure:
                self._log_threadsafe("warning", f"MQTT connect failed: {reason_code}")
                return
            self._log_threadsafe("info", f"MQTT connected to {self._host}:{self._port}")
            # Переподписка после (пере)подключения
            for topic, qos in list(self._qos.items()):
                c.subscribe(topic, qos=qos)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self.dispatch, msg.topic, msg.payload)

        client.on_connect = on_connect
        client.on_message = on_message
        client.connect_async(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        """Отключиться и остановить сетевой поток."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
        debug(self._runtime, "MQTT network loop stopped", component="mqtt")

    def _log_threadsafe(self, level: str, message: str) -> None:
        if self._loop is None:
            return
        log_fn = info if level == "info" else warning
        self._loop.call_soon_threadsafe(lambda: log_fn(self._runtime, message, component="mqtt"))

    def subscribe(self, topic: str, callback: MessageCallback, qos: int = 0) -> str:
        """
        Подписаться на топик (поддерживаются wildcard'ы + и #).

        Returns:
            id подписки для unsubscribe()

        Raises:
            RuntimeError: если MQTT не настроен
        """
        if not self.enabled:
            raise RuntimeError("MQTT is not configured")
        listener = Listener(id=new_id("mqtt"), callback=callback)
        first = topic not in self._subscriptions
        self._subscriptions.setdefault(topic, []).append(listener)
        if first:
            self._qos[topic] = qos
            if self._client is not None:
                self._client.subscribe(topic, qos=qos)
        return listener.id

    def unsubscribe(self, topic: str, subscription_id: str) -> None:
        """Отписаться по id. Неизвестный id - no-op."""
        listeners = self._subscriptions.get(topic)
        if not listeners:
            return
        remaining = [l for l in listeners if l.id != subscription_id]
        if remaining:
            self._subscriptions[topic] = remaining
            return
        del self._subscriptions[topic]
        self._qos.pop(topic, None)
        if self._client is not None:
            self._client.unsubscribe(topic)

    def publish(self, topic: str, payload: Union[str, bytes], qos: int = 0, retain: bool = False) -> None:
        """
        Опубликовать сообщение.

        Raises:
            RuntimeError: если MQTT не настроен или не запущен
        """
        if self._client is None:
            raise RuntimeError("MQTT is not connected")
        self._client.publish(topic, payload, qos=qos, retain=retain)

    def dispatch(self, topic: str, payload: bytes) -> None:
        """Доставить сообщение всем слушателям, чьи фильтры совпадают с топиком."""
        for topic_filter, listeners in list(self._subscriptions.items()):
            if not mqtt.topic_matches_sub(topic_filter, topic):
                continue
            for listener in list(listeners):
                call_isolated(self._runtime, listener.callback, topic, payload, name="mqtt listener", component="mqtt", topic=topic)

    def get_listener_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))
