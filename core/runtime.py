"""
CoreRuntime - главный класс Core Runtime.

Объединяет все компоненты:
- HomeAssistantConnection (websocket)
- RestClient (изменение состояний)
- MqttHub (опционально)
- StateBroker (кэш состояний и слушатели)
- AutomationManager (загрузка и горячая перезагрузка автоматизаций)

Один экземпляр на процесс. Передаётся явно в менеджер и в каждую автоматизацию.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from core.automation_manager import AutomationManager
from core.config import Config
from core.connection import HomeAssistantConnection
from core.logger import RuntimeLogger
from core.logger_helper import info
from core.mqtt_hub import MqttHub
from core.rest_client import RestClient
from core.state_broker import StateBroker


class CoreRuntime:
    """
    Главный класс Core Runtime.

    Координирует работу всех компонентов.
    Предоставляет единую точку доступа для автоматизаций.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        connection: Any = None,
        rest_client: Any = None,
        mqtt: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[RuntimeLogger] = None,
        watcher_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Инициализация Core Runtime.

        Args:
            config: конфигурация (по умолчанию Config())
            connection: websocket соединение (по умолчанию HomeAssistantConnection)
            rest_client: клиент REST API (по умолчанию RestClient)
            mqtt: MQTT hub (по умолчанию MqttHub из конфигурации)
            clock: источник текущего времени для планировщиков (по умолчанию datetime.now)
            logger: логгер (по умолчанию RuntimeLogger из конфигурации)
            watcher_factory: фабрика наблюдателя каталога автоматизаций
        """
        self.config = config or Config()
        self.logger = logger or RuntimeLogger(self.config.log_level, self.config.log_format)
        self.clock: Callable[[], datetime] = clock or datetime.now

        self.connection = connection or HomeAssistantConnection(
            self.config.ws_url,
            self.config.ha_token,
            runtime=self,
            max_backoff=self.config.reconnect_max_backoff,
            request_timeout=self.config.request_timeout,
        )
        self.rest = rest_client or RestClient(
            self.config.rest_url,
            self.config.ha_token,
            runtime=self,
            timeout=self.config.request_timeout,
        )
        self.mqtt = mqtt or MqttHub(
            runtime=self,
            host=self.config.mqtt_host,
            port=self.config.mqtt_port,
            username=self.config.mqtt_username,
            password=self.config.mqtt_password,
        )

        self.broker = StateBroker(self, self.connection, self.rest)
        self.automations = AutomationManager(
            self,
            self.config.automations_dir,
            library_dir_name=self.config.library_dir_name,
            extension=self.config.module_extension,
            watch_interval=self.config.watch_poll_interval,
            watcher_factory=watcher_factory,
        )
        self.broker.bind(self.automations)

        self._running = False

    @property
    def is_running(self) -> bool:
        """Запущен ли runtime."""
        return self._running

    async def start(self) -> None:
        """
        Запустить Core Runtime.

        - подключает MQTT (если настроен)
        - запускает websocket; автоматизации загрузятся на событии ready
        """
        if self._running:
            return

        if self.mqtt.enabled:
            self.mqtt.start()
        await self.connection.start()

        self._running = True
        info(self, "Core Runtime started", component="runtime")

    async def stop(self) -> None:
        """
        Остановить Core Runtime.

        - выгружает все автоматизации
        - закрывает websocket, HTTP сессию и MQTT
        """
        if not self._running:
            return

        await self.automations.stop()
        await self.connection.stop()
        await self.rest.close()
        self.mqtt.stop()

        self._running = False
        info(self, "Core Runtime stopped", component="runtime")
