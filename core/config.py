"""
Конфигурация Core Runtime.

Минимальные настройки: подключение к Home Assistant, каталог автоматизаций,
периоды опроса планировщика и логирование.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Корень сервиса (каталог, где лежат core/ и automations/)
ROOT_DIR = Path(__file__).resolve().parent.parent


@dataclass
class Config:
    """Конфигурация Core Runtime."""
    # Home Assistant: хост (host[:port]) и long-lived access token
    ha_host: str = ""
    ha_token: str = ""
    # https/wss вместо http/ws
    ha_ssl: bool = True

    # Каталог с модулями автоматизаций
    automations_dir: str = str(ROOT_DIR / "automations")
    # Зарезервированный каталог библиотек внутри automations_dir (не загружается)
    library_dir_name: str = "lib"
    # Расширение файлов автоматизаций
    module_extension: str = ".py"

    # Периоды опроса (секунды)
    queue_poll_interval: float = 1.0
    minute_poll_interval: float = 0.5
    watch_poll_interval: float = 1.0

    # Переподключение websocket (секунды)
    reconnect_max_backoff: float = 30.0
    # Тайм-аут HTTP/WS запросов (секунды)
    request_timeout: float = 15.0

    # Тайм-аут для shutdown (секунды)
    shutdown_timeout: int = 10

    # MQTT (опционально, None => выключено)
    mqtt_host: Optional[str] = None
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    # "text" | "json"
    log_format: str = "text"

    def validate(self) -> None:
        """
        Валидировать конфигурацию.

        Raises:
            ValueError: если конфигурация невалидна
        """
        for name in ("queue_poll_interval", "minute_poll_interval", "watch_poll_interval",
                     "reconnect_max_backoff", "request_timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{name} must be positive number, got: {value!r}")

        if not isinstance(self.shutdown_timeout, int) or self.shutdown_timeout <= 0:
            raise ValueError(
                f"shutdown_timeout must be positive integer, got: {self.shutdown_timeout}"
            )

        if not self.automations_dir:
            raise ValueError("automations_dir must be non-empty")

        if not isinstance(self.library_dir_name, str) or not self.library_dir_name.strip("."):
            raise ValueError("library_dir_name must be non-empty string")

        if not self.module_extension.startswith("."):
            raise ValueError(f"module_extension must start with '.', got: {self.module_extension!r}")

        if not isinstance(self.mqtt_port, int) or self.mqtt_port <= 0 or self.mqtt_port > 65535:
            raise ValueError(
                f"mqtt_port must be integer between 1 and 65535, got: {self.mqtt_port}"
            )
        # allow empty string => None for mqtt host
        if self.mqtt_host == "":
            self.mqtt_host = None

        self.log_level = (self.log_level or "INFO").upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"log_level must be DEBUG, INFO, WARNING or ERROR, got: {self.log_level!r}")

        if self.log_format not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")

    @property
    def ws_url(self) -> str:
        """URL websocket API Home Assistant."""
        scheme = "wss" if self.ha_ssl else "ws"
        return f"{scheme}://{self.ha_host}/api/websocket"

    @property
    def rest_url(self) -> str:
        """Базовый URL REST API Home Assistant."""
        scheme = "https" if self.ha_ssl else "http"
        return f"{scheme}://{self.ha_host}/api"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Создать конфигурацию из переменных окружения.

        Raises:
            ValueError: если конфигурация невалидна
        """
        config = cls(
            ha_host=os.getenv("HA_HOST", ""),
            ha_token=os.getenv("HA_TOKEN", ""),
            ha_ssl=os.getenv("HA_SSL", "true").lower() == "true",
            automations_dir=os.getenv("RUNTIME_AUTOMATIONS_DIR", str(ROOT_DIR / "automations")),
            library_dir_name=os.getenv("RUNTIME_LIBRARY_DIR", "lib"),
            queue_poll_interval=float(os.getenv("RUNTIME_QUEUE_POLL_INTERVAL", "1.0")),
            minute_poll_interval=float(os.getenv("RUNTIME_MINUTE_POLL_INTERVAL", "0.5")),
            watch_poll_interval=float(os.getenv("RUNTIME_WATCH_POLL_INTERVAL", "1.0")),
            reconnect_max_backoff=float(os.getenv("RUNTIME_RECONNECT_MAX_BACKOFF", "30.0")),
            request_timeout=float(os.getenv("RUNTIME_REQUEST_TIMEOUT", "15.0")),
            shutdown_timeout=int(os.getenv("RUNTIME_SHUTDOWN_TIMEOUT", "10")),
            mqtt_host=os.getenv("MQTT_HOST"),
            mqtt_port=int(os.getenv("MQTT_PORT", "1883")),
            mqtt_username=os.getenv("MQTT_USERNAME"),
            mqtt_password=os.getenv("MQTT_PASSWORD"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("RUNTIME_LOG_FORMAT", "text").lower(),
        )
        config.validate()
        return config
