"""
Точка входа в Core Runtime.

Минимальный main для запуска runtime: подключение к Home Assistant,
загрузка автоматизаций, graceful shutdown по SIGINT/SIGTERM.
"""

import asyncio
import signal
import sys

from core.config import Config
from core.runtime import CoreRuntime


async def main() -> int:
    """Главная функция запуска Core Runtime."""

    # Загрузить конфигурацию
    try:
        config = Config.from_env()
    except ValueError as e:
        print(f"[Runtime] Некорректная конфигурация: {e}", file=sys.stderr)
        return 1

    if not config.ha_host or not config.ha_token:
        print("[Runtime] HA_HOST и HA_TOKEN обязательны", file=sys.stderr)
        return 1

    # Создать Core Runtime
    runtime = CoreRuntime(config)

    # Обработка сигналов для graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler():
        """Обработчик сигналов остановки."""
        print("\n[Runtime] Получен сигнал остановки...")
        shutdown_event.set()

    # Зарегистрировать обработчики сигналов
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        # Запустить Runtime
        print("[Runtime] Запуск Core Runtime...")
        await runtime.start()
        print("[Runtime] Core Runtime запущен")

        # Ждать сигнала остановки
        await shutdown_event.wait()

    finally:
        # Остановить Runtime
        print("[Runtime] Остановка Core Runtime...")
        try:
            await asyncio.wait_for(
                runtime.stop(),
                timeout=config.shutdown_timeout
            )
            print("[Runtime] Core Runtime остановлен")
        except asyncio.TimeoutError:
            print("[Runtime] Таймаут при остановке Runtime")
    return 0


def run() -> None:
    """Точка входа console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
