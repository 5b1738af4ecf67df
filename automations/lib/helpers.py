"""
Общие функции для автоматизаций.

Каталог lib/ зарезервирован: файлы отсюда не загружаются как автоматизации.
"""


def bound(low, high, value):
    """Ограничить value диапазоном [low, high]."""
    return max(low, min(high, value))
