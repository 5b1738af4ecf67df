"""
Генерация идентификаторов подписок и задач.

Единственное требование - уникальность в пределах процесса.
"""

import itertools
import uuid


_counter = itertools.count(1)


def new_id(prefix: str = "sub") -> str:
    """
    Создать новый уникальный идентификатор.

    Args:
        prefix: префикс для читаемости в логах (например, "state", "run_at")

    Returns:
        строка вида "state-42-1a2b3c4d"
    """
    return f"{prefix}-{next(_counter)}-{uuid.uuid4().hex[:8]}"
